# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Optional


class BundleError(Exception):
    """Base class for all errors raised while packing, moving or unpacking bundles.

    Every error remembers the operation that failed and the thing it
    was operating on (a path, digest or reference) so that a failure
    can be diagnosed from the message alone.
    """

    def __init__(self, message: str, op: str = "", ref: str = "") -> None:

        self.message = message
        self.op = op
        self.ref = ref
        super(BundleError, self).__init__(self._format())

    def _format(self) -> str:

        prefix = " ".join(p for p in (self.op, self.ref) if p)
        if prefix:
            return f"{prefix}: {self.message}"
        return self.message


class NotFoundError(BundleError, FileNotFoundError):
    """A source path or remote reference does not exist."""


class PermissionDeniedError(BundleError, PermissionError):
    """A filesystem object could not be read or written."""


class InvalidOptionError(BundleError, ValueError):
    """A configuration value was malformed or out of range."""


class SecurityViolationError(BundleError):
    """A quota was exceeded or an entry tried to escape its destination."""


class CorruptArchiveError(BundleError):
    """A layer blob could not be read as a gzipped tar archive."""


class CanceledError(BundleError):
    """The caller canceled the operation or its deadline passed."""


class TransportError(BundleError):
    pass


class TransientTransportError(TransportError):
    """A network or server failure that is worth retrying."""


class NonTransientTransportError(TransportError):
    """A failure that will not go away by trying again."""


class AuthenticationError(NonTransientTransportError):
    pass


class ReferenceNotFoundError(NonTransientTransportError, NotFoundError):
    pass


class InvalidManifestError(NonTransientTransportError):
    pass


class DigestMismatchError(NonTransientTransportError):
    pass


class TransferFailedError(BundleError):
    """The terminal error of a transfer, summarizing its last failure."""

    def __init__(
        self, op: str, ref: str, attempts: int, last_error: Exception
    ) -> None:

        self.attempts = attempts
        self.last_error = last_error
        super(TransferFailedError, self).__init__(
            f"failed after {attempts} attempt(s): {last_error}", op=op, ref=ref
        )

    @property
    def transient(self) -> bool:
        """True if the last failure was retry-eligible (retries ran out)."""

        return is_transient(self.last_error)


def is_transient(err: BaseException) -> bool:
    """Return true if the given error may succeed when tried again."""

    if isinstance(err, (SecurityViolationError, InvalidOptionError, CanceledError)):
        return False
    if isinstance(err, TransientTransportError):
        return True
    if isinstance(err, NonTransientTransportError):
        return False
    return isinstance(err, (TimeoutError, ConnectionError))


def status_error(
    status: int, op: str, ref: str, message: Optional[str] = None
) -> TransportError:
    """Create the transport error that corresponds to an http status code.

    Registry transports use this to map registry responses into the
    classes that the transfer engine knows how to retry.
    """

    message = message or f"registry responded with status {status}"
    if status in (401, 403):
        return AuthenticationError(message, op=op, ref=ref)
    if status == 404:
        return ReferenceNotFoundError(message, op=op, ref=ref)
    if status in (408, 429):
        return TransientTransportError(message, op=op, ref=ref)
    if 400 <= status < 500:
        return NonTransientTransportError(message, op=op, ref=ref)
    if status >= 500:
        return TransientTransportError(message, op=op, ref=ref)
    raise ValueError(f"Not an error status: {status}")
