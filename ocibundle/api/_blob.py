# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from dataclasses import dataclass, field
import hashlib
import re

from .._errors import DigestMismatchError, InvalidOptionError

DIGEST_ALGORITHM = "sha256"
_DIGEST_RE = re.compile(r"^sha256:[a-f0-9]{64}$")


def compute_digest(data: bytes) -> str:
    """Compute the content digest of the given bytes, eg: 'sha256:abc...'."""

    return f"{DIGEST_ALGORITHM}:{hashlib.sha256(data).hexdigest()}"


def validate_digest(digest: str) -> str:
    """Return the given digest if it is well formed, or raise an InvalidOptionError."""

    if not isinstance(digest, str) or not _DIGEST_RE.match(digest):
        raise InvalidOptionError(f"invalid digest: {digest!r}", op="validate")
    return digest


def digest_hex(digest: str) -> str:

    return validate_digest(digest).split(":", 1)[1]


@dataclass(frozen=True)
class Blob:
    """An immutable, content-addressed sequence of bytes."""

    media_type: str
    data: bytes = field(repr=False)
    digest: str = ""

    def __post_init__(self) -> None:

        actual = compute_digest(self.data)
        if not self.digest:
            object.__setattr__(self, "digest", actual)
        elif self.digest != actual:
            raise DigestMismatchError(
                f"content hashes to {actual}", op="blob", ref=self.digest
            )

    @property
    def size(self) -> int:

        return len(self.data)
