# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Tuple
import abc

from .. import api
from .._context import Context
from .._errors import InvalidOptionError

DEFAULT_TAG = "latest"


class RegistryTransport(metaclass=abc.ABCMeta):
    """The narrow set of registry operations that bundles depend on.

    Implementations are expected to honor the given context, and to
    raise errors from the transport taxonomy: TransientTransportError
    for failures worth retrying (network issues, 5xx responses) and
    NonTransientTransportError for everything else (see status_error).
    Every operation must be safe to repeat.
    """

    @abc.abstractmethod
    def put_blob(self, ctx: Context, reference: str, digest: str, content: bytes) -> None:
        """Upload the given blob content into the repository of reference."""

        pass

    @abc.abstractmethod
    def get_blob(self, ctx: Context, reference: str, digest: str) -> bytes:
        """Download the content of a blob from the repository of reference."""

        pass

    @abc.abstractmethod
    def put_manifest(self, ctx: Context, reference: str, manifest: api.Manifest) -> None:
        """Upload a manifest and tag it with the tag of reference."""

        pass

    @abc.abstractmethod
    def get_manifest(self, ctx: Context, reference: str) -> api.Manifest:
        """Fetch the manifest that reference points to."""

        pass


def split_reference(reference: str) -> Tuple[str, str]:
    """Split a reference into its repository and its tag or digest.

    >>> split_reference("localhost:5000/bundles/app:v1")
    ('localhost:5000/bundles/app', 'v1')
    >>> split_reference("ghcr.io/org/app")
    ('ghcr.io/org/app', 'latest')
    """

    if not reference or not reference.strip():
        raise InvalidOptionError("reference cannot be empty", op="parse")

    if "@" in reference:
        repository, digest = reference.rsplit("@", 1)
        return repository, api.validate_digest(digest)

    slash = reference.rfind("/")
    colon = reference.rfind(":")
    if colon > slash:
        repository, tag = reference[:colon], reference[colon + 1 :]
        if not tag:
            raise InvalidOptionError("reference has an empty tag", op="parse", ref=reference)
        return repository, tag
    return reference, DEFAULT_TAG
