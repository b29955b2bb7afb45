# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk
"""ocibundle - distribute directory trees as oci artifacts"""

from . import api, archive, storage
from ._errors import (
    BundleError,
    NotFoundError,
    PermissionDeniedError,
    InvalidOptionError,
    SecurityViolationError,
    CorruptArchiveError,
    CanceledError,
    TransportError,
    TransientTransportError,
    NonTransientTransportError,
    AuthenticationError,
    ReferenceNotFoundError,
    InvalidManifestError,
    DigestMismatchError,
    TransferFailedError,
    is_transient,
    status_error,
)
from ._context import Context
from ._transfer import TransferEngine, TransferReport, TransferState, TransferStatus
from ._client import push, pull, PullResult

__version__ = "0.1.0"

# promote useful front line api types
Bundle = api.Bundle
Manifest = api.Manifest
PushOptions = api.PushOptions
PullOptions = api.PullOptions
TransferOptions = api.TransferOptions
ExtractionPolicy = api.ExtractionPolicy
pack = archive.pack
extract = archive.extract
build_manifest = api.build_manifest
MemTransport = storage.MemTransport
LayoutTransport = storage.LayoutTransport
RegistryTransport = storage.RegistryTransport

__all__ = list(locals().keys())
