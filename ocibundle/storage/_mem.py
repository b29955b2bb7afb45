# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Counter, Dict, List
import collections
import threading

from .. import api
from .._context import Context
from .._errors import (
    DigestMismatchError,
    NonTransientTransportError,
    ReferenceNotFoundError,
)
from ._transport import RegistryTransport, split_reference


class MemTransport(RegistryTransport):
    """A registry that lives entirely in memory.

    Like a real registry, blobs are shared by every tag of the same
    repository and a manifest is refused unless every blob that it
    references has already been uploaded.
    """

    def __init__(self) -> None:

        self._lock = threading.Lock()
        self._blobs: Dict[str, Dict[str, bytes]] = {}
        self._manifests: Dict[str, Dict[str, bytes]] = {}
        self.calls: Counter[str] = collections.Counter()

    def _count(self, name: str) -> None:

        with self._lock:
            self.calls[name] += 1

    def list_blobs(self, reference: str) -> List[str]:

        repository, _ = split_reference(reference)
        with self._lock:
            return sorted(self._blobs.get(repository, {}).keys())

    def list_tags(self, reference: str) -> List[str]:

        repository, _ = split_reference(reference)
        with self._lock:
            return sorted(
                t for t in self._manifests.get(repository, {}) if not t.startswith("sha256:")
            )

    def put_blob(self, ctx: Context, reference: str, digest: str, content: bytes) -> None:

        self._count("put_blob")
        ctx.check("put_blob", digest)
        repository, _ = split_reference(reference)
        actual = api.compute_digest(content)
        if actual != digest:
            raise DigestMismatchError(f"content hashes to {actual}", op="put_blob", ref=digest)
        with self._lock:
            self._blobs.setdefault(repository, {})[digest] = bytes(content)

    def get_blob(self, ctx: Context, reference: str, digest: str) -> bytes:

        self._count("get_blob")
        ctx.check("get_blob", digest)
        repository, _ = split_reference(reference)
        with self._lock:
            try:
                return self._blobs[repository][digest]
            except KeyError:
                raise ReferenceNotFoundError("blob unknown", op="get_blob", ref=digest)

    def put_manifest(self, ctx: Context, reference: str, manifest: api.Manifest) -> None:

        self._count("put_manifest")
        ctx.check("put_manifest", reference)
        repository, tag = split_reference(reference)
        data = manifest.to_json()
        with self._lock:
            blobs = self._blobs.get(repository, {})
            for desc in manifest.descriptors():
                if desc.digest not in blobs:
                    raise NonTransientTransportError(
                        f"manifest references unknown blob {desc.digest}",
                        op="put_manifest",
                        ref=reference,
                    )
            manifests = self._manifests.setdefault(repository, {})
            manifests[tag] = data
            manifests[api.compute_digest(data)] = data

    def get_manifest(self, ctx: Context, reference: str) -> api.Manifest:

        self._count("get_manifest")
        ctx.check("get_manifest", reference)
        repository, tag = split_reference(reference)
        with self._lock:
            try:
                data = self._manifests[repository][tag]
            except KeyError:
                raise ReferenceNotFoundError("manifest unknown", op="get_manifest", ref=reference)
        return api.Manifest.from_json(data)
