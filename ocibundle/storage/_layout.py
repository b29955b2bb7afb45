# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Dict, List
import json
import os
import tempfile
import threading

import structlog

from .. import api
from .._context import Context
from .._errors import (
    DigestMismatchError,
    InvalidOptionError,
    NonTransientTransportError,
    PermissionDeniedError,
    ReferenceNotFoundError,
)
from ._transport import RegistryTransport, split_reference

_LOGGER = structlog.get_logger("ocibundle.storage.layout")

INDEX_MEDIA_TYPE = "application/vnd.oci.image.index.v1+json"
LAYOUT_VERSION = "1.0.0"


class LayoutTransport(RegistryTransport):
    """Stores bundles in an oci image layout directory on disk.

    The repository part of each reference is ignored: everything is
    written into the single layout at root, and manifests are tagged
    through the 'org.opencontainers.image.ref.name' annotation of
    the layout's index.json.
    """

    def __init__(self, root: str, create: bool = False) -> None:

        self.root = os.path.abspath(root)
        self._lock = threading.Lock()
        layout_file = os.path.join(self.root, "oci-layout")
        if not os.path.exists(layout_file):
            if not create:
                raise InvalidOptionError(
                    "not an oci image layout (use create=True to initialize)",
                    op="open",
                    ref=self.root,
                )
            self._initialize()

    def _initialize(self) -> None:

        _LOGGER.info("creating image layout", path=self.root)
        try:
            os.makedirs(os.path.join(self.root, "blobs", api.DIGEST_ALGORITHM), exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="open", ref=self.root) from e
        self._write(
            os.path.join(self.root, "oci-layout"),
            json.dumps({"imageLayoutVersion": LAYOUT_VERSION}).encode(),
        )
        if not os.path.exists(self._index_path):
            self._write_index({"schemaVersion": 2, "mediaType": INDEX_MEDIA_TYPE, "manifests": []})

    @property
    def _index_path(self) -> str:

        return os.path.join(self.root, "index.json")

    def blob_path(self, digest: str) -> str:

        return os.path.join(self.root, "blobs", api.DIGEST_ALGORITHM, api.digest_hex(digest))

    def _write(self, path: str, data: bytes) -> None:
        """Atomically replace the file at path with data."""

        dirname = os.path.dirname(path)
        try:
            fd, tmp = tempfile.mkstemp(dir=dirname, prefix=".tmp-")
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="write", ref=path) from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException as e:
            os.unlink(tmp)
            if isinstance(e, PermissionError):
                raise PermissionDeniedError(str(e), op="write", ref=path) from e
            raise

    def _read_index(self) -> Dict[str, Any]:

        with open(self._index_path, "rb") as f:
            return json.load(f)

    def _write_index(self, index: Dict[str, Any]) -> None:

        self._write(self._index_path, json.dumps(index, indent=2, sort_keys=True).encode())

    def list_tags(self) -> List[str]:

        with self._lock:
            index = self._read_index()
        tags = []
        for desc in index.get("manifests", []):
            tag = (desc.get("annotations") or {}).get(api.ANNOTATION_REF_NAME)
            if tag:
                tags.append(tag)
        return sorted(tags)

    def put_blob(self, ctx: Context, reference: str, digest: str, content: bytes) -> None:

        ctx.check("put_blob", digest)
        actual = api.compute_digest(content)
        if actual != digest:
            raise DigestMismatchError(f"content hashes to {actual}", op="put_blob", ref=digest)
        path = self.blob_path(digest)
        if os.path.exists(path):
            _LOGGER.debug("blob already present", digest=digest)
            return
        self._write(path, content)

    def get_blob(self, ctx: Context, reference: str, digest: str) -> bytes:

        ctx.check("get_blob", digest)
        try:
            with open(self.blob_path(digest), "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise ReferenceNotFoundError("blob unknown", op="get_blob", ref=digest)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="get_blob", ref=digest) from e

    def put_manifest(self, ctx: Context, reference: str, manifest: api.Manifest) -> None:

        ctx.check("put_manifest", reference)
        _, tag = split_reference(reference)
        for desc in manifest.descriptors():
            if not os.path.exists(self.blob_path(desc.digest)):
                raise NonTransientTransportError(
                    f"manifest references unknown blob {desc.digest}",
                    op="put_manifest",
                    ref=reference,
                )

        data = manifest.to_json()
        digest = api.compute_digest(data)
        self.put_blob(ctx, reference, digest, data)

        entry = {
            "mediaType": api.MANIFEST_MEDIA_TYPE,
            "digest": digest,
            "size": len(data),
            "annotations": {api.ANNOTATION_REF_NAME: tag},
        }
        if manifest.artifact_type:
            entry["artifactType"] = manifest.artifact_type
        with self._lock:
            index = self._read_index()
            manifests = [
                m
                for m in index.get("manifests", [])
                if (m.get("annotations") or {}).get(api.ANNOTATION_REF_NAME) != tag
            ]
            manifests.append(entry)
            index["manifests"] = manifests
            self._write_index(index)
        _LOGGER.debug("tagged manifest", tag=tag, digest=digest)

    def get_manifest(self, ctx: Context, reference: str) -> api.Manifest:

        ctx.check("get_manifest", reference)
        _, tag = split_reference(reference)
        if tag.startswith(api.DIGEST_ALGORITHM + ":"):
            digest = tag
        else:
            with self._lock:
                index = self._read_index()
            for desc in index.get("manifests", []):
                if (desc.get("annotations") or {}).get(api.ANNOTATION_REF_NAME) == tag:
                    digest = desc["digest"]
                    break
            else:
                raise ReferenceNotFoundError("manifest unknown", op="get_manifest", ref=reference)
        return api.Manifest.from_json(self.get_blob(ctx, reference, digest))
