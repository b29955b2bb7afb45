# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

import json

import pytest

from .._errors import DigestMismatchError, InvalidManifestError, NotFoundError
from ._blob import Blob, compute_digest
from ._bundle import Bundle, PackedLayer, PackResult, build_manifest
from ._entry import BundleEntry, EntryKind
from ._manifest import (
    ANNOTATION_CONTENT_SIZE,
    ANNOTATION_TITLE,
    ARTIFACT_TYPE,
    LAYER_MEDIA_TYPE,
    Descriptor,
    Manifest,
)
from ._platform import Platform


def _packed() -> PackResult:

    entries = (
        BundleEntry("a.txt", EntryKind.FILE, 0o644, size=10, digest=compute_digest(b"0" * 10)),
        BundleEntry("b.txt", EntryKind.FILE, 0o644, size=20, digest=compute_digest(b"1" * 20)),
    )
    layer = Blob(LAYER_MEDIA_TYPE, b"pretend this is a tarball")
    return PackResult(entries, (PackedLayer(layer, entries, 30),))


def test_build_manifest() -> None:

    bundle = build_manifest(_packed(), {"org.example": "yes"}, "linux/amd64")
    manifest = bundle.manifest

    assert manifest.artifact_type == ARTIFACT_TYPE
    assert manifest.platform == Platform("linux", "amd64")
    assert manifest.annotations["org.example"] == "yes"
    assert manifest.content_size() == 30
    assert len(manifest.layers) == 1
    layer = manifest.layers[0]
    assert layer.annotations[ANNOTATION_TITLE] == "layer-0.tar.gz"
    assert layer.content_size() == 30
    assert [e.path for e in bundle.entries()] == ["a.txt", "b.txt"]


def test_build_manifest_copies_annotations() -> None:

    annotations = {"key": "value"}
    bundle = build_manifest(_packed(), annotations)
    annotations["key"] = "changed"
    annotations["other"] = "added"
    assert bundle.manifest.annotations["key"] == "value"
    assert "other" not in bundle.manifest.annotations


def test_build_manifest_is_deterministic() -> None:

    first = build_manifest(_packed(), {"b": "2", "a": "1"}, "linux/arm64")
    second = build_manifest(_packed(), {"a": "1", "b": "2"}, "linux/arm64")
    assert first.manifest.to_json() == second.manifest.to_json()
    assert first.manifest.digest() == second.manifest.digest()


def test_manifest_json_round_trip() -> None:

    manifest = build_manifest(_packed(), {"a": "1"}, "linux/arm/v7").manifest
    assert Manifest.from_json(manifest.to_json()) == manifest


@pytest.mark.parametrize(
    "data",
    [
        b"not json",
        b"[]",
        b'{"schemaVersion": 1}',
        b'{"schemaVersion": 2, "mediaType": "text/plain"}',
        b'{"schemaVersion": 2, "layers": []}',
    ],
)
def test_manifest_from_json_invalid(data: bytes) -> None:

    with pytest.raises(InvalidManifestError):
        Manifest.from_json(data)


def test_manifest_without_layers() -> None:

    manifest = build_manifest(_packed()).manifest
    data = manifest.to_dict()
    data["layers"] = []
    with pytest.raises(InvalidManifestError):
        Manifest.from_json(json.dumps(data).encode())


def test_manifest_unknown_content_size() -> None:

    manifest = build_manifest(_packed()).manifest
    data = manifest.to_dict()
    del data["annotations"][ANNOTATION_CONTENT_SIZE]
    assert Manifest.from_dict(data).content_size() == -1


def test_descriptor_invalid_digest() -> None:

    with pytest.raises(ValueError):
        Descriptor(LAYER_MEDIA_TYPE, "md5:abc", 1)


def test_bundle_requires_all_blobs() -> None:

    bundle = build_manifest(_packed())
    blobs = dict(bundle.blobs)
    del blobs[bundle.manifest.layers[0].digest]
    with pytest.raises(NotFoundError):
        Bundle(bundle.manifest, blobs)


def test_blob_digest_mismatch() -> None:

    with pytest.raises(DigestMismatchError):
        Blob(LAYER_MEDIA_TYPE, b"data", compute_digest(b"other"))
