# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any
import errno
import json
import os

import py.path
import pytest

from .. import api
from .._context import Context
from .._errors import InvalidOptionError
from ._layout import LayoutTransport
from ._mem import MemTransport


def test_layout_requires_create(tmpdir: py.path.local) -> None:

    with pytest.raises(InvalidOptionError):
        LayoutTransport(tmpdir.strpath)


def test_layout_structure(tmpdir: py.path.local) -> None:

    ctx = Context.background()
    transport = LayoutTransport(tmpdir.strpath, create=True)
    assert json.loads(tmpdir.join("oci-layout").read()) == {
        "imageLayoutVersion": "1.0.0"
    }

    config = api.Blob(api.CONFIG_MEDIA_TYPE, b"{}")
    layer = api.Blob(api.LAYER_MEDIA_TYPE, b"layer")
    for blob in (config, layer):
        transport.put_blob(ctx, "bundle", blob.digest, blob.data)
    manifest = api.Manifest(
        config=api.Descriptor(config.media_type, config.digest, config.size),
        layers=(api.Descriptor(layer.media_type, layer.digest, layer.size),),
    )
    transport.put_manifest(ctx, "bundle:v2", manifest)

    assert tmpdir.join("blobs", "sha256", api.digest_hex(layer.digest)).read_binary() == b"layer"
    index = json.loads(tmpdir.join("index.json").read())
    assert len(index["manifests"]) == 1
    assert index["manifests"][0]["digest"] == manifest.digest()
    assert transport.list_tags() == ["v2"]

    # reopening an existing layout sees the same content
    reopened = LayoutTransport(tmpdir.strpath)
    assert reopened.get_manifest(ctx, "bundle:v2") == manifest


def test_mem_listing() -> None:

    ctx = Context.background()
    transport = MemTransport()
    blob = api.Blob(api.LAYER_MEDIA_TYPE, b"data")
    transport.put_blob(ctx, "one/repo:v1", blob.digest, blob.data)

    assert transport.list_blobs("one/repo") == [blob.digest]
    assert transport.list_blobs("other/repo") == []
    assert transport.calls["put_blob"] == 1


def test_layout_write_failure_leaves_no_temp_files(
    tmpdir: py.path.local, monkeypatch: Any
) -> None:

    transport = LayoutTransport(tmpdir.strpath, create=True)
    blob = api.Blob(api.LAYER_MEDIA_TYPE, b"layer")

    def no_space(src: str, dst: str) -> None:
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(os, "replace", no_space)
    with pytest.raises(OSError):
        transport.put_blob(Context.background(), "bundle", blob.digest, blob.data)

    assert tmpdir.join("blobs", "sha256").listdir() == []
