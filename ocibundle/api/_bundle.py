# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Dict, List, Mapping, Optional, Tuple, Union
from dataclasses import dataclass
import json

import structlog

from .._errors import DigestMismatchError, InvalidManifestError, NotFoundError
from ._blob import Blob
from ._entry import BundleEntry
from ._manifest import (
    ANNOTATION_CONTENT_SIZE,
    ANNOTATION_TITLE,
    CONFIG_MEDIA_TYPE,
    Descriptor,
    Manifest,
)
from ._options import copy_annotations
from ._platform import Platform, parse_platform

_LOGGER = structlog.get_logger("ocibundle.api")


@dataclass(frozen=True)
class PackedLayer:
    """One layer blob produced by the packer, and what went into it."""

    blob: Blob
    entries: Tuple[BundleEntry, ...]
    content_size: int


@dataclass(frozen=True)
class PackResult:

    entries: Tuple[BundleEntry, ...]
    layers: Tuple[PackedLayer, ...]

    @property
    def content_size(self) -> int:

        return sum(layer.content_size for layer in self.layers)


@dataclass(frozen=True)
class Bundle:
    """A manifest together with every blob that it references.

    A bundle can only be created once all of its blobs are present
    and match their descriptors.
    """

    manifest: Manifest
    blobs: Mapping[str, Blob]

    def __post_init__(self) -> None:

        blobs = dict(self.blobs)
        for desc in self.manifest.descriptors():
            blob = blobs.get(desc.digest)
            if blob is None:
                raise NotFoundError("manifest references a missing blob", ref=desc.digest)
            if blob.size != desc.size:
                raise DigestMismatchError(
                    f"expected {desc.size} bytes, got {blob.size}", ref=desc.digest
                )
        object.__setattr__(self, "blobs", blobs)

    @property
    def config(self) -> Blob:

        return self.blobs[self.manifest.config.digest]

    def layers(self) -> List[Blob]:
        """The layer blobs of this bundle, in manifest order."""

        return [self.blobs[desc.digest] for desc in self.manifest.layers]

    def entries(self) -> List[BundleEntry]:
        """The entries recorded in this bundle's config blob."""

        return [BundleEntry.from_dict(e) for e in read_config(self.config).get("entries", [])]


def read_config(blob: Blob) -> Dict[str, Any]:

    try:
        data = json.loads(blob.data)
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidManifestError(f"config blob is not valid json: {e}", ref=blob.digest)
    if not isinstance(data, dict):
        raise InvalidManifestError("config blob must be a json object", ref=blob.digest)
    return data


def build_config(
    packed: PackResult, platform: Optional[Platform] = None
) -> Blob:
    """Create the config blob that describes the packed entries and platform."""

    data: Dict[str, Any] = {
        "content_size": packed.content_size,
        "entries": [entry.to_dict() for entry in packed.entries],
    }
    if platform is not None:
        data.update(platform.to_dict())
    raw = json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
    return Blob(CONFIG_MEDIA_TYPE, raw)


def build_manifest(
    packed: PackResult,
    annotations: Optional[Mapping[str, str]] = None,
    platform: Union[str, Platform, None] = None,
) -> Bundle:
    """Assemble a complete bundle from the output of the packer.

    The given annotations are copied, and the platform may be given
    as a string in the form os/arch[/variant].
    """

    if platform is not None and not isinstance(platform, Platform):
        platform = parse_platform(platform)

    manifest_annotations = copy_annotations(annotations)
    manifest_annotations[ANNOTATION_CONTENT_SIZE] = str(packed.content_size)

    config = build_config(packed, platform)
    layers = []
    blobs = {config.digest: config}
    for i, layer in enumerate(packed.layers):
        layers.append(
            Descriptor(
                media_type=layer.blob.media_type,
                digest=layer.blob.digest,
                size=layer.blob.size,
                annotations={
                    ANNOTATION_TITLE: f"layer-{i}.tar.gz",
                    ANNOTATION_CONTENT_SIZE: str(layer.content_size),
                },
            )
        )
        blobs[layer.blob.digest] = layer.blob

    manifest = Manifest(
        config=Descriptor(
            media_type=config.media_type,
            digest=config.digest,
            size=config.size,
            platform=platform,
        ),
        layers=tuple(layers),
        annotations=manifest_annotations,
    )
    _LOGGER.debug("built manifest", digest=manifest.digest(), layers=len(layers))
    return Bundle(manifest, blobs)
