# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Dict, Mapping, Optional, Tuple
from dataclasses import dataclass, field
import json

from sortedcontainers import SortedDict

from .._errors import InvalidManifestError, InvalidOptionError
from ._blob import compute_digest, validate_digest
from ._options import copy_annotations
from ._platform import Platform

MANIFEST_MEDIA_TYPE = "application/vnd.oci.image.manifest.v1+json"
ARTIFACT_TYPE = "application/vnd.ocibundle.bundle.v1"
CONFIG_MEDIA_TYPE = "application/vnd.ocibundle.config.v1+json"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"

ANNOTATION_TITLE = "org.opencontainers.image.title"
ANNOTATION_REF_NAME = "org.opencontainers.image.ref.name"
ANNOTATION_CONTENT_SIZE = "dev.ocibundle.content.size"


@dataclass(frozen=True)
class Descriptor:
    """Points at a single blob by digest, with its size and media type."""

    media_type: str
    digest: str
    size: int
    annotations: Mapping[str, str] = field(default_factory=SortedDict)
    platform: Optional[Platform] = None

    def __post_init__(self) -> None:

        validate_digest(self.digest)
        if isinstance(self.size, bool) or not isinstance(self.size, int) or self.size < 0:
            raise InvalidOptionError(f"invalid descriptor size: {self.size!r}")
        object.__setattr__(self, "annotations", copy_annotations(self.annotations))

    def content_size(self) -> Optional[int]:
        """The number of bundle content bytes this blob carries, if recorded."""

        return _parse_size(self.annotations.get(ANNOTATION_CONTENT_SIZE))

    def to_dict(self) -> Dict[str, Any]:

        out: Dict[str, Any] = {
            "mediaType": self.media_type,
            "digest": self.digest,
            "size": self.size,
        }
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.platform is not None:
            out["platform"] = self.platform.to_dict()
        return out

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Descriptor":

        platform = data.get("platform")
        return Descriptor(
            media_type=str(data["mediaType"]),
            digest=str(data["digest"]),
            size=data["size"],
            annotations=dict(data.get("annotations") or {}),
            platform=Platform.from_dict(platform) if platform else None,
        )


@dataclass(frozen=True)
class Manifest:
    """An oci image manifest describing the blobs of one bundle.

    The platform of the bundle is recorded on the config descriptor,
    and a manifest is immutable once created.
    """

    config: Descriptor
    layers: Tuple[Descriptor, ...]
    annotations: Mapping[str, str] = field(default_factory=SortedDict)
    artifact_type: str = ARTIFACT_TYPE

    def __post_init__(self) -> None:

        object.__setattr__(self, "layers", tuple(self.layers))
        object.__setattr__(self, "annotations", copy_annotations(self.annotations))

    @property
    def platform(self) -> Optional[Platform]:

        return self.config.platform

    def descriptors(self) -> Tuple[Descriptor, ...]:
        """All of the blob descriptors referenced, config first."""

        return (self.config,) + self.layers

    def content_size(self) -> int:
        """The total bundle content bytes, or -1 if the manifest does not say."""

        size = _parse_size(self.annotations.get(ANNOTATION_CONTENT_SIZE))
        return -1 if size is None else size

    def to_dict(self) -> Dict[str, Any]:

        out: Dict[str, Any] = {
            "schemaVersion": 2,
            "mediaType": MANIFEST_MEDIA_TYPE,
            "config": self.config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
        }
        if self.artifact_type:
            out["artifactType"] = self.artifact_type
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        return out

    def to_json(self) -> bytes:
        """Serialize this manifest into its canonical json form."""

        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()

    def digest(self) -> str:

        return compute_digest(self.to_json())

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Manifest":

        if not isinstance(data, Mapping):
            raise InvalidManifestError("manifest must be a json object")
        if data.get("schemaVersion") != 2:
            raise InvalidManifestError(
                f"unsupported schema version: {data.get('schemaVersion')!r}"
            )
        media_type = data.get("mediaType", MANIFEST_MEDIA_TYPE)
        if media_type != MANIFEST_MEDIA_TYPE:
            raise InvalidManifestError(f"unsupported manifest media type: {media_type}")

        try:
            config = Descriptor.from_dict(data["config"])
            layers = tuple(Descriptor.from_dict(d) for d in data.get("layers") or [])
            manifest = Manifest(
                config=config,
                layers=layers,
                annotations=dict(data.get("annotations") or {}),
                artifact_type=str(data.get("artifactType", "")),
            )
        except (KeyError, TypeError, InvalidOptionError) as e:
            raise InvalidManifestError(f"malformed manifest: {e}") from e

        if not manifest.layers:
            raise InvalidManifestError("manifest has no layers")
        return manifest

    @staticmethod
    def from_json(data: bytes) -> "Manifest":

        try:
            decoded = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise InvalidManifestError(f"manifest is not valid json: {e}") from e
        return Manifest.from_dict(decoded)


def _parse_size(value: Optional[str]) -> Optional[int]:

    if value is None:
        return None
    try:
        size = int(value)
    except ValueError:
        return None
    return size if size >= 0 else None
