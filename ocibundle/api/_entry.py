# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, Dict, Optional
from dataclasses import dataclass
import enum
import posixpath

from .._errors import InvalidOptionError


class EntryKind(enum.Enum):

    FILE = "file"
    DIRECTORY = "dir"
    SYMLINK = "symlink"


@dataclass(frozen=True)
class BundleEntry:
    """One filesystem object within a bundle.

    Paths are always relative and slash-separated, and never
    contain '..' segments.
    """

    path: str
    kind: EntryKind
    mode: int
    size: int = 0
    linkname: Optional[str] = None
    digest: Optional[str] = None

    def __post_init__(self) -> None:

        validate_entry_path(self.path)
        if self.kind is EntryKind.SYMLINK and not self.linkname:
            raise InvalidOptionError("symlink entry requires a target", ref=self.path)

    def is_dir(self) -> bool:

        return self.kind is EntryKind.DIRECTORY

    def is_file(self) -> bool:

        return self.kind is EntryKind.FILE

    def is_symlink(self) -> bool:

        return self.kind is EntryKind.SYMLINK

    def to_dict(self) -> Dict[str, Any]:

        out: Dict[str, Any] = {
            "path": self.path,
            "type": self.kind.value,
            "mode": self.mode,
        }
        if self.kind is EntryKind.FILE:
            out["size"] = self.size
            out["digest"] = self.digest
        if self.linkname is not None:
            out["linkname"] = self.linkname
        return out

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "BundleEntry":

        data = dict(data)
        try:
            entry = BundleEntry(
                path=data.pop("path"),
                kind=EntryKind(data.pop("type")),
                mode=int(data.pop("mode")),
                size=int(data.pop("size", 0)),
                linkname=data.pop("linkname", None),
                digest=data.pop("digest", None),
            )
        except (KeyError, ValueError) as e:
            raise InvalidOptionError(f"invalid bundle entry: {e}") from e

        for name in data:
            raise InvalidOptionError(f"Unknown field in BundleEntry: '{name}'")

        return entry


def validate_entry_path(path: str) -> str:
    """Ensure that the given bundle path is relative, normalized and in-tree."""

    if not path or path == "." or path.startswith("/"):
        raise InvalidOptionError("bundle paths must be relative", ref=path)
    if path != posixpath.normpath(path):
        raise InvalidOptionError("bundle paths must be normalized", ref=path)
    if ".." in path.split("/"):
        raise InvalidOptionError("bundle paths must not contain '..'", ref=path)
    return path
