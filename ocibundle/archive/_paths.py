# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

import os
import posixpath
import re

from .._errors import SecurityViolationError

_ENCODED_TRAVERSAL = (
    "..%2f",
    "..%5c",
    "%2e%2e%2f",
    "%2e%2e%5c",
    "%2e%2e/",
    "%2e%2e\\",
    "..%c0%af",
    "..%c1%9c",
)
_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def is_absolute(path: str) -> bool:
    """True for posix absolute paths, windows drive paths and unc paths."""

    return path.startswith("/") or path.startswith("\\") or bool(_DRIVE_RE.match(path))


def has_traversal(path: str) -> bool:

    lowered = path.lower()
    if any(variant in lowered for variant in _ENCODED_TRAVERSAL):
        return True
    return ".." in re.split(r"[\\/]", path)


def is_hidden(path: str) -> bool:

    return any(p.startswith(".") and p not in (".", "..") for p in path.split("/"))


def validate_member_path(name: str, allow_hidden: bool = True) -> str:
    """Validate an archive member name, returning it in normalized form.

    An empty string is returned for names that refer to the
    archive root itself (eg: './').
    """

    if not name or not name.strip():
        raise SecurityViolationError("empty path", op="extract", ref=repr(name))
    for char in name:
        if ord(char) < 32 or ord(char) == 127:
            raise SecurityViolationError(
                f"control character in path (U+{ord(char):04X})",
                op="extract",
                ref=repr(name),
            )
    if is_absolute(name):
        raise SecurityViolationError("absolute path not allowed", op="extract", ref=name)
    if has_traversal(name):
        raise SecurityViolationError("path traversal detected", op="extract", ref=name)

    normalized = posixpath.normpath(name)
    if normalized == ".":
        return ""
    if not allow_hidden and is_hidden(normalized):
        raise SecurityViolationError("hidden files not allowed", op="extract", ref=name)
    return normalized


def strip_prefix(path: str, prefix: str, strict: bool = False) -> str:
    """Remove the given leading directory from a normalized bundle path.

    The prefix only matches whole path components, so 'data' strips
    'data/file' but not 'database/file'. A path that does not match
    is returned as-is, or rejected when strict is set. The prefix
    directory itself maps to the empty string.
    """

    prefix = posixpath.normpath(prefix) if prefix else ""
    if not prefix or prefix == ".":
        return path
    if path == prefix:
        return ""
    if path.startswith(prefix + "/"):
        return path[len(prefix) + 1 :]
    if strict:
        raise SecurityViolationError(
            f"path does not start with required prefix '{prefix}'",
            op="extract",
            ref=path,
        )
    return path


def safe_join(root: str, path: str) -> str:
    """Join a relative path onto root, refusing any result outside of it.

    The root must already be a resolved, absolute path. Directories
    that already exist along the way are resolved too, so that a
    symlink written earlier cannot redirect later entries.
    """

    full = os.path.normpath(os.path.join(root, path))
    if not _within(root, full):
        raise SecurityViolationError(
            "path escapes target directory", op="extract", ref=path
        )
    parent = os.path.realpath(os.path.dirname(full))
    if not _within(root, parent):
        raise SecurityViolationError(
            "parent directory resolves outside of target directory",
            op="extract",
            ref=path,
        )
    return full


def validate_symlink(path: str, target: str) -> None:
    """Ensure that a symlink at path (relative to the root) stays within the root."""

    if not target:
        raise SecurityViolationError("symlink has no target", op="extract", ref=path)
    if is_absolute(target):
        raise SecurityViolationError(
            f"symlink target is absolute: {target}", op="extract", ref=path
        )
    lowered = target.lower()
    if any(variant in lowered for variant in _ENCODED_TRAVERSAL):
        raise SecurityViolationError(
            f"symlink target contains encoded traversal: {target}",
            op="extract",
            ref=path,
        )
    resolved = posixpath.normpath(posixpath.join(posixpath.dirname(path), target))
    if resolved == ".." or resolved.startswith("../"):
        raise SecurityViolationError(
            f"symlink target escapes target directory: {target}",
            op="extract",
            ref=path,
        )


def validate_resolved_symlink(root: str, fullpath: str, target: str) -> None:
    """Ensure that a symlink written at fullpath resolves to a location within root.

    Unlike validate_symlink, this follows the links that already
    exist on disk, so an earlier entry cannot move where the new
    link actually lands.
    """

    parent = os.path.realpath(os.path.dirname(fullpath))
    resolved = os.path.realpath(os.path.join(parent, target))
    if not _within(root, resolved):
        raise SecurityViolationError(
            f"symlink target resolves outside of target directory: {target}",
            op="extract",
            ref=fullpath,
        )


def validate_resolved_path(root: str, fullpath: str) -> None:
    """Ensure that an existing path, with all of its links followed, is within root."""

    if not _within(root, os.path.realpath(fullpath)):
        raise SecurityViolationError(
            "path resolves outside of target directory", op="extract", ref=fullpath
        )


def _within(root: str, path: str) -> bool:

    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)
