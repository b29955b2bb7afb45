# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Iterator, List, Optional, Tuple
import gzip
import io
import os
import posixpath
import stat
import tarfile

import structlog

from .. import api
from .._context import Context
from .._errors import (
    BundleError,
    InvalidOptionError,
    NotFoundError,
    PermissionDeniedError,
)

_LOGGER = structlog.get_logger("ocibundle.archive")

_COMPRESS_LEVEL = 9


class _Scanned:
    def __init__(self, entry: api.BundleEntry, data: Optional[bytes] = None) -> None:
        self.entry = entry
        self.data = data


def pack(
    source_dir: str, layer_size_limit: int = 0, ctx: Optional[Context] = None
) -> api.PackResult:
    """Pack the given directory into one or more gzipped tar layers.

    Entries are ordered lexicographically by path, and all timestamps
    and ownership are zeroed, so an unchanged directory always produces
    the same layer digests. When layer_size_limit is non-zero, file
    content is split across several layers of at most that many bytes
    (a single larger file gets a layer of its own).
    """

    if layer_size_limit < 0:
        raise InvalidOptionError("layer_size_limit must not be negative", op="pack")

    ctx = ctx or Context.background()
    source_dir = os.path.abspath(source_dir)
    try:
        st = os.stat(source_dir)
    except FileNotFoundError:
        raise NotFoundError("source directory does not exist", op="pack", ref=source_dir)
    except PermissionError as e:
        raise PermissionDeniedError(str(e), op="pack", ref=source_dir) from e
    if not stat.S_ISDIR(st.st_mode):
        raise InvalidOptionError("source is not a directory", op="pack", ref=source_dir)

    _LOGGER.info("packing", path=source_dir)
    scanned = sorted(_scan(source_dir, ctx), key=lambda s: s.entry.path)
    groups = _group(scanned, layer_size_limit)

    layers = []
    for group in groups:
        ctx.check("pack", source_dir)
        layers.append(_build_layer(group))

    result = api.PackResult(
        entries=tuple(s.entry for s in scanned), layers=tuple(layers)
    )
    _LOGGER.info(
        "packed",
        path=source_dir,
        entries=len(result.entries),
        layers=len(result.layers),
        size=result.content_size,
    )
    return result


def _scan(root: str, ctx: Context, relpath: str = "") -> Iterator[_Scanned]:

    dirname = os.path.join(root, relpath) if relpath else root
    ctx.check("pack", dirname)
    try:
        with os.scandir(dirname) as it:
            children = sorted(it, key=lambda e: e.name)
    except PermissionError as e:
        raise PermissionDeniedError(str(e), op="pack", ref=dirname) from e
    except OSError as e:
        raise BundleError(f"failed to read directory: {e}", op="pack", ref=dirname) from e

    for child in children:
        path = posixpath.join(relpath, child.name) if relpath else child.name
        try:
            st = child.stat(follow_symlinks=False)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="pack", ref=child.path) from e
        except OSError as e:
            raise BundleError(f"failed to stat: {e}", op="pack", ref=child.path) from e

        mode = stat.S_IMODE(st.st_mode)
        if stat.S_ISLNK(st.st_mode):
            yield _scan_symlink(child.path, path, mode)
        elif stat.S_ISDIR(st.st_mode):
            yield _Scanned(api.BundleEntry(path, api.EntryKind.DIRECTORY, mode))
            yield from _scan(root, ctx, path)
        elif stat.S_ISREG(st.st_mode):
            data = _read_file(child.path)
            entry = api.BundleEntry(
                path,
                api.EntryKind.FILE,
                mode,
                size=len(data),
                digest=api.compute_digest(data),
            )
            _LOGGER.debug("adding file", path=path, size=entry.size)
            yield _Scanned(entry, data)
        else:
            _LOGGER.warning("skipping special file", path=child.path)


def _scan_symlink(fullpath: str, path: str, mode: int) -> _Scanned:

    try:
        target = os.readlink(fullpath)
    except OSError as e:
        raise BundleError(f"failed to read link: {e}", op="pack", ref=fullpath) from e

    resolved = posixpath.normpath(posixpath.join(posixpath.dirname(path), target))
    if posixpath.isabs(target) or resolved == ".." or resolved.startswith("../"):
        _LOGGER.warning(
            "symlink points outside of the bundle and will be rejected on extract",
            path=path,
            target=target,
        )
    return _Scanned(api.BundleEntry(path, api.EntryKind.SYMLINK, mode, linkname=target))


def _read_file(fullpath: str) -> bytes:

    try:
        with open(fullpath, "rb") as f:
            return f.read()
    except PermissionError as e:
        raise PermissionDeniedError(str(e), op="pack", ref=fullpath) from e
    except OSError as e:
        raise BundleError(f"failed to read file: {e}", op="pack", ref=fullpath) from e


def _group(scanned: List[_Scanned], limit: int) -> List[List[_Scanned]]:
    """Split the scanned entries into layers.

    Directories always go into the first layer so that every
    parent exists before any later layer is unpacked.
    """

    dirs = [s for s in scanned if s.entry.is_dir()]
    others = [s for s in scanned if not s.entry.is_dir()]

    groups: List[List[_Scanned]] = [list(dirs)]
    current_size = 0
    for item in others:
        size = item.entry.size
        if limit and current_size and current_size + size > limit:
            groups.append([])
            current_size = 0
        groups[-1].append(item)
        current_size += size
    return groups


def _tar_info(entry: api.BundleEntry) -> tarfile.TarInfo:

    info = tarfile.TarInfo(entry.path)
    info.mode = entry.mode
    info.mtime = 0
    info.uid = info.gid = 0
    info.uname = info.gname = ""
    if entry.is_dir():
        info.type = tarfile.DIRTYPE
    elif entry.is_symlink():
        info.type = tarfile.SYMTYPE
        info.linkname = entry.linkname or ""
    else:
        info.type = tarfile.REGTYPE
        info.size = entry.size
    return info


def _build_layer(group: List[_Scanned]) -> api.PackedLayer:

    raw = io.BytesIO()
    with gzip.GzipFile(
        fileobj=raw, mode="wb", compresslevel=_COMPRESS_LEVEL, mtime=0
    ) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for item in group:
                info = _tar_info(item.entry)
                if item.data is not None:
                    tar.addfile(info, io.BytesIO(item.data))
                else:
                    tar.addfile(info)

    entries: Tuple[api.BundleEntry, ...] = tuple(item.entry for item in group)
    content_size = sum(e.size for e in entries if e.is_file())
    blob = api.Blob(api.LAYER_MEDIA_TYPE, raw.getvalue())
    _LOGGER.debug("built layer", digest=blob.digest, entries=len(entries))
    return api.PackedLayer(blob=blob, entries=entries, content_size=content_size)
