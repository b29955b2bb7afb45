# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import IO, Iterable, List, Optional, Tuple, Union
from dataclasses import dataclass, field
import fnmatch
import gzip
import io
import os
import tarfile
import zlib

import structlog

from .. import api
from .._context import Context
from .._errors import (
    BundleError,
    CorruptArchiveError,
    PermissionDeniedError,
    SecurityViolationError,
)
from ._paths import (
    safe_join,
    strip_prefix,
    validate_member_path,
    validate_resolved_path,
    validate_resolved_symlink,
    validate_symlink,
)

_LOGGER = structlog.get_logger("ocibundle.archive")

SAFE_FILE_MODE = 0o644
SAFE_EXEC_MODE = 0o755
SAFE_DIR_MODE = 0o755
_SPECIAL_BITS = 0o7000
_CHUNK_SIZE = 32 * 1024


@dataclass
class ExtractResult:
    """A summary of what was written by an extraction."""

    files: int = 0
    directories: int = 0
    symlinks: int = 0
    size: int = 0
    skipped: int = 0
    paths: List[str] = field(default_factory=list)


class Extractor:
    """Unpacks layer archives into a directory under an extraction policy.

    Quotas are counted across every layer given to the same extractor.
    Entries are checked before anything is written, so a violation
    never leaves the offending file on disk, though entries written
    before the violation remain in place.

    >>> extractor = Extractor("/tmp/out", api.ExtractionPolicy(max_files=10))
    """

    def __init__(self, target_dir: str, policy: Optional[api.ExtractionPolicy] = None) -> None:

        self.target_dir = os.path.abspath(target_dir)
        self._policy = policy or api.ExtractionPolicy()
        self._root = ""
        self._dir_modes: List[Tuple[str, int]] = []
        self._symlinks: List[str] = []
        self.result = ExtractResult()

    def _ensure_root(self) -> None:

        if self._root:
            return
        try:
            os.makedirs(self.target_dir, mode=SAFE_DIR_MODE, exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="extract", ref=self.target_dir) from e
        self._root = os.path.realpath(self.target_dir)

    def extract_layer(
        self, layer: Union[api.Blob, bytes], ctx: Optional[Context] = None
    ) -> None:
        """Unpack one gzipped tar layer into the target directory."""

        ctx = ctx or Context.background()
        data = layer.data if isinstance(layer, api.Blob) else layer
        ref = layer.digest if isinstance(layer, api.Blob) else "layer"
        self._ensure_root()
        try:
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
                for member in tar:
                    ctx.check("extract", member.name)
                    self._extract_member(tar, member)
        except (tarfile.TarError, gzip.BadGzipFile, zlib.error, EOFError) as e:
            self._remove_escaping_symlinks()
            raise CorruptArchiveError(str(e), op="extract", ref=ref) from e
        except BaseException:
            self._remove_escaping_symlinks()
            raise

        escaped = self._remove_escaping_symlinks()
        if escaped:
            raise SecurityViolationError(
                "symlink resolves outside of target directory",
                op="extract",
                ref=escaped[0],
            )

    def _remove_escaping_symlinks(self) -> List[str]:
        """Remove any written symlink that no longer resolves within the target.

        A link that was safe when written can be redirected by a link
        written after it.
        """

        escaped = []
        for path in self._symlinks:
            if not os.path.islink(path):
                continue
            try:
                validate_resolved_path(self._root, path)
            except SecurityViolationError:
                _LOGGER.warning("removing escaping symlink", path=path)
                os.unlink(path)
                escaped.append(path)
        return escaped

    def finish(self) -> ExtractResult:
        """Apply deferred directory modes and return the final summary.

        Directory modes are applied last and deepest-first so that a
        read-only directory does not prevent its own contents from
        being written.
        """

        for path, mode in reversed(self._dir_modes):
            self._chmod(path, mode)
        self._dir_modes = []
        _LOGGER.info(
            "extracted",
            path=self.target_dir,
            files=self.result.files,
            size=self.result.size,
            skipped=self.result.skipped,
        )
        return self.result

    def _selected(self, path: str) -> bool:

        patterns = self._policy.files_to_extract
        if not patterns:
            return True
        return any(fnmatch.fnmatchcase(path, p) for p in patterns)

    def _extract_member(self, tar: tarfile.TarFile, member: tarfile.TarInfo) -> None:

        policy = self._policy
        path = validate_member_path(member.name, allow_hidden=policy.allow_hidden_files)
        if not path:
            return
        if not self._selected(path):
            _LOGGER.debug("not selected for extraction", path=path)
            self.result.skipped += 1
            return

        relpath = strip_prefix(path, policy.strip_prefix, strict=policy.strict_prefix)
        if not relpath:
            return
        fullpath = safe_join(self._root, relpath)

        if member.isdir():
            self._extract_dir(fullpath, member)
        elif member.isreg():
            self._check_quotas(relpath, member.size)
            self._extract_file(tar, member, fullpath)
        elif member.issym():
            self._check_quotas(relpath, 0)
            validate_symlink(relpath, member.linkname)
            validate_resolved_symlink(self._root, fullpath, member.linkname)
            self._extract_symlink(member, fullpath)
        else:
            _LOGGER.warning("skipping unsupported entry type", path=path)
            self.result.skipped += 1
            return
        self.result.paths.append(relpath)

    def _check_quotas(self, path: str, size: int) -> None:

        policy = self._policy
        if policy.max_files and self.result.files + self.result.symlinks + 1 > policy.max_files:
            raise SecurityViolationError(
                f"bundle exceeds the maximum of {policy.max_files} files",
                op="extract",
                ref=path,
            )
        if policy.max_file_size and size > policy.max_file_size:
            raise SecurityViolationError(
                f"file size {size} exceeds the maximum of {policy.max_file_size} bytes",
                op="extract",
                ref=path,
            )
        if policy.max_size and self.result.size + size > policy.max_size:
            raise SecurityViolationError(
                f"bundle exceeds the maximum total size of {policy.max_size} bytes",
                op="extract",
                ref=path,
            )

    def _file_mode(self, member: tarfile.TarInfo) -> int:

        if self._policy.preserve_permissions:
            if member.mode & _SPECIAL_BITS:
                _LOGGER.warning("removing special permission bits", path=member.name)
            return member.mode & ~_SPECIAL_BITS & 0o7777
        if member.mode & 0o111:
            return SAFE_EXEC_MODE
        return SAFE_FILE_MODE

    def _dir_mode(self, member: tarfile.TarInfo) -> int:

        if self._policy.preserve_permissions:
            return member.mode & ~_SPECIAL_BITS & 0o7777
        return SAFE_DIR_MODE

    def _makedirs(self, path: str) -> None:

        try:
            os.makedirs(path, mode=SAFE_DIR_MODE, exist_ok=True)
        except (FileExistsError, NotADirectoryError) as e:
            raise BundleError("path exists and is not a directory", op="extract", ref=path) from e
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="extract", ref=path) from e

    def _chmod(self, path: str, mode: int) -> None:

        try:
            os.chmod(path, mode)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="extract", ref=path) from e

    def _clear(self, path: str) -> None:
        """Remove a previous non-directory entry at path, if any."""

        if os.path.islink(path) or os.path.isfile(path):
            os.unlink(path)

    def _extract_dir(self, fullpath: str, member: tarfile.TarInfo) -> None:

        if os.path.islink(fullpath):
            os.unlink(fullpath)
        self._makedirs(fullpath)
        self._dir_modes.append((fullpath, self._dir_mode(member)))
        self.result.directories += 1

    def _extract_file(
        self, tar: tarfile.TarFile, member: tarfile.TarInfo, fullpath: str
    ) -> None:

        self._makedirs(os.path.dirname(fullpath))
        source = tar.extractfile(member)
        if source is None:
            raise CorruptArchiveError("missing file content", op="extract", ref=member.name)

        _LOGGER.debug("writing file", path=fullpath, size=member.size)
        try:
            self._clear(fullpath)
            with open(fullpath, "wb") as dest:
                written = _copy(source, dest)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="extract", ref=fullpath) from e
        except OSError as e:
            raise BundleError(f"failed to write file: {e}", op="extract", ref=fullpath) from e
        finally:
            source.close()

        self._chmod(fullpath, self._file_mode(member))
        self.result.files += 1
        self.result.size += written

    def _extract_symlink(self, member: tarfile.TarInfo, fullpath: str) -> None:

        self._makedirs(os.path.dirname(fullpath))
        try:
            self._clear(fullpath)
            os.symlink(member.linkname, fullpath)
            self._symlinks.append(fullpath)
        except PermissionError as e:
            raise PermissionDeniedError(str(e), op="extract", ref=fullpath) from e
        except OSError as e:
            raise BundleError(f"failed to create symlink: {e}", op="extract", ref=fullpath) from e
        self.result.symlinks += 1


def _copy(source: IO[bytes], dest: IO[bytes]) -> int:

    total = 0
    while True:
        chunk = source.read(_CHUNK_SIZE)
        if not chunk:
            break
        dest.write(chunk)
        total += len(chunk)
    return total


def extract(
    layers: Iterable[Union[api.Blob, bytes]],
    target_dir: str,
    policy: Optional[api.ExtractionPolicy] = None,
    ctx: Optional[Context] = None,
) -> ExtractResult:
    """Unpack the given layers, in order, into the target directory.

    Raises a SecurityViolationError if any quota of the policy is
    exceeded or any entry would be written outside of target_dir.
    Files written before a failure are left in place.
    """

    extractor = Extractor(target_dir, policy)
    _LOGGER.info("extracting", path=extractor.target_dir)
    for layer in layers:
        extractor.extract_layer(layer, ctx)
    return extractor.finish()
