# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Counter, Dict, List, Tuple
import collections
import os
import threading

import py.path
import pytest

from . import api, storage
from ._context import Context


class FlakyTransport(storage.MemTransport):
    """An in-memory registry that fails on demand.

    Queued failures are raised by the next matching calls, in order,
    while 'always' failures are raised by every call of that method.
    """

    def __init__(self) -> None:

        super(FlakyTransport, self).__init__()
        self.failures: Dict[str, List[Exception]] = collections.defaultdict(list)
        self.always: Dict[str, Exception] = {}
        self.attempts: Counter[str] = collections.Counter()
        self.attempts_by_ref: Counter[Tuple[str, str]] = collections.Counter()
        self._attempt_lock = threading.Lock()

    def fail(self, method: str, *errors: Exception) -> "FlakyTransport":

        self.failures[method].extend(errors)
        return self

    def fail_always(self, method: str, error: Exception) -> "FlakyTransport":

        self.always[method] = error
        return self

    def _maybe_fail(self, method: str, ref: str) -> None:

        with self._attempt_lock:
            self.attempts[method] += 1
            self.attempts_by_ref[(method, ref)] += 1
            if method in self.always:
                raise self.always[method]
            if self.failures[method]:
                raise self.failures[method].pop(0)

    def put_blob(self, ctx: Context, reference: str, digest: str, content: bytes) -> None:

        self._maybe_fail("put_blob", digest)
        super(FlakyTransport, self).put_blob(ctx, reference, digest, content)

    def get_blob(self, ctx: Context, reference: str, digest: str) -> bytes:

        self._maybe_fail("get_blob", digest)
        return super(FlakyTransport, self).get_blob(ctx, reference, digest)

    def put_manifest(self, ctx: Context, reference: str, manifest: api.Manifest) -> None:

        self._maybe_fail("put_manifest", reference)
        super(FlakyTransport, self).put_manifest(ctx, reference, manifest)

    def get_manifest(self, ctx: Context, reference: str) -> api.Manifest:

        self._maybe_fail("get_manifest", reference)
        return super(FlakyTransport, self).get_manifest(ctx, reference)


@pytest.fixture
def flaky() -> FlakyTransport:

    return FlakyTransport()


@pytest.fixture
def srcdir(tmpdir: py.path.local) -> py.path.local:
    """A small source tree with a nested file, an empty directory and a symlink."""

    root = tmpdir.join("src").ensure(dir=1)
    root.join("a.txt").write_binary(b"0123456789")
    root.join("sub", "b.txt").write_binary(b"abcdefghijklmnopqrst", ensure=True)
    root.join("empty").ensure(dir=1)
    os.symlink("b.txt", root.join("sub", "link").strpath)
    return root
