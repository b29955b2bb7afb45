# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

import threading
import time

import pytest

from ._context import Context
from ._errors import CanceledError


def test_cancel_propagates_to_children() -> None:

    parent = Context.background()
    child = parent.child()
    grandchild = child.with_timeout(60)

    child.cancel("stop")
    assert child.done() and grandchild.done()
    assert not parent.done()

    with pytest.raises(CanceledError, match="stop"):
        grandchild.check("op")


def test_child_of_canceled_context() -> None:

    parent = Context.background()
    parent.cancel("gone")
    assert parent.child().done()


def test_deadline_is_inherited() -> None:

    parent = Context.background().with_timeout(0.01)
    child = parent.with_timeout(60)
    assert child.deadline == parent.deadline
    time.sleep(0.02)
    assert child.done()
    with pytest.raises(CanceledError, match="deadline exceeded"):
        child.check()


def test_wait_returns_after_delay() -> None:

    ctx = Context.background()
    start = time.monotonic()
    ctx.wait(0.01)
    assert time.monotonic() - start >= 0.01


def test_wait_interrupted_by_cancel() -> None:

    ctx = Context.background()
    timer = threading.Timer(0.05, ctx.cancel, args=("interrupted",))
    timer.start()
    start = time.monotonic()
    try:
        with pytest.raises(CanceledError, match="interrupted"):
            ctx.wait(30)
    finally:
        timer.cancel()
    assert time.monotonic() - start < 5


def test_wait_bounded_by_deadline() -> None:

    ctx = Context.background().with_timeout(0.05)
    start = time.monotonic()
    with pytest.raises(CanceledError):
        ctx.wait(30)
    assert time.monotonic() - start < 5


def test_close_detaches_from_parent() -> None:

    parent = Context.background()
    with parent.child() as child:
        pass
    parent.cancel()
    assert not child.done()
