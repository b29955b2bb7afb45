# Copyright (c) 2021 Sony Pictures Imageworks, et al.
# SPDX-License-Identifier: Apache-2.0
# https://github.com/imageworks/spk

from typing import Any, List, Optional
import threading
import time

from ._errors import CanceledError


class Context:
    """A cancellation signal with an optional deadline.

    Contexts form a tree: canceling a context cancels every context
    derived from it, but never its parent. Deadlines are absolute
    values of time.monotonic() and a derived context can only
    shorten the deadline of its parent.

    >>> ctx = Context.background()
    >>> ctx.done()
    False
    """

    def __init__(
        self, deadline: Optional[float] = None, parent: Optional["Context"] = None
    ) -> None:

        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["Context"] = []
        self._reason = ""
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self.deadline = deadline
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    @staticmethod
    def background() -> "Context":
        """Create a context with no deadline that is only canceled explicitly."""

        return Context()

    def child(self) -> "Context":
        """Create a context that is canceled along with this one."""

        return Context(parent=self)

    def with_timeout(self, seconds: Optional[float]) -> "Context":
        """Create a child context that also expires after the given number of seconds."""

        if seconds is None:
            return self.child()
        return Context(deadline=time.monotonic() + seconds, parent=self)

    def _adopt(self, child: "Context") -> None:

        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
            reason = self._reason
        child.cancel(reason)

    def close(self) -> None:
        """Detach this context from its parent once it is no longer needed."""

        parent, self._parent = self._parent, None
        if parent is None:
            return
        with parent._lock:
            if self in parent._children:
                parent._children.remove(self)

    def __enter__(self) -> "Context":

        return self

    def __exit__(self, *_: Any) -> None:

        self.close()

    def cancel(self, reason: str = "canceled") -> None:
        """Cancel this context and every context derived from it."""

        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel(reason)

    def expired(self) -> bool:

        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        """Return true once this context is canceled or past its deadline."""

        return self._event.is_set() or self.expired()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None if there is none."""

        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, op: str = "", ref: str = "") -> None:
        """Raise a CanceledError if this context is done."""

        if self._event.is_set():
            raise CanceledError(self._reason, op=op, ref=ref)
        if self.expired():
            raise CanceledError("deadline exceeded", op=op, ref=ref)

    def wait(self, seconds: float, op: str = "", ref: str = "") -> None:
        """Sleep for the given number of seconds unless canceled first.

        Returns normally once the time has passed, or raises a
        CanceledError as soon as the context is canceled or its
        deadline arrives, whichever happens first.
        """

        self.check(op, ref)
        timeout = max(0.0, seconds)
        remaining = self.remaining()
        if remaining is not None and remaining < timeout:
            self._event.wait(remaining)
            self.check(op, ref)
            raise CanceledError("deadline exceeded", op=op, ref=ref)
        self._event.wait(timeout)
        self.check(op, ref)
