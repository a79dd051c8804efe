"""Cancellable, deadline-bounded execution scopes.

A :class:`Scope` is the unit of cancellation for a request.  Scopes form a
tree: cancelling a scope cancels all of its children with the same cause,
and a scope created by :meth:`Scope.with_timeout` cancels itself with the
given cause when its deadline passes.

Examples:
    >>> scope = Scope.with_timeout(Scope.background(), 5.0, RequestTimedOut())
    >>> scope.done()
    False
    >>> scope.cancel()          # release the timer
    >>> scope.done()
    True
"""

from __future__ import annotations

import threading
import time
import typing
from datetime import timedelta

from ._exceptions import RequestCancelled, ScopeReleased

__all__ = ["Scope", "to_seconds"]


def to_seconds(value: float | timedelta | None) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class Scope:
    """Thread-safe cancellation scope with an optional deadline and cause."""

    def __init__(self, parent: Scope | None = None) -> None:
        self._parent = parent
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._cause: BaseException | None = None
        self._deadline: float | None = parent.deadline if parent else None
        self._callbacks: list[typing.Callable[[BaseException], None]] = []
        self._timer: threading.Timer | None = None
        self._detach: typing.Callable[[], None] | None = None

        if parent is not None:
            self._detach = parent.on_cancel(self._cancel_from_parent)

    @classmethod
    def background(cls) -> Scope:
        """A root scope that is never cancelled unless asked to."""
        return cls()

    @classmethod
    def with_cancel(cls, parent: Scope) -> Scope:
        return cls(parent)

    @classmethod
    def with_timeout(
        cls,
        parent: Scope,
        timeout: float | timedelta,
        cause: BaseException | None = None,
    ) -> Scope:
        """Derive a child scope that cancels itself after ``timeout`` seconds."""
        seconds = to_seconds(timeout)
        scope = cls(parent)
        deadline = time.monotonic() + seconds
        with scope._lock:
            if scope._deadline is None or deadline < scope._deadline:
                scope._deadline = deadline
            if scope._done.is_set():
                return scope
            timer = threading.Timer(
                max(scope._deadline - time.monotonic(), 0.0),
                scope.cancel,
                args=(cause,),
            )
            timer.daemon = True
            scope._timer = timer
        timer.start()
        return scope

    @property
    def parent(self) -> Scope | None:
        return self._parent

    @property
    def deadline(self) -> float | None:
        """Deadline on the :func:`time.monotonic` clock, or ``None``."""
        return self._deadline

    @property
    def cause(self) -> BaseException | None:
        return self._cause

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._done.wait(timeout)

    def remaining(self) -> float | None:
        """Seconds left until the deadline, ``None`` when unbounded."""
        if self._deadline is None:
            return None
        return max(self._deadline - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        """Raise the cancellation cause if the scope is done."""
        if self._done.is_set() and self._cause is not None:
            raise self._cause

    def on_cancel(
        self, callback: typing.Callable[[BaseException], None]
    ) -> typing.Callable[[], None]:
        """Register ``callback(cause)`` to run once when the scope is cancelled.

        If the scope is already done the callback runs immediately.  Returns a
        function that unregisters the callback.
        """
        with self._lock:
            if not self._done.is_set():
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        try:
                            self._callbacks.remove(callback)
                        except ValueError:
                            pass

                return remove
            cause = self._cause

        assert cause is not None
        callback(cause)
        return lambda: None

    def cancel(self, cause: BaseException | None = None) -> None:
        """Cancel the scope and every child scope.

        Calling ``cancel()`` without a cause releases the scope; the cause is
        then :class:`ScopeReleased` when nothing else cancelled it first.
        Only the first cancellation is recorded.
        """
        with self._lock:
            if self._done.is_set():
                return
            if cause is None:
                cause = ScopeReleased()
            self._cause = cause
            self._done.set()
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
            detach, self._detach = self._detach, None

        if timer is not None:
            timer.cancel()
        if detach is not None:
            detach()
        for callback in callbacks:
            callback(cause)

    def cancel_with(self, message: str = "request cancelled") -> None:
        """Cancel on behalf of a caller that lost interest."""
        self.cancel(RequestCancelled(message))

    def _cancel_from_parent(self, cause: BaseException) -> None:
        self.cancel(cause)

    def __enter__(self) -> Scope:
        return self

    def __exit__(self, *args: typing.Any) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "done" if self.done() else "active"
        return f"<Scope [{state}] cause={self._cause!r}>"
