"""Cancellation tokens for blocking waits.

A :class:`CancelToken` is the only way to stop
:meth:`~authloop.server.coordinator.ResultCoordinator.wait` early. It
combines an explicit abort (:meth:`CancelToken.cancel`) with an optional
deadline, so timeout policy stays with the caller instead of the server.

Example::

    token = CancelToken.with_timeout(120)
    signal.signal(signal.SIGINT, lambda *_: token.cancel("interrupted"))
    code = receive_code(config, token)
"""

from __future__ import annotations

import contextlib
import threading
import time
from typing import Callable, Optional


class CancelToken:
    """Thread-safe, one-shot cancellation signal with an optional deadline.

    Once cancelled a token stays cancelled. Callbacks registered with
    :meth:`add_callback` run exactly once, on the thread that cancels, or
    immediately if the token is already cancelled. A deadline is not
    enforced by a timer: :attr:`cancelled` becomes true when it passes and
    waiters use :meth:`remaining` to bound their sleeps.

    Args:
        deadline: Absolute :func:`time.monotonic` value after which the
            token counts as cancelled, or ``None`` for no deadline.
        parent: Token whose cancellation propagates to this one.
    """

    def __init__(
        self,
        deadline: Optional[float] = None,
        parent: Optional["CancelToken"] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._callbacks: list[Callable[[], None]] = []
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline
        if parent is not None:
            parent.add_callback(lambda: self.cancel(parent.reason or "cancelled"))

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        """Return a token that is cancelled *seconds* from now."""
        return cls(deadline=time.monotonic() + seconds)

    def child(self, timeout: Optional[float] = None) -> "CancelToken":
        """Return a token cancelled with this one, optionally sooner."""
        deadline = None if timeout is None else time.monotonic() + timeout
        return CancelToken(deadline=deadline, parent=self)

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def cancelled(self) -> bool:
        """Whether :meth:`cancel` was called or the deadline has passed."""
        if self._reason is not None:
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def reason(self) -> Optional[str]:
        """Why the token was cancelled, or ``None`` while it is still live."""
        if self._reason is not None:
            return self._reason
        if self.cancelled:
            return "deadline exceeded"
        return None

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline (never negative), or ``None``."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel the token and run registered callbacks. Later calls are no-ops."""
        with self._lock:
            if self._reason is not None:
                return
            self._reason = reason
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run *callback* on explicit cancellation (immediately if already cancelled).

        Deadlines do not trigger callbacks; waiters observe them through
        :meth:`remaining`.
        """
        with self._lock:
            if self._reason is None:
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Forget a callback registered with :meth:`add_callback`, if still pending."""
        with self._lock:
            with contextlib.suppress(ValueError):
                self._callbacks.remove(callback)
