"""Single-assignment handoff between the HTTP handler and the waiting caller.

The callback handler runs on a server thread and calls
:meth:`ResultCoordinator.publish`; the caller blocks in
:meth:`ResultCoordinator.wait`. Both go through one
:class:`threading.Condition`, so a published result and a cancellation can
never both win.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from authloop.exceptions import AuthorizationCancelled
from authloop.models import CallbackResult
from authloop.server.cancel import CancelToken

logger = logging.getLogger(__name__)


class ResultCoordinator:
    """Holds at most one authoritative :data:`~authloop.models.CallbackResult`.

    The first :meth:`publish` wins. Later publishes are accepted (the
    handler still answers the browser) but ignored, and they never wake the
    waiter a second time.

    Example::

        coordinator = ResultCoordinator()
        # server thread
        coordinator.publish(Authorized(code="abc123"))
        # caller thread
        result = coordinator.wait(CancelToken.with_timeout(60))
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._result: Optional[CallbackResult] = None

    @property
    def result(self) -> Optional[CallbackResult]:
        """The published result, or ``None`` if nothing was published yet."""
        with self._cond:
            return self._result

    def publish(self, result: CallbackResult) -> bool:
        """Record *result* unless one is already recorded.

        Returns:
            ``True`` if *result* became the authoritative outcome, ``False``
            if an earlier publish already decided it.
        """
        with self._cond:
            if self._result is not None:
                logger.debug("Ignoring duplicate callback result: %s", result.kind)
                return False
            self._result = result
            self._cond.notify_all()
            return True

    def wait(self, cancel: CancelToken) -> CallbackResult:
        """Block until a result is published or *cancel* fires.

        A result already published when the token fires is still returned.

        Args:
            cancel: Token carrying the caller's abort signal and deadline.

        Returns:
            The authoritative callback result.

        Raises:
            AuthorizationCancelled: If *cancel* fired before any publish.
        """
        cancel.add_callback(self._wake)
        try:
            with self._cond:
                while self._result is None:
                    if cancel.cancelled:
                        raise AuthorizationCancelled(cancel.reason or "cancelled")
                    self._cond.wait(timeout=cancel.remaining())
                return self._result
        finally:
            cancel.remove_callback(self._wake)

    def _wake(self) -> None:
        with self._cond:
            self._cond.notify_all()
