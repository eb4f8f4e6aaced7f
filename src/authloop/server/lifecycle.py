"""Lifecycle of the local callback server.

:class:`LocalServer` owns everything that lives for one authorization
attempt: the bound listener, the :class:`~http.server.ThreadingHTTPServer`
serving it on a background thread, and the
:class:`~authloop.server.coordinator.ResultCoordinator` the handler
publishes into. It moves through :class:`ServerState` in one direction
only::

    IDLE -> BOUND -> SERVING -> AWAITING -> SUCCEEDED | DENIED | CANCELLED
    IDLE -> FAILED
    (any) -> CLOSED

:mod:`authloop.flow` drives a :class:`LocalServer` directly so it can build
the authorization URL once the port is known. :func:`receive_code` and
:func:`receive_result` wrap one whole attempt for callers that already know
their redirect URI.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import queue
import ssl
import threading
import time
from http.server import ThreadingHTTPServer
from typing import Any, Iterator, Optional

from authloop.exceptions import (
    AuthloopError,
    AuthorizationCancelled,
    AuthorizationDenied,
    ShutdownWarning,
)
from authloop.models import Authorized, CallbackResult, Denied, ServerConfig
from authloop.server.cancel import CancelToken
from authloop.server.coordinator import ResultCoordinator
from authloop.server.endpoint import CallbackEndpoint, make_request_handler
from authloop.server.resolver import BoundListener, resolve

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class ServerState(str, enum.Enum):
    """Where a :class:`LocalServer` is in its lifecycle."""

    IDLE = "idle"
    BOUND = "bound"
    SERVING = "serving"
    AWAITING = "awaiting"
    SUCCEEDED = "succeeded"
    DENIED = "denied"
    CANCELLED = "cancelled"
    FAILED = "failed"
    CLOSED = "closed"


class _InflightResponses:
    """Counts responses being written so shutdown can wait for them."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0

    @contextlib.contextmanager
    def __call__(self) -> Iterator[None]:
        with self._cond:
            self._count += 1
        try:
            yield
        finally:
            with self._cond:
                self._count -= 1
                self._cond.notify_all()

    def wait_idle(self, timeout: float) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


class _CallbackHTTPServer(ThreadingHTTPServer):
    """HTTP server running on a socket that is already bound and listening.

    TLS is applied per connection; the handshake runs on the request
    thread so a slow client cannot stall the accept loop.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(self, listener: BoundListener, handler_class: Any) -> None:
        self.address_family = listener.sock.family
        super().__init__(
            listener.sock.getsockname()[:2], handler_class, bind_and_activate=False
        )
        self.socket.close()
        self.socket = listener.sock
        self.server_address = listener.sock.getsockname()
        self._ssl_context = listener.ssl_context

    def get_request(self) -> tuple[Any, Any]:
        conn, addr = self.socket.accept()
        if self._ssl_context is not None:
            conn = self._ssl_context.wrap_socket(
                conn, server_side=True, do_handshake_on_connect=False
            )
        return conn, addr

    def finish_request(self, request: Any, client_address: Any) -> None:
        if isinstance(request, ssl.SSLSocket):
            request.do_handshake()
        super().finish_request(request, client_address)

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.debug("Error while handling request from %s", client_address, exc_info=True)


def notify_ready(sink: Any, url: str) -> None:
    """Hand *url* to the ready sink without blocking.

    A queue receives it through ``put_nowait`` (dropped if the queue is
    full); a callable is invoked on a daemon thread.
    """
    if sink is None:
        return
    if hasattr(sink, "put_nowait"):
        try:
            sink.put_nowait(url)
        except queue.Full:
            logger.warning("Ready queue is full, the server URL was not delivered")
        return

    def _run() -> None:
        try:
            sink(url)
        except Exception:
            logger.exception("Ready callback failed for %s", url)

    threading.Thread(target=_run, name="authloop-ready", daemon=True).start()


class LocalServer:
    """One local callback server, used for exactly one authorization attempt.

    Use it as a context manager so the listener is released on every path::

        with LocalServer(config) as server:
            url = server.start()
            result = server.wait(CancelToken.with_timeout(300))

    Args:
        config: Immutable server configuration.

    Attributes:
        state: Current :class:`ServerState`.
        outcome: The terminal state reached before closing, if any.
        shutdown_warnings: Problems met while closing. They are logged and
            never change the outcome.
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.state = ServerState.IDLE
        self.outcome: Optional[ServerState] = None
        self.shutdown_warnings: list[ShutdownWarning] = []
        self.coordinator = ResultCoordinator()
        self._listener: Optional[BoundListener] = None
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._inflight = _InflightResponses()
        self._close_lock = threading.Lock()
        self._closed = False

    def __enter__(self) -> "LocalServer":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def url(self) -> str:
        """Fully qualified URL of the callback endpoint."""
        if self._listener is None:
            raise RuntimeError("The local server is not bound")
        return self._listener.url(self.config.callback_path)

    @property
    def port(self) -> int:
        if self._listener is None:
            raise RuntimeError("The local server is not bound")
        return self._listener.port

    def start(self) -> str:
        """Bind, start serving in the background and publish the URL.

        Returns:
            The callback URL.

        Raises:
            ConfigurationError: If TLS material or a bind address is malformed.
            AllAddressesUnavailable: If no candidate address could be bound.
        """
        if self.state is not ServerState.IDLE:
            raise RuntimeError(f"Cannot start a local server in state {self.state.value}")
        try:
            self._listener = resolve(self.config.bind_addresses, self.config.tls)
        except AuthloopError:
            self._finish(ServerState.FAILED)
            raise
        self.state = ServerState.BOUND

        endpoint = CallbackEndpoint(
            self.config.callback_path, self.config.success_html, self.coordinator
        )
        handler = self.config.middleware.wrap(endpoint)
        self._httpd = _CallbackHTTPServer(
            self._listener, make_request_handler(handler, self._inflight)
        )
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            kwargs={"poll_interval": _POLL_INTERVAL},
            name=f"authloop-server-{self._listener.port}",
            daemon=True,
        )
        self._thread.start()
        self.state = ServerState.SERVING

        url = self.url
        logger.info("Local server is listening at %s", url)
        notify_ready(self.config.ready, url)
        return url

    def wait(self, cancel: CancelToken) -> CallbackResult:
        """Block until the redirect arrives or *cancel* fires.

        Returns:
            The first well-formed callback result, either variant.

        Raises:
            AuthorizationCancelled: If *cancel* fired first.
        """
        if self.state is not ServerState.SERVING:
            raise RuntimeError(f"Cannot wait on a local server in state {self.state.value}")
        self.state = ServerState.AWAITING
        try:
            result = self.coordinator.wait(cancel)
        except (AuthorizationCancelled, KeyboardInterrupt):
            self._finish(ServerState.CANCELLED)
            raise
        if isinstance(result, Denied):
            self._finish(ServerState.DENIED)
        else:
            self._finish(ServerState.SUCCEEDED)
        return result

    def close(self) -> None:
        """Shut the server down and release the listener. Safe to call twice."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._httpd is not None:
            self._shutdown()
        elif self._listener is not None:
            self._listener.close()
        if self.outcome is None:
            self.outcome = self.state
        self.state = ServerState.CLOSED
        logger.debug("Local server closed (outcome: %s)", self.outcome.value)

    def _finish(self, state: ServerState) -> None:
        self.state = state
        self.outcome = state

    def _shutdown(self) -> None:
        if self._httpd is None or self._thread is None:
            raise RuntimeError("The local server was never started")
        grace = self.config.shutdown_grace
        deadline = time.monotonic() + grace

        stopper = threading.Thread(
            target=self._httpd.shutdown, name="authloop-shutdown", daemon=True
        )
        stopper.start()
        stopper.join(timeout=grace)
        self._thread.join(timeout=max(0.0, deadline - time.monotonic()))
        stopped = not self._thread.is_alive()
        drained = self._inflight.wait_idle(max(0.0, deadline - time.monotonic()))
        if not (stopped and drained):
            self._warn(f"The local server did not stop within {grace:g}s")

        try:
            self._httpd.server_close()
        except OSError as exc:
            self._warn(f"Error while closing the local server: {exc}")

    def _warn(self, message: str) -> None:
        warning = ShutdownWarning(message)
        self.shutdown_warnings.append(warning)
        logger.warning("%s", warning)


def receive_result(
    config: ServerConfig, cancel: Optional[CancelToken] = None
) -> CallbackResult:
    """Run one local server until a callback result arrives.

    Unlike :func:`receive_code`, a denial is returned rather than raised.
    """
    with LocalServer(config) as server:
        server.start()
        return server.wait(cancel or CancelToken())


def receive_code(config: ServerConfig, cancel: Optional[CancelToken] = None) -> str:
    """Run one local server and return the authorization code.

    Args:
        config: Immutable server configuration.
        cancel: Abort signal and deadline. Without one the call waits
            until a callback arrives or the thread is interrupted.

    Returns:
        The ``code`` query parameter of the first well-formed callback.

    Raises:
        ConfigurationError: Malformed TLS material or bind address.
        AllAddressesUnavailable: No candidate address could be bound.
        AuthorizationDenied: The provider redirected back with an error.
        AuthorizationCancelled: *cancel* fired before any callback.
    """
    result = receive_result(config, cancel)
    if isinstance(result, Authorized):
        return result.code
    raise AuthorizationDenied(result.error_code, result.description)
