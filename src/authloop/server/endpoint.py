"""The redirect endpoint served by the local callback server.

This module keeps HTTP plumbing and callback semantics apart:

* :class:`CallbackRequest` / :class:`CallbackResponse` -- plain dataclasses
  describing one exchange, independent of :mod:`http.server`.
* :class:`CallbackEndpoint` -- the handler. Turns the redirect query into an
  :class:`~authloop.models.Authorized` or :class:`~authloop.models.Denied`
  result, publishes it to the
  :class:`~authloop.server.coordinator.ResultCoordinator` and renders the
  configured HTML page.
* :class:`Middleware` -- something that can wrap a handler, e.g. to add
  response headers. :class:`IdentityMiddleware` is the default.
* :func:`make_request_handler` -- adapts a handler to a
  :class:`~http.server.BaseHTTPRequestHandler` subclass.
"""

from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler
from typing import Any, Callable, ContextManager, Optional
from urllib.parse import parse_qs, urlsplit

from authloop.models import Authorized, CallbackResult, Denied
from authloop.server.coordinator import ResultCoordinator

logger = logging.getLogger(__name__)

# Idle connections (browser preconnects) are dropped after this many seconds.
_CONNECTION_TIMEOUT = 30


@dataclass(frozen=True)
class CallbackRequest:
    """One inbound HTTP request to the local server.

    Attributes:
        method: HTTP method (e.g. ``"GET"``).
        path: URL path without the query string.
        query: Parsed query string; every key maps to all of its values.
        headers: Request headers.
    """

    method: str
    path: str
    query: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_target(
        cls, method: str, target: str, headers: Optional[dict[str, str]] = None
    ) -> "CallbackRequest":
        """Build a request from a raw request target such as ``/cb?code=x``."""
        parts = urlsplit(target)
        return cls(
            method=method,
            path=parts.path or "/",
            query=parse_qs(parts.query),
            headers=dict(headers or {}),
        )

    def param(self, name: str) -> Optional[str]:
        """Return the first value of query parameter *name*, or ``None``."""
        values = self.query.get(name)
        return values[0] if values else None


@dataclass
class CallbackResponse:
    """The HTTP response written back to the browser."""

    status: int
    body: bytes
    content_type: str = "text/plain; charset=utf-8"
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def text(cls, status: int, message: str) -> "CallbackResponse":
        return cls(status=status, body=f"{message}\n".encode("utf-8"))

    @classmethod
    def html(cls, body: str) -> "CallbackResponse":
        return cls(
            status=HTTPStatus.OK,
            body=body.encode("utf-8"),
            content_type="text/html; charset=utf-8",
        )


Handler = Callable[[CallbackRequest], CallbackResponse]
"""A request handler: takes a :class:`CallbackRequest`, returns a response."""


class Middleware(ABC):
    """Wraps a :data:`Handler` to customise responses without touching callback logic.

    Subclasses implement :meth:`wrap`. The wrapped handler must still call
    the inner one, otherwise no result is ever published.
    """

    @abstractmethod
    def wrap(self, handler: Handler) -> Handler:
        """Return a handler that delegates to *handler*."""
        ...


class IdentityMiddleware(Middleware):
    """Returns the handler unchanged."""

    def wrap(self, handler: Handler) -> Handler:
        return handler


class HeaderMiddleware(Middleware):
    """Adds fixed headers to every response.

    Example::

        HeaderMiddleware({"Cache-Control": "no-store"})
    """

    def __init__(self, headers: dict[str, str]) -> None:
        self._headers = dict(headers)

    def wrap(self, handler: Handler) -> Handler:
        def wrapped(request: CallbackRequest) -> CallbackResponse:
            response = handler(request)
            response.headers.update(self._headers)
            return response

        return wrapped


def parse_callback(request: CallbackRequest) -> Optional[CallbackResult]:
    """Extract the authorization outcome from a redirect request.

    ``error`` takes precedence over ``code``. The ``state`` parameter is
    copied into the result as-is and is not checked here.

    Returns:
        The result, or ``None`` if the request carries neither ``error``
        nor ``code``.
    """
    state = request.param("state")
    error_code = request.param("error")
    if error_code:
        return Denied(
            error_code=error_code,
            description=request.param("error_description") or "",
            state=state,
        )
    code = request.param("code")
    if code:
        return Authorized(code=code, state=state)
    return None


class CallbackEndpoint:
    """Handler for the provider's redirect.

    Args:
        callback_path: The only path that yields a result.
        success_html: Body sent for both authorized and denied callbacks.
        coordinator: Where the first well-formed result is published.
    """

    def __init__(
        self,
        callback_path: str,
        success_html: str,
        coordinator: ResultCoordinator,
    ) -> None:
        self.callback_path = callback_path
        self.success_html = success_html
        self.coordinator = coordinator

    def __call__(self, request: CallbackRequest) -> CallbackResponse:
        if request.path != self.callback_path:
            return CallbackResponse.text(HTTPStatus.NOT_FOUND, "Not Found")
        if request.method != "GET":
            response = CallbackResponse.text(
                HTTPStatus.METHOD_NOT_ALLOWED, "Method Not Allowed"
            )
            response.headers["Allow"] = "GET"
            return response

        result = parse_callback(request)
        if result is None:
            logger.debug("Callback without code or error: %s", request.query)
            return CallbackResponse.text(
                HTTPStatus.BAD_REQUEST,
                "Bad Request: the callback carries neither 'code' nor 'error'",
            )

        if self.coordinator.publish(result):
            logger.info("Received %s callback", result.kind)
        return CallbackResponse.html(self.success_html)


def make_request_handler(
    handler: Handler,
    in_flight: Callable[[], ContextManager[Any]] = contextlib.nullcontext,
) -> type[BaseHTTPRequestHandler]:
    """Build a :class:`BaseHTTPRequestHandler` subclass dispatching to *handler*.

    Every method is routed through *handler* so that 404/405 answers pass
    through the middleware too. Access logs go to :mod:`logging` at DEBUG
    level instead of stderr.

    Args:
        handler: The (wrapped) callback handler.
        in_flight: Context manager factory entered while a request is being
            answered, so shutdown can wait for the response to be written.
    """

    class CallbackRequestHandler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"
        timeout = _CONNECTION_TIMEOUT

        def _dispatch(self) -> None:
            with in_flight():
                request = CallbackRequest.from_target(
                    self.command, self.path, dict(self.headers.items())
                )
                response = handler(request)
                self.send_response(response.status)
                self.send_header("Content-Type", response.content_type)
                self.send_header("Content-Length", str(len(response.body)))
                self.send_header("Connection", "close")
                for name, value in response.headers.items():
                    self.send_header(name, value)
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(response.body)
                self.wfile.flush()
            self.close_connection = True

        do_GET = _dispatch
        do_HEAD = _dispatch
        do_POST = _dispatch
        do_PUT = _dispatch
        do_DELETE = _dispatch

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("%s - %s", self.address_string(), format % args)

    return CallbackRequestHandler
