"""Local callback server for the OAuth 2.0 Authorization Code Grant.

The package is built from four parts, leaf to root:

- :mod:`~authloop.server.resolver` -- binds the first free candidate address.
- :mod:`~authloop.server.endpoint` -- turns the redirect into a result.
- :mod:`~authloop.server.coordinator` -- hands one result to the waiting caller.
- :mod:`~authloop.server.lifecycle` -- bind, serve, wait, shut down.

Typical usage::

    from authloop.server import CancelToken, receive_code

    code = receive_code(config, CancelToken.with_timeout(300))
"""

from authloop.server.cancel import CancelToken
from authloop.server.coordinator import ResultCoordinator
from authloop.server.endpoint import (
    CallbackEndpoint,
    CallbackRequest,
    CallbackResponse,
    HeaderMiddleware,
    IdentityMiddleware,
    Middleware,
)
from authloop.server.lifecycle import (
    LocalServer,
    ServerState,
    receive_code,
    receive_result,
)
from authloop.server.resolver import BoundListener, resolve

__all__ = [
    "BoundListener",
    "CallbackEndpoint",
    "CallbackRequest",
    "CallbackResponse",
    "CancelToken",
    "HeaderMiddleware",
    "IdentityMiddleware",
    "LocalServer",
    "Middleware",
    "ResultCoordinator",
    "ServerState",
    "receive_code",
    "receive_result",
    "resolve",
]
