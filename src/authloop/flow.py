"""The Authorization Code grant, end to end.

:func:`get_token` performs these steps:

1. Start the local callback server (:class:`~authloop.server.LocalServer`).
2. Once it is listening, build the authorization URL with the server URL
   as ``redirect_uri`` and hand it to ``on_authorize`` (the CLI opens a
   browser there).
3. Wait for the redirect carrying the code, or an error.
4. Check the ``state`` parameter against the value sent in step 2.
5. Close the server and exchange the code for a token.

See :rfc:`6749#section-4.1`.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from authloop.config import build_server_config
from authloop.exceptions import AuthError, AuthorizationDenied, TokenExchangeError
from authloop.models import Denied, ServerSettings, Token
from authloop.server import CancelToken, LocalServer
from authloop.token_client import TokenClient, generate_pkce_pair, generate_state

logger = logging.getLogger(__name__)


def get_token(
    client: TokenClient,
    settings: Optional[ServerSettings] = None,
    *,
    on_authorize: Optional[Callable[[str], None]] = None,
    cancel: Optional[CancelToken] = None,
    middleware: Any = None,
) -> Token:
    """Run the Authorization Code grant with PKCE and return the token.

    Args:
        client: Token client for the provider.
        settings: Local server settings; defaults to ``127.0.0.1`` on a
            free port.
        on_authorize: Receives the authorization URL once the local server
            is listening. Runs on a background thread.
        cancel: Abort signal and deadline for the wait.
        middleware: Wraps the callback handler (see
            :class:`~authloop.server.Middleware`).

    Raises:
        ConfigurationError: Invalid server settings or TLS material.
        AllAddressesUnavailable: No candidate address could be bound.
        AuthorizationDenied: The provider redirected back with an error.
        AuthorizationCancelled: *cancel* fired before the redirect.
        AuthError: The ``state`` parameter did not match.
        TokenExchangeError: The code could not be exchanged.
    """
    code_verifier, code_challenge = generate_pkce_pair()
    state = generate_state()

    def _ready(redirect_uri: str) -> None:
        auth_url = client.authorization_url_for(redirect_uri, state, code_challenge)
        logger.debug("Authorization URL: %s", auth_url)
        if on_authorize is not None:
            on_authorize(auth_url)

    config = build_server_config(
        settings or ServerSettings(), middleware=middleware, ready=_ready
    )
    with LocalServer(config) as server:
        server.start()
        redirect_uri = server.url
        result = server.wait(cancel or CancelToken())

    if isinstance(result, Denied):
        raise AuthorizationDenied(result.error_code, result.description)
    if result.state != state:
        raise AuthError("state mismatch: the callback does not belong to this login")

    try:
        return client.exchange(result.code, redirect_uri, code_verifier)
    except TokenExchangeError as exc:
        raise TokenExchangeError(f"could not exchange the code and token: {exc}") from exc
