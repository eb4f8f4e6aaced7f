"""Tests for the end-to-end Authorization Code flow in authloop.flow.

The browser is simulated by the ``on_authorize`` callback: it reads the
``redirect_uri`` and ``state`` from the authorization URL and sends the
provider's redirect to the local server. The token endpoint is mocked.
"""

from __future__ import annotations

import queue
import threading
from http.client import HTTPConnection
from typing import Callable, Optional
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest

from authloop.exceptions import (
    AllAddressesUnavailable,
    AuthError,
    AuthorizationCancelled,
    AuthorizationDenied,
    TokenExchangeError,
)
from authloop.flow import get_token
from authloop.models import ServerSettings
from authloop.server import CancelToken, HeaderMiddleware
from authloop.token_client import TokenClient


def _make_client() -> TokenClient:
    return TokenClient(
        client_id="client-123",
        authorization_url="https://idp.example.com/authorize",
        token_url="https://idp.example.com/token",
        scopes=["openid"],
    )


def _mock_token_response(status_code: int = 200) -> MagicMock:
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = {"access_token": "at-123", "expires_in": 3600}
    mock_response.text = "{}"
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            message=f"HTTP {status_code}", request=MagicMock(), response=mock_response
        )
    return mock_response


def _browser(
    extra: Optional[dict[str, str]] = None,
    state: Optional[str] = None,
    seen: Optional[dict[str, str]] = None,
    replies: Optional["queue.Queue[dict[str, str]]"] = None,
) -> Callable[[str], None]:
    """Return an ``on_authorize`` hook that plays the provider's redirect.

    Args:
        extra: Query parameters of the redirect; ``{"code": "the-code"}``
            by default.
        state: Overrides the ``state`` echoed back.
        seen: Receives the authorization URL parameters, for assertions.
        replies: Receives the headers of the local server's response.
    """

    def _on_authorize(auth_url: str) -> None:
        params = {k: v[0] for k, v in parse_qs(urlsplit(auth_url).query).items()}
        if seen is not None:
            seen.update(params)
        redirect = urlsplit(params["redirect_uri"])
        query = dict(extra or {"code": "the-code"})
        query["state"] = state if state is not None else params["state"]

        def _send() -> None:
            conn = HTTPConnection(redirect.hostname, redirect.port, timeout=5)
            try:
                conn.request("GET", f"{redirect.path}?{urlencode(query)}")
                response = conn.getresponse()
                response.read()
                if replies is not None:
                    replies.put(dict(response.getheaders()))
            finally:
                conn.close()

        threading.Thread(target=_send, daemon=True).start()

    return _on_authorize


class TestGetToken:
    def test_successful_login(self) -> None:
        seen: dict[str, str] = {}
        settings = ServerSettings(callback_path="/oauth/callback", shutdown_grace=2.0)
        with patch(
            "authloop.token_client.httpx.post", return_value=_mock_token_response()
        ) as mock_post:
            token = get_token(
                _make_client(),
                settings,
                on_authorize=_browser(seen=seen),
                cancel=CancelToken.with_timeout(10),
            )

        assert token.access_token == "at-123"
        assert seen["redirect_uri"].startswith("http://127.0.0.1:")
        assert seen["redirect_uri"].endswith("/oauth/callback")
        assert seen["code_challenge_method"] == "S256"

        data = mock_post.call_args.kwargs["data"]
        assert data["code"] == "the-code"
        assert data["redirect_uri"] == seen["redirect_uri"]
        assert data["code_verifier"]

    def test_denial_raises(self) -> None:
        with patch("authloop.token_client.httpx.post") as mock_post:
            with pytest.raises(AuthorizationDenied, match="access_denied") as exc_info:
                get_token(
                    _make_client(),
                    on_authorize=_browser(
                        {"error": "access_denied", "error_description": "User said no"}
                    ),
                    cancel=CancelToken.with_timeout(10),
                )
        assert exc_info.value.description == "User said no"
        assert exc_info.value.exit_code == 3
        mock_post.assert_not_called()

    def test_state_mismatch_raises(self) -> None:
        with patch("authloop.token_client.httpx.post") as mock_post:
            with pytest.raises(AuthError, match="state mismatch"):
                get_token(
                    _make_client(),
                    on_authorize=_browser(state="forged"),
                    cancel=CancelToken.with_timeout(10),
                )
        mock_post.assert_not_called()

    def test_exchange_failure_is_wrapped(self) -> None:
        with patch(
            "authloop.token_client.httpx.post", return_value=_mock_token_response(400)
        ):
            with pytest.raises(
                TokenExchangeError, match="could not exchange the code and token"
            ):
                get_token(
                    _make_client(),
                    on_authorize=_browser(),
                    cancel=CancelToken.with_timeout(10),
                )

    def test_timeout(self) -> None:
        with pytest.raises(AuthorizationCancelled, match="deadline exceeded"):
            get_token(_make_client(), cancel=CancelToken.with_timeout(0.3))

    def test_no_free_address(self, occupied_port: int) -> None:
        on_authorize = MagicMock()
        settings = ServerSettings(bind_addresses=[f"127.0.0.1:{occupied_port}"])
        with pytest.raises(AllAddressesUnavailable):
            get_token(_make_client(), settings, on_authorize=on_authorize)
        on_authorize.assert_not_called()

    def test_middleware_is_applied(self) -> None:
        replies: "queue.Queue[dict[str, str]]" = queue.Queue()
        with patch(
            "authloop.token_client.httpx.post", return_value=_mock_token_response()
        ):
            token = get_token(
                _make_client(),
                on_authorize=_browser(replies=replies),
                cancel=CancelToken.with_timeout(10),
                middleware=HeaderMiddleware({"Cache-Control": "no-store"}),
            )
        assert token.access_token == "at-123"
        assert replies.get(timeout=5)["Cache-Control"] == "no-store"
