"""OAuth 2.0 token client: authorization URL and code exchange.

This is the protocol side of the Authorization Code grant (:rfc:`6749`)
with PKCE (:rfc:`7636`). The local callback server never calls into this
module; :mod:`authloop.flow` hands it the code the server received.

Exports:
    :func:`generate_pkce_pair` -- ``code_verifier`` / ``code_challenge`` (S256).
    :func:`generate_state` -- an unguessable ``state`` value.
    :class:`TokenClient` -- builds the authorization URL and exchanges codes.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Any, Optional, Sequence
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx

from authloop.exceptions import TokenExchangeError
from authloop.models import Token


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code_verifier and code_challenge (S256).

    Returns:
        A tuple of ``(code_verifier, code_challenge)``.
    """
    # RFC 7636: 43-128 characters from unreserved character set
    code_verifier = secrets.token_urlsafe(64)[:128]
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


def generate_state() -> str:
    return secrets.token_urlsafe(32)


class TokenClient:
    """Client for one OAuth provider.

    Args:
        client_id: The registered client identifier.
        authorization_url: The provider's authorization endpoint.
        token_url: The provider's token endpoint.
        client_secret: Sent with the exchange when set (confidential clients).
        scopes: Requested scopes, joined with spaces.
        extra_params: Additional authorization request parameters, e.g.
            ``{"access_type": "offline"}``.
        timeout: Seconds allowed for the token request.
    """

    def __init__(
        self,
        client_id: str,
        authorization_url: str,
        token_url: str,
        client_secret: Optional[str] = None,
        scopes: Sequence[str] = (),
        extra_params: Optional[dict[str, str]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.client_id = client_id
        self.authorization_url = authorization_url
        self.token_url = token_url
        self.client_secret = client_secret
        self.scopes = list(scopes)
        self.extra_params = dict(extra_params or {})
        self.timeout = timeout

    def authorization_url_for(
        self, redirect_uri: str, state: str, code_challenge: str
    ) -> str:
        """Return the URL the browser must open to start the authorization.

        Query parameters already present in ``authorization_url`` are kept.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        params.update(self.extra_params)

        parts = urlsplit(self.authorization_url)
        query = urlencode(params)
        if parts.query:
            query = f"{parts.query}&{query}"
        return urlunsplit(parts._replace(query=query))

    def exchange(self, code: str, redirect_uri: str, code_verifier: str) -> Token:
        """Exchange the authorization code for tokens.

        Args:
            code: The authorization code received from the callback.
            redirect_uri: The redirect URI used in the authorization request.
            code_verifier: The PKCE code verifier to prove possession.

        Returns:
            The parsed token response.

        Raises:
            TokenExchangeError: On HTTP errors or if ``access_token`` is
                missing from the response.
        """
        data: dict[str, str] = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret

        try:
            response = httpx.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            token_data: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            raise TokenExchangeError(
                f"Token exchange failed with status {exc.response.status_code}: "
                f"{exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TokenExchangeError(f"Token exchange failed: {exc}") from exc
        except ValueError as exc:
            raise TokenExchangeError(f"Token response is not valid JSON: {exc}") from exc

        if not isinstance(token_data, dict) or "access_token" not in token_data:
            raise TokenExchangeError("Token response missing 'access_token' field")

        return Token.model_validate(token_data)
