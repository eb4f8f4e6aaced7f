"""Canonical Pydantic models shared across all authloop modules.

This is the single source of truth for data shapes in the project. The
models fall into three groups:

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`ServerSettings` and :class:`Profile`.

**Runtime models** -- built once per authorization attempt and never mutated:
    :class:`TLSConfig` and :class:`ServerConfig`.

**Outcome models** -- produced by the local callback server and the token
endpoint:
    :class:`Authorized`, :class:`Denied` (together :data:`CallbackResult`)
    and :class:`Token`.

All models use Pydantic v2. Runtime and outcome models are frozen so that a
value handed to a background thread cannot change underneath it.
"""

from __future__ import annotations

import time
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_BIND_ADDRESS = "127.0.0.1:0"
"""Loopback, any free port. Used when no candidate address is configured."""

DEFAULT_SUCCESS_HTML = "<html><body>OK<script>window.close()</script></body></html>"
"""Response body rendered to the browser once the callback has been received."""

DEFAULT_SHUTDOWN_GRACE = 5.0
"""Seconds the local server may take to finish in-flight responses on shutdown."""


# --- Configuration models ---


class ServerSettings(BaseModel):
    """Local callback server settings stored in a :class:`Profile`.

    ``address`` and ``ports`` are the deprecated way of listing candidates.
    They are migrated into ``bind_addresses`` by
    :func:`~authloop.config.normalize_bind_addresses`; the model itself is
    never rewritten.

    Example::

        ServerSettings(bind_addresses=["127.0.0.1:8000", "127.0.0.1:18000"])
    """

    bind_addresses: list[str] = Field(
        default_factory=list,
        description="Candidate host:port pairs, tried in order. Port 0 picks a free port.",
    )
    address: Optional[str] = Field(
        default=None, description="Deprecated: host used together with 'ports'"
    )
    ports: list[int] = Field(
        default_factory=list, description="Deprecated: candidate ports on 'address'"
    )
    cert_file: Optional[str] = Field(
        default=None, description="PEM certificate chain for serving HTTPS"
    )
    key_file: Optional[str] = Field(
        default=None, description="PEM private key matching cert_file"
    )
    callback_path: str = Field(
        default="/", description="Path of the redirect endpoint"
    )
    success_html_file: Optional[str] = Field(
        default=None, description="File whose content is sent to the browser on callback"
    )
    shutdown_grace: float = Field(
        default=DEFAULT_SHUTDOWN_GRACE,
        description="Seconds to wait for in-flight responses on shutdown",
    )


class Profile(BaseModel):
    """A named OAuth client, persisted at ``<config>/profiles/<name>.json``.

    Client credentials are stored as *sources* (``env:VAR``, ``file:/path``,
    ``prompt`` or ``literal:value``), resolved at login time by
    :func:`~authloop.config.resolve_credential`.
    """

    name: str
    authorization_url: str
    token_url: str
    client_id_source: str
    client_secret_source: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)
    auth_params: dict[str, str] = Field(
        default_factory=dict,
        description="Extra query parameters for the authorization request",
    )
    server: ServerSettings = Field(default_factory=ServerSettings)


# --- Runtime models ---


class TLSConfig(BaseModel):
    """Paths of the PEM certificate chain and private key.

    Both or neither must be set. The check happens in
    :func:`~authloop.server.resolver.load_tls_context` so that it raises
    :class:`~authloop.exceptions.ConfigurationError` before any bind.
    """

    model_config = ConfigDict(frozen=True)

    cert_file: Optional[str] = None
    key_file: Optional[str] = None


def _identity_middleware() -> Any:
    from authloop.server.endpoint import IdentityMiddleware

    return IdentityMiddleware()


class ServerConfig(BaseModel):
    """Immutable configuration of one local callback server.

    Built by :func:`~authloop.config.build_server_config` before the
    lifecycle manager runs.

    Attributes:
        bind_addresses: Candidate ``host:port`` strings, never empty.
        tls: Certificate and key, or ``None`` for plain HTTP.
        callback_path: Path the provider redirects to.
        success_html: Body sent to the browser for either outcome.
        middleware: Object with ``wrap(handler) -> handler``.
        ready: ``queue.Queue`` or callable receiving the server URL once.
        shutdown_grace: Seconds allowed for graceful shutdown.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    bind_addresses: tuple[str, ...] = (DEFAULT_BIND_ADDRESS,)
    tls: Optional[TLSConfig] = None
    callback_path: str = "/"
    success_html: str = DEFAULT_SUCCESS_HTML
    middleware: Any = Field(default_factory=_identity_middleware)
    ready: Any = None
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE


# --- Outcome models ---


class Authorized(BaseModel):
    """The provider redirected back with an authorization code."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["authorized"] = "authorized"
    code: str
    state: Optional[str] = None


class Denied(BaseModel):
    """The provider redirected back with an ``error`` parameter."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["denied"] = "denied"
    error_code: str
    description: str = ""
    state: Optional[str] = None


CallbackResult = Union[Authorized, Denied]
"""Outcome of one redirect callback. Exactly one is authoritative per attempt."""


class Token(BaseModel):
    """Token endpoint response (:rfc:`6749#section-5.1`).

    Unknown fields returned by the provider are kept in ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None
    expires_at: Optional[float] = None

    def model_post_init(self, __context: Any) -> None:
        if self.expires_at is None and self.expires_in is not None:
            self.expires_at = time.time() + self.expires_in
