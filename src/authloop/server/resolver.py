"""Bind the local server to the first available candidate address.

:func:`resolve` walks the candidate list once, in order, and returns a
listening socket for the first one that binds. TLS material is validated
by :func:`load_tls_context` before any socket is created, so a broken
certificate never costs a port.
"""

from __future__ import annotations

import logging
import os
import socket
import ssl
from dataclasses import dataclass
from typing import Optional, Sequence

from authloop.exceptions import AllAddressesUnavailable, ConfigurationError
from authloop.models import DEFAULT_BIND_ADDRESS, TLSConfig

logger = logging.getLogger(__name__)

_LISTEN_BACKLOG = 16
_WILDCARD_HOSTS = ("", "0.0.0.0", "::")


def parse_bind_address(candidate: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    IPv6 hosts must be bracketed (``[::1]:8000``). An empty host means all
    interfaces.

    Raises:
        ConfigurationError: If the port is missing, not a number, or out of range.
    """
    host, sep, port_text = candidate.rpartition(":")
    if not sep:
        raise ConfigurationError(f"Bind address '{candidate}' must be host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ConfigurationError(
            f"Bind address '{candidate}': IPv6 hosts must be written as [host]:port"
        )
    try:
        port = int(port_text)
    except ValueError:
        raise ConfigurationError(
            f"Bind address '{candidate}' has an invalid port '{port_text}'"
        ) from None
    if not 0 <= port <= 65535:
        raise ConfigurationError(f"Bind address '{candidate}' has an out-of-range port")
    return host, port


def load_tls_context(tls: Optional[TLSConfig]) -> Optional[ssl.SSLContext]:
    """Build a server-side TLS context, or return ``None`` for plain HTTP.

    Raises:
        ConfigurationError: If only one of certificate and key is given, or
            they cannot be loaded.
    """
    if tls is None or (not tls.cert_file and not tls.key_file):
        return None
    if not tls.cert_file:
        raise ConfigurationError("A TLS key file was given without a certificate file")
    if not tls.key_file:
        raise ConfigurationError("A TLS certificate file was given without a key file")
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(tls.cert_file, tls.key_file)
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(
            f"Invalid TLS certificate/key ({tls.cert_file}, {tls.key_file}): {exc}"
        ) from exc
    return context


@dataclass
class BoundListener:
    """A listening socket and the address it actually bound.

    Attributes:
        sock: The listening socket (plain TCP; TLS is applied per connection).
        candidate: The candidate string that succeeded.
        host: Host part of the candidate.
        port: Actual port, resolved when the candidate asked for port 0.
        ssl_context: Server TLS context, or ``None`` for plain HTTP.
    """

    sock: socket.socket
    candidate: str
    host: str
    port: int
    ssl_context: Optional[ssl.SSLContext] = None

    @property
    def scheme(self) -> str:
        return "https" if self.ssl_context is not None else "http"

    def url(self, path: str = "/") -> str:
        """Return the URL a browser on this machine can use to reach *path*."""
        host = "localhost" if self.host in _WILDCARD_HOSTS else self.host
        if ":" in host:
            host = f"[{host}]"
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.scheme}://{host}:{self.port}{path}"

    def close(self) -> None:
        self.sock.close()


def _bind(host: str, port: int) -> socket.socket:
    infos = socket.getaddrinfo(
        host or None, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
    )
    family, socktype, proto, _, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        if os.name == "posix":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.listen(_LISTEN_BACKLOG)
    except BaseException:
        sock.close()
        raise
    return sock


def resolve(
    candidates: Sequence[str], tls: Optional[TLSConfig] = None
) -> BoundListener:
    """Bind the first candidate that is free.

    Args:
        candidates: ``host:port`` strings, tried in order. Empty means
            ``127.0.0.1:0``.
        tls: Certificate and key to serve HTTPS with.

    Returns:
        The bound listener.

    Raises:
        ConfigurationError: If TLS material or a candidate is malformed.
            Raised before any socket is bound.
        AllAddressesUnavailable: If no candidate could be bound.
    """
    ssl_context = load_tls_context(tls)
    parsed = [(c, parse_bind_address(c)) for c in (candidates or [DEFAULT_BIND_ADDRESS])]

    errors: list[tuple[str, OSError]] = []
    for candidate, (host, port) in parsed:
        try:
            sock = _bind(host, port)
        except OSError as exc:
            logger.debug("Could not bind %s: %s", candidate, exc)
            errors.append((candidate, exc))
            continue
        actual_port = sock.getsockname()[1]
        logger.debug("Bound %s (port %d)", candidate, actual_port)
        return BoundListener(
            sock=sock,
            candidate=candidate,
            host=host,
            port=actual_port,
            ssl_context=ssl_context,
        )
    raise AllAddressesUnavailable(errors)
