"""Tests for bind-address resolution and TLS context loading."""

from __future__ import annotations

import socket
from pathlib import Path

import pytest

from authloop.exceptions import AllAddressesUnavailable, ConfigurationError
from authloop.models import TLSConfig
from authloop.server.resolver import (
    BoundListener,
    load_tls_context,
    parse_bind_address,
    resolve,
)


def _connectable(port: int) -> bool:
    try:
        with socket.create_connection(("127.0.0.1", port), timeout=1):
            return True
    except OSError:
        return False


class TestParseBindAddress:
    def test_host_and_port(self) -> None:
        assert parse_bind_address("127.0.0.1:8000") == ("127.0.0.1", 8000)

    def test_hostname(self) -> None:
        assert parse_bind_address("localhost:0") == ("localhost", 0)

    def test_empty_host_means_all_interfaces(self) -> None:
        assert parse_bind_address(":9000") == ("", 9000)

    def test_bracketed_ipv6(self) -> None:
        assert parse_bind_address("[::1]:8443") == ("::1", 8443)

    def test_unbracketed_ipv6_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="IPv6"):
            parse_bind_address("::1:8000")

    def test_missing_port(self) -> None:
        with pytest.raises(ConfigurationError, match="host:port"):
            parse_bind_address("localhost")

    def test_non_numeric_port(self) -> None:
        with pytest.raises(ConfigurationError, match="invalid port"):
            parse_bind_address("localhost:http")

    def test_out_of_range_port(self) -> None:
        with pytest.raises(ConfigurationError, match="out-of-range"):
            parse_bind_address("localhost:70000")


class TestLoadTLSContext:
    def test_none_means_plain_http(self) -> None:
        assert load_tls_context(None) is None
        assert load_tls_context(TLSConfig()) is None

    def test_cert_without_key(self, tmp_path: Path) -> None:
        cert = tmp_path / "cert.pem"
        cert.write_text("x")
        with pytest.raises(ConfigurationError, match="without a key file"):
            load_tls_context(TLSConfig(cert_file=str(cert)))

    def test_key_without_cert(self, tmp_path: Path) -> None:
        key = tmp_path / "key.pem"
        key.write_text("x")
        with pytest.raises(ConfigurationError, match="without a certificate file"):
            load_tls_context(TLSConfig(key_file=str(key)))

    def test_malformed_pem(self, tmp_path: Path) -> None:
        cert = tmp_path / "cert.pem"
        key = tmp_path / "key.pem"
        cert.write_text("not a certificate")
        key.write_text("not a key")
        with pytest.raises(ConfigurationError, match="Invalid TLS"):
            load_tls_context(TLSConfig(cert_file=str(cert), key_file=str(key)))

    def test_missing_files(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            load_tls_context(
                TLSConfig(
                    cert_file=str(tmp_path / "nope.pem"),
                    key_file=str(tmp_path / "nope.key"),
                )
            )


class TestResolve:
    def test_first_free_candidate_wins(self, occupied_port: int) -> None:
        listener = resolve([f"127.0.0.1:{occupied_port}", "127.0.0.1:0"])
        try:
            assert listener.candidate == "127.0.0.1:0"
            assert listener.port != occupied_port
            assert listener.port > 0
        finally:
            listener.close()

    def test_empty_candidates_use_loopback_default(self) -> None:
        listener = resolve([])
        try:
            assert listener.host == "127.0.0.1"
            assert listener.candidate == "127.0.0.1:0"
        finally:
            listener.close()

    def test_listener_accepts_connections(self) -> None:
        listener = resolve(["127.0.0.1:0"])
        try:
            assert _connectable(listener.port)
        finally:
            listener.close()
        assert not _connectable(listener.port)

    def test_all_occupied_aggregates_errors(self, occupied_port: int) -> None:
        candidate = f"127.0.0.1:{occupied_port}"
        with pytest.raises(AllAddressesUnavailable) as exc_info:
            resolve([candidate, candidate])
        err = exc_info.value
        assert [c for c, _ in err.errors] == [candidate, candidate]
        assert all(isinstance(e, OSError) for _, e in err.errors)
        assert candidate in str(err)
        assert err.exit_code == 6

    def test_malformed_candidate_fails_before_binding(self) -> None:
        with pytest.raises(ConfigurationError):
            resolve(["127.0.0.1:0", "bogus"])

    def test_tls_errors_raised_before_binding(self, tmp_path: Path) -> None:
        cert = tmp_path / "cert.pem"
        cert.write_text("x")
        with pytest.raises(ConfigurationError):
            resolve(["127.0.0.1:0"], TLSConfig(cert_file=str(cert)))


class TestBoundListenerURL:
    def _listener(self, host: str, port: int = 8000, tls: bool = False) -> BoundListener:
        return BoundListener(
            sock=socket.socket(),
            candidate=f"{host}:{port}",
            host=host,
            port=port,
            ssl_context=object() if tls else None,  # type: ignore[arg-type]
        )

    def test_http_url(self) -> None:
        listener = self._listener("127.0.0.1")
        try:
            assert listener.url("/callback") == "http://127.0.0.1:8000/callback"
            assert listener.scheme == "http"
        finally:
            listener.close()

    def test_https_url(self) -> None:
        listener = self._listener("localhost", tls=True)
        try:
            assert listener.url() == "https://localhost:8000/"
        finally:
            listener.close()

    @pytest.mark.parametrize("host", ["", "0.0.0.0", "::"])
    def test_wildcard_hosts_map_to_localhost(self, host: str) -> None:
        listener = self._listener(host)
        try:
            assert listener.url("/") == "http://localhost:8000/"
        finally:
            listener.close()

    def test_ipv6_host_is_bracketed(self) -> None:
        listener = self._listener("::1")
        try:
            assert listener.url("cb") == "http://[::1]:8000/cb"
        finally:
            listener.close()
