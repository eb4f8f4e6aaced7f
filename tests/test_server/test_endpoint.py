"""Tests for the redirect endpoint, request parsing, and middleware."""

from __future__ import annotations

import pytest

from authloop.models import Authorized, Denied
from authloop.server.coordinator import ResultCoordinator
from authloop.server.endpoint import (
    CallbackEndpoint,
    CallbackRequest,
    CallbackResponse,
    HeaderMiddleware,
    IdentityMiddleware,
    Middleware,
    parse_callback,
)


def _get(target: str, method: str = "GET") -> CallbackRequest:
    return CallbackRequest.from_target(method, target, {"Host": "localhost"})


@pytest.fixture()
def coordinator() -> ResultCoordinator:
    return ResultCoordinator()


@pytest.fixture()
def endpoint(coordinator: ResultCoordinator) -> CallbackEndpoint:
    return CallbackEndpoint("/callback", "<p>done</p>", coordinator)


class TestCallbackRequest:
    def test_from_target_splits_path_and_query(self) -> None:
        request = _get("/callback?code=abc&scope=a+b&scope=c")
        assert request.path == "/callback"
        assert request.query == {"code": ["abc"], "scope": ["a b", "c"]}
        assert request.headers == {"Host": "localhost"}

    def test_param_returns_first_value(self) -> None:
        request = _get("/?state=one&state=two")
        assert request.param("state") == "one"
        assert request.param("missing") is None

    def test_empty_path_defaults_to_root(self) -> None:
        assert _get("?code=x").path == "/"


class TestParseCallback:
    def test_code(self) -> None:
        result = parse_callback(_get("/?code=abc123&state=s1"))
        assert result == Authorized(code="abc123", state="s1")

    def test_error_with_plus_encoded_description(self) -> None:
        result = parse_callback(
            _get("/?error=access_denied&error_description=User+said+no")
        )
        assert isinstance(result, Denied)
        assert result.error_code == "access_denied"
        assert result.description == "User said no"

    def test_error_takes_precedence_over_code(self) -> None:
        result = parse_callback(_get("/?code=abc&error=server_error"))
        assert isinstance(result, Denied)
        assert result.description == ""

    def test_neither_code_nor_error(self) -> None:
        assert parse_callback(_get("/?state=xyz")) is None

    def test_empty_code_is_ignored(self) -> None:
        assert parse_callback(_get("/?code=")) is None


class TestCallbackEndpoint:
    def test_code_publishes_and_renders_page(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        response = endpoint(_get("/callback?code=abc123"))
        assert response.status == 200
        assert response.body == b"<p>done</p>"
        assert response.content_type.startswith("text/html")
        assert coordinator.result == Authorized(code="abc123")

    def test_denial_renders_the_same_page(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        response = endpoint(_get("/callback?error=access_denied"))
        assert response.status == 200
        assert response.body == b"<p>done</p>"
        assert isinstance(coordinator.result, Denied)

    def test_malformed_request_is_rejected_without_publishing(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        response = endpoint(_get("/callback?foo=bar"))
        assert response.status == 400
        assert b"neither 'code' nor 'error'" in response.body
        assert coordinator.result is None

    def test_other_path_is_not_found(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        response = endpoint(_get("/favicon.ico"))
        assert response.status == 404
        assert coordinator.result is None

    def test_non_get_is_method_not_allowed(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        response = endpoint(_get("/callback?code=abc", method="POST"))
        assert response.status == 405
        assert response.headers["Allow"] == "GET"
        assert coordinator.result is None

    def test_second_callback_is_answered_but_ignored(
        self, endpoint: CallbackEndpoint, coordinator: ResultCoordinator
    ) -> None:
        first = endpoint(_get("/callback?code=X"))
        second = endpoint(_get("/callback?code=Y"))
        assert first.status == second.status == 200
        assert coordinator.result == Authorized(code="X")


class TestMiddleware:
    def test_identity_returns_same_handler(self, endpoint: CallbackEndpoint) -> None:
        assert IdentityMiddleware().wrap(endpoint) is endpoint

    def test_header_middleware_adds_headers(self, endpoint: CallbackEndpoint) -> None:
        handler = HeaderMiddleware({"Cache-Control": "no-store"}).wrap(endpoint)
        response = handler(_get("/callback?code=abc"))
        assert response.headers["Cache-Control"] == "no-store"
        assert response.status == 200

    def test_header_middleware_applies_to_errors(self, endpoint: CallbackEndpoint) -> None:
        handler = HeaderMiddleware({"X-Frame-Options": "DENY"}).wrap(endpoint)
        response = handler(_get("/other"))
        assert response.status == 404
        assert response.headers["X-Frame-Options"] == "DENY"

    def test_custom_middleware(self, endpoint: CallbackEndpoint) -> None:
        class Branded(Middleware):
            def wrap(self, handler):
                def wrapped(request: CallbackRequest) -> CallbackResponse:
                    response = handler(request)
                    if response.status == 200:
                        return CallbackResponse.html("<h1>Welcome back</h1>")
                    return response

                return wrapped

        response = Branded().wrap(endpoint)(_get("/callback?code=abc"))
        assert response.body == b"<h1>Welcome back</h1>"

    def test_middleware_requires_wrap(self) -> None:
        with pytest.raises(TypeError):
            Middleware()  # type: ignore[abstract]
