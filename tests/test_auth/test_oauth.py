"""Tests for snowkit.auth.oauth -- token lifecycle of the OAuth providers."""

from __future__ import annotations

import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable
from urllib.parse import parse_qs

import httpx
import pytest

from snowkit.auth.oauth import (
    OAuthAuthorizationCodeProvider,
    OAuthClientCredentialsProvider,
)
from snowkit.auth.token_store import MemoryTokenStore, TokenStore, storage_key
from snowkit.exceptions import AuthenticationError, TokenStoreError
from snowkit.models import OAuthToken

INSTANCE = "https://dev1.service-now.com"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def token_payload(access: str = "access-1", expires_in: int = 1800, **extra: Any) -> dict:
    payload: dict[str, Any] = {
        "access_token": access,
        "token_type": "Bearer",
        "expires_in": expires_in,
        "scope": "useraccount",
    }
    payload.update(extra)
    return payload


class TokenEndpoint:
    """Records token requests and answers them from a list of responses."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url == f"{INSTANCE}/oauth_token.do"
        form = parse_qs(request.content.decode())
        self.requests.append({k: v[0] for k, v in form.items()})
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )


def _request() -> httpx.Request:
    return httpx.Request("GET", f"{INSTANCE}/api/now/table/incident")


def _cc_provider(
    make_http: Callable[..., httpx.Client],
    endpoint: TokenEndpoint,
    clock: Any,
    store: TokenStore | None = None,
) -> OAuthClientCredentialsProvider:
    return OAuthClientCredentialsProvider(
        INSTANCE,
        "client-1",
        "secret-1",
        token_store=store,
        http_client=make_http(endpoint),
        clock=clock.utc,
    )


class FailingStore(MemoryTokenStore):
    def save(self, key: str, token: OAuthToken) -> None:
        raise TokenStoreError("disk full")


# ---------------------------------------------------------------------------
# Client credentials
# ---------------------------------------------------------------------------


class TestClientCredentials:
    def test_first_apply_requests_token(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = _cc_provider(make_http, endpoint, clock)

        request = _request()
        provider.apply(request)

        assert request.headers["Authorization"] == "Bearer access-1"
        assert endpoint.requests == [
            {
                "grant_type": "client_credentials",
                "client_id": "client-1",
                "client_secret": "secret-1",
            }
        ]

    def test_token_reused_until_expiry_buffer(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(
            httpx.Response(200, json=token_payload("access-1", expires_in=15)),
            httpx.Response(200, json=token_payload("access-2", expires_in=15)),
        )
        provider = _cc_provider(make_http, endpoint, clock)

        provider.apply(_request())
        clock.advance(4)
        assert not provider.is_expired()
        provider.apply(_request())
        assert len(endpoint.requests) == 1

        # Less than 10 seconds of validity left.
        clock.advance(2)
        assert provider.is_expired()
        request = _request()
        provider.apply(request)
        assert len(endpoint.requests) == 2
        assert request.headers["Authorization"] == "Bearer access-2"

    def test_short_lived_token_is_immediately_stale(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload(expires_in=5)))
        provider = _cc_provider(make_http, endpoint, clock)
        provider.apply(_request())
        assert provider.is_expired()

    def test_concurrent_apply_refreshes_once(self, make_http, clock) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            time.sleep(0.05)
            return httpx.Response(200, json=token_payload())

        provider = OAuthClientCredentialsProvider(
            INSTANCE, "client-1", "secret-1", http_client=make_http(handler), clock=clock.utc
        )
        requests = [_request() for _ in range(5)]
        threads = [threading.Thread(target=provider.apply, args=(r,)) for r in requests]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert calls == 1
        assert all(r.headers["Authorization"] == "Bearer access-1" for r in requests)

    def test_custom_token_type(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(
            httpx.Response(200, json=token_payload(token_type="MAC"))
        )
        request = _request()
        _cc_provider(make_http, endpoint, clock).apply(request)
        assert request.headers["Authorization"] == "MAC access-1"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(401, json={"error": "invalid_client"}),
            httpx.Response(200, text="<html>maintenance</html>"),
            httpx.Response(200, json={"token_type": "Bearer"}),
        ],
    )
    def test_failed_refresh_raises(self, make_http, clock, response: httpx.Response) -> None:
        provider = _cc_provider(make_http, TokenEndpoint(response), clock)
        request = _request()
        with pytest.raises(AuthenticationError):
            provider.apply(request)
        assert "Authorization" not in request.headers
        assert provider.token is None

    def test_http_error_status_is_kept(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(httpx.Response(400, text="bad grant"))
        with pytest.raises(AuthenticationError) as exc_info:
            _cc_provider(make_http, endpoint, clock).refresh()
        assert exc_info.value.status_code == 400
        assert "bad grant" in exc_info.value.message

    def test_transport_error_raises(self, make_http, clock) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = OAuthClientCredentialsProvider(
            INSTANCE, "client-1", "secret-1", http_client=make_http(handler), clock=clock.utc
        )
        with pytest.raises(AuthenticationError, match="token request failed"):
            provider.refresh()

    def test_failed_refresh_keeps_previous_token(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(
            httpx.Response(200, json=token_payload("access-1", expires_in=60)),
            httpx.Response(503, text="down"),
        )
        provider = _cc_provider(make_http, endpoint, clock)
        provider.refresh()
        with pytest.raises(AuthenticationError):
            provider.refresh()
        assert provider.token is not None
        assert provider.token.access_token == "access-1"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_refresh_persists_token(self, make_http, clock) -> None:
        store = MemoryTokenStore()
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = _cc_provider(make_http, endpoint, clock, store)
        provider.apply(_request())

        saved = store.load(storage_key("oauth_cc", INSTANCE, "client-1"))
        assert saved is not None
        assert saved.access_token == "access-1"
        assert saved.expires_at == clock.utc() + timedelta(seconds=1800)
        assert provider.storage_key == f"oauth_cc_{INSTANCE}_client-1"

    def test_persisted_token_avoids_request(self, make_http, clock) -> None:
        store = MemoryTokenStore()
        key = storage_key("oauth_cc", INSTANCE, "client-1")
        store.save(key, OAuthToken(**token_payload("cached")).stamped(clock.utc()))
        endpoint = TokenEndpoint(httpx.Response(500))

        request = _request()
        _cc_provider(make_http, endpoint, clock, store).apply(request)

        assert request.headers["Authorization"] == "Bearer cached"
        assert endpoint.requests == []

    def test_save_failure_is_logged(self, make_http, clock, caplog) -> None:
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = _cc_provider(make_http, endpoint, clock, FailingStore())

        with caplog.at_level(logging.WARNING, logger="snowkit.auth.oauth"):
            request = _request()
            provider.apply(request)

        assert request.headers["Authorization"] == "Bearer access-1"
        assert "Failed to save token to storage" in caplog.text

    def test_unreadable_persisted_token_is_ignored(self, make_http, clock, caplog) -> None:
        class BrokenStore(MemoryTokenStore):
            def load(self, key: str):
                raise TokenStoreError("corrupt")

        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        with caplog.at_level(logging.WARNING, logger="snowkit.auth.oauth"):
            provider = _cc_provider(make_http, endpoint, clock, BrokenStore())
        assert provider.token is None
        assert "Ignoring unreadable persisted token" in caplog.text


# ---------------------------------------------------------------------------
# Authorization code (refresh-token grant)
# ---------------------------------------------------------------------------


class TestAuthorizationCode:
    def _provider(self, make_http, endpoint, clock, refresh_token=None, store=None):
        return OAuthAuthorizationCodeProvider(
            INSTANCE,
            "client-1",
            "secret-1",
            refresh_token=refresh_token,
            token_store=store,
            http_client=make_http(endpoint),
            clock=clock.utc,
        )

    def test_exchanges_refresh_token(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(
            httpx.Response(200, json=token_payload(refresh_token="refresh-2"))
        )
        provider = self._provider(make_http, endpoint, clock, refresh_token="refresh-1")

        provider.apply(_request())

        assert endpoint.requests[0] == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "client_id": "client-1",
            "client_secret": "secret-1",
        }
        assert provider.token.refresh_token == "refresh-2"

    def test_refresh_token_carried_forward(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = self._provider(make_http, endpoint, clock, refresh_token="refresh-1")

        provider.refresh()
        provider.refresh()

        assert provider.token.refresh_token == "refresh-1"
        assert [r["refresh_token"] for r in endpoint.requests] == ["refresh-1", "refresh-1"]

    def test_missing_refresh_token(self, make_http, clock) -> None:
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = self._provider(make_http, endpoint, clock)
        with pytest.raises(AuthenticationError, match="no refresh token available"):
            provider.apply(_request())
        assert endpoint.requests == []

    def test_persisted_token_wins_over_seed(self, make_http, clock) -> None:
        store = MemoryTokenStore()
        store.save(
            storage_key("oauth_ac", INSTANCE, "client-1"),
            OAuthToken(**token_payload("cached", refresh_token="persisted")).stamped(
                clock.utc()
            ),
        )
        endpoint = TokenEndpoint(httpx.Response(200, json=token_payload()))
        provider = self._provider(
            make_http, endpoint, clock, refresh_token="seed", store=store
        )
        assert provider.token.refresh_token == "persisted"
        assert provider.storage_key.startswith("oauth_ac_")
