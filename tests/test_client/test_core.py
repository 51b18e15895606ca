"""Tests for snowkit.client.core -- the per-attempt request pipeline."""

from __future__ import annotations

import json
import threading
from typing import Any, Optional

import httpx
import pytest

from snowkit import retry
from snowkit.auth import APIKeyAuthProvider, BasicAuthProvider, OAuthClientCredentialsProvider
from snowkit.auth.base import AuthProvider
from snowkit.client import ServiceNowClient
from snowkit.exceptions import (
    AuthenticationError,
    ErrorKind,
    NetworkError,
    NotFoundError,
    RateLimiterError,
    RequestCancelledError,
    RetryExhaustedError,
    ServerError,
    ValidationError,
)
from snowkit.models import AuthType, EndpointType, RateLimitConfig, RetryPolicy
from snowkit.ratelimit import EndpointLimiter

INSTANCE = "https://dev1.service-now.com"

# Retries without sleeping.
NO_BACKOFF = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def json_response(data: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=data)


class RecordingHandler:
    """MockTransport handler replaying responses and recording requests."""

    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        template = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(
            template.status_code, headers=template.headers, content=template.content
        )


class CountingAuth(AuthProvider):
    def __init__(self) -> None:
        self.applied = 0
        self.closed = False

    @property
    def auth_type(self):
        return AuthType.BASIC

    def apply(self, request: httpx.Request) -> None:
        self.applied += 1
        request.headers["Authorization"] = f"Test {self.applied}"

    def close(self) -> None:
        self.closed = True


class SpyLimiter(EndpointLimiter):
    def __init__(self) -> None:
        super().__init__()
        self.waits: list[EndpointType] = []

    def wait(self, endpoint: EndpointType, cancel: Optional[threading.Event] = None) -> None:
        self.waits.append(endpoint)
        super().wait(endpoint, cancel)


def _client(
    make_http, handler, auth: Optional[AuthProvider] = None, **kwargs: Any
) -> ServiceNowClient:
    kwargs.setdefault("retry_policy", NO_BACKOFF)
    return ServiceNowClient(
        INSTANCE, auth or BasicAuthProvider("admin", "pw"), http_client=make_http(handler), **kwargs
    )


# ---------------------------------------------------------------------------
# URLs and request construction
# ---------------------------------------------------------------------------


class TestRequestConstruction:
    def test_execute_targets_api_now(self, make_http) -> None:
        handler = RecordingHandler(json_response({"result": []}))
        client = _client(make_http, handler)

        result = client.execute("get", "/table/incident", params={"sysparm_limit": "1"})

        assert result == {"result": []}
        request = handler.requests[0]
        assert request.method == "GET"
        assert str(request.url) == f"{INSTANCE}/api/now/table/incident?sysparm_limit=1"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["Authorization"].startswith("Basic ")

    def test_missing_leading_slash_is_added(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        _client(make_http, handler).execute("GET", "table/incident")
        assert handler.requests[0].url.path == "/api/now/table/incident"

    def test_execute_root(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        _client(make_http, handler).execute_root("GET", "/api/sn_sc/servicecatalog/items")
        assert str(handler.requests[0].url) == f"{INSTANCE}/api/sn_sc/servicecatalog/items"

    def test_json_body(self, make_http) -> None:
        handler = RecordingHandler(json_response({"result": {"sys_id": "1"}}, 201))
        _client(make_http, handler).execute("POST", "/table/incident", {"short_description": "x"})
        request = handler.requests[0]
        assert json.loads(request.content) == {"short_description": "x"}
        assert request.headers["content-type"] == "application/json"

    def test_raw_content_and_headers(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        _client(make_http, handler).execute(
            "POST",
            "/attachment/file",
            body={"ignored": True},
            content=b"\x00\x01",
            headers={"Content-Type": "application/octet-stream"},
        )
        request = handler.requests[0]
        assert request.content == b"\x00\x01"
        assert request.headers["Content-Type"] == "application/octet-stream"

    def test_instance_url_trailing_slash(self, make_http) -> None:
        client = ServiceNowClient(
            INSTANCE + "/", APIKeyAuthProvider("k"), http_client=make_http(RecordingHandler(json_response({})))
        )
        assert client.instance_url == INSTANCE
        assert client.base_url == f"{INSTANCE}/api/now"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecoding:
    def test_empty_body_returns_none(self, make_http) -> None:
        handler = RecordingHandler(httpx.Response(204))
        assert _client(make_http, handler).execute("DELETE", "/table/incident/1") is None

    def test_xml(self, make_http) -> None:
        body = b"<response><result><number>INC0001</number></result></response>"
        handler = RecordingHandler(httpx.Response(200, content=body))
        result = _client(make_http, handler).execute("GET", "/table/incident", fmt="xml")
        assert result == {"response": {"result": {"number": "INC0001"}}}
        assert handler.requests[0].headers["Accept"] == "application/xml"

    def test_raw(self, make_http) -> None:
        handler = RecordingHandler(httpx.Response(200, content=b"%PDF-1.4"))
        result = _client(make_http, handler).execute("GET", "/attachment/1/file", fmt="raw")
        assert result == b"%PDF-1.4"


# ---------------------------------------------------------------------------
# Errors and retries
# ---------------------------------------------------------------------------


class TestErrors:
    def test_not_found_is_not_retried(self, make_http) -> None:
        handler = RecordingHandler(
            json_response(
                {"error": {"message": "No Record found", "detail": "gone"}, "status": "failure"},
                404,
            )
        )
        with pytest.raises(NotFoundError) as exc_info:
            _client(make_http, handler).execute("GET", "/table/incident/missing")

        assert len(handler.requests) == 1
        assert exc_info.value.message == "No Record found"
        assert exc_info.value.detail == "gone"

    def test_server_error_then_success(self, make_http) -> None:
        handler = RecordingHandler(
            httpx.Response(503, text="Service Unavailable"),
            json_response({"result": [{"sys_id": "1"}]}),
        )
        result = _client(make_http, handler).execute("GET", "/table/incident")
        assert result == {"result": [{"sys_id": "1"}]}
        assert len(handler.requests) == 2

    def test_server_error_exhausts_attempts(self, make_http) -> None:
        handler = RecordingHandler(httpx.Response(500, text="boom"))
        with pytest.raises(RetryExhaustedError) as exc_info:
            _client(make_http, handler).execute("GET", "/table/incident")
        assert len(handler.requests) == 3
        assert isinstance(exc_info.value.last_error, ServerError)
        assert exc_info.value.last_error.message == "boom"

    def test_unauthorized(self, make_http) -> None:
        handler = RecordingHandler(
            json_response({"error": {"message": "User Not Authenticated"}}, 401)
        )
        with pytest.raises(AuthenticationError):
            _client(make_http, handler).execute("GET", "/table/incident")
        assert len(handler.requests) == 1

    def test_transport_timeout_not_retried_by_default(self, make_http) -> None:
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(make_http, handler, retry_policy=retry.DEFAULT_POLICY)
        with pytest.raises(NetworkError) as exc_info:
            client.execute("POST", "/table/incident", {"short_description": "Disk full"})
        assert methods == ["POST"]
        assert exc_info.value.status_code == 0
        assert exc_info.value.code == "TRANSPORT_TIMEOUT"

    def test_transport_timeout_retried_when_policy_lists_network(self, make_http) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectTimeout("timed out", request=request)
            return json_response({"result": []})

        policy = RetryPolicy(
            max_attempts=2, base_delay=0.0, jitter=False, retry_on=frozenset({ErrorKind.NETWORK})
        )
        result = _client(make_http, handler, retry_policy=policy).execute("GET", "/table/incident")
        assert result == {"result": []}
        assert calls == 2

    def test_http_408_is_retried(self, make_http) -> None:
        handler = RecordingHandler(httpx.Response(408), json_response({"result": []}))
        _client(make_http, handler).execute("GET", "/table/incident")
        assert len(handler.requests) == 2

    def test_network_error_not_retried_by_default(self, make_http) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError):
            _client(make_http, handler).execute("GET", "/table/incident")
        assert calls == 1

    def test_invalid_format(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        with pytest.raises(ValidationError, match="unsupported response format"):
            _client(make_http, handler).execute("GET", "/table/incident", fmt="yaml")
        assert handler.requests == []


# ---------------------------------------------------------------------------
# Per-attempt auth and rate limiting
# ---------------------------------------------------------------------------


class TestPerAttempt:
    def test_auth_applied_on_every_attempt(self, make_http) -> None:
        auth = CountingAuth()
        handler = RecordingHandler(httpx.Response(502), httpx.Response(502), json_response({}))
        _client(make_http, handler, auth=auth).execute("GET", "/table/incident")

        assert auth.applied == 3
        assert [r.headers["Authorization"] for r in handler.requests] == [
            "Test 1",
            "Test 2",
            "Test 3",
        ]

    def test_rate_limiter_waits_on_every_attempt(self, make_http) -> None:
        limiter = SpyLimiter()
        handler = RecordingHandler(httpx.Response(429), json_response({}))
        _client(make_http, handler, limiter=limiter).execute("GET", "/attachment/abc")
        assert limiter.waits == [EndpointType.ATTACHMENT, EndpointType.ATTACHMENT]

    def test_unsatisfiable_bucket(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        client = _client(make_http, handler, rate_limit=RateLimitConfig(import_burst=0))
        with pytest.raises(RateLimiterError):
            client.execute("POST", "/import/u_staging", {"a": 1})
        assert handler.requests == []

    def test_cancelled_before_start(self, make_http) -> None:
        handler = RecordingHandler(json_response({}))
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RequestCancelledError):
            _client(make_http, handler).execute("GET", "/table/incident", cancel=cancel)
        assert handler.requests == []

    def test_failed_token_refresh_stops_the_call(self, make_http) -> None:
        handler = RecordingHandler(httpx.Response(503, text="token service down"))
        http = make_http(handler)
        auth = OAuthClientCredentialsProvider(INSTANCE, "cid", "sec", http_client=http)
        client = ServiceNowClient(INSTANCE, auth, http_client=http, retry_policy=NO_BACKOFF)

        with pytest.raises(AuthenticationError):
            client.execute("GET", "/table/incident")

        assert [(r.method, r.url.path) for r in handler.requests] == [
            ("POST", "/oauth_token.do")
        ]


# ---------------------------------------------------------------------------
# Knobs and lifecycle
# ---------------------------------------------------------------------------


class TestKnobs:
    def test_presets(self, make_http) -> None:
        client = _client(make_http, RecordingHandler(json_response({})))

        assert client.with_conservative_rate_limit() is client
        assert client.rate_limiter.config == RateLimitConfig.conservative()
        client.with_aggressive_rate_limit()
        assert client.rate_limiter.bucket(EndpointType.TABLE).burst == 20

        assert client.with_minimal_retry().retry_policy is retry.MINIMAL_POLICY
        assert client.with_aggressive_retry().retry_policy is retry.AGGRESSIVE_POLICY

    def test_default_policy(self, make_http) -> None:
        client = ServiceNowClient(
            INSTANCE, BasicAuthProvider("u", "p"), http_client=make_http(RecordingHandler(json_response({})))
        )
        assert client.retry_policy is retry.DEFAULT_POLICY
        client.timeout = 5
        assert client.timeout == 5

    def test_close_keeps_injected_transport(self, make_http) -> None:
        auth = CountingAuth()
        http = make_http(RecordingHandler(json_response({})))
        with ServiceNowClient(INSTANCE, auth, http_client=http):
            pass
        assert auth.closed
        assert not http.is_closed
