"""The request core every ServiceNow call goes through.

:class:`ServiceNowClient` wraps :class:`httpx.Client` and runs each call as
a retried unit of work. Every attempt, including retries, repeats the same
steps:

1. Classify the path into an endpoint class
   (:func:`~snowkit.ratelimit.classify_endpoint`).
2. Wait for that class's rate-limit bucket.
3. Let the :class:`~snowkit.auth.base.AuthProvider` stamp the request,
   refreshing an expired OAuth token first.
4. Send the request.
5. Map a non-2xx response to a :class:`~snowkit.exceptions.ServiceNowError`,
   or decode the body.

The attempts are driven by :func:`snowkit.retry.do_with_result`, so a
retried request re-earns its rate-limit permit and re-validates its token.

See Also:
    :mod:`snowkit.resources` for the resource clients built on top of
    :meth:`ServiceNowClient.execute`.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import httpx

from snowkit import retry
from snowkit.auth.base import AuthProvider
from snowkit.client.response import (
    FORMAT_JSON,
    accept_header,
    decode_body,
    raise_for_response,
)
from snowkit.exceptions import NetworkError
from snowkit.models import RateLimitConfig, RetryPolicy
from snowkit.ratelimit import EndpointLimiter, classify_endpoint

logger = logging.getLogger(__name__)

API_PATH = "/api/now"


class ServiceNowClient:
    """Thread-safe client for one ServiceNow instance.

    Args:
        instance_url: Instance base URL, e.g. ``https://dev1.service-now.com``.
        auth: Provider applied to every attempt.
        timeout: Per-request timeout in seconds.
        retry_policy: Defaults to :data:`snowkit.retry.DEFAULT_POLICY`.
        rate_limit: Bucket configuration. Defaults to
            :class:`~snowkit.models.RateLimitConfig`.
        http_client: Transport to use instead of a new :class:`httpx.Client`.
            A supplied client is not closed by :meth:`close`.
        limiter: A pre-built limiter, overriding *rate_limit*.

    Example::

        with ServiceNowClient(url, BasicAuthProvider("admin", "pw")) as client:
            incidents = client.execute("GET", "/table/incident", params={"sysparm_limit": "5"})
    """

    def __init__(
        self,
        instance_url: str,
        auth: AuthProvider,
        *,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limit: Optional[RateLimitConfig] = None,
        http_client: Optional[httpx.Client] = None,
        limiter: Optional[EndpointLimiter] = None,
    ) -> None:
        self._instance_url = instance_url.rstrip("/")
        self._auth = auth
        self._timeout = timeout
        self._retry_policy = retry_policy or retry.DEFAULT_POLICY
        self._limiter = limiter or EndpointLimiter(rate_limit)
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(follow_redirects=True)

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> ServiceNowClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP transport (if owned) and the auth provider."""
        if self._owns_http:
            self._http.close()
        self._auth.close()

    # ------------------------------------------------------------------ #
    # Properties and knobs
    # ------------------------------------------------------------------ #

    @property
    def instance_url(self) -> str:
        return self._instance_url

    @property
    def base_url(self) -> str:
        return self._instance_url + API_PATH

    @property
    def auth(self) -> AuthProvider:
        return self._auth

    @property
    def timeout(self) -> float:
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._timeout = value

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @retry_policy.setter
    def retry_policy(self, policy: RetryPolicy) -> None:
        self._retry_policy = policy

    @property
    def rate_limiter(self) -> EndpointLimiter:
        """The limiter shared by every call, for pre-checks with ``allow``."""
        return self._limiter

    def set_rate_limit_config(self, config: RateLimitConfig) -> None:
        """Replace every rate-limit bucket; existing bucket state is discarded."""
        self._limiter.update_config(config)

    def with_conservative_rate_limit(self) -> ServiceNowClient:
        self.set_rate_limit_config(RateLimitConfig.conservative())
        return self

    def with_aggressive_rate_limit(self) -> ServiceNowClient:
        self.set_rate_limit_config(RateLimitConfig.aggressive())
        return self

    def with_minimal_retry(self) -> ServiceNowClient:
        self.retry_policy = retry.MINIMAL_POLICY
        return self

    def with_aggressive_retry(self) -> ServiceNowClient:
        self.retry_policy = retry.AGGRESSIVE_POLICY
        return self

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        *,
        cancel: Optional[threading.Event] = None,
        fmt: str = FORMAT_JSON,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Call an endpoint under ``/api/now``.

        Args:
            method: HTTP method.
            path: Path relative to ``/api/now``, e.g. ``/table/incident``.
            body: JSON-serialisable request body.
            params: Query parameters.
            cancel: Aborts rate-limit waits and retry back-off when set.
            fmt: ``"json"`` (default), ``"xml"``, or ``"raw"`` (bytes).
            content: Raw request body, sent instead of *body*.
            headers: Extra request headers.

        Returns:
            The decoded response body, or ``None`` for an empty body.

        Raises:
            ServiceNowError: For a non-retryable failure.
            RetryExhaustedError: When every attempt failed with a retryable error.
            RequestCancelledError: When *cancel* fires.
            RateLimiterError: When the endpoint's bucket can never grant a permit.
        """
        return self._execute(
            self.base_url, method, path, body, params, cancel, fmt, content, headers
        )

    def execute_root(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: Optional[dict[str, Any]] = None,
        *,
        cancel: Optional[threading.Event] = None,
        fmt: str = FORMAT_JSON,
        content: Optional[bytes] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Call an endpoint relative to the instance root.

        Used for processors such as ``/incident.do?XML`` and scoped APIs
        like ``/api/sn_sc/...``. Arguments are as for :meth:`execute`.
        """
        return self._execute(
            self._instance_url, method, path, body, params, cancel, fmt, content, headers
        )

    def _execute(
        self,
        base: str,
        method: str,
        path: str,
        body: Any,
        params: Optional[dict[str, Any]],
        cancel: Optional[threading.Event],
        fmt: str,
        content: Optional[bytes],
        headers: Optional[dict[str, str]],
    ) -> Any:
        if not path.startswith("/"):
            path = "/" + path
        endpoint = classify_endpoint(path)
        merged_headers = {"Accept": accept_header(fmt)}
        merged_headers.update(headers or {})
        url = base + path
        method = method.upper()

        def attempt() -> Any:
            self._limiter.wait(endpoint, cancel)

            kwargs: dict[str, Any] = {
                "headers": merged_headers,
                "params": params,
                "timeout": self._timeout,
            }
            if content is not None:
                kwargs["content"] = content
            elif body is not None:
                kwargs["json"] = body
            request = self._http.build_request(method, url, **kwargs)

            self._auth.apply(request)

            logger.debug("%s %s", method, request.url)
            response = self._send(request)
            logger.debug("%s %s -> %d", method, request.url, response.status_code)
            raise_for_response(response)
            return decode_body(response, fmt)

        return retry.do_with_result(self._retry_policy, attempt, cancel)

    def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return self._http.send(request)
        except httpx.TimeoutException as exc:
            # The request may have reached the server, so only policies that
            # list Network retry it.
            raise NetworkError(
                f"request timed out: {exc}", status_code=0, code="TRANSPORT_TIMEOUT"
            ) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"request failed: {exc}", status_code=0) from exc
