"""OAuth2 auth providers for the instance's ``/oauth_token.do`` endpoint.

Two flows are supported:

* :class:`OAuthClientCredentialsProvider` -- the non-interactive Client
  Credentials grant (:rfc:`6749` section 4.4). A new token is requested with
  ``client_id`` and ``client_secret`` whenever the current one expires.
* :class:`OAuthAuthorizationCodeProvider` -- starts from a refresh token
  obtained through an authorization-code login and keeps exchanging it for
  access tokens (``grant_type=refresh_token``). If the instance does not
  rotate the refresh token, the previous one is carried forward.

Both providers share :class:`OAuthProvider`, which owns the token
lifecycle:

1. On construction the provider loads a previously persisted token for its
   storage key, avoiding a token request on startup.
2. :meth:`~OAuthProvider.apply` holds the provider lock for the whole
   expiry-check, refresh, and header-stamp sequence. Concurrent callers of
   an expired provider therefore trigger exactly one refresh; the others
   block and then reuse the new token.
3. A successful refresh swaps the token and then persists it. Persistence
   only speeds up the next startup, so a failed save is logged and ignored.
4. A failed refresh (HTTP error, transport error, undecodable body) raises
   :class:`~snowkit.exceptions.AuthenticationError` and leaves the held
   token unchanged.

The HTTP client used to reach the token endpoint is injectable, which is
how tests substitute an :class:`httpx.MockTransport`.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from snowkit.auth.base import AuthProvider
from snowkit.auth.token_store import TokenStore, storage_key
from snowkit.exceptions import AuthenticationError, TokenStoreError
from snowkit.models import AuthType, ClientSettings, OAuthToken

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth_token.do"
EXPIRY_BUFFER = timedelta(seconds=10)
"""A token is treated as expired this long before its real expiry."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthProvider(AuthProvider):
    """Shared token lifecycle for the OAuth flows.

    Subclasses set :attr:`flow` and implement :meth:`_grant_data`.

    Args:
        instance_url: Instance base URL, e.g. ``https://dev1.service-now.com``.
        client_id: OAuth application client ID.
        client_secret: OAuth application client secret.
        token_store: Where tokens are loaded from and persisted to.
            ``None`` disables persistence.
        http_client: Client used for token requests. When omitted the
            provider creates (and owns) its own :class:`httpx.Client`.
        clock: Returns the current UTC time; injectable for tests.
        timeout: Timeout for token requests in seconds, used only when the
            provider creates its own HTTP client.
    """

    flow: str = ""

    def __init__(
        self,
        instance_url: str,
        client_id: str,
        client_secret: str,
        *,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timeout: float = 30.0,
    ) -> None:
        self._instance_url = instance_url.rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_store = token_store
        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout)
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._token: Optional[OAuthToken] = None
        self.storage_key = storage_key(self.flow, self._instance_url, client_id)
        self._token = self._load_persisted()

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> OAuthProvider:
        return cls(
            settings.instance_url,
            settings.client_id or "",
            settings.client_secret or "",
            token_store=token_store,
            http_client=http_client,
            timeout=settings.timeout,
        )

    # ------------------------------------------------------------------ #
    # AuthProvider interface
    # ------------------------------------------------------------------ #

    def apply(self, request: httpx.Request) -> None:
        """Refresh the token if needed, then set the ``Authorization`` header.

        Raises:
            AuthenticationError: If the refresh fails or no access token is
                available afterwards. The request is left untouched.
        """
        with self._lock:
            if self._is_expired_locked():
                self._refresh_locked()
            token = self._token
            if token is None or not token.access_token:
                raise AuthenticationError("no access token available")
            token_type = token.token_type or "Bearer"
            request.headers["Authorization"] = f"{token_type} {token.access_token}"

    def is_expired(self) -> bool:
        with self._lock:
            return self._is_expired_locked()

    def refresh(self) -> None:
        """Request a new token now, regardless of the current one's expiry.

        Raises:
            AuthenticationError: If the token request fails.
        """
        with self._lock:
            self._refresh_locked()

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def token(self) -> Optional[OAuthToken]:
        """A copy of the currently held token, if any."""
        with self._lock:
            return self._token.model_copy() if self._token is not None else None

    @property
    def token_url(self) -> str:
        return self._instance_url + TOKEN_PATH

    # ------------------------------------------------------------------ #
    # Internals (callers hold self._lock)
    # ------------------------------------------------------------------ #

    def _grant_data(self) -> dict[str, str]:
        raise NotImplementedError

    def _is_expired_locked(self) -> bool:
        token = self._token
        if token is None or not token.access_token or token.expires_at is None:
            return True
        return self._clock() >= token.expires_at - EXPIRY_BUFFER

    def _refresh_locked(self) -> None:
        data = self._grant_data()
        issued_at = self._clock()
        token = self._request_token(data).stamped(issued_at)

        previous = self._token
        if not token.refresh_token and previous is not None and previous.refresh_token:
            token = token.model_copy(update={"refresh_token": previous.refresh_token})

        self._token = token
        logger.debug(
            "Obtained %s token for %s (expires in %ss)",
            self.flow,
            self._instance_url,
            token.expires_in,
        )
        self._persist(token)

    def _request_token(self, data: dict[str, str]) -> OAuthToken:
        """POST *data* to the token endpoint and decode the response.

        Raises:
            AuthenticationError: On transport errors, non-2xx responses,
                undecodable bodies, or a response without ``access_token``.
        """
        try:
            response = self._http.post(
                self.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"token request failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"token request failed: {response.status_code} "
                f"{response.reason_phrase} - {response.text}",
                status_code=response.status_code,
            )

        try:
            token = OAuthToken.model_validate(response.json())
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            raise AuthenticationError(f"failed to decode token response: {exc}") from exc

        if not token.access_token:
            raise AuthenticationError("token response missing 'access_token' field")
        return token

    def _load_persisted(self) -> Optional[OAuthToken]:
        if self._token_store is None:
            return None
        try:
            token = self._token_store.load(self.storage_key)
        except TokenStoreError as exc:
            logger.warning("Ignoring unreadable persisted token: %s", exc)
            return None
        if token is not None and token.expires_at is None:
            # Files written without an expiry stamp are assumed freshly issued.
            token = token.stamped(self._clock())
        return token

    def _persist(self, token: OAuthToken) -> None:
        if self._token_store is None:
            return
        try:
            self._token_store.save(self.storage_key, token)
        except Exception as exc:  # noqa: BLE001 -- persistence is best-effort
            logger.warning("Failed to save token to storage: %s", exc)


class OAuthClientCredentialsProvider(OAuthProvider):
    """OAuth2 Client Credentials grant."""

    flow = "oauth_cc"

    @property
    def auth_type(self) -> AuthType:
        return AuthType.OAUTH_CLIENT_CREDENTIALS

    def _grant_data(self) -> dict[str, str]:
        return {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }


class OAuthAuthorizationCodeProvider(OAuthProvider):
    """OAuth2 refresh-token grant seeded from an authorization-code login.

    Args:
        refresh_token: Initial refresh token. Used only when no token is
            persisted for this provider's storage key.
        **kwargs: Forwarded to :class:`OAuthProvider`.
    """

    flow = "oauth_ac"

    def __init__(
        self,
        instance_url: str,
        client_id: str,
        client_secret: str,
        refresh_token: Optional[str] = None,
        **kwargs,
    ) -> None:
        super().__init__(instance_url, client_id, client_secret, **kwargs)
        if self._token is None and refresh_token:
            self._token = OAuthToken(refresh_token=refresh_token)

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        *,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> OAuthAuthorizationCodeProvider:
        return cls(
            settings.instance_url,
            settings.client_id or "",
            settings.client_secret or "",
            refresh_token=settings.refresh_token,
            token_store=token_store,
            http_client=http_client,
            timeout=settings.timeout,
        )

    @property
    def auth_type(self) -> AuthType:
        return AuthType.OAUTH_AUTH_CODE

    def _grant_data(self) -> dict[str, str]:
        token = self._token
        if token is None or not token.refresh_token:
            raise AuthenticationError("no refresh token available")
        return {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
