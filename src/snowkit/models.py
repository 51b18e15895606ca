"""Canonical Pydantic models shared across all snowkit modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into three groups:

**Credential models** -- :class:`OAuthToken`, persisted by the token store
and held by the OAuth auth providers.

**Execution policy models** -- :class:`EndpointType`, :class:`RateLimitConfig`,
and :class:`RetryPolicy`, which parameterise the rate limiter and the retry
executor.

**Configuration models** -- :class:`GlobalConfig` (serialised as JSON in the
user's config directory) and :class:`ClientSettings` (the fully resolved
settings a client is built from), plus the :class:`APIResponse` envelope
returned by the REST API.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from snowkit.exceptions import ErrorKind


# --- OAuth token ---


class OAuthToken(BaseModel):
    """Token material returned by ``/oauth_token.do``.

    The wire fields mirror the token endpoint response. ``expires_at`` is
    not sent by the instance; it is stamped when the token is received so
    that a token reloaded from disk keeps its real expiry instead of
    looking freshly issued.
    """

    access_token: str = ""
    token_type: str = ""
    expires_in: int = 0
    refresh_token: Optional[str] = None
    scope: str = ""
    expires_at: Optional[datetime] = Field(
        default=None, description="UTC time the access token stops being valid"
    )

    def stamped(self, issued_at: datetime) -> OAuthToken:
        """Return a copy whose ``expires_at`` is ``issued_at + expires_in``."""
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return self.model_copy(
            update={"expires_at": issued_at + timedelta(seconds=self.expires_in)}
        )


# --- Rate limiting ---


class EndpointType(str, enum.Enum):
    """Coarse endpoint class selecting an independent rate-limit bucket."""

    TABLE = "table"
    ATTACHMENT = "attachment"
    IMPORT = "import"
    DEFAULT = "default"


class RateLimitConfig(BaseModel):
    """Requests-per-second and burst capacity for each endpoint class.

    The defaults are conservative: attachment and import calls carry larger
    payloads and heavier server-side work than table reads, so their buckets
    are smaller and refill slower.
    """

    model_config = ConfigDict(frozen=True)

    table_rate: float = Field(default=5.0, ge=0)
    table_burst: int = Field(default=10, ge=0)
    attachment_rate: float = Field(default=2.0, ge=0)
    attachment_burst: int = Field(default=5, ge=0)
    import_rate: float = Field(default=1.0, ge=0)
    import_burst: int = Field(default=2, ge=0)
    default_rate: float = Field(default=3.0, ge=0)
    default_burst: int = Field(default=6, ge=0)

    def limits_for(self, endpoint: EndpointType) -> tuple[float, int]:
        """Return ``(rate, burst)`` for *endpoint*."""
        prefix = endpoint.value
        return getattr(self, f"{prefix}_rate"), getattr(self, f"{prefix}_burst")

    @classmethod
    def conservative(cls) -> RateLimitConfig:
        """Slower buckets for busy production instances."""
        return cls(
            table_rate=2.0,
            table_burst=5,
            attachment_rate=1.0,
            attachment_burst=2,
            import_rate=0.5,
            import_burst=1,
            default_rate=1.5,
            default_burst=3,
        )

    @classmethod
    def aggressive(cls) -> RateLimitConfig:
        """Faster buckets for higher throughput against dedicated instances."""
        return cls(
            table_rate=10.0,
            table_burst=20,
            attachment_rate=5.0,
            attachment_burst=10,
            import_rate=2.0,
            import_burst=5,
            default_rate=7.0,
            default_burst=15,
        )

    @classmethod
    def preset(cls, name: str) -> RateLimitConfig:
        """Look up a preset by name (``default``, ``conservative``, ``aggressive``)."""
        if name == "conservative":
            return cls.conservative()
        if name == "aggressive":
            return cls.aggressive()
        return cls()


# --- Retry ---


class RetryPolicy(BaseModel):
    """Bounded exponential back-off parameters for one call.

    Delays are in seconds. ``retry_on`` lists the error kinds worth
    re-attempting; anything else surfaces on the first failure.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    retry_on: frozenset[ErrorKind] = frozenset(
        {ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.SERVER}
    )


# --- Configuration ---


RateLimitPreset = Literal["default", "conservative", "aggressive"]
RetryPreset = Literal["default", "minimal", "aggressive"]


class GlobalConfig(BaseModel):
    """User-wide configuration persisted at ``~/.config/snowkit/config.json``.

    Loaded and saved by :func:`~snowkit.config.load_global_config` and
    :func:`~snowkit.config.save_global_config`. Fields here have the
    lowest precedence; environment variables and CLI flags override them.
    Secrets are never stored here.
    """

    instance_url: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    rate_limit_preset: RateLimitPreset = "default"
    retry_preset: RetryPreset = "default"
    token_dir: Optional[str] = Field(
        default=None, description="Override for the OAuth token directory"
    )


class AuthType(str, enum.Enum):
    """Authentication flows supported by the SDK."""

    BASIC = "basic"
    API_KEY = "api_key"
    OAUTH_CLIENT_CREDENTIALS = "oauth_client_credentials"
    OAUTH_AUTH_CODE = "oauth_auth_code"


class ClientSettings(BaseModel):
    """Fully resolved settings used to build a client.

    Produced by :func:`~snowkit.config.resolve_settings` from CLI flags,
    ``SERVICENOW_*`` environment variables, and the global config.
    """

    instance_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = Field(default=30.0, gt=0)
    rate_limit_preset: RateLimitPreset = "default"
    retry_preset: RetryPreset = "default"
    token_dir: Optional[str] = None

    @field_validator("instance_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("instance_url must not be empty")
        return value

    def auth_type(self) -> Optional[AuthType]:
        """Pick the auth flow implied by the populated credentials.

        Precedence: basic (username and password), API key, OAuth
        authorization code (client id, secret and refresh token), OAuth
        client credentials (client id and secret).

        Returns:
            The selected :class:`AuthType`, or ``None`` when no complete set
            of credentials is present.
        """
        if self.username and self.password:
            return AuthType.BASIC
        if self.api_key:
            return AuthType.API_KEY
        if self.client_id and self.client_secret and self.refresh_token:
            return AuthType.OAUTH_AUTH_CODE
        if self.client_id and self.client_secret:
            return AuthType.OAUTH_CLIENT_CREDENTIALS
        return None


class APIResponse(BaseModel):
    """The ``{"result": ..., "error": ...}`` envelope of the REST API."""

    model_config = ConfigDict(extra="allow")

    result: Any = None
    error: Any = None
