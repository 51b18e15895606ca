"""API key authentication provider.

ServiceNow API keys (created under *REST API Key* in the instance) are sent
in the ``x-sn-apikey`` header. They never expire locally, although the
instance can revoke them at any time; a revoked key surfaces as an
:class:`~snowkit.exceptions.AuthenticationError` from the instance.
"""

from __future__ import annotations

import httpx

from snowkit.auth.base import AuthProvider
from snowkit.exceptions import ValidationError
from snowkit.models import AuthType, ClientSettings

API_KEY_HEADER = "x-sn-apikey"


class APIKeyAuthProvider(AuthProvider):
    """Authenticate with a static API key."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key

    @classmethod
    def from_settings(cls, settings: ClientSettings, **_: object) -> APIKeyAuthProvider:
        return cls(settings.api_key or "")

    @property
    def auth_type(self) -> AuthType:
        return AuthType.API_KEY

    def apply(self, request: httpx.Request) -> None:
        """Set the ``x-sn-apikey`` header.

        Raises:
            ValidationError: If the key is empty.
        """
        if not self._api_key:
            raise ValidationError("API key is required")
        request.headers[API_KEY_HEADER] = self._api_key
