"""HTTP Basic authentication provider.

Sends ``Authorization: Basic base64(username:password)`` per :rfc:`7617`.
The credentials are static and never expire.
"""

from __future__ import annotations

import base64

import httpx

from snowkit.auth.base import AuthProvider
from snowkit.models import AuthType, ClientSettings


class BasicAuthProvider(AuthProvider):
    """Authenticate with a username and password."""

    def __init__(self, username: str, password: str) -> None:
        self._username = username
        self._password = password

    @classmethod
    def from_settings(cls, settings: ClientSettings, **_: object) -> BasicAuthProvider:
        return cls(settings.username or "", settings.password or "")

    @property
    def auth_type(self) -> AuthType:
        return AuthType.BASIC

    @property
    def username(self) -> str:
        return self._username

    def apply(self, request: httpx.Request) -> None:
        raw = f"{self._username}:{self._password}"
        encoded = base64.b64encode(raw.encode("utf-8")).decode("ascii")
        request.headers["Authorization"] = f"Basic {encoded}"
