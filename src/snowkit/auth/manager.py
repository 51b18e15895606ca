"""Auth manager -- registry and factory for auth providers.

The :class:`AuthManager` maps each :class:`~snowkit.models.AuthType` to the
provider class implementing it and builds the right provider from resolved
:class:`~snowkit.models.ClientSettings`. The flow is picked by
:meth:`ClientSettings.auth_type() <snowkit.models.ClientSettings.auth_type>`.

For most use cases, call :func:`create_default_manager` to get a manager
pre-loaded with every built-in provider.

See Also:
    :class:`~snowkit.auth.base.AuthProvider` -- the provider interface.
    :class:`~snowkit.client.core.ServiceNowClient` -- calls
    :meth:`~snowkit.auth.base.AuthProvider.apply` on every attempt.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from snowkit.auth.base import AuthProvider
from snowkit.auth.token_store import TokenStore
from snowkit.exceptions import ConfigError
from snowkit.models import AuthType, ClientSettings

logger = logging.getLogger(__name__)

NO_CREDENTIALS_MESSAGE = (
    "No valid authentication credentials found. Provide one of:\n"
    "  - API Key: --api-key (or SERVICENOW_API_KEY)\n"
    "  - Basic Auth: --username and --password\n"
    "  - OAuth Client Credentials: --client-id and --client-secret\n"
    "  - OAuth Authorization Code: --client-id, --client-secret, and --refresh-token"
)


class AuthManager:
    """Registry of provider classes keyed by auth type.

    A registered class must expose a ``from_settings(settings, *,
    token_store=None, http_client=None)`` classmethod.

    Example::

        manager = create_default_manager()
        provider = manager.create(settings, token_store=FileTokenStore())
        client = ServiceNowClient(settings.instance_url, provider)
    """

    def __init__(self) -> None:
        self._providers: dict[AuthType, Any] = {}

    def register(self, auth_type: AuthType, provider_cls: Any) -> None:
        """Register *provider_cls* for *auth_type*, replacing any previous one."""
        self._providers[auth_type] = provider_cls

    def get_provider_class(self, auth_type: AuthType) -> Any:
        """Retrieve the provider class registered for *auth_type*.

        Raises:
            ConfigError: If nothing is registered for *auth_type*.
        """
        provider_cls = self._providers.get(auth_type)
        if provider_cls is None:
            available = ", ".join(t.value for t in self.list_types()) or "(none)"
            raise ConfigError(
                f"No auth provider registered for type '{auth_type.value}'. "
                f"Available types: {available}"
            )
        return provider_cls

    def create(
        self,
        settings: ClientSettings,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> AuthProvider:
        """Build the provider for the credentials present in *settings*.

        Args:
            settings: Resolved client settings.
            token_store: Persistence for OAuth tokens; ignored by static
                providers.
            http_client: Token-endpoint transport for OAuth providers.

        Returns:
            A ready-to-use :class:`~snowkit.auth.base.AuthProvider`.

        Raises:
            ConfigError: If *settings* hold no complete set of credentials.
        """
        auth_type = settings.auth_type()
        if auth_type is None:
            raise ConfigError(NO_CREDENTIALS_MESSAGE)
        logger.debug("Using %s authentication for %s", auth_type.value, settings.instance_url)
        provider_cls = self.get_provider_class(auth_type)
        return provider_cls.from_settings(
            settings, token_store=token_store, http_client=http_client
        )

    def list_types(self) -> list[AuthType]:
        """Return the registered auth types, sorted by value."""
        return sorted(self._providers, key=lambda t: t.value)


def create_default_manager() -> AuthManager:
    """Create an :class:`AuthManager` with every built-in provider registered.

    - ``basic`` -- :class:`~snowkit.auth.basic.BasicAuthProvider`
    - ``api_key`` -- :class:`~snowkit.auth.api_key.APIKeyAuthProvider`
    - ``oauth_client_credentials`` --
      :class:`~snowkit.auth.oauth.OAuthClientCredentialsProvider`
    - ``oauth_auth_code`` --
      :class:`~snowkit.auth.oauth.OAuthAuthorizationCodeProvider`
    """
    from snowkit.auth.api_key import APIKeyAuthProvider
    from snowkit.auth.basic import BasicAuthProvider
    from snowkit.auth.oauth import (
        OAuthAuthorizationCodeProvider,
        OAuthClientCredentialsProvider,
    )

    manager = AuthManager()
    manager.register(AuthType.BASIC, BasicAuthProvider)
    manager.register(AuthType.API_KEY, APIKeyAuthProvider)
    manager.register(AuthType.OAUTH_CLIENT_CREDENTIALS, OAuthClientCredentialsProvider)
    manager.register(AuthType.OAUTH_AUTH_CODE, OAuthAuthorizationCodeProvider)
    return manager
