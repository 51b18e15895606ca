"""Authentication providers and OAuth token persistence.

Four flows are supported -- HTTP Basic, API key, OAuth2 client credentials,
and OAuth2 refresh-token (authorization code) -- each as an
:class:`AuthProvider` that stamps credentials onto outgoing requests.

The main entry points are:

- :class:`AuthProvider` -- abstract base class for auth strategies.
- :class:`AuthManager` / :func:`create_default_manager` -- build the right
  provider from resolved :class:`~snowkit.models.ClientSettings`.
- :class:`FileTokenStore` -- on-disk OAuth token persistence.

Typical usage::

    from snowkit.auth import FileTokenStore, create_default_manager

    provider = create_default_manager().create(settings, token_store=FileTokenStore())
"""

from snowkit.auth.api_key import APIKeyAuthProvider
from snowkit.auth.base import AuthProvider
from snowkit.auth.basic import BasicAuthProvider
from snowkit.auth.manager import AuthManager, create_default_manager
from snowkit.auth.oauth import (
    OAuthAuthorizationCodeProvider,
    OAuthClientCredentialsProvider,
    OAuthProvider,
)
from snowkit.auth.token_store import (
    FileTokenStore,
    MemoryTokenStore,
    TokenStore,
    storage_key,
)

__all__ = [
    "APIKeyAuthProvider",
    "AuthManager",
    "AuthProvider",
    "BasicAuthProvider",
    "FileTokenStore",
    "MemoryTokenStore",
    "OAuthAuthorizationCodeProvider",
    "OAuthClientCredentialsProvider",
    "OAuthProvider",
    "TokenStore",
    "create_default_manager",
    "storage_key",
]
