"""Abstract base class for authentication providers.

Every outbound request passes through exactly one :class:`AuthProvider`,
which stamps credentials onto the :class:`httpx.Request` just before it is
sent. Static providers (Basic, API key) simply set a header; OAuth
providers also track token expiry and refresh themselves against the
instance's token endpoint.

To implement a new auth strategy, subclass :class:`AuthProvider`, set the
:attr:`~AuthProvider.auth_type` property, and implement
:meth:`~AuthProvider.apply`. Override :meth:`~AuthProvider.is_expired` and
:meth:`~AuthProvider.refresh` for credentials with a lifetime.

See Also:
    :mod:`snowkit.auth.manager` for provider selection from settings.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx

from snowkit.models import AuthType


class AuthProvider(ABC):
    """Abstract base class for authentication providers.

    Providers are shared by every thread using a client, so implementations
    with mutable state must guard it themselves.
    """

    @property
    @abstractmethod
    def auth_type(self) -> AuthType:
        """Return the flow this provider implements."""
        ...

    @abstractmethod
    def apply(self, request: httpx.Request) -> None:
        """Stamp current credentials onto *request*.

        Implementations holding expiring credentials must refresh them
        first, and must leave the request untouched if that fails.

        Args:
            request: The outgoing request; its headers are mutated in place.

        Raises:
            AuthenticationError: If valid credentials cannot be produced.
            ValidationError: If the configured credentials are malformed.
        """
        ...

    def is_expired(self) -> bool:
        """Return whether the held credentials need a refresh.

        Static credentials never expire, so the default returns ``False``.
        """
        return False

    def refresh(self) -> None:
        """Obtain fresh credentials. A no-op for static credentials."""
        return None

    def close(self) -> None:
        """Release any resources (HTTP connections) the provider owns."""
        return None
