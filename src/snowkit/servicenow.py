"""High-level entry point bundling the request core and resource clients."""

from __future__ import annotations

from typing import Optional

import httpx

from snowkit import retry
from snowkit.auth.manager import create_default_manager
from snowkit.auth.token_store import FileTokenStore, TokenStore
from snowkit.client.core import ServiceNowClient
from snowkit.models import ClientSettings, RateLimitConfig
from snowkit.resources import (
    AggregateClient,
    AttachmentClient,
    BatchClient,
    ImportSetClient,
    TableClient,
)


class ServiceNow:
    """Facade over one :class:`~snowkit.client.ServiceNowClient`.

    Example::

        settings = resolve_settings(instance_url="https://dev1.service-now.com",
                                    username="admin", password="pw")
        with ServiceNow.from_settings(settings) as sn:
            for row in sn.table("incident").list(limit=5):
                print(row["number"])
    """

    def __init__(self, core: ServiceNowClient) -> None:
        self._core = core

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        token_store: Optional[TokenStore] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> ServiceNow:
        """Build the auth provider and request core described by *settings*.

        Args:
            settings: Resolved settings (see :func:`snowkit.config.resolve_settings`).
            token_store: OAuth token persistence. Defaults to a
                :class:`~snowkit.auth.token_store.FileTokenStore` in
                ``settings.token_dir`` or the XDG data directory.
            http_client: Shared transport for API and token requests.

        Raises:
            ConfigError: If *settings* hold no usable credentials.
        """
        if token_store is None:
            token_store = FileTokenStore(settings.token_dir)
        auth = create_default_manager().create(
            settings, token_store=token_store, http_client=http_client
        )
        core = ServiceNowClient(
            settings.instance_url,
            auth,
            timeout=settings.timeout,
            retry_policy=retry.policy_for(settings.retry_preset),
            rate_limit=RateLimitConfig.preset(settings.rate_limit_preset),
            http_client=http_client,
        )
        return cls(core)

    @property
    def core(self) -> ServiceNowClient:
        return self._core

    def table(self, name: str) -> TableClient:
        return TableClient(self._core, name)

    def import_set(self) -> ImportSetClient:
        return ImportSetClient(self._core)

    def attachment(self) -> AttachmentClient:
        return AttachmentClient(self._core)

    def aggregate(self, table: str) -> AggregateClient:
        return AggregateClient(self._core, table)

    def batch(self) -> BatchClient:
        return BatchClient(self._core)

    def close(self) -> None:
        self._core.close()

    def __enter__(self) -> ServiceNow:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
