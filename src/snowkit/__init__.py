"""snowkit -- a ServiceNow REST client SDK and CLI.

Every call goes through one request core that rate-limits per endpoint
class, applies credentials (Basic, API key, or OAuth with cached and
auto-refreshed tokens), classifies failures, and retries transient ones
with exponential back-off.

Typical usage::

    from snowkit import ServiceNow, resolve_settings

    with ServiceNow.from_settings(resolve_settings()) as sn:
        incidents = sn.table("incident").list(query="active=true", limit=10)

Modules:
    app: Typer application and CLI entry point.
    auth: Auth providers and OAuth token persistence.
    client: The request core (:class:`~snowkit.client.ServiceNowClient`).
    ratelimit: Token buckets per endpoint class.
    retry: Exponential back-off executor and policy presets.
    resources: Table, import set, and attachment clients.
    models: Pydantic models shared across the package.
    config: XDG-aware configuration and settings resolution.
    exceptions: Exception hierarchy with exit-code mapping.
"""

__version__ = "0.1.0"

from snowkit.config import resolve_settings  # noqa: E402
from snowkit.servicenow import ServiceNow  # noqa: E402

__all__ = ["ServiceNow", "__version__", "resolve_settings"]
