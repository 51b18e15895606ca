"""HTTP request core for snowkit.

:class:`ServiceNowClient` wraps :class:`httpx.Client` with per-attempt rate
limiting, auth application, error classification, and retry with
exponential back-off.

Example::

    from snowkit.client import ServiceNowClient

    with ServiceNowClient(url, provider) as client:
        result = client.execute("GET", "/table/incident")
"""

from snowkit.client.core import API_PATH, ServiceNowClient

__all__ = ["API_PATH", "ServiceNowClient"]
