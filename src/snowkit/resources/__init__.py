"""Thin resource clients built on :class:`~snowkit.client.ServiceNowClient`."""

from snowkit.resources.aggregate import AggregateClient, StatsGroup
from snowkit.resources.attachment import AttachmentClient
from snowkit.resources.batch import BatchBuilder, BatchClient, BatchResult
from snowkit.resources.importset import ImportResult, ImportSetClient
from snowkit.resources.table import TableClient, unwrap_result

__all__ = [
    "AggregateClient",
    "AttachmentClient",
    "BatchBuilder",
    "BatchClient",
    "BatchResult",
    "ImportResult",
    "ImportSetClient",
    "StatsGroup",
    "TableClient",
    "unwrap_result",
]
