"""Import Set API client (``/api/now/import/{staging_table}``)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from snowkit.client.core import ServiceNowClient
from snowkit.exceptions import ValidationError
from snowkit.resources.table import unwrap_result


class ImportResult(BaseModel):
    """Outcome of :meth:`ImportSetClient.insert`.

    ``records`` holds one entry per inserted row, in input order: the
    ``result`` member of that row's response, whatever its shape.
    """

    staging_table: str
    records: list[Any] = Field(default_factory=list)


class ImportSetClient:
    """Load rows into import set staging tables and inspect the results."""

    def __init__(self, client: ServiceNowClient) -> None:
        self._client = client

    def insert(self, table: str, records: list[dict[str, Any]]) -> ImportResult:
        """Insert *records* into the staging *table*, one request per record.

        Each response carries the transform outcome for its row.

        Raises:
            ValidationError: If *records* is empty.
        """
        if not records:
            raise ValidationError("no records provided for import")

        inserted: list[Any] = []
        for record in records:
            inserted.append(
                unwrap_result(self._client.execute("POST", f"/import/{table}", body=record))
            )
        return ImportResult(staging_table=table, records=inserted)

    def get_import_set(self, sys_id: str) -> dict[str, Any]:
        return unwrap_result(self._client.execute("GET", f"/import/sys_import_set/{sys_id}"))

    def get_transform_results(self, sys_id: str) -> list[dict[str, Any]]:
        """Return the ``sys_transform_entry`` rows of an import set."""
        params = {"sysparm_query": f"import_set={sys_id}"}
        result = unwrap_result(
            self._client.execute("GET", "/table/sys_transform_entry", params=params)
        )
        return result or []
