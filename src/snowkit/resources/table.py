"""Table API client (``/api/now/table/{table}``)."""

from __future__ import annotations

import threading
from typing import Any, Optional

from snowkit.client.core import ServiceNowClient
from snowkit.exceptions import ValidationError
from snowkit.models import APIResponse

DISPLAY_VALUES = ("true", "false", "all")


def unwrap_result(payload: Any) -> Any:
    """Return the ``result`` member of a ``{"result": ...}`` envelope."""
    if payload is None:
        return None
    if isinstance(payload, dict) and "result" in payload:
        return APIResponse.model_validate(payload).result
    return payload


class TableClient:
    """CRUD operations on one table.

    Args:
        client: The request core.
        table: Table name, e.g. ``incident``.
    """

    def __init__(self, client: ServiceNowClient, table: str) -> None:
        if not table:
            raise ValidationError("table name is required")
        self._client = client
        self._table = table

    @property
    def name(self) -> str:
        return self._table

    @property
    def path(self) -> str:
        return f"/table/{self._table}"

    def list(
        self,
        query: Optional[str] = None,
        fields: Optional[list[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        display_value: Optional[str] = None,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> list[dict[str, Any]]:
        """List records.

        Args:
            query: Encoded query (``sysparm_query``), e.g. ``active=true^priority=1``.
            fields: Field names to return (``sysparm_fields``).
            limit: Maximum number of records (``sysparm_limit``).
            offset: Records to skip (``sysparm_offset``).
            display_value: ``"true"``, ``"false"``, or ``"all"``.
            cancel: Aborts waits when set.

        Returns:
            The matching records.
        """
        params: dict[str, str] = {}
        if query:
            params["sysparm_query"] = query
        if fields:
            params["sysparm_fields"] = ",".join(fields)
        if limit is not None:
            params["sysparm_limit"] = str(limit)
        if offset is not None:
            params["sysparm_offset"] = str(offset)
        if display_value is not None:
            if display_value not in DISPLAY_VALUES:
                raise ValidationError(
                    f"display_value must be one of {', '.join(DISPLAY_VALUES)}"
                )
            params["sysparm_display_value"] = display_value

        result = unwrap_result(self._client.execute("GET", self.path, params=params, cancel=cancel))
        return result or []

    def get(self, sys_id: str, *, cancel: Optional[threading.Event] = None) -> dict[str, Any]:
        """Fetch one record by ``sys_id``."""
        return unwrap_result(self._client.execute("GET", self._record_path(sys_id), cancel=cancel))

    def create(
        self, record: dict[str, Any], *, cancel: Optional[threading.Event] = None
    ) -> dict[str, Any]:
        """Insert a record and return it as stored."""
        return unwrap_result(self._client.execute("POST", self.path, body=record, cancel=cancel))

    def update(
        self,
        sys_id: str,
        record: dict[str, Any],
        *,
        cancel: Optional[threading.Event] = None,
    ) -> dict[str, Any]:
        """Patch the given fields of a record."""
        return unwrap_result(
            self._client.execute("PATCH", self._record_path(sys_id), body=record, cancel=cancel)
        )

    def delete(self, sys_id: str, *, cancel: Optional[threading.Event] = None) -> None:
        self._client.execute("DELETE", self._record_path(sys_id), cancel=cancel)

    def _record_path(self, sys_id: str) -> str:
        if not sys_id:
            raise ValidationError("sys_id is required")
        return f"{self.path}/{sys_id}"
