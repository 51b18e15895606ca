"""Aggregate API client (``/api/now/stats/{table}``).

The Aggregate API computes count, sum, avg, min, and max over the records
matching an encoded query, optionally grouped by one or more fields:

    GET /api/now/stats/incident?sysparm_count=true&sysparm_group_by=priority

An ungrouped call answers with a single stats object::

    {"result": {"stats": {"count": "42", "avg": {"reassignment_count": "1.5"}}}}

A grouped call answers with one entry per group::

    {"result": [{"stats": {"count": "3"},
                 "groupby_fields": [{"field": "priority", "value": "1"}]}]}

Numbers arrive as strings; :class:`StatsGroup` converts them.
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from snowkit.client.core import ServiceNowClient
from snowkit.exceptions import UnknownError, ValidationError
from snowkit.resources.table import unwrap_result

_AGGREGATES = ("avg", "sum", "min", "max")


def _blank_to_none(value: Any) -> Any:
    return None if value == "" else value


class StatsGroup(BaseModel):
    """Aggregates for one group (or for the whole query when ungrouped)."""

    count: Optional[int] = None
    avg: dict[str, Optional[float]] = Field(default_factory=dict)
    sum: dict[str, Optional[float]] = Field(default_factory=dict)
    min: dict[str, Optional[float]] = Field(default_factory=dict)
    max: dict[str, Optional[float]] = Field(default_factory=dict)
    group_by: dict[str, str] = Field(
        default_factory=dict, description="Grouping field name to its value."
    )

    @field_validator("count", mode="before")
    @classmethod
    def _blank_count(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("avg", "sum", "min", "max", mode="before")
    @classmethod
    def _blank_values(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _blank_to_none(v) for k, v in value.items()}
        return value

    @classmethod
    def from_entry(cls, entry: dict[str, Any]) -> StatsGroup:
        """Build a group from one ``{"stats": ..., "groupby_fields": ...}`` entry."""
        stats = dict(entry.get("stats") or {})
        groups = {
            item["field"]: item.get("value", "")
            for item in entry.get("groupby_fields") or []
            if isinstance(item, dict) and "field" in item
        }
        return cls.model_validate({**stats, "group_by": groups})


class AggregateClient:
    """Statistics over one table.

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
    def path(self) -> str:
        return f"/stats/{self._table}"

    def stats(
        self,
        query: Optional[str] = None,
        *,
        count: bool = False,
        avg_fields: Sequence[str] = (),
        sum_fields: Sequence[str] = (),
        min_fields: Sequence[str] = (),
        max_fields: Sequence[str] = (),
        group_by: Sequence[str] = (),
        having: Optional[str] = None,
        order_by: Sequence[str] = (),
        display_value: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> list[StatsGroup]:
        """Run an aggregate query.

        Args:
            query: Encoded query selecting the records (``sysparm_query``).
            count: Include the record count.
            avg_fields: Fields to average.
            sum_fields: Fields to sum.
            min_fields: Fields to take the minimum of.
            max_fields: Fields to take the maximum of.
            group_by: Fields to group by. Each group becomes one result entry.
            having: Condition on aggregates, e.g. ``count^priority^>^5``.
            order_by: Fields or aggregates to order the groups by.
            display_value: ``"true"``, ``"false"``, or ``"all"`` for group values.
            cancel: Aborts waits when set.

        Returns:
            One :class:`StatsGroup` per group, or a single one when ungrouped.

        Raises:
            ValidationError: If no aggregate is requested.
        """
        fields = {
            "avg": avg_fields,
            "sum": sum_fields,
            "min": min_fields,
            "max": max_fields,
        }
        if not count and not any(fields.values()):
            raise ValidationError("request count or at least one aggregate field")

        params: dict[str, str] = {}
        if query:
            params["sysparm_query"] = query
        if count:
            params["sysparm_count"] = "true"
        for name in _AGGREGATES:
            if fields[name]:
                params[f"sysparm_{name}_fields"] = ",".join(fields[name])
        if group_by:
            params["sysparm_group_by"] = ",".join(group_by)
        if having:
            params["sysparm_having"] = having
        if order_by:
            params["sysparm_order_by"] = ",".join(order_by)
        if display_value is not None:
            params["sysparm_display_value"] = display_value

        result = unwrap_result(
            self._client.execute("GET", self.path, params=params, cancel=cancel)
        )
        if result is None:
            return []
        if isinstance(result, dict):
            return [StatsGroup.from_entry(result)]
        if isinstance(result, list):
            return [StatsGroup.from_entry(entry) for entry in result if isinstance(entry, dict)]
        raise UnknownError(f"unexpected aggregate response: {result!r}", status_code=200)

    def count(self, query: Optional[str] = None, **kwargs: Any) -> int:
        """Return the number of records matching *query*."""
        groups = self.stats(query, count=True, **kwargs)
        if not groups or groups[0].count is None:
            raise UnknownError("count not found in aggregate result", status_code=200)
        return groups[0].count

    def count_by(self, field: str, query: Optional[str] = None, **kwargs: Any) -> dict[str, int]:
        """Return record counts keyed by the value of *field*."""
        groups = self.stats(query, count=True, group_by=[field], **kwargs)
        return {g.group_by.get(field, ""): g.count or 0 for g in groups}

    def sum(self, field: str, query: Optional[str] = None, **kwargs: Any) -> Optional[float]:
        return self._single("sum", field, query, kwargs)

    def avg(self, field: str, query: Optional[str] = None, **kwargs: Any) -> Optional[float]:
        return self._single("avg", field, query, kwargs)

    def min_max(
        self, field: str, query: Optional[str] = None, **kwargs: Any
    ) -> tuple[Optional[float], Optional[float]]:
        """Return the minimum and maximum of *field* in one request."""
        groups = self.stats(query, min_fields=[field], max_fields=[field], **kwargs)
        if not groups:
            return None, None
        return groups[0].min.get(field), groups[0].max.get(field)

    def _single(
        self, aggregate: str, field: str, query: Optional[str], kwargs: dict[str, Any]
    ) -> Optional[float]:
        groups = self.stats(query, **{f"{aggregate}_fields": [field]}, **kwargs)
        if not groups:
            return None
        return getattr(groups[0], aggregate).get(field)
