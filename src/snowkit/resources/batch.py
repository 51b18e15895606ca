"""Batch API client (``/api/now/batch``).

Several REST calls travel in one POST. Each sub-request carries its own
``id`` and base64-encoded body, and the instance answers with a list of
serviced requests (with base64-encoded bodies) and a list of requests it
could not service. The whole batch earns a single rate-limit permit.

Example::

    batch = sn.batch().new_batch()
    batch.create("c1", "incident", {"short_description": "Disk full"})
    batch.delete("d1", "incident", "9d38...")
    result = batch.execute()
    if result.has_errors:
        ...
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field

from snowkit.client.core import API_PATH, ServiceNowClient
from snowkit.exceptions import UnknownError, ValidationError

logger = logging.getLogger(__name__)

BATCH_METHODS = ("GET", "POST", "PATCH", "PUT", "DELETE")

_JSON_HEADERS = [
    {"name": "Content-Type", "value": "application/json"},
    {"name": "Accept", "value": "application/json"},
]


# ------------------------------------------------------------------ #
# Wire models
# ------------------------------------------------------------------ #


class BatchHeader(BaseModel):
    name: str
    value: str


class RestRequest(BaseModel):
    """One sub-request. ``body`` is base64-encoded."""

    id: str
    url: str
    method: str
    headers: list[BatchHeader] = Field(default_factory=list)
    body: Optional[str] = None
    exclude_response_headers: bool = True


class RequestResult(BaseModel):
    """A serviced sub-request. ``data`` is the decoded JSON body, if any."""

    id: str
    status_code: int
    status_text: str = ""
    data: Any = None
    execution_time: int = Field(default=0, description="Milliseconds.")

    @property
    def record(self) -> Any:
        """The ``result`` member of the body, or the body itself."""
        if isinstance(self.data, dict) and "result" in self.data:
            return self.data["result"]
        return self.data


class RequestError(BaseModel):
    """A sub-request the instance did not service."""

    id: str
    status_code: int = 0
    status_text: str = ""
    error_detail: str = ""


class BatchResult(BaseModel):
    batch_request_id: str
    results: dict[str, RequestResult] = Field(default_factory=dict)
    errors: dict[str, RequestError] = Field(default_factory=dict)

    @property
    def successful(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def total(self) -> int:
        return self.successful + self.failed

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def is_success(self, request_id: str) -> bool:
        return request_id in self.results


def _encode(data: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(data).encode()).decode("ascii")


def parse_batch_response(payload: dict[str, Any]) -> BatchResult:
    """Decode the serviced and unserviced request lists of a batch response.

    Raises:
        UnknownError: If a serviced body is not valid base64.
    """
    result = BatchResult(batch_request_id=str(payload.get("batch_request_id", "")))
    for item in payload.get("serviced_requests") or []:
        data: Any = None
        body = item.get("body") or ""
        if body:
            try:
                raw = base64.b64decode(body, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise UnknownError(
                    f"failed to decode response body for request {item.get('id')}: {exc}",
                    status_code=200,
                ) from exc
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                data = raw.decode("utf-8", errors="replace")
        served = RequestResult.model_validate({**item, "data": data})
        result.results[served.id] = served
    for item in payload.get("unserviced_requests") or []:
        failed = RequestError.model_validate(item)
        result.errors[failed.id] = failed
    return result


# ------------------------------------------------------------------ #
# Builder and client
# ------------------------------------------------------------------ #


class BatchBuilder:
    """Collects sub-requests and sends them as one batch.

    Args:
        client: The request core.
        request_id: Batch id echoed back by the instance. Generated if omitted.
        enforce_order: Ask the instance to run the sub-requests in order.
    """

    def __init__(
        self,
        client: ServiceNowClient,
        request_id: Optional[str] = None,
        enforce_order: bool = False,
    ) -> None:
        self._client = client
        self.request_id = request_id or f"batch_{uuid.uuid4().hex}"
        self.enforce_order = enforce_order
        self._requests: list[RestRequest] = []

    def __len__(self) -> int:
        return len(self._requests)

    @property
    def requests(self) -> list[RestRequest]:
        return list(self._requests)

    def add(self, request: RestRequest) -> BatchBuilder:
        if request.method.upper() not in BATCH_METHODS:
            raise ValidationError(f"unsupported batch method: {request.method}")
        if any(existing.id == request.id for existing in self._requests):
            raise ValidationError(f"duplicate batch request id: {request.id}")
        self._requests.append(request)
        return self

    def get(self, request_id: str, url: str) -> BatchBuilder:
        """Add a GET of *url*, a path such as ``/api/now/table/incident/<sys_id>``."""
        return self.add(
            RestRequest(
                id=request_id,
                url=url,
                method="GET",
                headers=[BatchHeader(name="Accept", value="application/json")],
            )
        )

    def create(self, request_id: str, table: str, data: dict[str, Any]) -> BatchBuilder:
        return self._with_body(request_id, "POST", _table_url(table), data)

    def update(
        self, request_id: str, table: str, sys_id: str, data: dict[str, Any]
    ) -> BatchBuilder:
        return self._with_body(request_id, "PATCH", _table_url(table, sys_id), data)

    def replace(
        self, request_id: str, table: str, sys_id: str, data: dict[str, Any]
    ) -> BatchBuilder:
        return self._with_body(request_id, "PUT", _table_url(table, sys_id), data)

    def delete(self, request_id: str, table: str, sys_id: str) -> BatchBuilder:
        return self.add(RestRequest(id=request_id, url=_table_url(table, sys_id), method="DELETE"))

    def execute(self, *, cancel: Optional[threading.Event] = None) -> BatchResult:
        """Send the batch.

        Raises:
            ValidationError: If no sub-request was added.
        """
        if not self._requests:
            raise ValidationError("batch request cannot be empty")
        payload = {
            "batch_request_id": self.request_id,
            "enforce_order": self.enforce_order,
            "rest_requests": [r.model_dump(exclude_none=True) for r in self._requests],
        }
        logger.debug("Sending batch %s with %d requests", self.request_id, len(self._requests))
        response = self._client.execute("POST", "/batch", body=payload, cancel=cancel)
        return parse_batch_response(response or {})

    def _with_body(
        self, request_id: str, method: str, url: str, data: dict[str, Any]
    ) -> BatchBuilder:
        return self.add(
            RestRequest(
                id=request_id,
                url=url,
                method=method,
                headers=[BatchHeader(**h) for h in _JSON_HEADERS],
                body=_encode(data),
            )
        )


def _table_url(table: str, sys_id: Optional[str] = None) -> str:
    if not table:
        raise ValidationError("table name is required")
    url = f"{API_PATH}/table/{table}"
    return f"{url}/{sys_id}" if sys_id else url


class BatchClient:
    """Table operations bundled into single Batch API calls."""

    def __init__(self, client: ServiceNowClient) -> None:
        self._client = client

    def new_batch(
        self, request_id: Optional[str] = None, enforce_order: bool = False
    ) -> BatchBuilder:
        return BatchBuilder(self._client, request_id, enforce_order)

    def create_multiple(
        self, table: str, records: list[dict[str, Any]], **kwargs: Any
    ) -> BatchResult:
        """Create *records*; sub-request ids are ``create_1``, ``create_2``, ..."""
        batch = self.new_batch()
        for i, record in enumerate(records, start=1):
            batch.create(f"create_{i}", table, record)
        return batch.execute(**kwargs)

    def update_multiple(
        self, table: str, updates: dict[str, dict[str, Any]], **kwargs: Any
    ) -> BatchResult:
        """Patch records keyed by ``sys_id``; ids are ``update_1``, ... in mapping order."""
        batch = self.new_batch()
        for i, (sys_id, data) in enumerate(updates.items(), start=1):
            batch.update(f"update_{i}", table, sys_id, data)
        return batch.execute(**kwargs)

    def delete_multiple(self, table: str, sys_ids: list[str], **kwargs: Any) -> BatchResult:
        batch = self.new_batch()
        for i, sys_id in enumerate(sys_ids, start=1):
            batch.delete(f"delete_{i}", table, sys_id)
        return batch.execute(**kwargs)

    def get_multiple(self, table: str, sys_ids: list[str], **kwargs: Any) -> BatchResult:
        batch = self.new_batch()
        for i, sys_id in enumerate(sys_ids, start=1):
            batch.get(f"get_{i}", _table_url(table, sys_id))
        return batch.execute(**kwargs)
