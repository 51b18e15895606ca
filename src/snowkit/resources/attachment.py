"""Attachment API client (``/api/now/attachment``)."""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Any, Optional

from snowkit.client.core import ServiceNowClient
from snowkit.client.response import FORMAT_RAW
from snowkit.exceptions import ValidationError
from snowkit.resources.table import unwrap_result

_INVALID_FILE_NAME_CHARS = '<>:"|?*/\\'
MAX_FILE_NAME_LENGTH = 255


def validate_file_name(file_name: str) -> None:
    """Reject names the instance will not store.

    Raises:
        ValidationError: If the name is empty, too long, or contains one of
            ``< > : " | ? * / \\``.
    """
    if not file_name:
        raise ValidationError("file name cannot be empty")
    for char in _INVALID_FILE_NAME_CHARS:
        if char in file_name:
            raise ValidationError(f"file name contains invalid character: {char}")
    if len(file_name) > MAX_FILE_NAME_LENGTH:
        raise ValidationError(
            f"file name too long (max {MAX_FILE_NAME_LENGTH} characters): {len(file_name)}"
        )


def guess_content_type(file_name: str) -> str:
    content_type, _ = mimetypes.guess_type(file_name)
    return content_type or "application/octet-stream"


class AttachmentClient:
    """List, upload, download, and delete record attachments."""

    def __init__(self, client: ServiceNowClient) -> None:
        self._client = client

    def list(
        self,
        table_sys_id: Optional[str] = None,
        table_name: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """List attachment metadata, optionally filtered to one record."""
        params: dict[str, str] = {}
        if table_name:
            params["table_name"] = table_name
        if table_sys_id:
            params["table_sys_id"] = table_sys_id
        result = unwrap_result(self._client.execute("GET", "/attachment", params=params))
        return result or []

    def get(self, sys_id: str) -> dict[str, Any]:
        """Fetch the metadata of one attachment."""
        return unwrap_result(self._client.execute("GET", f"/attachment/{sys_id}"))

    def download(self, sys_id: str) -> bytes:
        """Return the attachment content."""
        return self._client.execute("GET", f"/attachment/{sys_id}/file", fmt=FORMAT_RAW)

    def upload(
        self,
        table: str,
        table_sys_id: str,
        file_name: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> dict[str, Any]:
        """Attach *content* to the record ``table``/``table_sys_id``.

        Args:
            table: Table of the target record.
            table_sys_id: ``sys_id`` of the target record.
            file_name: Name shown on the record.
            content: File bytes.
            content_type: MIME type; guessed from *file_name* when omitted.

        Returns:
            The created attachment's metadata.

        Raises:
            ValidationError: If *file_name* is invalid.
        """
        validate_file_name(file_name)
        params = {
            "table_name": table,
            "table_sys_id": table_sys_id,
            "file_name": file_name,
        }
        headers = {"Content-Type": content_type or guess_content_type(file_name)}
        return unwrap_result(
            self._client.execute(
                "POST", "/attachment/file", params=params, content=content, headers=headers
            )
        )

    def upload_file(self, table: str, table_sys_id: str, path: Path | str) -> dict[str, Any]:
        """Upload the file at *path* under its own name."""
        path = Path(path)
        return self.upload(table, table_sys_id, path.name, path.read_bytes())

    def delete(self, sys_id: str) -> None:
        self._client.execute("DELETE", f"/attachment/{sys_id}")
