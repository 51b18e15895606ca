"""Request command -- call any REST endpoint through the request core.

Example::

    snowkit request GET /table/incident --param sysparm_limit=5
    snowkit request POST /table/incident --body '{"short_description": "Printer on fire"}'
    snowkit request GET /incident.do --root --xml --param sys_id=abc123
"""

from __future__ import annotations

import json
from typing import Any, Optional

import typer

from snowkit.client.response import FORMAT_JSON, FORMAT_XML
from snowkit.commands.common import cli_errors, connect, parse_pairs
from snowkit.output import debug, format_response

_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")


def request_command(
    ctx: typer.Context,
    method: str = typer.Argument(help="HTTP method: GET, POST, PUT, PATCH, DELETE."),
    path: str = typer.Argument(help="Path under /api/now (or the instance root with --root)."),
    param: Optional[list[str]] = typer.Option(
        None, "--param", "-p", help="Query parameter as key=value. Repeatable."
    ),
    body: Optional[str] = typer.Option(None, "--body", "-b", help="JSON request body."),
    root: bool = typer.Option(
        False, "--root", help="Resolve PATH against the instance root instead of /api/now."
    ),
    xml: bool = typer.Option(False, "--xml", help="Request and decode an XML response."),
) -> None:
    """Send a request and print the decoded response."""
    method = method.upper()
    if method not in _METHODS:
        raise typer.BadParameter(
            f"must be one of {', '.join(_METHODS)}", param_hint="METHOD"
        )
    params = parse_pairs(param or [], "--param")
    payload: Any = None
    if body is not None:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise typer.BadParameter(f"invalid JSON: {exc}", param_hint="--body") from None
    fmt = FORMAT_XML if xml else FORMAT_JSON

    with cli_errors(), connect(ctx) as sn:
        debug(f"{method} {path} params={params}")
        execute = sn.core.execute_root if root else sn.core.execute
        result = execute(method, path, body=payload, params=params or None, fmt=fmt)
        format_response(result)
