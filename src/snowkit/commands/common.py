"""Helpers shared by the CLI sub-commands."""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator

import typer

from snowkit.config import resolve_settings
from snowkit.exceptions import ServiceNowError, SnowkitError
from snowkit.models import ClientSettings
from snowkit.output import error, suggest
from snowkit.servicenow import ServiceNow


def settings_from_context(ctx: typer.Context) -> ClientSettings:
    """Resolve settings from the root options stored in ``ctx.obj``."""
    overrides = (ctx.obj or {}).get("overrides", {})
    return resolve_settings(**overrides)


def connect(ctx: typer.Context) -> ServiceNow:
    """Build a :class:`~snowkit.servicenow.ServiceNow` for the current invocation.

    An ``httpx.Client`` placed in ``ctx.obj["http_client"]`` is used as the
    transport; otherwise each client creates its own.
    """
    settings = settings_from_context(ctx)
    return ServiceNow.from_settings(settings, http_client=(ctx.obj or {}).get("http_client"))


@contextmanager
def cli_errors() -> Iterator[None]:
    """Report :class:`~snowkit.exceptions.SnowkitError` and exit with its code."""
    try:
        yield
    except SnowkitError as exc:
        error(str(exc))
        if isinstance(exc, ServiceNowError) and exc.is_auth_error():
            suggest("Check your credentials, then run: snowkit auth status")
        raise typer.Exit(code=exc.exit_code) from None


def parse_pairs(values: list[str], option: str) -> dict[str, str]:
    """Parse repeated ``key=value`` options into a dict.

    Raises:
        typer.BadParameter: If a value has no ``=``.
    """
    pairs: dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got '{item}'", param_hint=option)
        pairs[key] = value
    return pairs


def parse_json_object(text: str, option: str) -> dict[str, Any]:
    """Parse a JSON object given on the command line.

    Raises:
        typer.BadParameter: If *text* is not a JSON object.
    """
    try:
        value = json.loads(text)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"invalid JSON: {exc}", param_hint=option) from None
    if not isinstance(value, dict):
        raise typer.BadParameter("expected a JSON object", param_hint=option)
    return value
