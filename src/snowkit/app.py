"""Typer application and CLI entry point for snowkit.

The root callback collects connection flags (instance, credentials,
timeout) and output flags, installs the global
:class:`~snowkit.output.OutputManager`, and stores the connection flags in
``ctx.obj["overrides"]`` where :func:`snowkit.commands.common.connect`
merges them with ``SERVICENOW_*`` environment variables and the global
config.

:func:`main` is the console-script entry point declared in
``pyproject.toml``. Unhandled :class:`~snowkit.exceptions.SnowkitError`
instances exit with their ``exit_code``; anything else writes a crash log
under the data directory.

See Also:
    :mod:`snowkit.config`: Settings precedence.
    :mod:`snowkit.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from typing import Optional

import click
import typer
from rich.console import Console
from rich.logging import RichHandler

from snowkit import __version__
from snowkit.commands.auth import auth_app
from snowkit.commands.config import config_app
from snowkit.commands.request import request_command
from snowkit.commands.table import table_app
from snowkit.exit_codes import EXIT_CANCELLED, EXIT_GENERIC_FAILURE, EXIT_SUCCESS

app = typer.Typer(
    name="snowkit",
    help="ServiceNow REST client with rate limiting, retries, and OAuth token caching.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("request")(request_command)
app.add_typer(table_app, name="table", help="Table record operations.")
app.add_typer(auth_app, name="auth", help="Authentication status and token management.")
app.add_typer(config_app, name="config", help="Configuration management.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"snowkit {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, no_color: bool) -> None:
    """Send ``snowkit`` library logs to stderr; DEBUG with ``--verbose``."""
    logger = logging.getLogger("snowkit")
    logger.handlers.clear()
    if no_color:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    else:
        handler = RichHandler(console=Console(stderr=True), show_path=False)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    instance: Optional[str] = typer.Option(
        None, "--instance", "-i", help="Instance URL, e.g. https://dev12345.service-now.com."
    ),
    username: Optional[str] = typer.Option(None, "--username", "-u", help="Basic auth user."),
    password: Optional[str] = typer.Option(None, "--password", help="Basic auth password."),
    client_id: Optional[str] = typer.Option(None, "--client-id", help="OAuth client ID."),
    client_secret: Optional[str] = typer.Option(
        None, "--client-secret", help="OAuth client secret."
    ),
    refresh_token: Optional[str] = typer.Option(
        None, "--refresh-token", help="OAuth refresh token (authorization code flow)."
    ),
    api_key: Optional[str] = typer.Option(None, "--api-key", help="REST API key."),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", min=0.1, help="Request timeout in seconds."
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-essential output."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug output."),
) -> None:
    """Root callback executed before every sub-command.

    Credentials not given as flags are read from ``SERVICENOW_*``
    environment variables.
    """
    from snowkit.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose)
    set_output(output)
    _configure_logging(verbose, no_color)

    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {
        "instance_url": instance,
        "username": username,
        "password": password,
        "client_id": client_id,
        "client_secret": client_secret,
        "refresh_token": refresh_token,
        "api_key": api_key,
        "timeout": timeout,
    }
    ctx.obj["verbose"] = verbose


def _write_crash_log() -> str:
    """Write the current traceback under ``<data_dir>/logs`` and return its path."""
    from snowkit.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``snowkit`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        rv = app(standalone_mode=False)
    except SystemExit:
        raise
    except (KeyboardInterrupt, click.exceptions.Abort):
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_CANCELLED)
    except click.ClickException as exc:
        exc.show()
        sys.exit(exc.exit_code)
    except Exception as exc:
        from snowkit.exceptions import SnowkitError
        from snowkit.output import error

        if isinstance(exc, SnowkitError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error. Debug log: {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)
    sys.exit(rv if isinstance(rv, int) else EXIT_SUCCESS)
