"""Config commands -- view and modify the global configuration.

Settings live in ``config.json`` in the snowkit config directory and hold
non-secret defaults: the instance URL, request timeout, and the rate-limit
and retry presets. Credentials are never written here; pass them as flags
or ``SERVICENOW_*`` environment variables.
"""

from __future__ import annotations

import typer

from snowkit.commands.common import cli_errors
from snowkit.config import (
    get_config_dir,
    load_global_config,
    save_global_config,
    set_global_config_value,
)
from snowkit.models import GlobalConfig
from snowkit.output import format_response, info, success

config_app = typer.Typer(no_args_is_help=True)


@config_app.command("show")
def config_show() -> None:
    """Show the current configuration.

    Example::

        snowkit config show
        snowkit --json config show
    """
    with cli_errors():
        config = load_global_config()
    info(f"Config directory: {get_config_dir()}")
    format_response(config.model_dump(mode="json"))


@config_app.command("set")
def config_set(
    key: str = typer.Argument(help="Config key, e.g. instance_url or retry_preset."),
    value: str = typer.Argument(help="Value to set. An empty string clears optional keys."),
) -> None:
    """Set a configuration value.

    Example::

        snowkit config set instance_url https://dev12345.service-now.com
        snowkit config set rate_limit_preset conservative
        snowkit config set timeout 60
    """
    with cli_errors():
        config = set_global_config_value(key, value)
    success(f"Set {key} = {getattr(config, key)}")


@config_app.command("reset")
def config_reset(
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt."),
) -> None:
    """Reset the configuration to defaults."""
    if not force and not typer.confirm("Reset all config to defaults?"):
        info("Cancelled.")
        raise typer.Exit()
    save_global_config(GlobalConfig())
    success("Configuration reset to defaults.")
