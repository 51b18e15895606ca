"""Auth commands -- inspect and manage the active credentials.

The active auth flow is chosen from the resolved settings (flags,
``SERVICENOW_*`` variables, global config). OAuth flows persist their
tokens under the token directory; these commands show, drop, or renew that
token.

Typical workflow::

    snowkit auth status     # which flow, and when the cached token expires
    snowkit auth refresh    # request a new token now and persist it
    snowkit auth logout     # delete the cached token
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer

from snowkit.auth import FileTokenStore, OAuthProvider, create_default_manager, storage_key
from snowkit.commands.common import cli_errors, connect, settings_from_context
from snowkit.models import ClientSettings
from snowkit.output import format_response, get_output, info, success, suggest

auth_app = typer.Typer(no_args_is_help=True)


def _oauth_key(settings: ClientSettings) -> Optional[str]:
    """Return the token storage key for *settings*, or ``None`` for static flows."""
    auth_type = settings.auth_type()
    if auth_type is None:
        return None
    provider_cls = create_default_manager().get_provider_class(auth_type)
    if not issubclass(provider_cls, OAuthProvider):
        return None
    return storage_key(provider_cls.flow, settings.instance_url, settings.client_id or "")


@auth_app.command("status")
def auth_status(ctx: typer.Context) -> None:
    """Show the selected auth flow and the cached OAuth token, if any."""
    with cli_errors():
        settings = settings_from_context(ctx)
        auth_type = settings.auth_type()
        status: dict[str, object] = {
            "instance_url": settings.instance_url,
            "auth_type": auth_type.value if auth_type else None,
        }
        key = _oauth_key(settings)
        if key is not None:
            token = FileTokenStore(settings.token_dir).load(key)
            status["token_key"] = key
            status["token_cached"] = token is not None
            if token is not None and token.expires_at is not None:
                status["expires_at"] = token.expires_at.isoformat()
                status["expired"] = token.expires_at <= datetime.now(timezone.utc)
                status["has_refresh_token"] = bool(token.refresh_token)

    format_response(status)
    if auth_type is None:
        suggest(
            "Provide credentials with --username/--password, --api-key, "
            "or --client-id/--client-secret"
        )


@auth_app.command("logout")
def auth_logout(ctx: typer.Context) -> None:
    """Delete the cached OAuth token for the active credentials."""
    with cli_errors():
        settings = settings_from_context(ctx)
        key = _oauth_key(settings)
        if key is None:
            info("The active auth flow does not cache tokens; nothing to do.")
            return
        FileTokenStore(settings.token_dir).delete(key)
    success(f"Removed cached token for {settings.instance_url}")


@auth_app.command("refresh")
def auth_refresh(ctx: typer.Context) -> None:
    """Request a new OAuth token now and persist it."""
    with cli_errors(), connect(ctx) as sn:
        provider = sn.core.auth
        if not isinstance(provider, OAuthProvider):
            info(f"{provider.auth_type.value} credentials do not expire; nothing to refresh.")
            return
        provider.refresh()
        token = provider.token
    expires = token.expires_at.isoformat() if token and token.expires_at else "unknown"
    success(f"Token refreshed (expires {expires})")
    get_output().debug(f"Token key: {provider.storage_key}")
