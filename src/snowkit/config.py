"""Configuration management with XDG paths, atomic writes, and precedence resolution.

This module handles all persistent configuration for snowkit:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.snowkit/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_token_dir`.
* **Global config** -- A single :class:`~snowkit.models.GlobalConfig`
  JSON file storing non-secret defaults (instance URL, timeout, presets).
* **Precedence resolution** -- :func:`resolve_settings` merges CLI flags,
  ``SERVICENOW_*`` environment variables, and the global config into the
  :class:`~snowkit.models.ClientSettings` a client is built from.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import json
import os
import platform
import tempfile
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from snowkit.exceptions import ConfigError
from snowkit.models import ClientSettings, GlobalConfig

_APP_NAME = "snowkit"
_CONFIG_FILENAME = "config.json"

ENV_PREFIX = "SERVICENOW_"

# Settings field -> environment variable suffix.
_ENV_FIELDS = {
    "instance_url": "INSTANCE_URL",
    "username": "USERNAME",
    "password": "PASSWORD",
    "client_id": "CLIENT_ID",
    "client_secret": "CLIENT_SECRET",
    "refresh_token": "REFRESH_TOKEN",
    "api_key": "API_KEY",
    "timeout": "TIMEOUT",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform follows XDG Base Directory conventions (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/snowkit/`` (default ``~/.config/snowkit/``).
    On macOS/Windows: ``~/.snowkit/``.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory, creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/snowkit/`` (default ``~/.local/share/snowkit/``).
    On macOS/Windows: ``~/.snowkit/data/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_token_dir() -> Path:
    """Return the default OAuth token directory (``<data_dir>/tokens``).

    The directory is created owner-only (``0o700``) because every file in
    it holds a live bearer token.
    """
    path = get_data_dir() / "tokens"
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so secrets are never briefly readable by others.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Global config ---


def global_config_path() -> Path:
    """Path to the global config file."""
    return get_config_dir() / _CONFIG_FILENAME


def load_global_config() -> GlobalConfig:
    """Load the global configuration from the XDG config directory.

    Returns:
        The deserialised :class:`~snowkit.models.GlobalConfig`. If the
        file does not exist, a default instance is returned.

    Raises:
        ConfigError: If the file exists but contains invalid JSON or fails
            Pydantic validation.
    """
    path = global_config_path()
    if not path.is_file():
        return GlobalConfig()
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return GlobalConfig.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid global config at {path}: {exc}") from exc


def save_global_config(config: GlobalConfig) -> None:
    """Persist the global configuration atomically to disk.

    Args:
        config: The configuration to save.
    """
    data = config.model_dump(mode="json")
    atomic_write(global_config_path(), json.dumps(data, indent=2) + "\n")


def set_global_config_value(key: str, value: str) -> GlobalConfig:
    """Update a single field of the global config and save it.

    Args:
        key: A :class:`~snowkit.models.GlobalConfig` field name.
        value: The new value as a string; Pydantic coerces it to the
            field's type. An empty string resets optional fields to ``None``.

    Returns:
        The saved configuration.

    Raises:
        ConfigError: If *key* is unknown or *value* fails validation.
    """
    if key not in GlobalConfig.model_fields:
        known = ", ".join(sorted(GlobalConfig.model_fields))
        raise ConfigError(f"Unknown config key '{key}'. Known keys: {known}")

    data = load_global_config().model_dump()
    data[key] = value if value != "" else None
    try:
        config = GlobalConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid value for '{key}': {exc}") from exc
    save_global_config(config)
    return config


# --- Precedence resolution ---


def _env_overrides() -> dict[str, Any]:
    """Collect non-empty ``SERVICENOW_*`` environment variables."""
    values: dict[str, Any] = {}
    for field_name, suffix in _ENV_FIELDS.items():
        value = os.environ.get(ENV_PREFIX + suffix)
        if value:
            values[field_name] = value
    return values


def resolve_settings(**cli_values: Any) -> ClientSettings:
    """Resolve client settings with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (keyword arguments whose value is not ``None``)
        2. Environment variables (``SERVICENOW_INSTANCE_URL``,
           ``SERVICENOW_USERNAME``, ``SERVICENOW_API_KEY``, ...)
        3. User config (``~/.config/snowkit/config.json``)
        4. Defaults

    Args:
        **cli_values: Values supplied on the command line, keyed by
            :class:`~snowkit.models.ClientSettings` field name.

    Returns:
        The validated :class:`~snowkit.models.ClientSettings`.

    Raises:
        ConfigError: If no instance URL can be found or a value is invalid.
    """
    # 4 + 3. Defaults and global config
    global_cfg = load_global_config()
    merged: dict[str, Any] = {
        k: v for k, v in global_cfg.model_dump().items() if v is not None
    }
    # 2. Environment variables
    merged.update(_env_overrides())
    # 1. CLI flags
    merged.update({k: v for k, v in cli_values.items() if v is not None})

    if not merged.get("instance_url"):
        raise ConfigError(
            "No instance URL configured. Pass --instance, set "
            f"{ENV_PREFIX}INSTANCE_URL, or run 'snowkit config set instance_url <url>'"
        )
    try:
        return ClientSettings.model_validate(merged)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid client settings: {exc}") from exc
