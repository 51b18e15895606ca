"""Persistent OAuth token storage.

OAuth providers persist every token they obtain so that the next process
can reuse it instead of hitting ``/oauth_token.do`` on startup. Tokens are
keyed by a storage key derived from the flow, the instance URL, and the
client ID (see :func:`storage_key`).

:class:`FileTokenStore` stores one JSON file per key under
``~/.local/share/snowkit/tokens/`` (XDG) or the platform-equivalent
directory. The directory is ``0o700`` and files are written atomically via
:func:`~snowkit.config.atomic_write` with ``0o600`` permissions so that
tokens are never readable by other users, even momentarily.

Concurrent writers to the same key from different processes are not
coordinated; a single owning process is assumed.
"""

from __future__ import annotations

import json
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from snowkit.config import atomic_write, get_token_dir
from snowkit.exceptions import TokenStoreError
from snowkit.models import OAuthToken

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def storage_key(flow: str, instance_url: str, client_id: str) -> str:
    """Derive the key a provider stores its token under.

    Args:
        flow: ``"oauth_cc"`` or ``"oauth_ac"``.
        instance_url: The instance base URL.
        client_id: The OAuth client ID.

    Returns:
        ``"{flow}_{instance_url}_{client_id}"``.
    """
    return f"{flow}_{instance_url.rstrip('/')}_{client_id}"


class TokenStore(ABC):
    """Storage backend for OAuth tokens."""

    @abstractmethod
    def save(self, key: str, token: OAuthToken) -> None:
        """Persist *token* under *key*, replacing any previous value.

        Raises:
            TokenStoreError: If the token cannot be written.
        """
        ...

    @abstractmethod
    def load(self, key: str) -> Optional[OAuthToken]:
        """Return the token stored under *key*, or ``None`` if there is none.

        Raises:
            TokenStoreError: If a stored token exists but cannot be read.
        """
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove the token stored under *key*. Missing keys are ignored."""
        ...


class FileTokenStore(TokenStore):
    """One JSON file per key in a private directory.

    Args:
        directory: Where to keep token files. Defaults to
            :func:`~snowkit.config.get_token_dir`.

    Example::

        store = FileTokenStore()
        store.save("oauth_cc_https://dev1.service-now.com_abc", token)
        assert store.load("oauth_cc_https://dev1.service-now.com_abc") == token
    """

    def __init__(self, directory: Optional[Path | str] = None) -> None:
        if directory is None:
            self._directory = get_token_dir()
        else:
            self._directory = Path(directory).expanduser()
            self._directory.mkdir(mode=0o700, parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        """The directory holding the token files."""
        return self._directory

    def path_for(self, key: str) -> Path:
        """Return the file a key is stored in.

        URLs contain ``/`` and ``:``, so every character outside
        ``[A-Za-z0-9._-]`` is replaced with ``_``.
        """
        return self._directory / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def save(self, key: str, token: OAuthToken) -> None:
        data = token.model_dump(mode="json", exclude_none=True)
        try:
            atomic_write(self.path_for(key), json.dumps(data, indent=2) + "\n", mode=0o600)
        except OSError as exc:
            raise TokenStoreError(f"Cannot write token for '{key}': {exc}") from exc

    def load(self, key: str) -> Optional[OAuthToken]:
        path = self.path_for(key)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise TokenStoreError(f"Cannot read token file {path}: {exc}") from exc
        try:
            return OAuthToken.model_validate(json.loads(text))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            raise TokenStoreError(f"Corrupt token file {path}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            raise TokenStoreError(f"Cannot delete token for '{key}': {exc}") from exc


class MemoryTokenStore(TokenStore):
    """Process-local token store, useful for tests and short-lived scripts."""

    def __init__(self) -> None:
        self._tokens: dict[str, OAuthToken] = {}
        self._lock = threading.Lock()

    def save(self, key: str, token: OAuthToken) -> None:
        with self._lock:
            self._tokens[key] = token.model_copy()

    def load(self, key: str) -> Optional[OAuthToken]:
        with self._lock:
            token = self._tokens.get(key)
        return token.model_copy() if token is not None else None

    def delete(self, key: str) -> None:
        with self._lock:
            self._tokens.pop(key, None)
