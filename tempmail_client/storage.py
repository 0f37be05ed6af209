"""Persistence port for session state, API key and provider caches.

Everything durable goes through one :class:`Storage` instance injected
into the components that need it, so the core has no implicit
environment dependency.  Values are JSON-compatible.
"""

from __future__ import annotations

import abc
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from .models import SessionState

logger = structlog.get_logger()

AUTH_KEY = "auth"
API_KEY_KEY = "api-key"
CACHED_DOMAINS_KEY = "cached-domains"
CUSTOM_PROVIDERS_KEY = "custom-api-providers"
DISABLED_PROVIDERS_KEY = "disabled-api-providers"

DEFAULT_PROVIDER_ID = "duckmail"
DEFAULT_DISABLED_PROVIDERS = ("mailtm",)


class Storage(abc.ABC):
    """Key/value port.  Adapters implement ``get``, ``set`` and ``delete``;
    the typed load/save helpers are shared.
    """

    @abc.abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value or None."""

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None: ...

    @abc.abstractmethod
    def delete(self, key: str) -> None: ...

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    def load_session(self, default_provider: str = DEFAULT_PROVIDER_ID) -> SessionState | None:
        """Restore the persisted session, migrating older shapes.

        Records written before multi-provider support have no
        ``providerId``; those accounts are assigned *default_provider*.
        The current account is re-linked to its entry in ``accounts``.
        """
        raw = self.get(AUTH_KEY)
        if not isinstance(raw, dict):
            return None

        try:
            accounts = [_with_provider(a, default_provider) for a in raw.get("accounts") or []]
            current = raw.get("currentAccount")
            state = SessionState(
                token=raw.get("token"),
                current_account=_with_provider(current, default_provider) if current else None,
                accounts=accounts,
            )
        except (TypeError, ValueError) as exc:
            logger.error("session_restore_failed", error=str(exc))
            return None

        return _relink_current(state)

    def save_session(self, state: SessionState) -> None:
        """Persist *state*, or drop the record when there is nothing to keep."""
        if state.is_empty:
            self.delete(AUTH_KEY)
            return
        self.set(AUTH_KEY, state.model_dump(mode="json", by_alias=True))

    # ------------------------------------------------------------------
    # API key and provider caches
    # ------------------------------------------------------------------

    def load_api_key(self) -> str:
        value = self.get(API_KEY_KEY)
        return value.strip() if isinstance(value, str) else ""

    def save_api_key(self, api_key: str) -> None:
        if api_key.strip():
            self.set(API_KEY_KEY, api_key.strip())
        else:
            self.delete(API_KEY_KEY)

    def load_cached_domains(self) -> list[dict[str, Any]]:
        return _list_of_dicts(self.get(CACHED_DOMAINS_KEY))

    def save_cached_domains(self, domains: list[dict[str, Any]]) -> None:
        self.set(CACHED_DOMAINS_KEY, domains)

    def load_custom_providers(self) -> list[dict[str, Any]]:
        return _list_of_dicts(self.get(CUSTOM_PROVIDERS_KEY))

    def save_custom_providers(self, providers: list[dict[str, Any]]) -> None:
        self.set(CUSTOM_PROVIDERS_KEY, providers)

    def load_disabled_providers(self) -> list[str]:
        value = self.get(DISABLED_PROVIDERS_KEY)
        if value is None:
            return list(DEFAULT_DISABLED_PROVIDERS)
        return [str(v) for v in value] if isinstance(value, list) else []

    def save_disabled_providers(self, provider_ids: list[str]) -> None:
        self.set(DISABLED_PROVIDERS_KEY, provider_ids)


class MemoryStorage(Storage):
    """Process-local storage, used by tests and when no path is configured."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so callers never share mutable state with us
        self._data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._data))


class JsonFileStorage(Storage):
    """All keys in one JSON document, rewritten atomically on every change."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path).expanduser()
        self._data: dict[str, Any] = self._read()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("storage_read_failed", path=str(self._path), error=str(exc))
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Any | None:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))
        self._flush()

    def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _with_provider(account: Any, default_provider: str) -> dict[str, Any]:
    if not isinstance(account, dict):
        raise TypeError(f"Invalid persisted account: {account!r}")
    if account.get("providerId"):
        return account
    return {**account, "providerId": default_provider}


def _relink_current(state: SessionState) -> SessionState:
    current = state.current_account
    if current is None:
        return state
    for account in state.accounts:
        if account.same_mailbox(current):
            state.current_account = account
            return state
    if state.is_authenticated:
        state.accounts.append(current)
    return state


def _list_of_dicts(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]
