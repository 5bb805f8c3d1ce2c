"""Scoped key-value storage for user preferences.

Two scopes mirror the browser host's storage areas:
  - TAB: ephemeral, keyed by tab id (cleared on startup and when a tab closes)
  - GLOBAL: durable, keyed by interface type / platform / model

The resolution engine only talks to the KeyValueStore protocol, so tests use
InMemoryKeyValueStore while the service persists through SqliteKeyValueStore
(aiosqlite, one short-lived connection per operation).
"""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import aiosqlite
from pydantic import ValidationError

from errors import PreferenceStoreError
from schemas import InterfaceType, Mode, UserParameterOverride

logger = logging.getLogger(__name__)


class Scope(str, Enum):
    TAB = "tab"
    GLOBAL = "global"


class KeyValueStore(Protocol):
    async def get(self, scope: Scope, key: str) -> Any: ...
    async def set(self, scope: Scope, key: str, value: Any) -> None: ...
    async def delete(self, scope: Scope, key: str) -> bool: ...
    async def clear(self, scope: Scope, prefix: str = "") -> int: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class InMemoryKeyValueStore:
    """Dict-backed store; values are JSON round-tripped like the durable store."""

    def __init__(self):
        self._data: dict[Scope, dict[str, str]] = {Scope.TAB: {}, Scope.GLOBAL: {}}

    async def get(self, scope: Scope, key: str) -> Any:
        raw = self._data[Scope(scope)].get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, scope: Scope, key: str, value: Any) -> None:
        self._data[Scope(scope)][key] = json.dumps(value)

    async def delete(self, scope: Scope, key: str) -> bool:
        return self._data[Scope(scope)].pop(key, None) is not None

    async def clear(self, scope: Scope, prefix: str = "") -> int:
        bucket = self._data[Scope(scope)]
        doomed = [k for k in bucket if k.startswith(prefix)]
        for k in doomed:
            del bucket[k]
        return len(doomed)


class SqliteKeyValueStore:
    """aiosqlite-backed store with WAL mode."""

    def __init__(self, db_path: str | Path):
        self._db_path = Path(db_path)

    def _path(self) -> str:
        return str(self._db_path)

    async def init(self) -> None:
        """Create the preferences table if it doesn't exist."""
        logger.info("Initializing preference database at %s", self._db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(self._path()) as conn:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS preferences (
                    scope TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (scope, key)
                )
            """)
            await conn.commit()

    async def get(self, scope: Scope, key: str) -> Any:
        async with aiosqlite.connect(self._path()) as conn:
            await conn.execute("PRAGMA busy_timeout=5000")
            cursor = await conn.execute(
                "SELECT value_json FROM preferences WHERE scope = ? AND key = ?",
                (Scope(scope).value, key),
            )
            row = await cursor.fetchone()
            return json.loads(row[0]) if row else None

    async def set(self, scope: Scope, key: str, value: Any) -> None:
        now = datetime.now(timezone.utc).isoformat()
        async with aiosqlite.connect(self._path()) as conn:
            await conn.execute("PRAGMA busy_timeout=5000")
            await conn.execute(
                "INSERT INTO preferences (scope, key, value_json, updated_at) VALUES (?, ?, ?, ?) "
                "ON CONFLICT(scope, key) DO UPDATE SET value_json = excluded.value_json, "
                "updated_at = excluded.updated_at",
                (Scope(scope).value, key, json.dumps(value), now),
            )
            await conn.commit()

    async def delete(self, scope: Scope, key: str) -> bool:
        async with aiosqlite.connect(self._path()) as conn:
            await conn.execute("PRAGMA busy_timeout=5000")
            cursor = await conn.execute(
                "DELETE FROM preferences WHERE scope = ? AND key = ?",
                (Scope(scope).value, key),
            )
            await conn.commit()
            return cursor.rowcount > 0

    async def clear(self, scope: Scope, prefix: str = "") -> int:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        async with aiosqlite.connect(self._path()) as conn:
            await conn.execute("PRAGMA busy_timeout=5000")
            cursor = await conn.execute(
                "DELETE FROM preferences WHERE scope = ? AND key LIKE ? ESCAPE '\\'",
                (Scope(scope).value, escaped + "%"),
            )
            await conn.commit()
            return cursor.rowcount


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

def _key(*parts) -> str:
    return "|".join(str(p.value if isinstance(p, Enum) else p) for p in parts)


def tab_platform_key(tab_id: int) -> str:
    return _key("tab_platform_preference", tab_id)


def global_platform_key(interface_type: InterfaceType) -> str:
    return _key("global_platform_preference", interface_type)


def global_model_key(interface_type: InterfaceType, platform_id: str) -> str:
    return _key("global_model_preference", interface_type, platform_id)


def override_key(platform_id: str, model_id: str, mode: Mode) -> str:
    return _key("parameter_overrides", platform_id, model_id, mode)


def thinking_mode_key(platform_id: str, model_id: str) -> str:
    return _key("thinking_mode_preference", platform_id, model_id)


def credentials_key(platform_id: str) -> str:
    return _key("api_credentials", platform_id)


# ---------------------------------------------------------------------------
# PreferenceStore
# ---------------------------------------------------------------------------

class PreferenceStore:
    """Typed accessors over a KeyValueStore.

    Every backend failure is re-raised as PreferenceStoreError so callers
    only ever handle one storage exception type.
    """

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    @property
    def kv(self) -> KeyValueStore:
        return self._kv

    async def get(self, scope: Scope, key: str) -> Any:
        try:
            return await self._kv.get(scope, key)
        except Exception as e:
            raise PreferenceStoreError("get", Scope(scope).value, key, e) from e

    async def set(self, scope: Scope, key: str, value: Any) -> None:
        try:
            await self._kv.set(scope, key, value)
        except Exception as e:
            raise PreferenceStoreError("set", Scope(scope).value, key, e) from e

    async def delete(self, scope: Scope, key: str) -> bool:
        try:
            return await self._kv.delete(scope, key)
        except Exception as e:
            raise PreferenceStoreError("delete", Scope(scope).value, key, e) from e

    # --- Platform preferences ---

    async def get_tab_platform(self, tab_id: int | None) -> str | None:
        if tab_id is None:
            return None
        return await self.get(Scope.TAB, tab_platform_key(tab_id))

    async def set_tab_platform(self, tab_id: int, platform_id: str) -> None:
        await self.set(Scope.TAB, tab_platform_key(tab_id), platform_id)

    async def get_global_platform(self, interface_type: InterfaceType) -> str | None:
        return await self.get(Scope.GLOBAL, global_platform_key(interface_type))

    async def set_global_platform(self, interface_type: InterfaceType, platform_id: str) -> None:
        await self.set(Scope.GLOBAL, global_platform_key(interface_type), platform_id)

    # --- Model preferences ---

    async def get_global_model(self, interface_type: InterfaceType, platform_id: str) -> str | None:
        return await self.get(Scope.GLOBAL, global_model_key(interface_type, platform_id))

    async def set_global_model(self, interface_type: InterfaceType, platform_id: str, model_id: str) -> None:
        await self.set(Scope.GLOBAL, global_model_key(interface_type, platform_id), model_id)

    # --- Thinking mode ---

    async def get_thinking_mode(self, platform_id: str, model_id: str) -> bool:
        value = await self.get(Scope.GLOBAL, thinking_mode_key(platform_id, model_id))
        return value is True

    async def set_thinking_mode(self, platform_id: str, model_id: str, enabled: bool) -> None:
        await self.set(Scope.GLOBAL, thinking_mode_key(platform_id, model_id), bool(enabled))

    # --- Parameter overrides ---

    async def get_override(self, platform_id: str, model_id: str, mode: Mode) -> UserParameterOverride:
        """Stored override for one mode; unreadable records degrade to empty."""
        raw = await self.get(Scope.GLOBAL, override_key(platform_id, model_id, mode))
        if not raw:
            return UserParameterOverride()
        try:
            return UserParameterOverride.model_validate(raw)
        except ValidationError:
            logger.warning(
                "Discarding malformed parameter override for %s/%s/%s",
                platform_id, model_id, Mode(mode).value,
            )
            return UserParameterOverride()

    async def get_overrides(self, platform_id: str, model_id: str) -> dict[Mode, UserParameterOverride]:
        return {mode: await self.get_override(platform_id, model_id, mode) for mode in Mode}

    async def set_override(
        self, platform_id: str, model_id: str, mode: Mode, override: UserParameterOverride,
    ) -> None:
        await self.set(Scope.GLOBAL, override_key(platform_id, model_id, mode), override.to_storage())

    async def delete_override(self, platform_id: str, model_id: str, mode: Mode) -> bool:
        return await self.delete(Scope.GLOBAL, override_key(platform_id, model_id, mode))

    # --- Tab lifecycle ---

    async def clear_tab(self, tab_id: int) -> bool:
        """Remove the tab-scoped preference of a closed tab."""
        return await self.delete(Scope.TAB, tab_platform_key(tab_id))

    async def clear_all_tabs(self) -> int:
        """Drop all tab-scoped entries (tab ids do not survive a restart)."""
        try:
            count = await self._kv.clear(Scope.TAB)
        except Exception as e:
            raise PreferenceStoreError("clear", Scope.TAB.value, "*", e) from e
        if count:
            logger.info("Cleared %d stale tab-scoped preference(s)", count)
        return count
