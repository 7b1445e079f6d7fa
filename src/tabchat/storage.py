# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Local persisted state: a flat key-value store.

Defines ``KeyValueStoreProtocol`` with two implementations:

- ``InMemoryStore`` for tests and throwaway sessions.
- ``SqliteStore`` backed by ``aiosqlite`` with a single long-lived
  connection.  Values are JSON-encoded; every ``set`` overwrites whole
  values, so there is no partial-update or migration logic.

Readers pass a dict of defaults; keys absent from the store come back with
their default value (same contract as extension local storage).  A stored
value that no longer decodes is logged and read as its default.
"""

from __future__ import annotations

import copy
import json
import logging
from contextlib import suppress
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import aiosqlite

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """Interface for local persisted state."""

    async def get(self, defaults: dict[str, Any]) -> dict[str, Any]: ...

    async def set(self, values: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------


class InMemoryStore:
    """Dict-backed store. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, defaults: dict[str, Any]) -> dict[str, Any]:
        return {k: copy.deepcopy(self._data.get(k, v)) for k, v in defaults.items()}

    async def set(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            self._data[key] = copy.deepcopy(value)

    async def close(self) -> None:
        """No-op for in-memory store."""

    @property
    def data(self) -> dict[str, Any]:
        """Raw access (testing/debugging)."""
        return self._data


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteStore:
    """SQLite-backed store implementing ``KeyValueStoreProtocol``.

    Use the ``create()`` async classmethod factory; never instantiate directly.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteStore:
        """Open (or create) a SQLite database and ensure the ``kv`` table exists."""
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(db_path))
        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute(_CREATE_KV)
            await db.commit()
        except Exception:
            with suppress(Exception):
                await db.close()
            raise
        return cls(db)

    async def get(self, defaults: dict[str, Any]) -> dict[str, Any]:
        result = dict(defaults)
        if not defaults:
            return result
        placeholders = ",".join("?" for _ in defaults)
        cursor = await self._db.execute(
            f"SELECT key, value FROM kv WHERE key IN ({placeholders})",  # noqa: S608  # nosec B608
            list(defaults),
        )
        for key, raw in await cursor.fetchall():
            try:
                result[key] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Stored value for %r is not valid JSON, using default", key)
        return result

    async def set(self, values: dict[str, Any]) -> None:
        await self._db.executemany(
            "INSERT INTO kv (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            [(k, json.dumps(v, ensure_ascii=False)) for k, v in values.items()],
        )
        await self._db.commit()

    async def close(self) -> None:
        await self._db.close()
