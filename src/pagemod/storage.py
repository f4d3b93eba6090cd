"""Key-value storage behind the plugin registry.

Values are JSON documents. ``set_many`` writes several keys atomically so
the plugin list and the domain index never disagree on disk.
"""

from __future__ import annotations

import asyncio
import copy
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from pagemod.errors import StorageError
from pagemod.logger import logger

PLUGINS_KEY = "plugins"
SETTINGS_KEY = "settings"
DOMAIN_INDEX_KEY = "domain_index"


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set_many(self, items: dict[str, Any]) -> None: ...

    async def remove(self, *keys: str) -> None: ...


class MemoryStore:
    """In-process store. Values are deep-copied in and out like a real backend."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Any | None:
        return copy.deepcopy(self._data.get(key))

    async def set_many(self, items: dict[str, Any]) -> None:
        # Fail before touching anything if a value can't be stored
        try:
            encoded = {k: json.dumps(v) for k, v in items.items()}
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value is not JSON-serializable: {exc}") from exc
        self._data.update({k: json.loads(v) for k, v in encoded.items()})

    async def remove(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


_SCHEMA = """\
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


class SqliteStore:
    """aiosqlite-backed store: one ``kv`` table, JSON values.

    A single connection is shared by every coroutine, so multi-statement
    writes go through :meth:`atomic_write`, which serializes them on a lock
    and commits or rolls back as a unit.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = str(path)
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> SqliteStore:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        logger.debug("Storage opened", path=self._path)
        return self

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> SqliteStore:
        return await self.open()

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _get_db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Storage is not open")
        return self._db

    @asynccontextmanager
    async def atomic_write(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self._get_db()
        async with self._write_lock:
            try:
                yield db
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    async def get(self, key: str) -> Any | None:
        db = self._get_db()
        async with db.execute("SELECT value FROM kv WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt value for key {key!r}: {exc}") from exc

    async def set_many(self, items: dict[str, Any]) -> None:
        try:
            rows = [(k, json.dumps(v)) for k, v in items.items()]
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Value is not JSON-serializable: {exc}") from exc
        async with self.atomic_write() as db:
            await db.executemany(
                "INSERT INTO kv (key, value) VALUES (?, ?)"
                " ON CONFLICT(key) DO UPDATE SET value = excluded.value,"
                " updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now')",
                rows,
            )

    async def remove(self, *keys: str) -> None:
        if not keys:
            return
        async with self.atomic_write() as db:
            await db.executemany("DELETE FROM kv WHERE key = ?", [(k,) for k in keys])
