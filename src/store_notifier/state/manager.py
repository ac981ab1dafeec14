"""
State store abstraction for the Store Notifier.

A single flat key space shared by every platform. Each record is tagged with
its owning namespace (the platform tag) at write time and the tag is verified
on every read, so a lookup under the wrong namespace behaves as if the key
did not exist.

Backends:
- In-memory: process lifetime only
- SQLite: one upserted row per key, loaded into memory on open
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StateStoreError

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Abstract base class for namespaced state persistence."""

    async def open(self) -> None:
        """Prepare the backend for use."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        """
        Get the record stored under ``key`` in ``namespace``.

        Args:
            namespace: Owning namespace (platform tag)
            key: Composite entity key

        Returns:
            Stored record or None if absent or owned by another namespace
        """
        pass

    @abstractmethod
    async def set(self, namespace: str, key: str, record: dict[str, Any]) -> None:
        """
        Store ``record`` under ``key``, tagged with ``namespace``.

        Args:
            namespace: Owning namespace (platform tag)
            key: Composite entity key
            record: Record to store
        """
        pass

    @abstractmethod
    async def has(self, namespace: str, key: str) -> bool:
        """Check whether ``namespace`` owns a record under ``key``."""
        pass

    @abstractmethod
    async def delete(self, namespace: str, key: str) -> None:
        """Delete ``key`` if it is owned by ``namespace``; otherwise no-op."""
        pass

    @abstractmethod
    async def keys(self, namespace: str | None = None) -> list[str]:
        """
        List stored keys.

        Args:
            namespace: Restrict to keys owned by this namespace

        Returns:
            Snapshot list of keys
        """
        pass

    @abstractmethod
    def is_ready(self) -> bool:
        """Check if the backend is loaded and usable."""
        pass

    def get_stats(self) -> dict[str, Any]:
        """Get entry counts for monitoring."""
        return {"entries": 0, "namespaces": {}}


class InMemoryStateStore(StateStore):
    """In-memory state store."""

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, Any]] = {}

    def _owned_entry(self, namespace: str, key: str) -> dict[str, Any] | None:
        entry = self._entries.get(key)
        if entry is None or entry.get("platform") != namespace:
            return None
        return entry

    async def get(self, namespace: str, key: str) -> dict[str, Any] | None:
        """Get a record, verifying the namespace tag."""
        entry = self._owned_entry(namespace, key)
        logger.debug(f"State get {namespace}:{key} found={entry is not None}")
        if entry is None:
            return None
        return dict(entry["value"])

    async def set(self, namespace: str, key: str, record: dict[str, Any]) -> None:
        """Set a record, tagging it with its namespace."""
        existing = self._entries.get(key)
        if existing is not None and existing.get("platform") != namespace:
            logger.warning(
                f"State key {key} owned by {existing.get('platform')} "
                f"is being overwritten by {namespace}"
            )

        entry = {
            "key": key,
            "value": dict(record),  # Don't keep a reference to the caller's dict
            "platform": namespace,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        await self._persist(key, entry)
        self._entries[key] = entry
        logger.debug(f"State set {namespace}:{key}")

    async def has(self, namespace: str, key: str) -> bool:
        """Check ownership of a key."""
        return self._owned_entry(namespace, key) is not None

    async def delete(self, namespace: str, key: str) -> None:
        """Delete a key owned by the namespace."""
        if self._owned_entry(namespace, key) is None:
            logger.debug(
                f"State delete skipped for {namespace}:{key} - "
                "key not found or namespace mismatch"
            )
            return

        await self._persist(key, None)
        self._entries.pop(key, None)
        logger.debug(f"State delete {namespace}:{key}")

    async def keys(self, namespace: str | None = None) -> list[str]:
        """List keys, optionally restricted to one namespace."""
        return [
            key
            for key, entry in self._entries.items()
            if namespace is None or entry.get("platform") == namespace
        ]

    def is_ready(self) -> bool:
        """In-memory state is always ready."""
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get entry counts per namespace."""
        namespaces: dict[str, int] = {}
        for entry in self._entries.values():
            platform = entry.get("platform", "")
            namespaces[platform] = namespaces.get(platform, 0) + 1
        return {"entries": len(self._entries), "namespaces": namespaces}

    async def _persist(self, key: str, entry: dict[str, Any] | None) -> None:
        """Hook for durable backends; ``entry`` is None for deletions."""


class SqliteStateStore(InMemoryStateStore):
    """
    SQLite-backed state store.

    One row per key in the ``state`` table, upserted on every write. Rows are
    loaded into memory on ``open`` and reads are served from that cache; a
    write reaches the cache only after the database has accepted it.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS state (
        key       TEXT PRIMARY KEY,
        platform  TEXT NOT NULL,
        value     TEXT NOT NULL,
        timestamp TEXT NOT NULL
    );
    """

    UPSERT = """
    INSERT INTO state(key, platform, value, timestamp)
    VALUES (?, ?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
        platform = excluded.platform,
        value = excluded.value,
        timestamp = excluded.timestamp
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:
        """Create the table if needed and load every row into memory."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            db = await aiosqlite.connect(str(self.path))
        except (OSError, aiosqlite.Error) as e:
            raise StateStoreError(
                f"Failed to open state database {self.path}: {e}",
                context={"path": str(self.path)},
            ) from e

        try:
            await db.execute("PRAGMA journal_mode=WAL;")
            await db.execute(self.SCHEMA)
            await db.commit()
            async with db.execute(
                "SELECT key, platform, value, timestamp FROM state"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            await db.close()
            raise StateStoreError(
                f"Failed to load state database {self.path}: {e}",
                context={"path": str(self.path)},
            ) from e

        skipped = 0
        for key, platform, value, timestamp in rows:
            try:
                record = json.loads(value)
            except ValueError:
                skipped += 1
                continue
            self._entries[key] = {
                "key": key,
                "value": record,
                "platform": platform,
                "timestamp": timestamp,
            }

        if skipped:
            logger.warning(f"Skipped {skipped} unreadable rows in {self.path}")

        self._db = db
        logger.info(f"State loaded from {self.path} ({len(self._entries)} entries)")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info(f"State database {self.path} closed")

    def is_ready(self) -> bool:
        """Ready while the database connection is open."""
        return self._db is not None

    async def _persist(self, key: str, entry: dict[str, Any] | None) -> None:
        if self._db is None:
            raise StateStoreError(
                f"State database {self.path} is not open", context={"key": key}
            )

        async with self._write_lock:
            try:
                if entry is None:
                    await self._db.execute("DELETE FROM state WHERE key = ?", (key,))
                else:
                    await self._db.execute(
                        self.UPSERT,
                        (
                            key,
                            entry["platform"],
                            json.dumps(entry["value"], separators=(",", ":")),
                            entry["timestamp"],
                        ),
                    )
                await self._db.commit()
            except aiosqlite.Error as e:
                raise StateStoreError(
                    f"Failed to write state database {self.path}: {e}",
                    context={"path": str(self.path), "key": key},
                ) from e


class StateStoreFactory:
    """Factory for creating the state store selected by configuration."""

    @staticmethod
    def create_state_store(path: str | Path | None = None) -> StateStore:
        """
        Create a state store.

        Args:
            path: SQLite database path; empty or None selects the in-memory store

        Returns:
            StateStore instance
        """
        if path:
            logger.info(f"Creating SQLite state store at {path}")
            return SqliteStateStore(path)

        logger.info("Creating in-memory state store")
        return InMemoryStateStore()
