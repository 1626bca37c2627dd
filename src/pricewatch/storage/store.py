"""Durable store: Protocol definition, SQLite implementation, factory."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import ClassVar, Protocol, runtime_checkable

import aiosqlite

from pricewatch.core.config import StorageConfig
from pricewatch.core.exceptions import DurableWriteFailed, StorageError, StoreUnreachable
from pricewatch.core.models import (
    AssetCoverage,
    Sample,
    StorageBackend as StorageBackendEnum,
    closest_sample,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class SampleStore(Protocol):
    """Append-only store of price samples with nearest-timestamp lookup."""

    async def initialize(self) -> None: ...
    async def close(self) -> None: ...
    async def health_check(self) -> bool: ...
    async def insert_sample(self, sample: Sample) -> None: ...
    async def neighbours(
        self, asset: str, timestamp: int
    ) -> tuple[Sample | None, Sample | None]: ...
    async def nearest_sample(self, asset: str, timestamp: int) -> Sample | None: ...
    async def list_assets(self) -> list[AssetCoverage]: ...
    async def count_samples(self, asset: str | None = None) -> int: ...


class SqliteSampleStore:
    """SQLite implementation of the sample store.

    Uses aiosqlite for async access, WAL mode for concurrent reads,
    and a version-tracked migration system. The composite
    ``(asset, timestamp)`` index backs every nearest-timestamp lookup.
    """

    _MIGRATIONS: ClassVar[dict[int, tuple[str, list[str]]]] = {
        1: (
            "Initial schema",
            [
                """CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT DEFAULT (datetime('now'))
                )""",
                """CREATE TABLE IF NOT EXISTS samples (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    asset TEXT NOT NULL,
                    price REAL NOT NULL,
                    timestamp INTEGER NOT NULL
                )""",
                "CREATE INDEX IF NOT EXISTS idx_samples_asset_timestamp "
                "ON samples(asset, timestamp)",
            ],
        ),
    }

    def __init__(self, config: StorageConfig) -> None:
        self._path = config.sqlite_path
        self._attempts = config.connect_attempts
        self._delay = config.connect_delay
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection, enable WAL, run migrations.

        Connection is retried ``connect_attempts`` times; afterwards the
        store is declared unreachable.
        """
        last_exc: Exception | None = None
        for attempt in range(1, self._attempts + 1):
            try:
                await self._connect()
                return
            except Exception as e:
                last_exc = e
                await self._discard_connection()
                logger.warning(
                    "Waiting for sample store... attempt %d/%d: %s",
                    attempt, self._attempts, e,
                )
                if attempt < self._attempts:
                    await asyncio.sleep(self._delay)

        raise StoreUnreachable(
            f"Sample store is not reachable after {self._attempts} attempts: {last_exc}",
            context={"operation": "initialize", "path": self._path, "attempts": self._attempts},
        ) from last_exc

    async def _connect(self) -> None:
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        current = await self._get_schema_version()
        await self._apply_migrations(current)
        await self._db.commit()

    async def _discard_connection(self) -> None:
        if self._db is None:
            return
        try:
            await self._db.close()
        except Exception as e:
            logger.debug("Ignoring error while discarding connection: %s", e)
        self._db = None

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def health_check(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None
        except Exception:
            return False

    # --- Schema Migration ---

    async def _get_schema_version(self) -> int:
        try:
            async with self._db.execute(
                "SELECT MAX(version) FROM schema_version"
            ) as cursor:
                row = await cursor.fetchone()
            return row[0] if row[0] is not None else 0
        except aiosqlite.OperationalError:
            return 0

    async def _apply_migrations(self, current_version: int) -> None:
        for version in sorted(self._MIGRATIONS.keys()):
            if version <= current_version:
                continue
            desc, statements = self._MIGRATIONS[version]
            logger.info("Applying migration %d: %s", version, desc)
            for sql in statements:
                await self._db.execute(sql)
            await self._db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )

    def _require_db(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError(
                "Sample store is not initialized",
                context={"operation": operation, "table": "samples"},
            )
        return self._db

    # --- Samples ---

    async def insert_sample(self, sample: Sample) -> None:
        """Append one sample. Raises DurableWriteFailed on any failure."""
        try:
            db = self._require_db("insert")
            await db.execute(
                "INSERT INTO samples (asset, price, timestamp) VALUES (?, ?, ?)",
                (sample.asset, sample.price, sample.timestamp),
            )
            await db.commit()
        except Exception as e:
            raise DurableWriteFailed(
                f"Failed to save sample: {e}",
                context={
                    "operation": "insert",
                    "table": "samples",
                    "asset": sample.asset,
                    "timestamp": sample.timestamp,
                },
            ) from e

    async def neighbours(
        self, asset: str, timestamp: int
    ) -> tuple[Sample | None, Sample | None]:
        """Return the samples at or before and at or after `timestamp`.

        Two index probes on ``(asset, timestamp)``. A side is None when no
        sample lies there; an exact match comes back on both sides.
        """
        try:
            db = self._require_db("query")
            found: list[Sample | None] = []
            for sql in (
                """SELECT price, timestamp FROM samples
                   WHERE asset = ? AND timestamp <= ?
                   ORDER BY timestamp DESC LIMIT 1""",
                """SELECT price, timestamp FROM samples
                   WHERE asset = ? AND timestamp >= ?
                   ORDER BY timestamp ASC LIMIT 1""",
            ):
                async with db.execute(sql, (asset, timestamp)) as cursor:
                    row = await cursor.fetchone()
                found.append(
                    None if row is None else Sample(asset=asset, price=row[0], timestamp=row[1])
                )
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to query nearest sample: {e}",
                context={"operation": "query", "table": "samples", "asset": asset},
            ) from e

        before, after = found
        return before, after

    async def nearest_sample(self, asset: str, timestamp: int) -> Sample | None:
        """Return the sample whose timestamp is closest to `timestamp`.

        Distance is unbounded. Ties go to the earlier sample.
        """
        before, after = await self.neighbours(asset, timestamp)
        return closest_sample([s for s in (before, after) if s is not None], timestamp)

    async def list_assets(self) -> list[AssetCoverage]:
        """Per-asset sample counts and time span, ordered by asset."""
        try:
            db = self._require_db("query")
            async with db.execute(
                """SELECT asset, COUNT(*), MIN(timestamp), MAX(timestamp)
                   FROM samples GROUP BY asset ORDER BY asset"""
            ) as cursor:
                rows = await cursor.fetchall()
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to list assets: {e}",
                context={"operation": "query", "table": "samples"},
            ) from e

        return [
            AssetCoverage(
                asset=row[0],
                samples=row[1],
                first_timestamp=row[2],
                last_timestamp=row[3],
            )
            for row in rows
        ]

    async def count_samples(self, asset: str | None = None) -> int:
        try:
            db = self._require_db("query")
            if asset is None:
                cursor = await db.execute("SELECT COUNT(*) FROM samples")
            else:
                cursor = await db.execute(
                    "SELECT COUNT(*) FROM samples WHERE asset = ?", (asset,)
                )
            row = await cursor.fetchone()
            await cursor.close()
        except Exception as e:
            if isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to count samples: {e}",
                context={"operation": "query", "table": "samples"},
            ) from e
        return row[0] if row else 0


async def create_store(config: StorageConfig) -> SqliteSampleStore:
    """Create and initialize a durable store based on configuration."""
    if config.backend == StorageBackendEnum.SQLITE:
        store = SqliteSampleStore(config)
        await store.initialize()
        return store
    raise StorageError(
        f"Unsupported storage backend: {config.backend}",
        context={"operation": "create_store", "backend": str(config.backend)},
    )
