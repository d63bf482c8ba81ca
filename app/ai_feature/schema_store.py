import asyncio
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.errors import SourceUnavailable
from app.core.schemas import SchemaColumn


# -----------------------------------------------------------------------------
# SCHEMA STORE
# Purpose: keep one process-wide snapshot of (table, column, type) for the
# prompt, refresh it from the catalog and warm-start it from a JSON cache.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

_columns_adapter = TypeAdapter(List[SchemaColumn])

CATALOG_QUERY = text(
    """
    select table_name, column_name, data_type
    from information_schema.columns
    where table_schema = :schema
    order by table_name, ordinal_position
    """
)


@dataclass(frozen=True)
class SchemaSnapshot:
    """
    Immutable, timestamped copy of the schema catalog.

    An uninitialized snapshot has no columns and no publish time.
    """

    columns: Tuple[SchemaColumn, ...] = ()
    published_at: Optional[datetime] = None

    @classmethod
    def build(
        cls, columns: Iterable[SchemaColumn], published_at: Optional[datetime] = None
    ) -> "SchemaSnapshot":
        """Drop repeated (table, column) pairs, first occurrence wins."""
        seen = set()
        unique = []
        for column in columns:
            key = (column.table_name, column.column_name)
            if key in seen:
                continue
            seen.add(key)
            unique.append(column)
        return cls(
            columns=tuple(unique),
            published_at=published_at or datetime.now(timezone.utc),
        )

    @property
    def is_initialized(self) -> bool:
        return self.published_at is not None

    def is_stale(self, max_age: timedelta) -> bool:
        """Older than max_age; an uninitialized snapshot is always stale."""
        if self.published_at is None:
            return True
        return datetime.now(timezone.utc) - self.published_at > max_age

    def tables(self) -> Dict[str, List[SchemaColumn]]:
        """Columns grouped by table, in first-seen table order."""
        grouped: Dict[str, List[SchemaColumn]] = {}
        for column in self.columns:
            grouped.setdefault(column.table_name, []).append(column)
        return grouped

    def __len__(self) -> int:
        return len(self.columns)


EMPTY_SNAPSHOT = SchemaSnapshot()


# =========================
# On-disk cache
# =========================
def save_snapshot(snapshot: SchemaSnapshot, path: Path) -> None:
    """Write the snapshot as a JSON array, replacing the old file in one step."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = [column.model_dump() for column in snapshot.columns]
    with tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False
    ) as tmp_file:
        json.dump(payload, tmp_file, indent=2)
    try:
        os.replace(tmp_file.name, path)
    except OSError:
        os.unlink(tmp_file.name)
        raise


def load_snapshot(path: Path) -> SchemaSnapshot:
    """Read a cached snapshot, published at the file's modification time."""
    columns = _columns_adapter.validate_json(path.read_bytes())
    modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return SchemaSnapshot.build(columns, published_at=modified)


# =========================
# Catalog sources
# =========================
class CatalogSource(Protocol):
    async def fetch(self) -> List[SchemaColumn]: ...


class SqlCatalogSource:
    """Lists the columns of one schema from information_schema."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        schema: str = "public",
        timeout: float = 15.0,
    ):
        self.session_factory = session_factory
        self.schema = schema
        self.timeout = timeout

    async def _fetch_rows(self):
        async with self.session_factory() as session:
            result = await session.execute(CATALOG_QUERY, {"schema": self.schema})
            return result.mappings().all()

    async def fetch(self) -> List[SchemaColumn]:
        try:
            rows = await asyncio.wait_for(self._fetch_rows(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise SourceUnavailable(
                f"Schema catalog timed out after {self.timeout:g}s"
            )
        except (SQLAlchemyError, OSError) as error:
            raise SourceUnavailable(f"Schema catalog unavailable: {error}")

        return [SchemaColumn(**row) for row in rows]


# =========================
# Store
# =========================
class SchemaStore:
    """
    Holds the active snapshot.

    Readers call current() once and keep the returned object, a refresh swaps
    the reference in a single assignment so nobody sees a half-built catalog.
    Refreshes are serialised. A request holding a usable snapshot never waits
    on someone else's refresh, and after a failed refresh the catalog is left
    alone for retry_after before requests try it again.
    """

    def __init__(
        self,
        source: CatalogSource,
        cache_path: Optional[Path] = None,
        retry_after: timedelta = timedelta(seconds=60),
    ):
        self.source = source
        self.cache_path = cache_path
        self.retry_after = retry_after
        self._snapshot = EMPTY_SNAPSHOT
        self._refresh_lock = asyncio.Lock()
        self._failed_at: Optional[float] = None

    def current(self) -> SchemaSnapshot:
        return self._snapshot

    def is_stale(self, max_age: timedelta) -> bool:
        return self._snapshot.is_stale(max_age)

    def _backing_off(self) -> bool:
        if self._failed_at is None:
            return False
        return time.monotonic() - self._failed_at < self.retry_after.total_seconds()

    async def _refresh_locked(self) -> SchemaSnapshot:
        try:
            columns = await self.source.fetch()
        except SourceUnavailable:
            self._failed_at = time.monotonic()
            raise
        snapshot = SchemaSnapshot.build(columns)
        self._snapshot = snapshot
        self._failed_at = None
        logger.info(f"Schema loaded: {len(snapshot)} columns")
        # Still under the lock, so the cache always ends up holding the newest snapshot
        await self._write_cache(snapshot)
        return snapshot

    async def refresh(self) -> SchemaSnapshot:
        """
        Fetch the catalog and publish a new snapshot.

        Raises:
            SourceUnavailable: the catalog could not be read. The previous
            snapshot stays published.
        """
        async with self._refresh_lock:
            return await self._refresh_locked()

    async def ensure_fresh(self, max_age: timedelta) -> SchemaSnapshot:
        """Refresh when stale; on failure keep serving what we have."""
        snapshot = self._snapshot
        if not snapshot.is_stale(max_age) or self._backing_off():
            return snapshot
        # Somebody is already refreshing; a stale catalog beats waiting for it
        if self._refresh_lock.locked() and snapshot.is_initialized:
            return snapshot

        async with self._refresh_lock:
            # The refresh we queued behind may have settled it either way
            if not self._snapshot.is_stale(max_age) or self._backing_off():
                return self._snapshot
            try:
                return await self._refresh_locked()
            except SourceUnavailable as error:
                logger.warning(f"Schema refresh failed, keeping current snapshot: {error}")
                return self._snapshot

    def load_cache(self) -> bool:
        """Publish the cached snapshot, if there is a readable one."""
        if self.cache_path is None or not self.cache_path.exists():
            return False
        try:
            snapshot = load_snapshot(self.cache_path)
        except (OSError, ValueError, ValidationError) as error:
            logger.warning(f"Ignoring unreadable schema cache {self.cache_path}: {error}")
            return False

        self._snapshot = snapshot
        logger.info(f"Schema cache loaded: {len(snapshot)} columns")
        return True

    async def _write_cache(self, snapshot: SchemaSnapshot) -> None:
        if self.cache_path is None:
            return
        try:
            await asyncio.to_thread(save_snapshot, snapshot, self.cache_path)
        except OSError as error:
            logger.error(f"Could not write schema cache {self.cache_path}: {error}")
