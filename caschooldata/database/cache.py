"""
Processed-table cache keyed by (data_type, end_year, variant).

Stores the finished row list for a year so repeated fetches skip the
download and processing steps. Entries older than max_age_days are treated
as missing.

Usage:
    cache = TableCache()
    if cache.exists(2024, "tidy"):
        rows = cache.read(2024, "tidy")
    else:
        cache.write(2024, "tidy", rows)
"""

import logging
import threading
from typing import Any, List, Optional

import pandas as pd
from sqlalchemy import delete, select
from sqlalchemy.engine import Engine

from caschooldata.database.connection import get_engine, get_session_factory, init_db, session_scope
from caschooldata.database.models import CachedTable, utcnow
from caschooldata.database.serialization import dumps_rows, loads_rows
from caschooldata.exceptions import CachePayloadError
from caschooldata.utilities.common import load_settings

logger = logging.getLogger(__name__)

DEFAULT_DATA_TYPE = "enrollment"


class TableCache:
    """
    SQLAlchemy-backed key -> row list store.

    Args:
        engine: Engine to use (default: shared cache engine)
        max_age_days: Default expiry (default: cache.max_age_days setting)
    """

    def __init__(self, engine: Optional[Engine] = None, max_age_days: Optional[float] = None):
        self.engine = engine or get_engine()
        self._factory = get_session_factory(self.engine)
        if max_age_days is None:
            max_age_days = load_settings().get("cache", {}).get("max_age_days", 30)
        self.max_age_days = max_age_days
        self._write_lock = threading.Lock()
        init_db(self.engine)

    def _lookup(self, session, end_year: int, variant: str, data_type: str) -> Optional[CachedTable]:
        stmt = select(CachedTable).where(
            CachedTable.data_type == data_type,
            CachedTable.end_year == int(end_year),
            CachedTable.variant == variant,
        )
        return session.execute(stmt).scalar_one_or_none()

    def exists(
        self,
        end_year: int,
        variant: str,
        max_age_days: Optional[float] = None,
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> bool:
        """
        Check for a fresh entry.

        Args:
            end_year: School year end
            variant: Output shape ("tidy" or "wide")
            max_age_days: Override the default expiry
            data_type: Data domain

        Returns:
            True if an entry exists and is younger than max_age_days
        """
        max_age = self.max_age_days if max_age_days is None else max_age_days
        with session_scope(self._factory) as session:
            entry = self._lookup(session, end_year, variant, data_type)
            if entry is None:
                return False
            return entry.age_days() <= max_age

    def read(
        self,
        end_year: int,
        variant: str,
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> Optional[List[Any]]:
        """Cached row list, or None if there is no entry."""
        with session_scope(self._factory) as session:
            entry = self._lookup(session, end_year, variant, data_type)
            if entry is None:
                return None
            payload = entry.payload
        try:
            rows = loads_rows(payload)
        except CachePayloadError as e:
            logger.warning(f"Ignoring unreadable cache entry {data_type} {end_year} ({variant}): {e}")
            return None
        logger.debug(f"Cache hit: {data_type} {end_year} ({variant})")
        return rows

    def write(
        self,
        end_year: int,
        variant: str,
        rows: List[Any],
        data_type: str = DEFAULT_DATA_TYPE,
    ) -> None:
        """Insert or replace the entry for a key."""
        rows = list(rows)
        payload = dumps_rows(rows)
        with self._write_lock, session_scope(self._factory) as session:
            entry = self._lookup(session, end_year, variant, data_type)
            if entry is None:
                session.add(CachedTable(
                    data_type=data_type,
                    end_year=int(end_year),
                    variant=variant,
                    payload=payload,
                    row_count=len(rows),
                ))
            else:
                entry.payload = payload
                entry.row_count = len(rows)
                entry.updated_at = utcnow()
        logger.debug(f"Cached {len(rows):,} rows: {data_type} {end_year} ({variant})")

    def clear(self, end_year: Optional[int] = None, data_type: Optional[str] = None) -> int:
        """
        Delete entries, optionally limited to a year and/or data type.

        Returns:
            Number of entries removed
        """
        stmt = delete(CachedTable)
        if end_year is not None:
            stmt = stmt.where(CachedTable.end_year == int(end_year))
        if data_type is not None:
            stmt = stmt.where(CachedTable.data_type == data_type)

        with self._write_lock, session_scope(self._factory) as session:
            removed = session.execute(stmt).rowcount or 0
        logger.info(f"Removed {removed} cached table(s)")
        return removed

    def status(self) -> pd.DataFrame:
        """One row per cached entry with size and age in days."""
        columns = ["data_type", "end_year", "variant", "row_count", "size_bytes", "age_days"]
        with session_scope(self._factory) as session:
            entries = session.execute(
                select(CachedTable).order_by(CachedTable.data_type, CachedTable.end_year, CachedTable.variant)
            ).scalars().all()
            now = utcnow()
            records = [
                {**entry.to_dict(), "age_days": round(entry.age_days(now), 2)}
                for entry in entries
            ]
        if not records:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame.from_records(records)[columns]
