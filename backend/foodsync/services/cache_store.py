"""
TTL cache tables for upstream responses.

Two keyspaces share the same row store as the canonical products:
search_cache keyed by "<lc>:<normalized query>" and product_cache keyed by
barcode. An entry is served only while now < expires_at; expired rows are
never deleted, they are simply ignored until the next write overwrites them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from ..config import PRODUCT_TTL, SEARCH_TTL
from .database import (
    db_json,
    db_placeholder,
    db_timestamp,
    fetch_one,
    load_json,
    parse_timestamp,
    utcnow,
)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    expires_at: datetime


def is_fresh(entry: Optional[CacheEntry], now: datetime) -> bool:
    """An entry is valid iff now < expires_at."""
    if entry is None or entry.expires_at is None:
        return False
    return now < entry.expires_at


def normalize_query(raw: str) -> str:
    """Trim, lowercase and collapse whitespace."""
    return ' '.join((raw or '').strip().lower().split())


def make_search_key(query: str, lc: str) -> str:
    return f"{lc}:{query}"


class CacheStore:
    """Key/payload/expiry rows in one table, upserted on the key column."""

    def __init__(self, table: str, key_column: str, ttl: timedelta,
                 extra_columns: tuple = ()):
        self.table = table
        self.key_column = key_column
        self.ttl = ttl
        self.extra_columns = extra_columns

    def get(self, conn, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for key regardless of expiry."""
        ph = db_placeholder(conn)
        row = fetch_one(
            conn,
            f'SELECT {self.key_column} AS cache_key, payload, expires_at '
            f'FROM {self.table} WHERE {self.key_column} = {ph}',
            (key,)
        )
        if not row:
            return None
        return CacheEntry(
            key=row['cache_key'],
            payload=load_json(row['payload']),
            expires_at=parse_timestamp(row['expires_at']),
        )

    def get_fresh(self, conn, key: str, now: Optional[datetime] = None) -> Optional[CacheEntry]:
        """Return the entry only if it has not expired."""
        entry = self.get(conn, key)
        if not is_fresh(entry, now or utcnow()):
            return None
        return entry

    def put(self, conn, key: str, payload: Any, now: Optional[datetime] = None,
            ttl: Optional[timedelta] = None, **extra: Any) -> CacheEntry:
        """Insert or overwrite the entry for key with a new expiry."""
        now = now or utcnow()
        expires_at = now + (ttl or self.ttl)
        ph = db_placeholder(conn)

        columns = [self.key_column, *self.extra_columns, 'payload', 'expires_at', 'updated_at']
        values = [key, *(extra.get(name) for name in self.extra_columns),
                  db_json(conn, payload), db_timestamp(conn, expires_at), db_timestamp(conn, now)]
        updates = ', '.join(f'{col} = excluded.{col}' for col in columns[1:])

        cursor = conn.cursor()
        try:
            cursor.execute(
                f'''INSERT INTO {self.table} ({', '.join(columns)})
                   VALUES ({', '.join([ph] * len(columns))})
                   ON CONFLICT ({self.key_column}) DO UPDATE SET {updates}''',
                values
            )
        finally:
            cursor.close()
        return CacheEntry(key=key, payload=payload, expires_at=expires_at)


SEARCH_CACHE = CacheStore('search_cache', 'query', SEARCH_TTL, extra_columns=('lc',))
PRODUCT_CACHE = CacheStore('product_cache', 'barcode', PRODUCT_TTL)
