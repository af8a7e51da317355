"""
Database service for the foodsync row store.

Loads the connection URL from the environment and provides a shared
connection for the API. PostgreSQL is used when DATABASE_URL is set,
otherwise a local SQLite file. Helpers in this module hide the few
dialect differences (placeholders, JSON and timestamp columns, row access)
so the services can run the same SQL against both.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

import psycopg2
import psycopg2.extras

from ..config import DATABASE_URL, SQLITE_PATH
from ..logger import get_logger

logger = get_logger(__name__)


def is_postgres(conn) -> bool:
    """Check if connection is PostgreSQL."""
    return isinstance(conn, psycopg2.extensions.connection)


def db_placeholder(conn) -> str:
    """Return the correct placeholder for the database type."""
    return '%s' if is_postgres(conn) else '?'


def dict_cursor(conn):
    """Cursor whose rows can be turned into dicts with dict(row)."""
    if is_postgres(conn):
        return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
    conn.row_factory = sqlite3.Row
    return conn.cursor()


def fetch_all(conn, query: str, params=()) -> List[Dict[str, Any]]:
    cursor = dict_cursor(conn)
    try:
        cursor.execute(query, params)
        return [dict(row) for row in cursor.fetchall()]
    finally:
        cursor.close()


def fetch_one(conn, query: str, params=()) -> Optional[Dict[str, Any]]:
    cursor = dict_cursor(conn)
    try:
        cursor.execute(query, params)
        row = cursor.fetchone()
        return dict(row) if row else None
    finally:
        cursor.close()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def db_json(conn, value: Any):
    """Adapt a JSON-able value for a JSON column."""
    if is_postgres(conn):
        return psycopg2.extras.Json(value)
    return json.dumps(value, ensure_ascii=False)


def load_json(value: Any, default: Any = None) -> Any:
    """Read a JSON column value (text in SQLite, already decoded in PostgreSQL)."""
    if value is None:
        return default
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


def db_timestamp(conn, value: datetime):
    """Adapt an aware datetime for a timestamp column."""
    if is_postgres(conn):
        return value
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Read a timestamp column value as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


POSTGRES_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS food_products (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        source TEXT NOT NULL,
        source_id TEXT NOT NULL,
        barcode TEXT,
        name_local TEXT,
        name_en TEXT,
        brand TEXT,
        categories JSONB NOT NULL DEFAULT '[]'::jsonb,
        image_url TEXT,
        nutriments_raw JSONB NOT NULL DEFAULT '{}'::jsonb,
        kcal_100g DOUBLE PRECISION,
        protein_100g DOUBLE PRECISION,
        fat_100g DOUBLE PRECISION,
        carbs_100g DOUBLE PRECISION,
        sugar_100g DOUBLE PRECISION,
        fiber_100g DOUBLE PRECISION,
        salt_100g DOUBLE PRECISION,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (source, source_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS search_cache (
        query TEXT PRIMARY KEY,
        lc TEXT NOT NULL,
        payload JSONB NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_cache (
        barcode TEXT PRIMARY KEY,
        payload JSONB NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS off_seed_runs (
        id TEXT PRIMARY KEY,
        locale TEXT NOT NULL,
        terms JSONB NOT NULL,
        status TEXT NOT NULL,
        cursor JSONB NOT NULL,
        processed_count INTEGER NOT NULL DEFAULT 0,
        upserted_count INTEGER NOT NULL DEFAULT 0,
        error_count INTEGER NOT NULL DEFAULT 0,
        logs JSONB NOT NULL DEFAULT '[]'::jsonb,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    ''',
]

SQLITE_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS food_products (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source TEXT NOT NULL,
        source_id TEXT NOT NULL,
        barcode TEXT,
        name_local TEXT,
        name_en TEXT,
        brand TEXT,
        categories TEXT NOT NULL DEFAULT '[]',
        image_url TEXT,
        nutriments_raw TEXT NOT NULL DEFAULT '{}',
        kcal_100g REAL,
        protein_100g REAL,
        fat_100g REAL,
        carbs_100g REAL,
        sugar_100g REAL,
        fiber_100g REAL,
        salt_100g REAL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (source, source_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS search_cache (
        query TEXT PRIMARY KEY,
        lc TEXT NOT NULL,
        payload TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS product_cache (
        barcode TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS off_seed_runs (
        id TEXT PRIMARY KEY,
        locale TEXT NOT NULL,
        terms TEXT NOT NULL,
        status TEXT NOT NULL,
        cursor TEXT NOT NULL,
        processed_count INTEGER NOT NULL DEFAULT 0,
        upserted_count INTEGER NOT NULL DEFAULT 0,
        error_count INTEGER NOT NULL DEFAULT 0,
        logs TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    ''',
]


def init_schema(conn) -> None:
    """Create the foodsync tables if they do not exist."""
    statements = POSTGRES_SCHEMA if is_postgres(conn) else SQLITE_SCHEMA
    cursor = conn.cursor()
    try:
        for statement in statements:
            cursor.execute(statement)
    finally:
        cursor.close()
    conn.commit()


def connect_sqlite(path: str) -> sqlite3.Connection:
    """Open a SQLite connection usable from FastAPI's worker threads."""
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class DatabasePool:
    """
    Simple connection pool for the row store.

    Uses a single connection that is reused across requests.
    """

    def __init__(self):
        self._conn = None
        self._db_url: Optional[str] = None

    def initialize(self) -> None:
        """Initialize the database connection and schema."""
        self._db_url = DATABASE_URL
        if not self._db_url:
            logger.info("DATABASE_URL not set, using SQLite at %s", SQLITE_PATH)
        self._connect()
        init_schema(self._conn)

    def _connect(self) -> None:
        """Establish database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception:
                pass

        if self._db_url:
            self._conn = psycopg2.connect(self._db_url)
            self._conn.autocommit = False
        else:
            self._conn = connect_sqlite(SQLITE_PATH)

    def _ensure_connection(self) -> None:
        """Ensure the connection is alive, reconnect if needed."""
        if self._conn is None:
            self._connect()
            return

        if not is_postgres(self._conn):
            return

        try:
            # Test connection with a simple query
            with self._conn.cursor() as cursor:
                cursor.execute("SELECT 1")
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            # Connection lost, reconnect
            self._connect()

    @contextmanager
    def get_connection(self) -> Generator[Any, None, None]:
        """
        Get a database connection from the pool.

        Commits when the block exits cleanly, rolls back otherwise.

        Example:
            with db_pool.get_connection() as conn:
                upsert_food_products(conn, items)
        """
        self._ensure_connection()
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            try:
                self._conn.close()
            except Exception:
                pass
            self._conn = None


# Global database pool instance
db_pool = DatabasePool()


def get_db():
    """
    Dependency for FastAPI routes to get a database connection.

    Usage in routes:
        @router.get("/items")
        def get_items(conn = Depends(get_db)):
            return fetch_all(conn, "SELECT * FROM food_products")
    """
    with db_pool.get_connection() as conn:
        yield conn
