"""
Database Connection Layer

Supports SQLite (dev) and PostgreSQL (production) with automatic schema migration.
"""

import os
import sqlite3
from contextlib import contextmanager
from typing import Optional, Generator, Any, Dict, List
from datetime import datetime, timezone
import threading
import structlog

logger = structlog.get_logger()

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- One credit account per user
CREATE TABLE IF NOT EXISTS credit_accounts (
    user_id TEXT PRIMARY KEY,
    balance INTEGER NOT NULL CHECK (balance >= 0),
    daily_used INTEGER NOT NULL DEFAULT 0,
    monthly_used INTEGER NOT NULL DEFAULT 0,
    last_daily_reset TEXT NOT NULL,
    last_monthly_reset TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    role TEXT NOT NULL DEFAULT 'USER',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Per-service invocation counters (observational only)
CREATE TABLE IF NOT EXISTS usage_stats (
    user_id TEXT NOT NULL,
    service_type TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    last_used TEXT NOT NULL,
    PRIMARY KEY (user_id, service_type)
);

-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Indexes for performance
CREATE INDEX IF NOT EXISTS idx_accounts_balance ON credit_accounts(balance);
CREATE INDEX IF NOT EXISTS idx_usage_user ON usage_stats(user_id);
"""

POSTGRES_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS credit_accounts (
    user_id TEXT PRIMARY KEY,
    balance INTEGER NOT NULL CHECK (balance >= 0),
    daily_used INTEGER NOT NULL DEFAULT 0,
    monthly_used INTEGER NOT NULL DEFAULT 0,
    last_daily_reset TIMESTAMPTZ NOT NULL,
    last_monthly_reset TIMESTAMPTZ NOT NULL,
    version INTEGER NOT NULL DEFAULT 1,
    role TEXT NOT NULL DEFAULT 'USER',
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS usage_stats (
    user_id TEXT NOT NULL,
    service_type TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    last_used TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (user_id, service_type)
);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_accounts_balance ON credit_accounts(balance);
CREATE INDEX IF NOT EXISTS idx_usage_user ON usage_stats(user_id);
"""


class Database:
    """
    Database connection manager with SQLite and PostgreSQL support.

    Queries are written with "?" placeholders and translated for psycopg2.

    Usage:
        db = Database()  # Uses DATABASE_URL env or defaults to SQLite
        with db.connection() as conn:
            conn.execute("SELECT * FROM credit_accounts")
    """

    _instance: Optional["Database"] = None
    _lock = threading.Lock()

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or os.environ.get(
            "DATABASE_URL",
            "sqlite:///credit_rail.db"
        )
        self.is_postgres = self.database_url.startswith("postgres")
        self._local = threading.local()
        self._initialized = False

        # ":memory:" databases are per-connection, so every thread shares one
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

    @classmethod
    def get_instance(cls, database_url: Optional[str] = None) -> "Database":
        """Get singleton database instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(database_url)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests switch DATABASE_URL between runs)."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close()
            cls._instance = None

    def _get_sqlite_path(self) -> str:
        """Extract SQLite file path from URL."""
        if self.database_url.startswith("sqlite:///"):
            return self.database_url[10:]
        return "credit_rail.db"

    @property
    def is_memory(self) -> bool:
        return not self.is_postgres and self._get_sqlite_path() == ":memory:"

    @contextmanager
    def connection(self) -> Generator[Any, None, None]:
        """Get a database connection (thread-safe). Commits on success, rolls back on error."""
        if self.is_postgres:
            with self._postgres_connection() as conn:
                yield conn
        elif self.is_memory:
            with self._shared_lock:
                if self._shared_conn is None:
                    self._shared_conn = self._open_sqlite()
                yield from self._sqlite_transaction(self._shared_conn)
        else:
            if getattr(self._local, "conn", None) is None:
                self._local.conn = self._open_sqlite()
            yield from self._sqlite_transaction(self._local.conn)

    def _open_sqlite(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._get_sqlite_path(),
            check_same_thread=False,
            timeout=30.0,
        )
        conn.row_factory = sqlite3.Row
        # Enable WAL mode for better concurrency
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @staticmethod
    def _sqlite_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    @contextmanager
    def _postgres_connection(self) -> Generator[Any, None, None]:
        """PostgreSQL connection, one per unit of work."""
        try:
            import psycopg2
            from psycopg2.extras import RealDictCursor
        except ImportError:
            raise ImportError("psycopg2 required for PostgreSQL. Install with: pip install psycopg2-binary")

        conn = psycopg2.connect(self.database_url, cursor_factory=RealDictCursor)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _adapt(self, query: str) -> str:
        return query.replace("?", "%s") if self.is_postgres else query

    def initialize(self) -> None:
        """Initialize database schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            schema = POSTGRES_SCHEMA_SQL if self.is_postgres else SCHEMA_SQL

            with self.connection() as conn:
                if self.is_postgres:
                    cursor = conn.cursor()
                    cursor.execute(schema)
                else:
                    conn.executescript(schema)

                # Record schema version
                now = datetime.now(timezone.utc).isoformat()
                if self.is_postgres:
                    cursor.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (%s, %s) ON CONFLICT (version) DO NOTHING",
                        (SCHEMA_VERSION, now)
                    )
                else:
                    conn.execute(
                        "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now)
                    )

            self._initialized = True
            logger.info("database_initialized", url=self.database_url[:20] + "...", is_postgres=self.is_postgres)

    def execute(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        """Execute a query and return results as list of dicts."""
        with self.connection() as conn:
            if self.is_postgres:
                cursor = conn.cursor()
                cursor.execute(self._adapt(query), params)
                if cursor.description:
                    return [dict(row) for row in cursor.fetchall()]
                return []
            else:
                cursor = conn.execute(query, params)
                if cursor.description:
                    return [dict(row) for row in cursor.fetchall()]
                return []

    def execute_write(self, query: str, params: tuple = ()) -> int:
        """Execute a single write statement and return the affected row count."""
        with self.connection() as conn:
            if self.is_postgres:
                cursor = conn.cursor()
                cursor.execute(self._adapt(query), params)
                return cursor.rowcount
            else:
                cursor = conn.execute(query, params)
                return cursor.rowcount

    def close(self) -> None:
        """Close database connections."""
        if getattr(self._local, "conn", None):
            self._local.conn.close()
            self._local.conn = None
        with self._shared_lock:
            if self._shared_conn is not None:
                self._shared_conn.close()
                self._shared_conn = None


def get_database(database_url: Optional[str] = None) -> Database:
    """Get the database singleton instance."""
    db = Database.get_instance(database_url)
    db.initialize()
    return db
