"""
SQLite storage for EcoTrust.

Tables:
  listings            - accommodations/restaurants with their eco scores
  moderated_entities  - reviews/itineraries with current moderation state
  moderation_audit    - append-only action log, one row per committed transition

Every mutable row carries a `version` column. Writers pass the version they
read; a write against a stale version touches zero rows and is reported as
a VersionConflict by the stores (see ecotrust/stores.py).

Each thread gets its own connection, so batch workers never share one.
"""

import json
import sqlite3
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ecotrust.config import DB_PATH, DB_BUSY_TIMEOUT
from ecotrust.errors import StorageError

logger = logging.getLogger(__name__)


# Single source of truth for listing columns.
# To add a field: add 1 line here, migration is automatic.
LISTING_SCHEMA = {
    'id': 'TEXT PRIMARY KEY',
    'kind': "TEXT NOT NULL DEFAULT 'accommodation'",
    'name': "TEXT DEFAULT ''",
    'listing_type': "TEXT DEFAULT 'hotel'",
    'external_place_ref': 'TEXT DEFAULT NULL',
    'category_scores_json': "TEXT DEFAULT '{}'",
    'overall_rating': 'REAL DEFAULT NULL',
    'confidence_level': 'INTEGER DEFAULT 1',
    'last_calculated': 'TEXT DEFAULT NULL',
    'reviews_analyzed': 'INTEGER DEFAULT 0',
    'keyword_matches': 'INTEGER DEFAULT 0',
    'is_default': 'INTEGER DEFAULT 0',
    'last_error': 'TEXT DEFAULT NULL',
    'version': 'INTEGER NOT NULL DEFAULT 0',
    'created_at': 'DATETIME DEFAULT CURRENT_TIMESTAMP',
}


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 UTC (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string written by to_iso()."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def dumps(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def loads(value: Optional[str], default=None):
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        logger.warning(f"Unreadable JSON column: {value[:80]!r}")
        return default


class TrustDB:
    """
    SQLite wrapper shared by ScoreMetadataStore and ModerationStore.

    Usage:
        db = TrustDB("data/ecotrust.db")
        with db.transaction() as conn:
            conn.execute(...)
        db.close()
    """

    def __init__(self, db_path: str = DB_PATH, busy_timeout: float = DB_BUSY_TIMEOUT):
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._local = threading.local()
        self._connections = []
        self._connections_lock = threading.Lock()
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._create_tables()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    @property
    def conn(self) -> sqlite3.Connection:
        """Connection owned by the calling thread."""
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout,
                isolation_level=None,  # explicit BEGIN/COMMIT in transaction()
            )
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute('PRAGMA foreign_keys=ON')
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    def transaction(self, read_only: bool = False):
        """
        Context manager for one atomic unit of work.

        Commits on success, rolls back on any exception, and converts
        sqlite3 errors into StorageError. Writers take the write lock up
        front (BEGIN IMMEDIATE); read_only transactions use a deferred
        BEGIN, which under WAL reads one snapshot without blocking writers.
        """
        return _Transaction(self.conn, 'DEFERRED' if read_only else 'IMMEDIATE')

    def release_connection(self):
        """Close the calling thread's connection, if it has one."""
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            return
        self._local.conn = None
        with self._connections_lock:
            if conn in self._connections:
                self._connections.remove(conn)
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.debug(f"Close failed: {e}")

    @property
    def open_connections(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Run a read-only statement, converting database errors."""
        try:
            return self.conn.execute(sql, params)
        except sqlite3.Error as e:
            logger.error(f"Database error: {e}")
            raise StorageError(str(e)) from e

    def ping(self):
        """Raise StorageError if the database cannot answer a trivial query."""
        self.execute('SELECT 1').fetchone()

    def close(self):
        """Close every connection opened by any thread."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Close failed: {e}")
            self._connections.clear()
        self._local = threading.local()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self):
        """Create tables if missing, then add any new LISTING_SCHEMA columns."""
        cursor = self.conn.cursor()

        columns = ',\n'.join(f'{name} {ddl}' for name, ddl in LISTING_SCHEMA.items())
        cursor.execute(f'CREATE TABLE IF NOT EXISTS listings (\n{columns}\n)')
        self._auto_migrate()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS moderated_entities (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                state TEXT NOT NULL,
                start_date TEXT DEFAULT NULL,
                end_date TEXT DEFAULT NULL,
                version INTEGER NOT NULL DEFAULT 0,
                created_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Append-only: no code path issues UPDATE or DELETE on this table
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS moderation_audit (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_id TEXT NOT NULL REFERENCES moderated_entities(id),
                action TEXT NOT NULL,
                reason TEXT DEFAULT NULL,
                actor_id TEXT NOT NULL,
                from_state TEXT NOT NULL,
                to_state TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_listings_confidence ON listings(confidence_level)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_listings_last_calculated ON listings(last_calculated)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_entities_type_state ON moderated_entities(entity_type, state)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_audit_entity ON moderation_audit(entity_id, seq)')

        self.conn.commit()

    def _auto_migrate(self):
        """Add columns present in LISTING_SCHEMA but missing in the table."""
        cursor = self.conn.cursor()
        cursor.execute('PRAGMA table_info(listings)')
        existing = {row['name'] for row in cursor.fetchall()}

        for name, ddl in LISTING_SCHEMA.items():
            if name in existing:
                continue
            # ALTER TABLE cannot add a PRIMARY KEY or a non-constant default
            ddl = ddl.replace('PRIMARY KEY', '').replace('DEFAULT CURRENT_TIMESTAMP', '').strip()
            logger.info(f"Migrating listings: adding column {name}")
            cursor.execute(f'ALTER TABLE listings ADD COLUMN {name} {ddl}')


class _Transaction:
    """Commit-or-rollback wrapper returned by TrustDB.transaction()."""

    def __init__(self, conn: sqlite3.Connection, mode: str = 'IMMEDIATE'):
        self.conn = conn
        self.mode = mode

    def __enter__(self) -> sqlite3.Connection:
        try:
            self.conn.execute(f'BEGIN {self.mode}')
        except sqlite3.Error as e:
            logger.error(f"Cannot start transaction: {e}")
            raise StorageError(str(e)) from e
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            try:
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(str(e)) from e
            return False

        self.conn.rollback()
        if issubclass(exc_type, sqlite3.Error):
            logger.error(f"Database error, rolled back: {exc_val}")
            raise StorageError(str(exc_val)) from exc_val
        return False
