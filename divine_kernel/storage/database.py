"""
Shared SQLite database for the deity stores.

One connection, one lock. Every multi-statement write runs inside
``transaction()`` so conditional claims and their bookkeeping commit or roll
back together. Prototype: SQLite. Production: PostgreSQL.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


class LostRace(Exception):
    """A conditional write matched no row: another writer got there first."""


def to_db(value: Optional[datetime]) -> Optional[str]:
    """Fixed-width timestamps so string comparison in SQL is chronological."""
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """
    Owns the connection and the schema for every deity table.
    ``:memory:`` by default, for tests.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._init_schema()

    def _init_schema(self) -> None:
        """Create all tables and indexes if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS attention (
                character_id TEXT NOT NULL,
                deity TEXT NOT NULL,
                attention REAL NOT NULL DEFAULT 0,
                interest REAL NOT NULL DEFAULT 0,
                triggers_json TEXT NOT NULL DEFAULT '{}',
                trend TEXT NOT NULL DEFAULT 'STABLE',
                last_evaluated_at TEXT,
                last_intervention_at TEXT,
                created_at TEXT NOT NULL,
                PRIMARY KEY (character_id, deity)
            );
            CREATE INDEX IF NOT EXISTS idx_attention_deity_score
                ON attention(deity, attention DESC);

            CREATE TABLE IF NOT EXISTS attention_cooldown (
                character_id TEXT NOT NULL,
                deity TEXT NOT NULL,
                type TEXT NOT NULL,
                cooldown_until TEXT NOT NULL,
                intervention_count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (character_id, deity, type)
            );

            CREATE TABLE IF NOT EXISTS deity_state (
                deity TEXT PRIMARY KEY,
                mood TEXT NOT NULL,
                phase TEXT NOT NULL,
                mood_score REAL NOT NULL,
                last_intervention_at TEXT,
                global_cooldown_hours REAL NOT NULL,
                influence REAL NOT NULL,
                patience REAL NOT NULL,
                wrath REAL NOT NULL,
                benevolence REAL NOT NULL,
                total_interventions INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS manifestation (
                id TEXT PRIMARY KEY,
                deity TEXT NOT NULL,
                character_id TEXT NOT NULL,
                type TEXT NOT NULL,
                subtype TEXT NOT NULL,
                message TEXT NOT NULL,
                effect_json TEXT,
                urgency TEXT NOT NULL,
                delivered INTEGER NOT NULL DEFAULT 0,
                delivered_at TEXT,
                acknowledged INTEGER NOT NULL DEFAULT 0,
                acknowledged_at TEXT,
                response TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_manifestation_character
                ON manifestation(character_id, created_at);
            CREATE INDEX IF NOT EXISTS idx_manifestation_delivered
                ON manifestation(delivered);

            CREATE TABLE IF NOT EXISTS active_effect (
                character_id TEXT NOT NULL,
                effect_key TEXT NOT NULL,
                deity TEXT NOT NULL,
                manifestation_id TEXT NOT NULL,
                payload_json TEXT NOT NULL DEFAULT '{}',
                started_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                PRIMARY KEY (character_id, effect_key)
            );
            CREATE INDEX IF NOT EXISTS idx_active_effect_expires
                ON active_effect(expires_at);
        """)
        self._conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Serialize and group writes. Nested calls join the outer transaction;
        only the outermost commits, and any exception rolls everything back.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._depth = 1
            try:
                yield self._conn
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise
            finally:
                self._depth = 0

    def fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
