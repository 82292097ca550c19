"""Persistent rule catalog and event history using SQLite."""

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from ..core.errors import PersistenceError
from ..conditions.evaluator import ConditionEvaluator
from ..conditions.model import Condition, Event, Rule


logger = structlog.get_logger()

# Metadata fields that can be queried through dedicated columns
QUERYABLE_FIELDS = {"scope", "enabled", "missing_plugins"}


class SqliteStore:
    """Stores rules and events in SQLite so the catalog survives restarts."""

    def __init__(self, db_path: str = "./data/eventrules.db", evaluator: Optional[ConditionEvaluator] = None):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.evaluator = evaluator or ConditionEvaluator()
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database and create tables."""
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        await self._db.executescript("""
            -- Rule catalog
            CREATE TABLE IF NOT EXISTS rules (
                item_id TEXT PRIMARY KEY,
                scope TEXT,
                enabled INTEGER DEFAULT 1,
                missing_plugins INTEGER DEFAULT 0,
                position INTEGER NOT NULL,
                body_json TEXT NOT NULL
            );

            -- Recorded events, used to answer raise-once queries
            CREATE TABLE IF NOT EXISTS events (
                item_id TEXT PRIMARY KEY,
                event_type TEXT NOT NULL,
                scope TEXT,
                profile_id TEXT,
                session_id TEXT,
                target_id TEXT,
                target_type TEXT,
                timestamp TEXT NOT NULL,
                body_json TEXT NOT NULL
            );

            -- Create indexes
            CREATE INDEX IF NOT EXISTS idx_rules_scope ON rules(scope);
            CREATE INDEX IF NOT EXISTS idx_rules_missing_plugins ON rules(missing_plugins);
            CREATE INDEX IF NOT EXISTS idx_events_profile ON events(event_type, profile_id);
            CREATE INDEX IF NOT EXISTS idx_events_session ON events(event_type, session_id);
        """)
        await self._db.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise PersistenceError("Store is not initialized", retryable=False)
        return self._db

    # ==================== Rules ====================

    async def test_match(self, condition: Condition, subject: Any) -> bool:
        return self.evaluator.evaluate(condition, subject)

    async def get_all_rules(self) -> list[Rule]:
        cursor = await self._connection().execute(
            "SELECT body_json FROM rules ORDER BY position"
        )
        rows = await cursor.fetchall()
        return [Rule.from_dict(json.loads(row["body_json"])) for row in rows]

    async def load_rule(self, item_id: str) -> Optional[Rule]:
        cursor = await self._connection().execute(
            "SELECT body_json FROM rules WHERE item_id = ?",
            (item_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None
        return Rule.from_dict(json.loads(row["body_json"]))

    async def save_rule(self, rule: Rule) -> None:
        """Insert or replace a rule, keeping its catalog position on update."""
        db = self._connection()
        metadata = rule.metadata
        async with self._lock:
            try:
                await db.execute("""
                    INSERT INTO rules (item_id, scope, enabled, missing_plugins, position, body_json)
                    VALUES (?, ?, ?, ?, (SELECT COALESCE(MAX(position), 0) + 1 FROM rules), ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        scope = excluded.scope,
                        enabled = excluded.enabled,
                        missing_plugins = excluded.missing_plugins,
                        body_json = excluded.body_json
                """, (
                    rule.item_id,
                    metadata.scope,
                    int(metadata.enabled),
                    int(metadata.missing_plugins),
                    json.dumps(rule.to_dict()),
                ))
                await db.commit()
            except aiosqlite.Error as e:
                raise PersistenceError(f"Cannot save rule: {e}", item_id=rule.item_id)

    async def remove_rule(self, item_id: str) -> bool:
        db = self._connection()
        async with self._lock:
            result = await db.execute(
                "DELETE FROM rules WHERE item_id = ?",
                (item_id,)
            )
            await db.commit()
            return result.rowcount > 0

    async def query_rules(self, field_name: str, value: Any) -> list[Rule]:
        """Rules whose metadata field ``field_name`` equals ``value``."""
        if field_name not in QUERYABLE_FIELDS:
            raise PersistenceError(f"Rules cannot be queried by '{field_name}'", retryable=False)

        if isinstance(value, bool):
            value = int(value)

        cursor = await self._connection().execute(
            f"SELECT body_json FROM rules WHERE {field_name} = ? ORDER BY position",
            (value,)
        )
        rows = await cursor.fetchall()
        return [Rule.from_dict(json.loads(row["body_json"])) for row in rows]

    # ==================== Event History ====================

    async def save_event(self, event: Event) -> None:
        db = self._connection()
        async with self._lock:
            await db.execute("""
                INSERT OR REPLACE INTO events
                (item_id, event_type, scope, profile_id, session_id,
                 target_id, target_type, timestamp, body_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                event.item_id,
                event.event_type,
                event.scope,
                event.profile_id,
                event.session_id,
                event.target.item_id if event.target else None,
                event.target.item_type if event.target else None,
                event.timestamp.isoformat(),
                json.dumps(event.to_dict(), default=str),
            ))
            await db.commit()

    async def has_event_already_been_raised(self, event: Event, session: bool) -> bool:
        """True when an event of the same type and target was recorded for the profile (or session)."""
        owner_column = "session_id" if session else "profile_id"
        owner_id = event.session_id if session else event.profile_id
        target_id = event.target.item_id if event.target else None
        target_type = event.target.item_type if event.target else None

        cursor = await self._connection().execute(f"""
            SELECT COUNT(*) AS count FROM events
            WHERE event_type = ?
              AND {owner_column} IS ?
              AND target_id IS ?
              AND target_type IS ?
        """, (event.event_type, owner_id, target_id, target_type))
        row = await cursor.fetchone()
        return row["count"] > 0

    async def count_events(self) -> int:
        cursor = await self._connection().execute("SELECT COUNT(*) AS count FROM events")
        row = await cursor.fetchone()
        return row["count"]
