# /chatflow/services/db_service.py

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import tenacity

from chatflow.exceptions import PersistenceError
from chatflow.models.domain import TrainingExample

# This service is the persistence gateway of the engine: training examples,
# per-user context and raw metrics, stored in SQLite.

logger = logging.getLogger(__name__)

USER_CONTEXT_COLUMNS = ("name", "last_department", "preferences")

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS ai_training (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        input TEXT NOT NULL,
        output TEXT NOT NULL,
        confidence REAL DEFAULT 0,
        usage_count INTEGER DEFAULT 0,
        last_used TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        approved BOOLEAN DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_context (
        phone VARCHAR(50) PRIMARY KEY,
        name VARCHAR(100),
        last_department VARCHAR(50),
        last_interaction TIMESTAMP,
        interaction_count INTEGER DEFAULT 0,
        preferences TEXT,
        extra TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS metrics (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        metric_type VARCHAR(50),
        metric_value TEXT,
        timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_training_approved ON ai_training (approved, usage_count)",
    "CREATE INDEX IF NOT EXISTS idx_metrics_type ON metrics (metric_type)",
)


class PersistenceGateway(Protocol):
    """Narrow interface the engines use to reach storage."""

    async def get_training_data(self, include_unapproved: bool = False) -> List[TrainingExample]: ...

    async def save_training_data(self, input: str, output: str, confidence: float = 0.0, approved: bool = False) -> int: ...

    async def approve_training_data(self, example_id: int) -> bool: ...

    async def update_training_usage(self, example_id: int) -> None: ...

    async def get_user_context(self, identity: str) -> Optional[Dict[str, Any]]: ...

    async def save_user_context(self, identity: str, fields: Dict[str, Any]) -> Dict[str, Any]: ...

    async def save_metric(self, metric_type: str, value: Any) -> None: ...

    async def get_metrics(self, metric_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]: ...

    async def get_stats(self) -> Dict[str, int]: ...


def _now() -> str:
    # Same text format as CURRENT_TIMESTAMP so stored values sort and parse alike.
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _is_transient(exc: BaseException) -> bool:
    """SQLite reports lock contention as an OperationalError."""
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


class SQLiteGateway:
    """
    SQLite implementation of the persistence gateway.

    A single connection is kept open for the process; every statement is a
    single-row operation committed immediately.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        try:
            self.conn = sqlite3.connect(db_path)
            self.conn.row_factory = sqlite3.Row
            for statement in SCHEMA:
                self.conn.execute(statement)
            self.conn.commit()
            logger.info(f"SQLite gateway initialized at {db_path}")
        except sqlite3.Error as e:
            logger.error(f"Error initializing SQLite database at {db_path}: {e}")
            raise PersistenceError(f"Could not open database {db_path}: {e}") from e

    def close(self) -> None:
        self.conn.close()
        logger.info("SQLite gateway closed.")

    # ==================== Helper Methods ====================

    @tenacity.retry(
        retry=tenacity.retry_if_exception(_is_transient),
        stop=tenacity.stop_after_attempt(3),
        wait=tenacity.wait_exponential(multiplier=0.1, min=0.1, max=1),
        before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
    )
    def _run(self, query: str, params: tuple = (), fetch: Optional[str] = None):
        cursor = self.conn.execute(query, params)
        if fetch == "one":
            return cursor.fetchone()
        if fetch == "all":
            return cursor.fetchall()
        self.conn.commit()
        return cursor.lastrowid if fetch == "id" else cursor.rowcount

    def _execute(self, query: str, params: tuple = (), fetch: Optional[str] = None):
        try:
            return self._run(query, params, fetch)
        except tenacity.RetryError as e:
            logger.error(f"Database still locked after retries: {query.split()[0]}")
            raise PersistenceError("Database is locked") from e
        except sqlite3.Error as e:
            logger.error(f"Database error on {query.split()[0]}: {e}", exc_info=True)
            raise PersistenceError(str(e)) from e

    # ==================== Training Data ====================

    async def get_training_data(self, include_unapproved: bool = False) -> List[TrainingExample]:
        """Approved examples ordered by usage count (most used first), then id."""
        query = "SELECT * FROM ai_training"
        if not include_unapproved:
            query += " WHERE approved = 1"
        query += " ORDER BY usage_count DESC, id ASC"
        rows = self._execute(query, fetch="all")
        return [TrainingExample.from_row(row) for row in rows]

    async def save_training_data(self, input: str, output: str, confidence: float = 0.0, approved: bool = False) -> int:
        example_id = self._execute(
            "INSERT INTO ai_training (input, output, confidence, approved) VALUES (?, ?, ?, ?)",
            (input, output, confidence, int(approved)),
            fetch="id",
        )
        logger.debug(f"Training example {example_id} saved (approved={approved})")
        return example_id

    async def approve_training_data(self, example_id: int) -> bool:
        changed = self._execute(
            "UPDATE ai_training SET approved = 1 WHERE id = ? AND approved = 0", (example_id,)
        )
        return bool(changed)

    async def update_training_usage(self, example_id: int) -> None:
        self._execute(
            "UPDATE ai_training SET usage_count = usage_count + 1, last_used = ? WHERE id = ?",
            (_now(), example_id),
        )

    # ==================== User Context ====================

    def _context_from_row(self, row: sqlite3.Row) -> Dict[str, Any]:
        context = json.loads(row["extra"]) if row["extra"] else {}
        context.update({
            "phone": row["phone"],
            "name": row["name"],
            "last_department": row["last_department"],
            "last_interaction": row["last_interaction"],
            "interaction_count": row["interaction_count"] or 0,
            "preferences": json.loads(row["preferences"]) if row["preferences"] else {},
        })
        return context

    async def get_user_context(self, identity: str) -> Optional[Dict[str, Any]]:
        row = self._execute("SELECT * FROM user_context WHERE phone = ?", (identity,), fetch="one")
        return self._context_from_row(row) if row else None

    async def save_user_context(self, identity: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge `fields` into the stored context and bump the interaction counter.
        Keys without a dedicated column are kept in the JSON `extra` blob.
        """
        existing = await self.get_user_context(identity) or {}
        merged = {**existing, **fields}

        reserved = {"phone", "last_interaction", "interaction_count"} | set(USER_CONTEXT_COLUMNS)
        extra = {k: v for k, v in merged.items() if k not in reserved}
        department = merged.get("last_department")

        self._execute(
            """
            INSERT OR REPLACE INTO user_context
            (phone, name, last_department, last_interaction, interaction_count, preferences, extra)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                identity,
                merged.get("name"),
                str(department) if department is not None else None,
                _now(),
                existing.get("interaction_count", 0) + 1,
                json.dumps(merged.get("preferences") or {}, ensure_ascii=False),
                json.dumps(extra, ensure_ascii=False, default=str),
            ),
        )
        return await self.get_user_context(identity)

    # ==================== Metrics & Stats ====================

    async def save_metric(self, metric_type: str, value: Any) -> None:
        self._execute(
            "INSERT INTO metrics (metric_type, metric_value) VALUES (?, ?)",
            (metric_type, json.dumps(value, ensure_ascii=False, default=str)),
        )

    async def get_metrics(self, metric_type: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = "SELECT * FROM metrics"
        params: tuple = ()
        if metric_type:
            query += " WHERE metric_type = ?"
            params = (metric_type,)
        query += " ORDER BY id DESC LIMIT ?"
        rows = self._execute(query, params + (limit,), fetch="all")
        return [
            {"type": row["metric_type"], "value": json.loads(row["metric_value"]), "timestamp": row["timestamp"]}
            for row in rows
        ]

    async def get_stats(self) -> Dict[str, int]:
        approved = self._execute("SELECT COUNT(*) AS count FROM ai_training WHERE approved = 1", fetch="one")
        pending = self._execute("SELECT COUNT(*) AS count FROM ai_training WHERE approved = 0", fetch="one")
        users = self._execute("SELECT COUNT(*) AS count FROM user_context", fetch="one")
        metrics = self._execute("SELECT COUNT(*) AS count FROM metrics", fetch="one")
        return {
            "total_training_data": approved["count"],
            "pending_training_data": pending["count"],
            "total_users": users["count"],
            "total_metrics": metrics["count"],
        }
