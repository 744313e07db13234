# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""SQLite-based storage for execution plans."""

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from infraplan.core.exceptions import PlanConsumedError, PlanNotFoundError
from infraplan.core.models.plan import ExecutionPlan
from infraplan.core.observability import get_logger

logger = get_logger(__name__)

_PLANS_SCHEMA = """
CREATE TABLE IF NOT EXISTS plans (
    id           TEXT PRIMARY KEY,
    key          TEXT NOT NULL,
    created_at   TEXT NOT NULL,
    state_serial INTEGER NOT NULL,
    destroy      INTEGER NOT NULL DEFAULT 0,
    payload      TEXT NOT NULL,
    consumed_at  TEXT
);

CREATE INDEX IF NOT EXISTS idx_plans_key
    ON plans(key);
CREATE INDEX IF NOT EXISTS idx_plans_created
    ON plans(created_at);
"""


def _dt_to_iso(dt: datetime) -> str:
    """Convert datetime to ISO-8601 string for SQLite storage.

    :param dt: Datetime to convert.
    :returns: ISO string.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class PlanStore:
    """SQLite-backed storage for execution plans.

    A plan is consumed exactly once: ``mark_consumed`` succeeds for the
    first caller only.
    """

    def __init__(
        self,
        db_path: Path | str = "data/infraplan.db",
    ) -> None:
        """Initialize the plan store.

        :param db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._mutex = threading.RLock()

        self._conn = sqlite3.connect(
            str(self.db_path),
            isolation_level="DEFERRED",
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.executescript(_PLANS_SCHEMA)

        logger.info(f"Initialized plan storage at {self.db_path}")

    def close(self) -> None:
        """Close the database connection."""
        with self._mutex:
            self._conn.close()

    def save(self, plan: ExecutionPlan) -> ExecutionPlan:
        """Persist a plan.

        :param plan: Plan to store.
        :returns: The stored plan.
        :raises ValueError: If a plan with the same ID exists.
        """
        try:
            with self._mutex, self._conn:
                self._conn.execute(
                    """INSERT INTO plans
                       (id, key, created_at, state_serial, destroy, payload)
                       VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        plan.id,
                        plan.key,
                        _dt_to_iso(plan.created_at),
                        plan.state_serial,
                        1 if plan.destroy else 0,
                        plan.model_dump_json(),
                    ),
                )
        except sqlite3.IntegrityError:
            raise ValueError(f"Plan with ID {plan.id} already exists")
        logger.info(f"Stored plan {plan.id} for {plan.key}")
        return plan

    def get(self, plan_id: str) -> ExecutionPlan:
        """Get a plan by ID.

        :param plan_id: Plan ID.
        :returns: The plan.
        :raises PlanNotFoundError: If no such plan exists.
        """
        with self._mutex:
            row = self._conn.execute(
                "SELECT payload FROM plans WHERE id = ?", (plan_id,)
            ).fetchone()
        if row is None:
            raise PlanNotFoundError(plan_id)
        return ExecutionPlan.model_validate_json(row["payload"])

    def list(self, key: Optional[str] = None, limit: int = 50) -> List[ExecutionPlan]:
        """List plans, newest first.

        :param key: Optional filter by state key.
        :param limit: Maximum number of plans.
        :returns: List of plans.
        """
        with self._mutex:
            if key:
                cur = self._conn.execute(
                    "SELECT payload FROM plans WHERE key = ? ORDER BY created_at DESC LIMIT ?",
                    (key, limit),
                )
            else:
                cur = self._conn.execute(
                    "SELECT payload FROM plans ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            rows = cur.fetchall()
        return [ExecutionPlan.model_validate_json(r["payload"]) for r in rows]

    def is_consumed(self, plan_id: str) -> bool:
        """Check whether a plan has been applied.

        :raises PlanNotFoundError: If no such plan exists.
        """
        with self._mutex:
            row = self._conn.execute(
                "SELECT consumed_at FROM plans WHERE id = ?", (plan_id,)
            ).fetchone()
        if row is None:
            raise PlanNotFoundError(plan_id)
        return row["consumed_at"] is not None

    def mark_consumed(self, plan_id: str) -> None:
        """Mark a plan as applied.

        :param plan_id: Plan ID.
        :raises PlanNotFoundError: If no such plan exists.
        :raises PlanConsumedError: If the plan was already consumed.
        """
        with self._mutex, self._conn:
            cur = self._conn.execute(
                "UPDATE plans SET consumed_at = ? WHERE id = ? AND consumed_at IS NULL",
                (_dt_to_iso(datetime.now(timezone.utc)), plan_id),
            )
            if cur.rowcount == 0:
                exists = self._conn.execute(
                    "SELECT 1 FROM plans WHERE id = ?", (plan_id,)
                ).fetchone()
                if exists is None:
                    raise PlanNotFoundError(plan_id)
                raise PlanConsumedError(plan_id)
        logger.debug(f"Plan {plan_id} marked as consumed")
