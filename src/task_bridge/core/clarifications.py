"""Clarification requests that block a task until the architect answers."""

import logging
import sqlite3
import uuid

from task_bridge.core import lifecycle
from task_bridge.core import tasks as tasks_mod
from task_bridge.core.events import log_event
from task_bridge.db.codec import dump_optional_list, load_optional_list, now_iso, parse_dt
from task_bridge.db.engine import transaction
from task_bridge.db.models import Clarification
from task_bridge.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)


def request_clarification(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    question: str,
    options: list[str] | None = None,
) -> Clarification:
    """Ask a question about a claimed or in-progress task and block it."""
    clarification_id = str(uuid.uuid4())
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        lifecycle.ensure_transition(task, "block")
        db.execute(
            """INSERT INTO clarifications (id, task_id, question, options, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (clarification_id, task_id, question, dump_optional_list(options), now_iso()),
        )
        lifecycle.block_task(
            db, agent, task, "clarification_requested",
            {"clarification_id": clarification_id, "question": question},
        )

    logger.info("Clarification %s requested on task %s", clarification_id, task_id)
    return get_clarification(db, clarification_id)


def respond_to_clarification(
    db: sqlite3.Connection,
    agent: str,
    clarification_id: str,
    response: str,
) -> Clarification:
    """Answer a pending clarification. The task stays blocked until resumed."""
    with transaction(db):
        existing = get_clarification(db, clarification_id)
        if existing is None:
            raise NotFound(f"Clarification not found: {clarification_id}")
        if not existing.is_pending:
            raise ValidationError(f"Clarification already answered: {clarification_id}")
        db.execute(
            "UPDATE clarifications SET response = ?, responded_at = ? WHERE id = ? AND response IS NULL",
            (response, now_iso(), clarification_id),
        )
        log_event(
            db, agent, "clarification_responded", existing.task_id,
            {"clarification_id": clarification_id},
        )

    return get_clarification(db, clarification_id)


def get_clarification(db: sqlite3.Connection, clarification_id: str) -> Clarification | None:
    row = db.execute("SELECT * FROM clarifications WHERE id = ?", (clarification_id,)).fetchone()
    if not row:
        return None
    return _row_to_clarification(row)


def get_pending_clarifications(
    db: sqlite3.Connection,
    task_id: str | None = None,
) -> list[Clarification]:
    """Unanswered clarifications, oldest first."""
    sql = "SELECT * FROM clarifications WHERE response IS NULL"
    params: list = []
    if task_id:
        sql += " AND task_id = ?"
        params.append(task_id)
    sql += " ORDER BY created_at ASC, rowid ASC"
    rows = db.execute(sql, params).fetchall()
    return [_row_to_clarification(r) for r in rows]


def list_clarifications(db: sqlite3.Connection, task_id: str) -> list[Clarification]:
    """Every clarification raised on a task, answered or not, oldest first."""
    rows = db.execute(
        "SELECT * FROM clarifications WHERE task_id = ? ORDER BY created_at ASC, rowid ASC",
        (task_id,),
    ).fetchall()
    return [_row_to_clarification(r) for r in rows]


def _row_to_clarification(row: sqlite3.Row) -> Clarification:
    return Clarification(
        id=row["id"],
        task_id=row["task_id"],
        question=row["question"],
        options=load_optional_list(row["options"]),
        response=row["response"],
        created_at=parse_dt(row["created_at"]),
        responded_at=parse_dt(row["responded_at"]),
    )
