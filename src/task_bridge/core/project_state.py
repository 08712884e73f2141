"""Shared project state: current focus, known issues, and the decision log."""

import logging
import sqlite3
import uuid

from task_bridge.core.events import log_event
from task_bridge.db.codec import dump_decisions, dump_list, load_decisions, load_list, now_iso, parse_dt
from task_bridge.db.engine import transaction
from task_bridge.db.models import Decision, ProjectState

logger = logging.getLogger(__name__)

MAX_DECISIONS = 50

_UNSET = object()


def get_project_state(db: sqlite3.Connection) -> ProjectState:
    row = db.execute("SELECT * FROM project_state WHERE id = 1").fetchone()
    return ProjectState(
        current_focus=row["current_focus"],
        recent_decisions=load_decisions(row["recent_decisions"]),
        known_issues=load_list(row["known_issues"]),
        last_sync=parse_dt(row["last_sync"]),
    )


def update_project_state(
    db: sqlite3.Connection,
    agent: str,
    current_focus=_UNSET,
    known_issues: list[str] | None = None,
) -> ProjectState:
    """Update the focus and/or replace the known-issues list.

    Passing ``current_focus=None`` clears the focus; omitting it leaves it alone.
    Known issues are replaced wholesale, never merged.
    """
    updates = {}
    if current_focus is not _UNSET:
        updates["current_focus"] = current_focus
    if known_issues is not None:
        updates["known_issues"] = dump_list(known_issues)
    if not updates:
        return get_project_state(db)

    with transaction(db):
        set_clause = ", ".join(f"{k} = ?" for k in updates)
        db.execute(f"UPDATE project_state SET {set_clause} WHERE id = 1", list(updates.values()))
        log_event(db, agent, "state_updated", payload={"updated_fields": sorted(updates)})

    return get_project_state(db)


def add_decision(
    db: sqlite3.Connection,
    made_by: str,
    summary: str,
    rationale: str,
    affects_files: list[str] | None = None,
) -> Decision:
    """Append a decision, keeping only the most recent ``MAX_DECISIONS``."""
    decision = Decision(
        id=str(uuid.uuid4()),
        summary=summary,
        rationale=rationale,
        made_by=made_by,
        made_at=parse_dt(now_iso()),
        affects_files=list(affects_files or []),
    )
    with transaction(db):
        decisions = get_project_state(db).recent_decisions
        decisions.append(decision)
        decisions = decisions[-MAX_DECISIONS:]
        db.execute(
            "UPDATE project_state SET recent_decisions = ? WHERE id = 1",
            (dump_decisions(decisions),),
        )
        log_event(
            db, made_by, "decision_logged",
            payload={"decision_id": decision.id, "summary": summary},
        )

    logger.info("Logged decision %s by %s", decision.id, made_by)
    return decision


def log_sync_point(db: sqlite3.Connection, agent: str) -> ProjectState:
    """Record that ``agent`` has caught up with the shared state."""
    timestamp = now_iso()
    with transaction(db):
        db.execute("UPDATE project_state SET last_sync = ? WHERE id = 1", (timestamp,))
        log_event(db, agent, "sync", payload={"timestamp": timestamp})
    return get_project_state(db)
