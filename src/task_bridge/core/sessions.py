"""Per-agent session snapshots for resuming work after a restart."""

import logging
import sqlite3
import uuid

from task_bridge.core import tasks as tasks_mod
from task_bridge.core.events import log_event
from task_bridge.db.codec import dump_list, load_list, now_iso, parse_dt
from task_bridge.db.engine import transaction
from task_bridge.db.models import SessionContext
from task_bridge.errors import NotFound

logger = logging.getLogger(__name__)


def save_session_context(
    db: sqlite3.Connection,
    agent: str,
    project_path: str,
    working_on: str,
    progress_made: str,
    next_steps: str,
    current_task_id: str | None = None,
    open_questions: list[str] | None = None,
    files_in_focus: list[str] | None = None,
    important_notes: str = "",
) -> SessionContext:
    """Store a new snapshot. The task title is copied, not linked."""
    session_id = str(uuid.uuid4())
    with transaction(db):
        task_title = None
        if current_task_id:
            task_title = tasks_mod.require_task(db, current_task_id).title
        db.execute(
            """INSERT INTO sessions (
                   id, agent, project_path, current_task_id, task_title,
                   working_on, progress_made, next_steps,
                   open_questions, files_in_focus, important_notes, created_at
               ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                session_id,
                agent,
                project_path,
                current_task_id,
                task_title,
                working_on,
                progress_made,
                next_steps,
                dump_list(open_questions),
                dump_list(files_in_focus),
                important_notes or "",
                now_iso(),
            ),
        )
        log_event(db, agent, "session_saved", current_task_id, {"session_id": session_id})

    logger.info("Saved session %s for %s", session_id, agent)
    return get_session_context(db, session_id)


def get_session_context(db: sqlite3.Connection, session_id: str) -> SessionContext | None:
    row = db.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
    if not row:
        return None
    return _row_to_session(row)


def get_latest_session_context(
    db: sqlite3.Connection,
    agent: str,
    project_path: str,
) -> SessionContext | None:
    """The newest snapshot for this agent and project that has not been resumed."""
    row = db.execute(
        """SELECT * FROM sessions
           WHERE agent = ? AND project_path = ? AND resumed_at IS NULL
           ORDER BY created_at DESC, rowid DESC
           LIMIT 1""",
        (agent, project_path),
    ).fetchone()
    if not row:
        return None
    return _row_to_session(row)


def mark_session_resumed(db: sqlite3.Connection, session_id: str) -> bool:
    """Set resumed_at. Returns False if the session was already resumed or is unknown."""
    cursor = db.execute(
        "UPDATE sessions SET resumed_at = ? WHERE id = ? AND resumed_at IS NULL",
        (now_iso(), session_id),
    )
    return cursor.rowcount > 0


def load_session_context(
    db: sqlite3.Connection,
    agent: str,
    project_path: str,
    session_id: str | None = None,
) -> SessionContext | None:
    """Load a snapshot by ID, or the latest active one, and mark it resumed.

    Returns None when no ID is given and there is nothing to resume.
    """
    with transaction(db):
        if session_id:
            session = get_session_context(db, session_id)
            if session is None:
                raise NotFound(f"Session not found: {session_id}")
        else:
            session = get_latest_session_context(db, agent, project_path)
            if session is None:
                return None

        resumed = mark_session_resumed(db, session.id)
        log_event(
            db, agent, "session_resumed", session.current_task_id,
            {"session_id": session.id, "already_resumed": not resumed},
        )

    return get_session_context(db, session.id)


def list_session_contexts(
    db: sqlite3.Connection,
    project_path: str,
    agent: str | None = None,
    include_resumed: bool = False,
    limit: int | None = 10,
    offset: int = 0,
) -> list[SessionContext]:
    """Snapshots for a project, newest first."""
    sql = "SELECT * FROM sessions WHERE project_path = ?"
    params: list = [project_path]

    if agent:
        sql += " AND agent = ?"
        params.append(agent)

    if not include_resumed:
        sql += " AND resumed_at IS NULL"

    sql += " ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?"
    params.extend([limit if limit is not None else -1, offset])
    rows = db.execute(sql, params).fetchall()
    return [_row_to_session(r) for r in rows]


def _row_to_session(row: sqlite3.Row) -> SessionContext:
    return SessionContext(
        id=row["id"],
        agent=row["agent"],
        project_path=row["project_path"],
        working_on=row["working_on"],
        progress_made=row["progress_made"],
        next_steps=row["next_steps"],
        current_task_id=row["current_task_id"],
        task_title=row["task_title"],
        open_questions=load_list(row["open_questions"]),
        files_in_focus=load_list(row["files_in_focus"]),
        important_notes=row["important_notes"] or "",
        created_at=parse_dt(row["created_at"]),
        resumed_at=parse_dt(row["resumed_at"]),
    )
