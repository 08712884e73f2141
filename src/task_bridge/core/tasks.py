"""Task store: creation, lookup, field updates, and listing."""

import logging
import sqlite3
import uuid
from datetime import datetime

from task_bridge.core.events import log_event
from task_bridge.core.sequence import next_sequence
from task_bridge.db.codec import (
    dump_list,
    dump_result,
    load_list,
    load_result,
    now_iso,
    parse_dt,
    since_param,
)
from task_bridge.db.engine import transaction
from task_bridge.db.models import (
    AGENT_ROLES,
    CATEGORIES,
    PRIORITIES,
    PRIORITY_RANK,
    STATUSES,
    TERMINAL_STATUSES,
    Task,
)
from task_bridge.errors import DependencyNotFound, InvalidStateTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)

# Fields a caller may change directly. Status and its timestamps only move
# through the lifecycle module.
UPDATABLE_FIELDS = frozenset({
    "title",
    "instructions",
    "acceptance_criteria",
    "priority",
    "context_files",
    "context_summary",
    "related_tasks",
    "assigned_to",
})
LIST_FIELDS = frozenset({"acceptance_criteria", "context_files", "related_tasks", "depends_on"})
CREATE_FIELDS = UPDATABLE_FIELDS | {"category", "depends_on"}
CHOICES = {"priority": PRIORITIES, "category": CATEGORIES, "assigned_to": AGENT_ROLES}

PRIORITY_RANK_SQL = "CASE priority {} END".format(
    " ".join(f"WHEN '{name}' THEN {rank}" for name, rank in PRIORITY_RANK.items())
)
QUEUE_ORDER_SQL = f"{PRIORITY_RANK_SQL} ASC, sequence ASC"


def create_task(
    db: sqlite3.Connection,
    agent: str,
    title: str,
    instructions: str,
    acceptance_criteria: list[str] | None = None,
    priority: str = "normal",
    category: str = "feature",
    context_files: list[str] | None = None,
    context_summary: str | None = None,
    related_tasks: list[str] | None = None,
    depends_on: list[str] | None = None,
    assigned_to: str | None = None,
    batch: bool = False,
) -> Task:
    """Create a queued task. Every dependency must already exist."""
    _check_choices({"priority": priority, "category": category, "assigned_to": assigned_to})
    depends_on = list(dict.fromkeys(depends_on or []))

    with transaction(db):
        missing = [dep_id for dep_id in depends_on if not _exists(db, dep_id)]
        if missing:
            raise DependencyNotFound(
                f"Dependency task not found: {', '.join(missing)}", missing
            )

        task_id = str(uuid.uuid4())
        sequence = next_sequence(db)
        db.execute(
            """INSERT INTO tasks (
                   id, sequence, priority, category, status, title, instructions,
                   acceptance_criteria, context_files, context_summary, related_tasks,
                   depends_on, created_by, assigned_to, created_at
               ) VALUES (?, ?, ?, ?, 'queued', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                task_id,
                sequence,
                priority,
                category,
                title,
                instructions,
                dump_list(acceptance_criteria),
                dump_list(context_files),
                context_summary,
                dump_list(related_tasks),
                dump_list(depends_on),
                agent,
                assigned_to,
                now_iso(),
            ),
        )
        payload = {"title": title, "priority": priority, "sequence": sequence}
        if depends_on:
            payload["depends_on"] = depends_on
        if batch:
            payload["batch"] = True
        log_event(db, agent, "task_created", task_id, payload)

    logger.info("Created task %s (seq %d, %s)", task_id, sequence, priority)
    return get_task(db, task_id)


def create_tasks(
    db: sqlite3.Connection,
    agent: str,
    entries: list[dict],
    sequential: bool = False,
) -> list[Task]:
    """Create several tasks at once. Each dict holds ``create_task`` keyword arguments.

    With ``sequential`` every task also depends on the one before it. Either all
    tasks are created or none are.
    """
    for i, entry in enumerate(entries):
        unknown = sorted(set(entry) - CREATE_FIELDS)
        if unknown:
            raise ValidationError(f"Task {i}: unknown fields: {', '.join(unknown)}")
        if not entry.get("title") or not entry.get("instructions"):
            raise ValidationError(f"Task {i}: title and instructions are required")

    created: list[Task] = []
    with transaction(db):
        previous_id = None
        for entry in entries:
            fields = dict(entry)
            depends_on = list(fields.pop("depends_on", None) or [])
            if sequential and previous_id:
                depends_on.append(previous_id)
            task = create_task(db, agent, depends_on=depends_on, batch=True, **fields)
            created.append(task)
            previous_id = task.id
    return created


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_task(row)


def require_task(db: sqlite3.Connection, task_id: str) -> Task:
    """Get a task by ID, raising ``NotFound`` if it does not exist."""
    task = get_task(db, task_id)
    if task is None:
        raise NotFound(f"Task not found: {task_id}")
    return task


def update_task(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    updates: dict,
) -> Task:
    """Change descriptive fields of a task that has not reached a terminal status."""
    rejected = sorted(set(updates) - UPDATABLE_FIELDS)
    if rejected:
        raise ValidationError(f"Fields cannot be updated directly: {', '.join(rejected)}")
    _check_choices(updates)

    with transaction(db):
        task = require_task(db, task_id)
        if task.is_terminal:
            raise InvalidStateTransition(
                f"Cannot update task in {task.status} state", task.status
            )
        if not updates:
            return task

        values = {
            k: dump_list(v) if k in LIST_FIELDS else v
            for k, v in updates.items()
        }
        set_clause = ", ".join(f"{k} = ?" for k in values)
        db.execute(
            f"UPDATE tasks SET {set_clause} WHERE id = ?",
            list(values.values()) + [task_id],
        )
        log_event(db, agent, "task_updated", task_id, {"updates": sorted(updates)})

    return get_task(db, task_id)


def set_status(
    db: sqlite3.Connection,
    task_id: str,
    expected_status: str,
    new_status: str,
    **fields,
) -> bool:
    """Compare-and-set a task's status together with lifecycle fields.

    Only the lifecycle module calls this. Returns False when the stored status
    no longer equals ``expected_status``.
    """
    if "result" in fields:
        fields["result"] = dump_result(fields["result"])
    values = {"status": new_status, **fields}
    set_clause = ", ".join(f"{k} = ?" for k in values)
    cursor = db.execute(
        f"UPDATE tasks SET {set_clause} WHERE id = ? AND status = ?",
        list(values.values()) + [task_id, expected_status],
    )
    return cursor.rowcount > 0


def list_tasks(
    db: sqlite3.Connection,
    status: str | list[str] | None = None,
    assigned_to: str | None = None,
    category: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Task]:
    """List tasks in scheduling order: priority rank, then sequence."""
    query = "SELECT * FROM tasks WHERE 1=1"
    params: list = []

    if status:
        statuses = [status] if isinstance(status, str) else list(status)
        query += f" AND status IN ({', '.join('?' for _ in statuses)})"
        params.extend(statuses)

    if assigned_to:
        query += " AND assigned_to = ?"
        params.append(assigned_to)

    if category:
        query += " AND category = ?"
        params.append(category)

    query += f" ORDER BY {QUEUE_ORDER_SQL} LIMIT ? OFFSET ?"
    params.extend([limit if limit is not None else -1, offset])
    rows = db.execute(query, params).fetchall()
    return [_row_to_task(r) for r in rows]


def count_tasks_by_status(db: sqlite3.Connection) -> dict[str, int]:
    """Number of tasks in each status, with every status present."""
    counts = {s: 0 for s in STATUSES}
    rows = db.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status").fetchall()
    for row in rows:
        counts[row["status"]] = row["n"]
    return counts


def get_task_history(
    db: sqlite3.Connection,
    since: str | datetime | None = None,
    category: str | None = None,
    limit: int | None = 20,
    offset: int = 0,
) -> list[Task]:
    """Tasks in a terminal status, most recently finished first."""
    terminal = sorted(TERMINAL_STATUSES)
    query = f"SELECT * FROM tasks WHERE status IN ({', '.join('?' for _ in terminal)})"
    params: list = list(terminal)

    if since is not None:
        query += " AND completed_at >= ?"
        params.append(since_param(since))

    if category:
        query += " AND category = ?"
        params.append(category)

    query += " ORDER BY completed_at DESC, sequence DESC LIMIT ? OFFSET ?"
    params.extend([limit if limit is not None else -1, offset])
    rows = db.execute(query, params).fetchall()
    return [_row_to_task(r) for r in rows]


def get_tasks(db: sqlite3.Connection, task_ids: list[str]) -> dict[str, Task]:
    """Look up several tasks at once, keyed by ID. Unknown IDs are omitted."""
    if not task_ids:
        return {}
    rows = db.execute(
        f"SELECT * FROM tasks WHERE id IN ({', '.join('?' for _ in task_ids)})",
        list(task_ids),
    ).fetchall()
    return {r["id"]: _row_to_task(r) for r in rows}


def _check_choices(values: dict) -> None:
    for name, allowed in CHOICES.items():
        value = values.get(name)
        if value is not None and value not in allowed:
            raise ValidationError(f"Invalid {name} {value!r}, expected one of: {', '.join(allowed)}")


def _exists(db: sqlite3.Connection, task_id: str) -> bool:
    return db.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is not None


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        sequence=row["sequence"],
        title=row["title"],
        instructions=row["instructions"],
        created_by=row["created_by"],
        priority=row["priority"],
        category=row["category"],
        status=row["status"],
        acceptance_criteria=load_list(row["acceptance_criteria"]),
        context_files=load_list(row["context_files"]),
        context_summary=row["context_summary"],
        related_tasks=load_list(row["related_tasks"]),
        depends_on=load_list(row["depends_on"]),
        assigned_to=row["assigned_to"],
        created_at=parse_dt(row["created_at"]),
        claimed_at=parse_dt(row["claimed_at"]),
        started_at=parse_dt(row["started_at"]),
        completed_at=parse_dt(row["completed_at"]),
        result=load_result(row["result"]),
    )
