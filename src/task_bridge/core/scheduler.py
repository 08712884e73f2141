"""Priority scheduling over the queue of tasks."""

import sqlite3

from task_bridge.core import tasks as tasks_mod
from task_bridge.core.dependencies import dependencies_met
from task_bridge.db.models import PRIORITY_RANK, Task


def _queued(
    db: sqlite3.Connection,
    categories: list[str] | None = None,
    assigned_to: str | None = None,
) -> list[Task]:
    """Queued tasks in scheduling order.

    With ``assigned_to``, unassigned tasks are included alongside the ones
    assigned to that role.
    """
    query = "SELECT * FROM tasks WHERE status = 'queued'"
    params: list = []

    if categories:
        query += f" AND category IN ({', '.join('?' for _ in categories)})"
        params.extend(categories)

    if assigned_to:
        query += " AND (assigned_to = ? OR assigned_to IS NULL)"
        params.append(assigned_to)

    query += f" ORDER BY {tasks_mod.QUEUE_ORDER_SQL}"
    rows = db.execute(query, params).fetchall()
    return [tasks_mod._row_to_task(r) for r in rows]


def pull_next_task(
    db: sqlite3.Connection,
    categories: list[str] | None = None,
    assigned_to: str | None = None,
) -> Task | None:
    """Return the most urgent, oldest queued task whose dependencies are complete.

    Returns None when nothing is eligible. Pulling does not claim.
    """
    for task in _queued(db, categories, assigned_to):
        if dependencies_met(db, task):
            return task
    return None


def get_ready_tasks(
    db: sqlite3.Connection,
    categories: list[str] | None = None,
    assigned_to: str | None = None,
) -> list[Task]:
    """Every queued task that could be claimed now, in scheduling order."""
    return [t for t in _queued(db, categories, assigned_to) if dependencies_met(db, t)]


def get_queue_position(db: sqlite3.Connection, task_id: str) -> int | None:
    """1-based rank of a queued task among all queued tasks, or None if not queued."""
    task = tasks_mod.require_task(db, task_id)
    if task.status != "queued":
        return None
    rank = PRIORITY_RANK[task.priority]
    row = db.execute(
        f"""SELECT COUNT(*) AS ahead FROM tasks
            WHERE status = 'queued'
              AND ({tasks_mod.PRIORITY_RANK_SQL} < ?
                   OR ({tasks_mod.PRIORITY_RANK_SQL} = ? AND sequence < ?))""",
        (rank, rank, task.sequence),
    ).fetchone()
    return row["ahead"] + 1
