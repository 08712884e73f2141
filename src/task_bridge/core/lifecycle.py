"""Task status lifecycle.

Every status change goes through ``_transition``, which runs inside one
IMMEDIATE transaction: it re-reads the task, checks the move against
``TRANSITIONS``, writes the new status with a compare-and-set, and appends the
audit event. Two agents racing for the same task therefore cannot both win;
the loser sees the winner's status and gets ``InvalidStateTransition``.

    queued -> claimed -> in_progress -> completed
    claimed | in_progress -> blocked -> in_progress   (resume)
    queued | blocked -> cancelled
    claimed | in_progress | blocked -> failed
"""

import logging
import sqlite3

from task_bridge.core import tasks as tasks_mod
from task_bridge.core.dependencies import unmet_dependencies
from task_bridge.core.events import log_event
from task_bridge.db.codec import now_iso
from task_bridge.db.engine import transaction
from task_bridge.db.models import Task, TaskResult
from task_bridge.errors import DependencyUnmet, InvalidStateTransition, ValidationError

logger = logging.getLogger(__name__)

# action -> (statuses it may start from, status it leads to)
TRANSITIONS: dict[str, tuple[frozenset[str], str]] = {
    "claim": (frozenset({"queued"}), "claimed"),
    "start": (frozenset({"claimed", "in_progress"}), "in_progress"),
    "block": (frozenset({"claimed", "in_progress"}), "blocked"),
    "resume": (frozenset({"blocked"}), "in_progress"),
    "complete": (frozenset({"claimed", "in_progress"}), "completed"),
    "fail": (frozenset({"claimed", "in_progress", "blocked"}), "failed"),
    "cancel": (frozenset({"queued", "blocked"}), "cancelled"),
}

PROGRESS_ACTIONS = {"in_progress": "start", "blocked": "block"}


def can_transition(status: str, action: str) -> bool:
    allowed, _ = TRANSITIONS[action]
    return status in allowed


def ensure_transition(task: Task, action: str) -> str:
    """Return the target status of ``action`` or raise if the task cannot take it."""
    if not can_transition(task.status, action):
        raise InvalidStateTransition(
            f"Cannot {action} task {task.id}: current status is {task.status}",
            task.status,
        )
    return TRANSITIONS[action][1]


def _transition(
    db: sqlite3.Connection,
    agent: str,
    task: Task,
    action: str,
    event_type: str,
    payload: dict | None = None,
    **fields,
) -> Task:
    target = ensure_transition(task, action)
    if not tasks_mod.set_status(db, task.id, task.status, target, **fields):
        current = tasks_mod.require_task(db, task.id)
        raise InvalidStateTransition(
            f"Cannot {action} task {task.id}: current status is {current.status}",
            current.status,
        )
    log_event(db, agent, event_type, task.id, payload)
    logger.info("Task %s %s -> %s (%s by %s)", task.id, task.status, target, action, agent)
    return tasks_mod.get_task(db, task.id)


def claim_task(db: sqlite3.Connection, agent: str, task_id: str) -> Task:
    """Claim a queued task whose dependencies have all completed."""
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        ensure_transition(task, "claim")
        unmet = unmet_dependencies(db, task)
        if unmet:
            detail = ", ".join(f"{dep_id} ({status or 'missing'})" for dep_id, status in unmet.items())
            raise DependencyUnmet(
                f"Task {task_id} has incomplete dependencies: {detail}", list(unmet)
            )
        return _transition(
            db, agent, task, "claim", "task_claimed",
            assigned_to=agent,
            claimed_at=now_iso(),
        )


def report_progress(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    status: str,
    message: str,
    files_touched: list[str] | None = None,
) -> Task:
    """Record progress, moving the task to ``in_progress`` or ``blocked``."""
    action = PROGRESS_ACTIONS.get(status)
    if action is None:
        raise ValidationError(f"Progress status must be in_progress or blocked, got {status!r}")

    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        fields = {}
        if task.status == "claimed" and task.started_at is None:
            fields["started_at"] = now_iso()
        payload = {"status": status, "message": message}
        if files_touched:
            payload["files_touched"] = files_touched
        return _transition(db, agent, task, action, "progress_reported", payload, **fields)


def complete_task(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    result: TaskResult,
) -> Task:
    """Finish a claimed or in-progress task with its result."""
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        payload = {
            "success": result.success,
            "summary": result.summary,
            "files_modified": len(result.files_modified),
            "files_created": len(result.files_created),
            "files_deleted": len(result.files_deleted),
        }
        return _transition(
            db, agent, task, "complete", "task_completed", payload,
            completed_at=now_iso(),
            result=result,
        )


def fail_task(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    error: str,
    recoverable: bool = False,
    blockers: list[str] | None = None,
) -> Task:
    """Give up on a task, recording the error as an unsuccessful result."""
    result = TaskResult(success=False, summary=error, blockers=blockers)
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        payload = {"error": error, "recoverable": recoverable}
        if blockers:
            payload["blockers"] = blockers
        return _transition(
            db, agent, task, "fail", "task_failed", payload,
            completed_at=now_iso(),
            result=result,
        )


def cancel_task(
    db: sqlite3.Connection,
    agent: str,
    task_id: str,
    reason: str | None = None,
) -> Task:
    """Cancel a queued or blocked task. The reason goes to the event log only."""
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        return _transition(
            db, agent, task, "cancel", "task_cancelled", {"reason": reason},
            completed_at=now_iso(),
        )


def block_task(
    db: sqlite3.Connection,
    agent: str,
    task: Task,
    event_type: str,
    payload: dict | None = None,
) -> Task:
    """Move a claimed or in-progress task to blocked inside the caller's transaction."""
    return _transition(db, agent, task, "block", event_type, payload)


def resume_task(db: sqlite3.Connection, agent: str, task_id: str) -> Task:
    """Move a blocked task back to in_progress once nothing is left unanswered."""
    with transaction(db):
        task = tasks_mod.require_task(db, task_id)
        ensure_transition(task, "resume")
        pending = db.execute(
            "SELECT COUNT(*) AS n FROM clarifications WHERE task_id = ? AND response IS NULL",
            (task_id,),
        ).fetchone()["n"]
        if pending:
            raise ValidationError(
                f"Task {task_id} still has {pending} unanswered clarification(s)"
            )
        fields = {}
        if task.started_at is None:
            fields["started_at"] = now_iso()
        return _transition(db, agent, task, "resume", "task_resumed", **fields)
