"""JSON-ready dict views of engine records, shared by the MCP, web, and CLI surfaces."""

from datetime import datetime

from task_bridge.db.models import (
    Clarification,
    Decision,
    EventLogEntry,
    ProjectState,
    SessionContext,
    Task,
    TaskContext,
)
from task_bridge.errors import BridgeError


def iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def task_dict(task: Task) -> dict:
    return {
        "id": task.id,
        "sequence": task.sequence,
        "title": task.title,
        "status": task.status,
        "priority": task.priority,
        "category": task.category,
        "instructions": task.instructions,
        "acceptance_criteria": task.acceptance_criteria,
        "context_files": task.context_files,
        "context_summary": task.context_summary,
        "related_tasks": task.related_tasks,
        "depends_on": task.depends_on,
        "created_by": task.created_by,
        "assigned_to": task.assigned_to,
        "created_at": iso(task.created_at),
        "claimed_at": iso(task.claimed_at),
        "started_at": iso(task.started_at),
        "completed_at": iso(task.completed_at),
        "result": task.result.to_dict() if task.result else None,
    }


def task_summary(task: Task) -> dict:
    """The short form used in listings."""
    return {
        "id": task.id,
        "title": task.title,
        "priority": task.priority,
        "category": task.category,
        "status": task.status,
        "assigned_to": task.assigned_to,
        "created_at": iso(task.created_at),
        "depends_on_count": len(task.depends_on),
    }


def history_dict(task: Task) -> dict:
    d = {
        "id": task.id,
        "title": task.title,
        "category": task.category,
        "status": task.status,
        "created_at": iso(task.created_at),
        "completed_at": iso(task.completed_at),
        "result": None,
    }
    if task.result:
        d["result"] = {
            "success": task.result.success,
            "summary": task.result.summary,
            "files_modified": len(task.result.files_modified),
            "files_created": len(task.result.files_created),
        }
    return d


def clarification_dict(c: Clarification) -> dict:
    return {
        "id": c.id,
        "task_id": c.task_id,
        "question": c.question,
        "options": c.options,
        "response": c.response,
        "created_at": iso(c.created_at),
        "responded_at": iso(c.responded_at),
    }


def session_dict(s: SessionContext) -> dict:
    return {
        "id": s.id,
        "agent": s.agent,
        "saved_at": iso(s.created_at),
        "resumed_at": iso(s.resumed_at),
        "current_task": {"id": s.current_task_id, "title": s.task_title} if s.current_task_id else None,
        "working_on": s.working_on,
        "progress_made": s.progress_made,
        "next_steps": s.next_steps,
        "open_questions": s.open_questions,
        "files_in_focus": s.files_in_focus,
        "important_notes": s.important_notes,
    }


def session_summary(s: SessionContext) -> dict:
    working_on = s.working_on if len(s.working_on) <= 100 else s.working_on[:100] + "..."
    return {
        "id": s.id,
        "agent": s.agent,
        "saved_at": iso(s.created_at),
        "resumed_at": iso(s.resumed_at),
        "task_title": s.task_title,
        "working_on": working_on,
    }


def decision_dict(d: Decision) -> dict:
    return {
        "id": d.id,
        "summary": d.summary,
        "rationale": d.rationale,
        "made_by": d.made_by,
        "made_at": iso(d.made_at),
        "affects_files": d.affects_files,
    }


def state_dict(state: ProjectState, decisions: int | None = None) -> dict:
    recent = state.recent_decisions if decisions is None else state.recent_decisions[-decisions:]
    return {
        "current_focus": state.current_focus,
        "known_issues": state.known_issues,
        "last_sync": iso(state.last_sync),
        "recent_decisions": [decision_dict(d) for d in recent],
    }


def queue_summary(counts: dict[str, int]) -> dict:
    return {
        "queued": counts["queued"],
        "in_progress": counts["claimed"] + counts["in_progress"],
        "blocked": counts["blocked"],
        "completed_total": counts["completed"],
    }


def event_dict(e: EventLogEntry) -> dict:
    return {
        "id": e.id,
        "timestamp": iso(e.timestamp),
        "agent": e.agent,
        "event_type": e.event_type,
        "task_id": e.task_id,
        "payload": e.payload,
    }


def task_context_dict(ctx: TaskContext) -> dict:
    return {
        "task": task_dict(ctx.task),
        "dependencies": [task_dict(t) for t in ctx.dependencies],
        "dependents": [task_dict(t) for t in ctx.dependents],
        "all_files_touched": ctx.all_files_touched,
        "summary": {
            "task_status": ctx.task.status,
            "has_result": ctx.task.result is not None,
            "dependency_count": len(ctx.dependencies),
            "dependent_count": len(ctx.dependents),
            "total_files": len(ctx.all_files_touched),
        },
    }


def error_dict(e: BridgeError) -> dict:
    d = {"error": str(e), "error_type": e.code, "retryable": e.retryable}
    if current := getattr(e, "current_status", None):
        d["current_status"] = current
    return d
