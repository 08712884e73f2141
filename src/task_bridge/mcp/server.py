"""MCP server exposing the task bridge to the architect and executor agents.

The server mode decides which tool sets are registered: shared tools are
always present, planning tools are added for ``architect``, execution tools
for ``executor``, and both for ``full``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from task_bridge import views
from task_bridge.config import Config, get_config
from task_bridge.core import clarifications as clarifications_mod
from task_bridge.core import dependencies as dependencies_mod
from task_bridge.core import events as events_mod
from task_bridge.core import lifecycle
from task_bridge.core import project_state as state_mod
from task_bridge.core import scheduler
from task_bridge.core import sessions as sessions_mod
from task_bridge.core import tasks as tasks_mod
from task_bridge.db.engine import init_db
from task_bridge.db.models import TaskResult
from task_bridge.errors import BridgeError
from task_bridge.mcp.prompts import register_prompts

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


def _make_lifespan(config: Config):
    @asynccontextmanager
    async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
        """Open the database on startup, close it on shutdown."""
        db = init_db(config.db_path, config.busy_timeout_ms)
        logger.info("Task bridge started (mode=%s, db=%s)", config.mode, config.db_path)
        try:
            yield AppContext(db=db, config=config)
        finally:
            db.close()

    return app_lifespan


def create_server(config: Config | None = None) -> FastMCP:
    """Build a FastMCP server with the tool sets for ``config.mode``."""
    config = config or get_config()
    mcp = FastMCP(f"task-bridge-{config.mode}", lifespan=_make_lifespan(config))

    register_shared_tools(mcp, config.agent_role)
    if config.mode in ("architect", "full"):
        register_architect_tools(mcp)
    if config.mode in ("executor", "full"):
        register_executor_tools(mcp)
    register_prompts(mcp, config.mode)
    return mcp


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Shared Tools ──────────────────────────────────────────────────────────────


def register_shared_tools(mcp: FastMCP, role: str) -> None:
    """Tools available to both agents. ``role`` is recorded as the acting agent."""

    @mcp.tool()
    def list_tasks(
        ctx: Context,
        status: list[str] | None = None,
        assigned_to: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        """List tasks in queue order, optionally filtered by status and assignee."""
        db = _ctx(ctx).db
        tasks = tasks_mod.list_tasks(db, status=status, assigned_to=assigned_to, limit=limit, offset=offset)
        return {
            "tasks": [views.task_summary(t) for t in tasks],
            "total": len(tasks),
            "counts_by_status": tasks_mod.count_tasks_by_status(db),
        }

    @mcp.tool()
    def get_task(ctx: Context, task_id: str) -> dict:
        """Get full details of a task including its result."""
        db = _ctx(ctx).db
        try:
            task = tasks_mod.require_task(db, task_id)
        except BridgeError as e:
            return views.error_dict(e)
        return {"task": views.task_dict(task), "queue_position": scheduler.get_queue_position(db, task_id)}

    @mcp.tool()
    def get_history(
        ctx: Context,
        since: str | None = None,
        category: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        """List finished tasks (completed, failed, cancelled), most recent first."""
        try:
            tasks = tasks_mod.get_task_history(
                _ctx(ctx).db, since=since, category=category, limit=limit, offset=offset
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {"tasks": [views.history_dict(t) for t in tasks], "total": len(tasks)}

    @mcp.tool()
    def get_state(ctx: Context) -> dict:
        """Get the shared project state and a summary of the queue."""
        db = _ctx(ctx).db
        state = state_mod.get_project_state(db)
        return {
            "state": views.state_dict(state, decisions=10),
            "queue_summary": views.queue_summary(tasks_mod.count_tasks_by_status(db)),
        }

    @mcp.tool()
    def update_state(
        ctx: Context,
        current_focus: str | None = None,
        clear_focus: bool = False,
        known_issues: list[str] | None = None,
    ) -> dict:
        """Update the current focus and/or replace the list of known issues.

        Set clear_focus to remove the current focus.
        """
        kwargs = {}
        if clear_focus:
            kwargs["current_focus"] = None
        elif current_focus is not None:
            kwargs["current_focus"] = current_focus
        if known_issues is not None:
            kwargs["known_issues"] = known_issues
        if not kwargs:
            return {"success": False, "message": "No updates provided"}
        try:
            state = state_mod.update_project_state(_ctx(ctx).db, role, **kwargs)
        except BridgeError as e:
            return views.error_dict(e)
        return {"success": True, "state": views.state_dict(state, decisions=10)}

    @mcp.tool()
    def log_decision(
        ctx: Context,
        summary: str,
        rationale: str,
        affects_files: list[str] | None = None,
    ) -> dict:
        """Record an architectural decision visible to both agents."""
        try:
            decision = state_mod.add_decision(_ctx(ctx).db, role, summary, rationale, affects_files)
        except BridgeError as e:
            return views.error_dict(e)
        return {"decision_id": decision.id, "logged_at": views.iso(decision.made_at)}

    @mcp.tool()
    def sync(ctx: Context) -> dict:
        """Mark a sync point after reviewing the shared state."""
        try:
            state = state_mod.log_sync_point(_ctx(ctx).db, role)
        except BridgeError as e:
            return views.error_dict(e)
        return {"synced_at": views.iso(state.last_sync), "agent": role}

    @mcp.tool()
    def get_events(
        ctx: Context,
        since: str | None = None,
        task_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict:
        """Read the audit log, newest first."""
        try:
            events = events_mod.get_events(_ctx(ctx).db, since=since, task_id=task_id, limit=limit, offset=offset)
        except BridgeError as e:
            return views.error_dict(e)
        return {"events": [views.event_dict(e) for e in events], "total": len(events)}

    @mcp.tool()
    def save_context(
        ctx: Context,
        working_on: str,
        progress_made: str,
        next_steps: str,
        current_task_id: str | None = None,
        open_questions: list[str] | None = None,
        files_in_focus: list[str] | None = None,
        important_notes: str = "",
    ) -> dict:
        """Save a snapshot of your working context so you can resume later."""
        app = _ctx(ctx)
        try:
            session = sessions_mod.save_session_context(
                app.db,
                role,
                str(app.config.project_path),
                working_on,
                progress_made,
                next_steps,
                current_task_id=current_task_id,
                open_questions=open_questions,
                files_in_focus=files_in_focus,
                important_notes=important_notes,
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {
            "session_id": session.id,
            "saved_at": views.iso(session.created_at),
            "message": "Context saved. Use load_context when you return to resume.",
        }

    @mcp.tool()
    def load_context(ctx: Context, session_id: str | None = None) -> dict:
        """Resume a saved session: by ID, or your latest unresumed one."""
        app = _ctx(ctx)
        try:
            session = sessions_mod.load_session_context(
                app.db, role, str(app.config.project_path), session_id
            )
        except BridgeError as e:
            return views.error_dict(e)
        if session is None:
            return {
                "found": False,
                "message": "No saved session context found. This appears to be a fresh start.",
            }
        return {"found": True, "session": views.session_dict(session)}

    @mcp.tool()
    def list_sessions(
        ctx: Context,
        include_resumed: bool = False,
        limit: int = 10,
        offset: int = 0,
    ) -> dict:
        """List your saved sessions, newest first."""
        app = _ctx(ctx)
        sessions = sessions_mod.list_session_contexts(
            app.db,
            str(app.config.project_path),
            agent=role,
            include_resumed=include_resumed,
            limit=limit,
            offset=offset,
        )
        return {"sessions": [views.session_summary(s) for s in sessions], "total": len(sessions)}

    @mcp.tool()
    def load_task_context(
        ctx: Context,
        task_id: str,
        include_dependencies: bool = True,
        include_dependents: bool = False,
    ) -> dict:
        """Load a task with its dependency chain and the files it touched."""
        try:
            context = dependencies_mod.load_task_context(
                _ctx(ctx).db, task_id, include_dependencies, include_dependents
            )
        except BridgeError as e:
            return views.error_dict(e)
        return views.task_context_dict(context)


# ── Architect Tools ───────────────────────────────────────────────────────────


def register_architect_tools(mcp: FastMCP) -> None:
    """Planning tools: create and steer work, answer questions."""

    @mcp.tool()
    def push_task(
        ctx: Context,
        title: str,
        instructions: str,
        acceptance_criteria: list[str],
        priority: str = "normal",
        category: str = "feature",
        context_files: list[str] | None = None,
        context_summary: str | None = None,
        depends_on: list[str] | None = None,
        assign_to: str | None = None,
    ) -> dict:
        """Queue a new task for the executor. Priority: critical, high, normal, low."""
        db = _ctx(ctx).db
        try:
            task = tasks_mod.create_task(
                db,
                "architect",
                title,
                instructions,
                acceptance_criteria,
                priority=priority,
                category=category,
                context_files=context_files,
                context_summary=context_summary,
                depends_on=depends_on,
                assigned_to=assign_to,
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {
            "task_id": task.id,
            "queue_position": scheduler.get_queue_position(db, task.id),
            "status": task.status,
        }

    @mcp.tool()
    def push_tasks(ctx: Context, tasks: list[dict], execution_order: str = "parallel") -> dict:
        """Queue several tasks at once.

        Each dict takes the push_task fields. With execution_order 'sequential'
        each task depends on the previous one.
        """
        entries = []
        for entry in tasks:
            entry = dict(entry)
            if "assign_to" in entry:
                entry["assigned_to"] = entry.pop("assign_to")
            entries.append(entry)
        try:
            created = tasks_mod.create_tasks(
                _ctx(ctx).db, "architect", entries, sequential=execution_order == "sequential"
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {
            "task_ids": [t.id for t in created],
            "count": len(created),
            "dependencies_created": execution_order == "sequential",
        }

    @mcp.tool()
    def update_task(ctx: Context, task_id: str, updates: dict) -> dict:
        """Update a task that has not finished: title, instructions, acceptance_criteria,
        priority, context_files, context_summary, related_tasks, or assigned_to."""
        try:
            task = tasks_mod.update_task(_ctx(ctx).db, "architect", task_id, updates)
        except BridgeError as e:
            return views.error_dict(e)
        return {"success": True, "task_id": task.id, "updated_fields": sorted(updates)}

    @mcp.tool()
    def cancel_task(ctx: Context, task_id: str, reason: str | None = None) -> dict:
        """Cancel a queued or blocked task. Tasks in progress cannot be cancelled."""
        try:
            task = lifecycle.cancel_task(_ctx(ctx).db, "architect", task_id, reason)
        except BridgeError as e:
            return views.error_dict(e)
        return {"success": True, "task_id": task.id, "status": task.status}

    @mcp.tool()
    def respond_clarification(ctx: Context, clarification_id: str, response: str) -> dict:
        """Answer a clarification request. The executor resumes the task afterwards."""
        try:
            clarification = clarifications_mod.respond_to_clarification(
                _ctx(ctx).db, "architect", clarification_id, response
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {
            "success": True,
            "clarification_id": clarification.id,
            "task_id": clarification.task_id,
        }

    @mcp.tool()
    def get_clarifications(ctx: Context) -> dict:
        """List clarification requests still waiting for an answer."""
        pending = clarifications_mod.get_pending_clarifications(_ctx(ctx).db)
        return {
            "count": len(pending),
            "clarifications": [views.clarification_dict(c) for c in pending],
        }


# ── Executor Tools ────────────────────────────────────────────────────────────


def register_executor_tools(mcp: FastMCP) -> None:
    """Execution tools: take work from the queue and report on it."""

    @mcp.tool()
    def pull_task(ctx: Context, categories: list[str] | None = None) -> dict:
        """Peek at the next task you should work on. Does not claim it."""
        task = scheduler.pull_next_task(_ctx(ctx).db, categories=categories, assigned_to="executor")
        if not task:
            return {
                "available": False,
                "message": "No tasks available in queue (or all have unmet dependencies)",
            }
        return {"available": True, "task": views.task_dict(task)}

    @mcp.tool()
    def claim_task(ctx: Context, task_id: str) -> dict:
        """Claim a queued task before starting work on it."""
        try:
            task = lifecycle.claim_task(_ctx(ctx).db, "executor", task_id)
        except BridgeError as e:
            return views.error_dict(e)
        return {"success": True, "task": views.task_dict(task)}

    @mcp.tool()
    def report_progress(
        ctx: Context,
        task_id: str,
        status: str,
        message: str,
        files_touched: list[str] | None = None,
    ) -> dict:
        """Report progress. Status is 'in_progress', or 'blocked' if you cannot continue."""
        try:
            task = lifecycle.report_progress(
                _ctx(ctx).db, "executor", task_id, status, message, files_touched
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {"acknowledged": True, "task_id": task.id, "current_status": task.status}

    @mcp.tool()
    def complete_task(
        ctx: Context,
        task_id: str,
        success: bool,
        summary: str,
        files_modified: list[str] | None = None,
        files_created: list[str] | None = None,
        files_deleted: list[str] | None = None,
        commits: list[str] | None = None,
        blockers: list[str] | None = None,
        follow_up_tasks: list[str] | None = None,
    ) -> dict:
        """Mark a task completed with a summary of what changed."""
        db = _ctx(ctx).db
        result = TaskResult(
            success=success,
            summary=summary,
            files_modified=files_modified or [],
            files_created=files_created or [],
            files_deleted=files_deleted or [],
            commits=commits,
            blockers=blockers,
            follow_up_tasks=follow_up_tasks,
        )
        try:
            task = lifecycle.complete_task(db, "executor", task_id, result)
        except BridgeError as e:
            return views.error_dict(e)
        next_task = scheduler.pull_next_task(db, assigned_to="executor")
        return {
            "success": True,
            "task_id": task.id,
            "next_task": (
                {"id": next_task.id, "title": next_task.title, "priority": next_task.priority}
                if next_task
                else None
            ),
        }

    @mcp.tool()
    def fail_task(
        ctx: Context,
        task_id: str,
        error: str,
        recoverable: bool = False,
        blockers: list[str] | None = None,
    ) -> dict:
        """Mark a task failed, with the error and anything blocking a retry."""
        try:
            task = lifecycle.fail_task(_ctx(ctx).db, "executor", task_id, error, recoverable, blockers)
        except BridgeError as e:
            return views.error_dict(e)
        return {"success": True, "task_id": task.id, "recoverable": recoverable}

    @mcp.tool()
    def request_clarification(
        ctx: Context,
        task_id: str,
        question: str,
        options: list[str] | None = None,
    ) -> dict:
        """Ask the architect a question. The task is blocked until answered and resumed."""
        try:
            clarification = clarifications_mod.request_clarification(
                _ctx(ctx).db, "executor", task_id, question, options
            )
        except BridgeError as e:
            return views.error_dict(e)
        return {
            "request_id": clarification.id,
            "task_id": task_id,
            "status": "blocked",
            "message": "Task blocked pending clarification from Architect",
        }

    @mcp.tool()
    def resume_task(ctx: Context, task_id: str) -> dict:
        """Resume a blocked task once its clarifications have been answered."""
        db = _ctx(ctx).db
        try:
            task = lifecycle.resume_task(db, "executor", task_id)
        except BridgeError as e:
            return views.error_dict(e)
        answers = [
            views.clarification_dict(c)
            for c in clarifications_mod.list_clarifications(db, task_id)
        ]
        return {"success": True, "task_id": task.id, "status": task.status, "clarifications": answers}
