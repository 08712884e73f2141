"""CLI entry point for the task bridge."""

import json
import logging
import sys

import click

from task_bridge import views
from task_bridge.config import MODES, get_config
from task_bridge.core import clarifications as clarifications_mod
from task_bridge.core import events as events_mod
from task_bridge.core import lifecycle
from task_bridge.core import project_state as state_mod
from task_bridge.core import scheduler
from task_bridge.core import sessions as sessions_mod
from task_bridge.core import tasks as tasks_mod
from task_bridge.db.engine import get_db
from task_bridge.db.models import AGENT_ROLES, CATEGORIES, PRIORITIES, STATUSES
from task_bridge.errors import BridgeError

STATUS_ICONS = {
    "queued": "○",
    "claimed": "◐",
    "in_progress": "●",
    "blocked": "✗",
    "completed": "✓",
    "failed": "!",
    "cancelled": "-",
}


def _get_db():
    config = get_config()
    return get_db(config.db_path, config.busy_timeout_ms)


def _fail(e: BridgeError):
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@click.group()
def main():
    """bridge - Task Bridge CLI"""
    pass


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--mode", type=click.Choice(MODES), default=None, help="Tool set to expose (default: BRIDGE_MODE or full)")
@click.option("--log-level", default=None, help="Logging level (default: BRIDGE_LOG_LEVEL or WARNING)")
def serve(mode, log_level):
    """Run the MCP server over stdio."""
    from task_bridge.mcp.server import create_server

    config = get_config()
    if mode:
        config.mode = mode
    # stdout carries the MCP protocol, so logs go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_server(config).run()


@main.command("web")
@click.option("--host", default="127.0.0.1", help="Host to bind")
@click.option("--port", default=8788, type=int, help="Port to bind")
def web(host, port):
    """Run the read-only dashboard."""
    from task_bridge.web.app import run_server

    click.echo(f"Dashboard at http://{host}:{port}")
    run_server(host, port)


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("title")
@click.option("--instructions", "-i", required=True, help="What the executor should do")
@click.option("--criterion", "-c", "criteria", multiple=True, help="Acceptance criterion (repeatable)")
@click.option("--priority", "-p", type=click.Choice(PRIORITIES), default="normal")
@click.option("--category", type=click.Choice(CATEGORIES), default="feature")
@click.option("--depends-on", default=None, help="Comma-separated task IDs this depends on")
@click.option("--context-file", "context_files", multiple=True, help="File to read first (repeatable)")
@click.option("--summary", default=None, help="Why this task matters")
@click.option("--assign-to", type=click.Choice(AGENT_ROLES), default=None)
def task_add(title, instructions, criteria, priority, category, depends_on, context_files, summary, assign_to):
    """Queue a new task."""
    deps = [d.strip() for d in depends_on.split(",") if d.strip()] if depends_on else None

    with _get_db() as db:
        try:
            task = tasks_mod.create_task(
                db,
                "architect",
                title,
                instructions,
                list(criteria),
                priority=priority,
                category=category,
                context_files=list(context_files),
                context_summary=summary,
                depends_on=deps,
                assigned_to=assign_to,
            )
        except BridgeError as e:
            _fail(e)
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Priority: {task.priority}")
        click.echo(f"  Status: {task.status}")
        click.echo(f"  Queue position: {scheduler.get_queue_position(db, task.id)}")
        if task.depends_on:
            click.echo(f"  Depends on: {', '.join(task.depends_on)}")


@task_group.command("list")
@click.option("--status", "statuses", multiple=True, type=click.Choice(STATUSES), help="Filter by status (repeatable)")
@click.option("--assigned-to", type=click.Choice(AGENT_ROLES), default=None)
@click.option("--limit", default=None, type=int)
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(statuses, assigned_to, limit, json_output):
    """List tasks in queue order."""
    with _get_db() as db:
        tasks = tasks_mod.list_tasks(db, status=list(statuses) or None, assigned_to=assigned_to, limit=limit)

        if json_output:
            click.echo(json.dumps([views.task_summary(t) for t in tasks], indent=2))
            return

        if not tasks:
            click.echo("No tasks found.")
            return

        for task in tasks:
            icon = STATUS_ICONS.get(task.status, "?")
            deps = f" [depends: {len(task.depends_on)}]" if task.depends_on else ""
            click.echo(f"  {icon} #{task.sequence} {task.priority:<8} {task.id}: {task.title} ({task.status}){deps}")


@task_group.command("show")
@click.argument("task_id")
def task_show(task_id):
    """Show task details, clarifications, and history."""
    with _get_db() as db:
        try:
            task = tasks_mod.require_task(db, task_id)
        except BridgeError as e:
            _fail(e)

        click.echo(f"Task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Sequence: {task.sequence}")
        click.echo(f"  Priority: {task.priority}")
        click.echo(f"  Category: {task.category}")
        click.echo(f"  Status: {task.status}")
        if task.assigned_to:
            click.echo(f"  Assigned to: {task.assigned_to}")
        click.echo(f"  Instructions: {task.instructions}")
        if task.acceptance_criteria:
            click.echo("  Acceptance criteria:")
            for criterion in task.acceptance_criteria:
                click.echo(f"    - {criterion}")
        if task.depends_on:
            click.echo(f"  Depends on: {', '.join(task.depends_on)}")
        if task.result:
            outcome = "success" if task.result.success else "failure"
            click.echo(f"  Result ({outcome}): {task.result.summary}")

        for c in clarifications_mod.list_clarifications(db, task_id):
            answer = c.response if c.response is not None else "(pending)"
            click.echo(f"  Q [{c.id}]: {c.question}")
            click.echo(f"    A: {answer}")

        events = events_mod.get_events(db, task_id=task_id, limit=None)
        if events:
            click.echo("  History:")
            for e in reversed(events):
                click.echo(f"    [{views.iso(e.timestamp)}] {e.agent} {e.event_type}")


@task_group.command("update")
@click.argument("task_id")
@click.option("--title", default=None)
@click.option("--instructions", "-i", default=None)
@click.option("--priority", "-p", type=click.Choice(PRIORITIES), default=None)
@click.option("--assign-to", type=click.Choice(AGENT_ROLES), default=None)
def task_update(task_id, title, instructions, priority, assign_to):
    """Change a task that has not finished."""
    updates = {
        k: v
        for k, v in {
            "title": title,
            "instructions": instructions,
            "priority": priority,
            "assigned_to": assign_to,
        }.items()
        if v is not None
    }
    with _get_db() as db:
        try:
            task = tasks_mod.update_task(db, "architect", task_id, updates)
        except BridgeError as e:
            _fail(e)
        click.echo(f"Updated {task.id}: {', '.join(sorted(updates)) or 'nothing to change'}")


@task_group.command("cancel")
@click.argument("task_id")
@click.option("--reason", default=None, help="Why the task is cancelled")
def task_cancel(task_id, reason):
    """Cancel a queued or blocked task."""
    with _get_db() as db:
        try:
            lifecycle.cancel_task(db, "architect", task_id, reason)
        except BridgeError as e:
            _fail(e)
        click.echo(f"Cancelled task: {task_id}")


@task_group.command("next")
@click.option("--category", "categories", multiple=True, type=click.Choice(CATEGORIES))
def task_next(categories):
    """Show which task the executor would pull next."""
    with _get_db() as db:
        task = scheduler.pull_next_task(db, categories=list(categories) or None, assigned_to="executor")
        if not task:
            click.echo("No tasks available.")
            return
        click.echo(f"Next: {task.id}: {task.title} ({task.priority}, #{task.sequence})")


@task_group.command("history")
@click.option("--since", default=None, help="ISO timestamp lower bound on completion")
@click.option("--category", type=click.Choice(CATEGORIES), default=None)
@click.option("--limit", default=20, type=int)
def task_history(since, category, limit):
    """List finished tasks, most recent first."""
    with _get_db() as db:
        try:
            tasks = tasks_mod.get_task_history(db, since=since, category=category, limit=limit)
        except BridgeError as e:
            _fail(e)
        if not tasks:
            click.echo("No finished tasks.")
            return
        for task in tasks:
            icon = STATUS_ICONS.get(task.status, "?")
            summary = f" - {task.result.summary}" if task.result else ""
            click.echo(f"  {icon} {task.id}: {task.title} ({task.status}){summary}")


# ── Clarification Commands ────────────────────────────────────────────────────


@main.group("clarify")
def clarify_group():
    """Answer the executor's questions."""
    pass


@clarify_group.command("list")
def clarify_list():
    """List unanswered clarifications."""
    with _get_db() as db:
        pending = clarifications_mod.get_pending_clarifications(db)
        if not pending:
            click.echo("No pending clarifications.")
            return
        for c in pending:
            click.echo(f"  {c.id} (task {c.task_id}): {c.question}")
            if c.options:
                click.echo(f"    Options: {', '.join(c.options)}")


@clarify_group.command("respond")
@click.argument("clarification_id")
@click.argument("response")
def clarify_respond(clarification_id, response):
    """Answer a clarification."""
    with _get_db() as db:
        try:
            c = clarifications_mod.respond_to_clarification(db, "architect", clarification_id, response)
        except BridgeError as e:
            _fail(e)
        click.echo(f"Answered {c.id} on task {c.task_id}")


# ── Project State Commands ────────────────────────────────────────────────────


@main.group("state")
def state_group():
    """Inspect and update shared project state."""
    pass


@state_group.command("show")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def state_show(json_output):
    """Show focus, known issues, recent decisions, and queue counts."""
    with _get_db() as db:
        state = state_mod.get_project_state(db)
        counts = tasks_mod.count_tasks_by_status(db)

        if json_output:
            click.echo(json.dumps({
                "state": views.state_dict(state),
                "queue_summary": views.queue_summary(counts),
            }, indent=2))
            return

        click.echo(f"Focus: {state.current_focus or '(none)'}")
        click.echo(f"Last sync: {views.iso(state.last_sync) or 'never'}")
        if state.known_issues:
            click.echo("Known issues:")
            for issue in state.known_issues:
                click.echo(f"  - {issue}")
        summary = views.queue_summary(counts)
        click.echo(
            f"Queue: {summary['queued']} queued, {summary['in_progress']} in progress, "
            f"{summary['blocked']} blocked, {summary['completed_total']} completed"
        )
        if state.recent_decisions:
            click.echo("Recent decisions:")
            for d in state.recent_decisions[-10:]:
                click.echo(f"  [{d.made_by}] {d.summary}")


@state_group.command("focus")
@click.argument("focus", required=False)
@click.option("--clear", is_flag=True, help="Clear the current focus")
def state_focus(focus, clear):
    """Set or clear the current focus."""
    if not focus and not clear:
        click.echo("Provide a focus or --clear.", err=True)
        sys.exit(1)
    with _get_db() as db:
        try:
            state = state_mod.update_project_state(db, "architect", current_focus=None if clear else focus)
        except BridgeError as e:
            _fail(e)
        click.echo(f"Focus: {state.current_focus or '(none)'}")


@state_group.command("issues")
@click.argument("issues", nargs=-1)
def state_issues(issues):
    """Replace the list of known issues (no arguments clears it)."""
    with _get_db() as db:
        try:
            state = state_mod.update_project_state(db, "architect", known_issues=list(issues))
        except BridgeError as e:
            _fail(e)
        click.echo(f"Known issues: {len(state.known_issues)}")


@state_group.command("decide")
@click.argument("summary")
@click.option("--rationale", "-r", required=True, help="Why the decision was made")
@click.option("--file", "files", multiple=True, help="Affected file (repeatable)")
def state_decide(summary, rationale, files):
    """Record a decision made by a human."""
    with _get_db() as db:
        try:
            decision = state_mod.add_decision(db, "human", summary, rationale, list(files))
        except BridgeError as e:
            _fail(e)
        click.echo(f"Logged decision: {decision.id}")


@state_group.command("sync")
@click.option("--agent", type=click.Choice(AGENT_ROLES), default="architect")
def state_sync(agent):
    """Record a sync point."""
    with _get_db() as db:
        try:
            state = state_mod.log_sync_point(db, agent)
        except BridgeError as e:
            _fail(e)
        click.echo(f"Synced at {views.iso(state.last_sync)}")


# ── Audit Commands ────────────────────────────────────────────────────────────


@main.command("events")
@click.option("--task", "task_id", default=None, help="Only events for this task")
@click.option("--since", default=None, help="ISO timestamp lower bound")
@click.option("--limit", default=50, type=int)
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def events_cmd(task_id, since, limit, json_output):
    """Show the audit log, newest first."""
    with _get_db() as db:
        try:
            events = events_mod.get_events(db, since=since, task_id=task_id, limit=limit)
        except BridgeError as e:
            _fail(e)
        if json_output:
            click.echo(json.dumps([views.event_dict(e) for e in events], indent=2))
            return
        if not events:
            click.echo("No events.")
            return
        for e in events:
            task = f" {e.task_id}" if e.task_id else ""
            click.echo(f"  [{views.iso(e.timestamp)}] {e.agent} {e.event_type}{task}")


@main.command("sessions")
@click.option("--agent", type=click.Choice(AGENT_ROLES), default=None)
@click.option("--all", "include_resumed", is_flag=True, help="Include resumed sessions")
@click.option("--limit", default=10, type=int)
def sessions_cmd(agent, include_resumed, limit):
    """List saved session contexts for this project."""
    config = get_config()
    with _get_db() as db:
        sessions = sessions_mod.list_session_contexts(
            db, str(config.project_path), agent=agent, include_resumed=include_resumed, limit=limit
        )
        if not sessions:
            click.echo("No saved sessions.")
            return
        for s in sessions:
            summary = views.session_summary(s)
            resumed = " (resumed)" if s.resumed_at else ""
            click.echo(f"  {s.id} [{s.agent}] {summary['saved_at']}{resumed}: {summary['working_on']}")


if __name__ == "__main__":
    main()
