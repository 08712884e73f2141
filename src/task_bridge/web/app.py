"""Read-only web dashboard API for the task bridge."""

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from task_bridge import views
from task_bridge.config import get_config
from task_bridge.core import clarifications as clarifications_mod
from task_bridge.core import events as events_mod
from task_bridge.core import project_state as state_mod
from task_bridge.core import scheduler
from task_bridge.core import sessions as sessions_mod
from task_bridge.core import tasks as tasks_mod
from task_bridge.db.engine import connect, init_db
from task_bridge.errors import BridgeError, NotFound
from task_bridge.web.dashboard import get_dashboard_html


def _get_db():
    config = get_config()
    return connect(config.db_path, config.busy_timeout_ms)


def _int_param(request: Request, name: str, default: int) -> int:
    try:
        return int(request.query_params.get(name, default))
    except ValueError:
        return default


# ── Handlers ──────────────────────────────────────────────────────────────────


async def index(request: Request):
    return HTMLResponse(get_dashboard_html())


async def api_list_tasks(request: Request):
    statuses = request.query_params.getlist("status")
    db = _get_db()
    try:
        tasks = tasks_mod.list_tasks(
            db,
            status=statuses or None,
            assigned_to=request.query_params.get("assigned_to"),
            category=request.query_params.get("category"),
        )
        return JSONResponse([views.task_dict(t) for t in tasks])
    finally:
        db.close()


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    db = _get_db()
    try:
        try:
            task = tasks_mod.require_task(db, task_id)
        except NotFound as e:
            return JSONResponse(views.error_dict(e), status_code=404)
        td = views.task_dict(task)
        td["queue_position"] = scheduler.get_queue_position(db, task_id)
        td["clarifications"] = [
            views.clarification_dict(c) for c in clarifications_mod.list_clarifications(db, task_id)
        ]
        td["events"] = [views.event_dict(e) for e in events_mod.get_events(db, task_id=task_id, limit=None)]
        return JSONResponse(td)
    finally:
        db.close()


async def api_queue(request: Request):
    db = _get_db()
    try:
        ready = scheduler.get_ready_tasks(db)
        return JSONResponse({
            "ready": [views.task_summary(t) for t in ready],
            "summary": views.queue_summary(tasks_mod.count_tasks_by_status(db)),
        })
    finally:
        db.close()


async def api_state(request: Request):
    db = _get_db()
    try:
        state = state_mod.get_project_state(db)
        return JSONResponse(views.state_dict(state))
    finally:
        db.close()


async def api_clarifications(request: Request):
    db = _get_db()
    try:
        pending = clarifications_mod.get_pending_clarifications(db, request.query_params.get("task_id"))
        return JSONResponse([views.clarification_dict(c) for c in pending])
    finally:
        db.close()


async def api_events(request: Request):
    db = _get_db()
    try:
        try:
            events = events_mod.get_events(
                db,
                since=request.query_params.get("since"),
                task_id=request.query_params.get("task_id"),
                event_type=request.query_params.get("event_type"),
                limit=_int_param(request, "limit", 50),
                offset=_int_param(request, "offset", 0),
            )
        except BridgeError as e:
            return JSONResponse(views.error_dict(e), status_code=400)
        return JSONResponse([views.event_dict(e) for e in events])
    finally:
        db.close()


async def api_sessions(request: Request):
    config = get_config()
    db = _get_db()
    try:
        sessions = sessions_mod.list_session_contexts(
            db,
            str(config.project_path),
            agent=request.query_params.get("agent"),
            include_resumed=request.query_params.get("include_resumed") == "true",
            limit=_int_param(request, "limit", 10),
        )
        return JSONResponse([views.session_summary(s) for s in sessions])
    finally:
        db.close()


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    config = get_config()
    init_db(config.db_path, config.busy_timeout_ms).close()

    routes = [
        Route("/", index),
        Route("/api/tasks", api_list_tasks),
        Route("/api/tasks/{task_id}", api_get_task),
        Route("/api/queue", api_queue),
        Route("/api/state", api_state),
        Route("/api/clarifications", api_clarifications),
        Route("/api/events", api_events),
        Route("/api/sessions", api_sessions),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8788):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
