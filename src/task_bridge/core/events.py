"""Append-only audit trail of mutating operations."""

import sqlite3
from datetime import datetime

from task_bridge.db.codec import dump_payload, load_payload, now_iso, parse_dt, since_param
from task_bridge.db.models import EventLogEntry


def log_event(
    db: sqlite3.Connection,
    agent: str,
    event_type: str,
    task_id: str | None = None,
    payload: dict | None = None,
) -> int:
    """Append an event and return its id.

    Callers that mutate state invoke this inside their own transaction so the
    entry is written or discarded together with the change it describes.
    """
    cursor = db.execute(
        "INSERT INTO event_log (timestamp, agent, event_type, task_id, payload) VALUES (?, ?, ?, ?, ?)",
        (now_iso(), agent, event_type, task_id, dump_payload(payload)),
    )
    return cursor.lastrowid


def get_events(
    db: sqlite3.Connection,
    since: str | datetime | None = None,
    task_id: str | None = None,
    event_type: str | None = None,
    limit: int | None = 50,
    offset: int = 0,
) -> list[EventLogEntry]:
    """Events newest-first, optionally filtered by time, task, or type."""
    sql = "SELECT * FROM event_log WHERE 1=1"
    params: list = []

    if since is not None:
        sql += " AND timestamp >= ?"
        params.append(since_param(since))

    if task_id:
        sql += " AND task_id = ?"
        params.append(task_id)

    if event_type:
        sql += " AND event_type = ?"
        params.append(event_type)

    sql += " ORDER BY id DESC LIMIT ? OFFSET ?"
    params.extend([limit if limit is not None else -1, offset])
    rows = db.execute(sql, params).fetchall()
    return [_row_to_event(r) for r in rows]


def _row_to_event(row: sqlite3.Row) -> EventLogEntry:
    return EventLogEntry(
        id=row["id"],
        timestamp=parse_dt(row["timestamp"]),
        agent=row["agent"],
        event_type=row["event_type"],
        task_id=row["task_id"],
        payload=load_payload(row["payload"]),
    )
