"""Conversion between typed records and their stored column values.

Structured fields are kept as JSON text in SQLite. Everything that reads or
writes those columns goes through this module, so the rest of the code only
ever sees typed values.
"""

import json
from datetime import datetime, timezone

from task_bridge.db.models import Decision, TaskResult
from task_bridge.errors import ValidationError


def now_iso() -> str:
    """Current UTC time, with microseconds so text order matches time order."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)


def since_param(since: str | datetime | None) -> str | None:
    """Normalize a ``since`` filter to the stored UTC timestamp format.

    Strings may carry any offset or a ``Z`` suffix; naive values are taken as UTC.
    """
    if since is None:
        return None
    if isinstance(since, str):
        text = since.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            since = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError(f"Invalid since timestamp: {since!r}") from e
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since.astimezone(timezone.utc).isoformat(timespec="microseconds")


def dump_list(values: list[str] | None) -> str:
    return json.dumps(list(values or []))


def load_list(val: str | None) -> list[str]:
    if not val:
        return []
    return [str(v) for v in json.loads(val)]


def dump_optional_list(values: list[str] | None) -> str | None:
    if values is None:
        return None
    return json.dumps(list(values))


def load_optional_list(val: str | None) -> list[str] | None:
    if val is None:
        return None
    return load_list(val)


def dump_result(result: TaskResult | None) -> str | None:
    if result is None:
        return None
    return json.dumps(result.to_dict())


def load_result(val: str | None) -> TaskResult | None:
    if not val:
        return None
    return TaskResult.from_dict(json.loads(val))


def dump_decisions(decisions: list[Decision]) -> str:
    return json.dumps([
        {
            "id": d.id,
            "summary": d.summary,
            "rationale": d.rationale,
            "made_by": d.made_by,
            "made_at": d.made_at.isoformat(),
            "affects_files": list(d.affects_files),
        }
        for d in decisions
    ])


def load_decisions(val: str | None) -> list[Decision]:
    if not val:
        return []
    return [
        Decision(
            id=d["id"],
            summary=d["summary"],
            rationale=d["rationale"],
            made_by=d["made_by"],
            made_at=datetime.fromisoformat(d["made_at"]),
            affects_files=list(d.get("affects_files") or []),
        )
        for d in json.loads(val)
    ]


def dump_payload(payload: dict | None) -> str:
    return json.dumps(payload or {}, default=str)


def load_payload(val: str | None) -> dict:
    if not val:
        return {}
    return json.loads(val)
