"""Data models for the task bridge."""

from dataclasses import asdict, dataclass, field
from datetime import datetime

PRIORITIES = ("critical", "high", "normal", "low")
CATEGORIES = ("feature", "bugfix", "refactor", "research", "test", "docs")
STATUSES = ("queued", "claimed", "in_progress", "blocked", "completed", "failed", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "failed", "cancelled"})
AGENT_ROLES = ("architect", "executor")
DECISION_AUTHORS = AGENT_ROLES + ("human",)

# Lower rank is scheduled first.
PRIORITY_RANK = {name: rank for rank, name in enumerate(PRIORITIES, start=1)}


@dataclass
class TaskResult:
    success: bool
    summary: str
    files_modified: list[str] = field(default_factory=list)
    files_created: list[str] = field(default_factory=list)
    files_deleted: list[str] = field(default_factory=list)
    commits: list[str] | None = None
    blockers: list[str] | None = None
    follow_up_tasks: list[str] | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "TaskResult":
        return cls(
            success=bool(data["success"]),
            summary=data["summary"],
            files_modified=list(data.get("files_modified") or []),
            files_created=list(data.get("files_created") or []),
            files_deleted=list(data.get("files_deleted") or []),
            commits=data.get("commits"),
            blockers=data.get("blockers"),
            follow_up_tasks=data.get("follow_up_tasks"),
        )


@dataclass
class Task:
    id: str
    sequence: int
    title: str
    instructions: str
    created_by: str
    priority: str = "normal"
    category: str = "feature"
    status: str = "queued"
    acceptance_criteria: list[str] = field(default_factory=list)
    context_files: list[str] = field(default_factory=list)
    context_summary: str | None = None
    related_tasks: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    assigned_to: str | None = None
    created_at: datetime | None = None
    claimed_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: TaskResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Clarification:
    id: str
    task_id: str
    question: str
    options: list[str] | None = None
    response: str | None = None
    created_at: datetime | None = None
    responded_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.response is None


@dataclass
class SessionContext:
    id: str
    agent: str
    project_path: str
    working_on: str
    progress_made: str
    next_steps: str
    current_task_id: str | None = None
    task_title: str | None = None
    open_questions: list[str] = field(default_factory=list)
    files_in_focus: list[str] = field(default_factory=list)
    important_notes: str = ""
    created_at: datetime | None = None
    resumed_at: datetime | None = None


@dataclass
class Decision:
    id: str
    summary: str
    rationale: str
    made_by: str
    made_at: datetime
    affects_files: list[str] = field(default_factory=list)


@dataclass
class ProjectState:
    current_focus: str | None = None
    recent_decisions: list[Decision] = field(default_factory=list)
    known_issues: list[str] = field(default_factory=list)
    last_sync: datetime | None = None


@dataclass
class EventLogEntry:
    id: int
    timestamp: datetime
    agent: str
    event_type: str
    task_id: str | None = None
    payload: dict = field(default_factory=dict)


@dataclass
class TaskContext:
    """A task together with the neighbouring tasks needed to pick it back up."""

    task: Task
    dependencies: list[Task] = field(default_factory=list)
    dependents: list[Task] = field(default_factory=list)
    all_files_touched: list[str] = field(default_factory=list)
