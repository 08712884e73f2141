"""SQLite database connection management and schema initialization."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from task_bridge.errors import StorageContention

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    sequence INTEGER NOT NULL UNIQUE,
    priority TEXT NOT NULL DEFAULT 'normal'
        CHECK (priority IN ('critical', 'high', 'normal', 'low')),
    category TEXT NOT NULL DEFAULT 'feature'
        CHECK (category IN ('feature', 'bugfix', 'refactor', 'research', 'test', 'docs')),
    status TEXT NOT NULL DEFAULT 'queued'
        CHECK (status IN ('queued', 'claimed', 'in_progress', 'blocked', 'completed', 'failed', 'cancelled')),
    title TEXT NOT NULL,
    instructions TEXT NOT NULL,
    acceptance_criteria TEXT NOT NULL DEFAULT '[]',
    context_files TEXT NOT NULL DEFAULT '[]',
    context_summary TEXT,
    related_tasks TEXT NOT NULL DEFAULT '[]',
    depends_on TEXT NOT NULL DEFAULT '[]',
    created_by TEXT NOT NULL,
    assigned_to TEXT,
    created_at TEXT NOT NULL,
    claimed_at TEXT,
    started_at TEXT,
    completed_at TEXT,
    result TEXT
);

CREATE TABLE IF NOT EXISTS sequence_counter (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    value INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS project_state (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    current_focus TEXT,
    recent_decisions TEXT NOT NULL DEFAULT '[]',
    known_issues TEXT NOT NULL DEFAULT '[]',
    last_sync TEXT
);

CREATE TABLE IF NOT EXISTS event_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    agent TEXT NOT NULL,
    event_type TEXT NOT NULL,
    task_id TEXT,
    payload TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS clarifications (
    id TEXT PRIMARY KEY,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    question TEXT NOT NULL,
    options TEXT,
    response TEXT,
    created_at TEXT NOT NULL,
    responded_at TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    agent TEXT NOT NULL,
    project_path TEXT NOT NULL,
    current_task_id TEXT REFERENCES tasks(id),
    task_title TEXT,
    working_on TEXT NOT NULL,
    progress_made TEXT NOT NULL,
    next_steps TEXT NOT NULL,
    open_questions TEXT NOT NULL DEFAULT '[]',
    files_in_focus TEXT NOT NULL DEFAULT '[]',
    important_notes TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    resumed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);
CREATE INDEX IF NOT EXISTS idx_tasks_assigned ON tasks(assigned_to);
CREATE INDEX IF NOT EXISTS idx_events_timestamp ON event_log(timestamp);
CREATE INDEX IF NOT EXISTS idx_events_task ON event_log(task_id);
CREATE INDEX IF NOT EXISTS idx_clarifications_task ON clarifications(task_id);
CREATE INDEX IF NOT EXISTS idx_sessions_agent ON sessions(agent, project_path);
"""

SINGLETONS = """
INSERT OR IGNORE INTO sequence_counter (id, value) VALUES (1, 0);
INSERT OR IGNORE INTO project_state (id, recent_decisions, known_issues) VALUES (1, '[]', '[]');
"""


def init_db(db_path: Path | str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed.

    The connection runs in autocommit mode; writes are grouped with
    ``transaction()``. Writers that find the database locked wait up to
    ``busy_timeout_ms`` before the statement fails.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = connect(db_path, busy_timeout_ms)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SCHEMA)
    conn.executescript(SINGLETONS)
    return conn


def connect(db_path: Path | str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Open a connection to an already initialized database without touching the schema."""
    conn = sqlite3.connect(
        str(db_path),
        timeout=busy_timeout_ms / 1000,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


@contextmanager
def get_db(db_path: Path | str, busy_timeout_ms: int = 5000):
    """Context manager for database connections."""
    conn = init_db(db_path, busy_timeout_ms)
    try:
        yield conn
    finally:
        conn.close()


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@contextmanager
def transaction(conn: sqlite3.Connection):
    """Run the enclosed statements as one IMMEDIATE transaction.

    The write lock is taken up front so a read-then-write sequence inside the
    block cannot interleave with another writer. Nested scopes join the
    outermost one. Lock timeouts surface as ``StorageContention``.
    """
    if conn.in_transaction:
        yield conn
        return

    try:
        conn.execute("BEGIN IMMEDIATE")
    except sqlite3.OperationalError as e:
        if _is_lock_error(e):
            logger.warning("Write lock wait exceeded: %s", e)
            raise StorageContention(f"Database is busy, retry the operation: {e}") from e
        raise

    try:
        yield conn
    except sqlite3.OperationalError as e:
        conn.rollback()
        if _is_lock_error(e):
            logger.warning("Write lock lost mid-transaction: %s", e)
            raise StorageContention(f"Database is busy, retry the operation: {e}") from e
        raise
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()
