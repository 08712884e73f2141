"""Monotonic sequence numbers for FIFO ordering of tasks."""

import sqlite3


def next_sequence(db: sqlite3.Connection) -> int:
    """Increment the counter and return the new value in a single statement."""
    row = db.execute(
        "UPDATE sequence_counter SET value = value + 1 WHERE id = 1 RETURNING value"
    ).fetchone()
    return row["value"]
