"""Dependency resolution between tasks."""

import sqlite3

from task_bridge.core import tasks as tasks_mod
from task_bridge.db.models import Task, TaskContext


def unmet_dependencies(db: sqlite3.Connection, task: Task) -> dict[str, str | None]:
    """Map each dependency that has not completed to its status.

    A dependency that no longer resolves to a task maps to None.
    """
    if not task.depends_on:
        return {}
    found = tasks_mod.get_tasks(db, task.depends_on)
    unmet = {}
    for dep_id in task.depends_on:
        dep = found.get(dep_id)
        if dep is None:
            unmet[dep_id] = None
        elif dep.status != "completed":
            unmet[dep_id] = dep.status
    return unmet


def dependencies_met(db: sqlite3.Connection, task: Task) -> bool:
    return not unmet_dependencies(db, task)


def get_dependents(db: sqlite3.Connection, task_id: str) -> list[Task]:
    """Tasks that list ``task_id`` among their dependencies, in queue order."""
    return [t for t in tasks_mod.list_tasks(db) if task_id in t.depends_on]


def load_task_context(
    db: sqlite3.Connection,
    task_id: str,
    include_dependencies: bool = True,
    include_dependents: bool = False,
) -> TaskContext:
    """Gather a task, its neighbours, and every file the chain has touched."""
    task = tasks_mod.require_task(db, task_id)

    dependencies: list[Task] = []
    if include_dependencies and task.depends_on:
        found = tasks_mod.get_tasks(db, task.depends_on)
        dependencies = [found[d] for d in task.depends_on if d in found]

    dependents = get_dependents(db, task.id) if include_dependents else []

    files: set[str] = set()
    for t in [task, *dependencies]:
        files.update(t.context_files)
        if t.result:
            files.update(t.result.files_modified)
            files.update(t.result.files_created)

    return TaskContext(
        task=task,
        dependencies=dependencies,
        dependents=dependents,
        all_files_touched=sorted(files),
    )
