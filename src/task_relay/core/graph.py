"""Dependency graph: readiness checks and cycle-safe edge insertion.

Edges point from a task to the tasks it depends on. All functions read the
``task_dependencies`` table directly, so they can be used inside a lifecycle
transaction before the task row itself is rewritten.
"""

import logging
import sqlite3

from task_relay.db.engine import transaction
from task_relay.db.models import AWAITING_HUMAN, BLOCKED, READY, Task
from task_relay.errors import (
    CycleError,
    DependencyNotFoundError,
    NotFoundError,
    SelfDependencyError,
)

logger = logging.getLogger(__name__)


def get_dependencies(db: sqlite3.Connection, task_id: str) -> list[str]:
    """Dependency ids of a task in insertion order."""
    rows = db.execute(
        "SELECT depends_on_task_id FROM task_dependencies WHERE task_id = ? ORDER BY position",
        (task_id,),
    ).fetchall()
    return [r["depends_on_task_id"] for r in rows]


def is_satisfied(db: sqlite3.Connection, task: Task) -> bool:
    """True when every dependency exists and is done."""
    deps = set(task.depends_on)
    if not deps:
        return True
    placeholders = ", ".join("?" for _ in deps)
    done = db.execute(
        f"SELECT COUNT(*) FROM tasks WHERE id IN ({placeholders}) AND status = 'done'",
        list(deps),
    ).fetchone()[0]
    return done == len(deps)


def readiness(db: sqlite3.Connection, task: Task) -> str:
    """Executable state of a task as seen by its owner.

    A ``ready`` task with unfinished dependencies is ``blocked``; once they are
    done it is ``ready`` for an agent or ``awaiting_human`` for a human. Other
    statuses are returned unchanged.
    """
    if task.status != "ready":
        return task.status
    if not is_satisfied(db, task):
        return BLOCKED
    return AWAITING_HUMAN if task.owner == "human" else READY


def downstream_of(db: sqlite3.Connection, task_id: str) -> list[str]:
    """Ids of tasks that list ``task_id`` as a dependency."""
    rows = db.execute(
        """SELECT t.id FROM task_dependencies d
           JOIN tasks t ON t.id = d.task_id
           WHERE d.depends_on_task_id = ?
           ORDER BY t.created_at, t.id""",
        (task_id,),
    ).fetchall()
    return [r["id"] for r in rows]


def reaches(db: sqlite3.Connection, start_id: str, target_id: str) -> bool:
    """Depth-first search along dependency edges from ``start_id``."""
    stack = [start_id]
    seen: set[str] = set()
    while stack:
        current = stack.pop()
        if current == target_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(get_dependencies(db, current))
    return False


def validate_new_edge(db: sqlite3.Connection, task_id: str, dep_id: str) -> None:
    """Raise if ``task_id -> dep_id`` is a self edge, dangles, or closes a cycle."""
    if task_id == dep_id:
        raise SelfDependencyError(
            f"Task '{task_id}' cannot depend on itself",
            task_id=task_id,
            field="depends_on",
        )
    if not _exists(db, dep_id):
        raise DependencyNotFoundError(
            f"Dependency task '{dep_id}' does not exist",
            task_id=task_id,
            field="depends_on",
        )
    if reaches(db, dep_id, task_id):
        raise CycleError(
            f"Adding dependency {task_id} -> {dep_id} would create a cycle "
            f"('{dep_id}' already depends on '{task_id}')",
            task_id=task_id,
            field="depends_on",
        )


def add_dependency(db: sqlite3.Connection, task_id: str, dep_id: str) -> list[str]:
    """Add ``dep_id`` to a task's dependencies. Re-adding an edge is a no-op.

    Returns the task's dependency list after the call.
    """
    with transaction(db):
        if not _exists(db, task_id):
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        current = get_dependencies(db, task_id)
        if dep_id in current:
            return current
        validate_new_edge(db, task_id, dep_id)
        insert_edge(db, task_id, dep_id)
    logger.info("Task %s now depends on %s", task_id, dep_id)
    return get_dependencies(db, task_id)


def remove_dependency(db: sqlite3.Connection, task_id: str, dep_id: str) -> list[str]:
    with transaction(db):
        if not _exists(db, task_id):
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        db.execute(
            "DELETE FROM task_dependencies WHERE task_id = ? AND depends_on_task_id = ?",
            (task_id, dep_id),
        )
    return get_dependencies(db, task_id)


def insert_edge(db: sqlite3.Connection, task_id: str, dep_id: str) -> None:
    position = db.execute(
        "SELECT COALESCE(MAX(position), -1) + 1 FROM task_dependencies WHERE task_id = ?",
        (task_id,),
    ).fetchone()[0]
    db.execute(
        "INSERT INTO task_dependencies (task_id, depends_on_task_id, position) VALUES (?, ?, ?)",
        (task_id, dep_id, position),
    )


def _exists(db: sqlite3.Connection, task_id: str) -> bool:
    return db.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,)).fetchone() is not None
