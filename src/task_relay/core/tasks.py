"""Task management and the task lifecycle state machine.

Statuses move ``ready -> in_progress -> done``; ``self_unblock`` sends an
agent task back to ``ready`` and ``cancel`` ends a task from either open
status. Each operation validates against the stored row and writes inside a
single transaction, so a rejected call leaves no trace.
"""

import json
import logging
import sqlite3
from datetime import datetime

from task_relay.core import graph as graph_mod
from task_relay.core import handoffs as handoffs_mod
from task_relay.core.projects import require_project
from task_relay.db.engine import NOW, next_sequence, transaction
from task_relay.db.models import OWNERS, TASK_TYPES, TERMINAL_STATUSES, CompletionResult, Task, TaskEvent
from task_relay.errors import (
    DependenciesUnsatisfiedError,
    DependencyNotFoundError,
    HandoffTooShortError,
    InvalidTransitionError,
    NotFoundError,
    OwnerMismatchError,
    SelfUnblockError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MIN_HANDOFF_LENGTH = 200


# ── Creation & queries ───────────────────────────────────────────────────────


def create_task(
    db: sqlite3.Connection,
    project_id: str,
    title: str,
    description: str,
    acceptance_criteria: str | list[str],
    owner: str,
    task_type: str = "implementation",
    depends_on: list[str] | None = None,
    priority: int = 0,
    plan_id: str | None = None,
    created_by: str | None = None,
) -> Task:
    """Create a new task in ``ready`` status."""
    title = (title or "").strip()
    description = (description or "").strip()
    criteria = _normalize_criteria(acceptance_criteria)
    if not title:
        raise ValidationError("Task title is required", field="title")
    if not description:
        raise ValidationError("Task description is required", field="description")
    if not criteria:
        raise ValidationError(
            "Task acceptance criteria are required: a task must state when it is done",
            field="acceptance_criteria",
        )
    _check_role(owner, "owner")
    if task_type not in TASK_TYPES:
        raise ValidationError(
            f"Unknown task type '{task_type}' (expected one of: {', '.join(TASK_TYPES)})",
            field="task_type",
        )
    deps = list(dict.fromkeys(depends_on or []))

    with transaction(db):
        project = require_project(db, project_id)
        if project.status != "active":
            raise ValidationError(f"Project '{project_id}' is archived", field="project_id")
        if plan_id and not db.execute(
            "SELECT 1 FROM plans WHERE id = ? AND project_id = ?", (plan_id, project_id)
        ).fetchone():
            raise NotFoundError(f"Plan not found: {plan_id}", field="plan_id")
        for dep_id in deps:
            if not db.execute("SELECT 1 FROM tasks WHERE id = ?", (dep_id,)).fetchone():
                raise DependencyNotFoundError(
                    f"Dependency task '{dep_id}' does not exist", field="depends_on"
                )

        task_id = _next_id(db)
        db.execute(
            """INSERT INTO tasks (id, project_id, plan_id, title, description, acceptance_criteria,
                                  task_type, owner, priority, created_by)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                task_id,
                project_id,
                plan_id,
                title,
                description,
                json.dumps(criteria),
                task_type,
                owner,
                int(priority),
                created_by,
            ),
        )
        for position, dep_id in enumerate(deps):
            db.execute(
                "INSERT INTO task_dependencies (task_id, depends_on_task_id, position) VALUES (?, ?, ?)",
                (task_id, dep_id, position),
            )
        _log_event(db, task_id, "created", None, "ready")

    logger.info("Created task %s (%s, %s) in %s", task_id, owner, task_type, project_id)
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID with its dependencies."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    task = _row_to_task(row)
    task.depends_on = graph_mod.get_dependencies(db, task_id)
    return task


def require_task(db: sqlite3.Connection, task_id: str) -> Task:
    task = get_task(db, task_id)
    if not task:
        raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
    return task


def list_tasks(
    db: sqlite3.Connection,
    project_id: str | None = None,
    statuses: list[str] | None = None,
    owner: str | None = None,
    task_type: str | None = None,
    plan_id: str | None = None,
) -> list[Task]:
    """List tasks with optional filters, oldest first."""
    query = "SELECT * FROM tasks WHERE 1=1"
    params: list = []

    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)

    if statuses:
        query += f" AND status IN ({', '.join('?' for _ in statuses)})"
        params.extend(statuses)

    if owner:
        query += " AND owner = ?"
        params.append(owner)

    if task_type:
        query += " AND task_type = ?"
        params.append(task_type)

    if plan_id:
        query += " AND plan_id = ?"
        params.append(plan_id)

    query += " ORDER BY created_at ASC, id ASC"
    return _load(db, query, params)


def get_executable_tasks(
    db: sqlite3.Connection,
    project_id: str | None = None,
    owner: str | None = None,
) -> list[Task]:
    """Ready tasks whose dependencies are done, most urgent first."""
    query = "SELECT * FROM tasks WHERE status = 'ready'"
    params: list = []
    if project_id:
        query += " AND project_id = ?"
        params.append(project_id)
    if owner:
        query += " AND owner = ?"
        params.append(owner)
    query += " ORDER BY priority DESC, created_at ASC, id ASC"
    return [t for t in _load(db, query, params) if graph_mod.is_satisfied(db, t)]


def get_blocked_tasks(db: sqlite3.Connection, project_id: str | None = None) -> list[Task]:
    """Ready tasks still waiting on unfinished dependencies."""
    return [
        t for t in list_tasks(db, project_id, statuses=["ready"])
        if not graph_mod.is_satisfied(db, t)
    ]


def get_task_events(db: sqlite3.Connection, task_id: str) -> list[TaskEvent]:
    """Get the event history for a task."""
    rows = db.execute(
        "SELECT * FROM task_events WHERE task_id = ? ORDER BY id",
        (task_id,),
    ).fetchall()
    return [
        TaskEvent(
            id=r["id"],
            task_id=r["task_id"],
            event_type=r["event_type"],
            old_value=r["old_value"],
            new_value=r["new_value"],
            created_at=_parse_dt(r["created_at"]),
        )
        for r in rows
    ]


def add_task_dependency(db: sqlite3.Connection, task_id: str, depends_on_id: str) -> Task:
    """Add a dependency to an existing task, rejecting self edges and cycles."""
    with transaction(db):
        before = graph_mod.get_dependencies(db, task_id)
        graph_mod.add_dependency(db, task_id, depends_on_id)
        if depends_on_id not in before:
            _log_event(db, task_id, "dependency_added", None, depends_on_id)
    return get_task(db, task_id)


def remove_task_dependency(db: sqlite3.Connection, task_id: str, depends_on_id: str) -> Task:
    """Remove a dependency from a task."""
    with transaction(db):
        before = graph_mod.get_dependencies(db, task_id)
        graph_mod.remove_dependency(db, task_id, depends_on_id)
        if depends_on_id in before:
            _log_event(db, task_id, "dependency_removed", depends_on_id, None)
        task = get_task(db, task_id)
        if task.waiting_reason and graph_mod.is_satisfied(db, task):
            db.execute(
                f"UPDATE tasks SET waiting_reason = NULL, updated_at = {NOW} WHERE id = ?", (task_id,)
            )
    return get_task(db, task_id)


def delete_task(db: sqlite3.Connection, task_id: str) -> bool:
    """Delete a task nothing depends on and no handoff refers to."""
    with transaction(db):
        if not get_task(db, task_id):
            return False
        dependents = graph_mod.downstream_of(db, task_id)
        if dependents:
            raise ValidationError(
                f"Task '{task_id}' is a dependency of {', '.join(dependents)}; re-point them first",
                task_id=task_id,
            )
        if handoffs_mod.list_by_task(db, task_id):
            raise ValidationError(
                f"Task '{task_id}' has handoffs and cannot be deleted; cancel it instead",
                task_id=task_id,
            )
        db.execute("DELETE FROM task_dependencies WHERE task_id = ?", (task_id,))
        db.execute("DELETE FROM task_events WHERE task_id = ?", (task_id,))
        db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    logger.info("Deleted task %s", task_id)
    return True


# ── Lifecycle ────────────────────────────────────────────────────────────────


def claim(db: sqlite3.Connection, task_id: str, as_role: str, log: str | None = None) -> Task:
    """Take a ready task whose dependencies are done. Exactly one claimer wins."""
    _check_role(as_role, "as_role")
    with transaction(db):
        task = require_task(db, task_id)
        if task.status != "ready":
            raise InvalidTransitionError(
                f"Task '{task_id}' is not ready to claim (status: {task.status})",
                task_id=task_id,
                field="status",
            )
        if task.owner != as_role:
            raise OwnerMismatchError(
                f"Owner mismatch: task '{task_id}' is owned by {task.owner}, claimer is {as_role}",
                task_id=task_id,
                field="owner",
            )
        if not graph_mod.is_satisfied(db, task):
            pending = _unfinished(db, task)
            raise DependenciesUnsatisfiedError(
                f"Task '{task_id}' has unfinished dependencies: {', '.join(pending)}",
                task_id=task_id,
                field="depends_on",
            )
        cur = db.execute(
            f"""UPDATE tasks
                SET status = 'in_progress', claimed_by = ?, waiting_reason = NULL,
                    logs = ?, updated_at = {NOW}
                WHERE id = ? AND status = 'ready'""",
            (as_role, _with_log(task, log), task_id),
        )
        if cur.rowcount != 1:
            raise InvalidTransitionError(
                f"Task '{task_id}' was claimed concurrently", task_id=task_id, field="status"
            )
        _log_event(db, task_id, "status_changed", "ready", "in_progress")
    logger.info("Task %s claimed by %s", task_id, as_role)
    return get_task(db, task_id)


def start(db: sqlite3.Connection, task_id: str, as_role: str, log: str | None = None) -> Task:
    """Record that work began on a claimed task. The status does not change."""
    _check_role(as_role, "as_role")
    with transaction(db):
        task = _require_claimed(db, task_id, as_role)
        db.execute(
            f"UPDATE tasks SET logs = ?, updated_at = {NOW} WHERE id = ?",
            (_with_log(task, log or f"Started by {as_role}"), task_id),
        )
        _log_event(db, task_id, "started", None, as_role)
    return get_task(db, task_id)


def complete(
    db: sqlite3.Connection,
    task_id: str,
    output: str,
    handoff_summary: str,
    as_role: str,
    log: str | None = None,
    artifacts: list | None = None,
) -> CompletionResult:
    """Finish a claimed task and pass its context downstream.

    One handoff is written per dependent, or a single audit handoff with no
    recipient when nothing depends on the task. Dependents whose prerequisites
    are now all done are reported in ``unblocked`` with their per-owner
    readiness.
    """
    _check_role(as_role, "as_role")
    summary = handoff_summary or ""
    with transaction(db):
        task = _require_claimed(db, task_id, as_role)
        if len(summary) < MIN_HANDOFF_LENGTH:
            raise HandoffTooShortError(
                f"Handoff summary must be at least {MIN_HANDOFF_LENGTH} characters "
                f"(got {len(summary)})",
                task_id=task_id,
                field="handoff_summary",
            )

        downstream = graph_mod.downstream_of(db, task_id)
        recipients = downstream or [None]
        handoffs = [
            handoffs_mod.create_handoff(db, task_id, to_id, summary, artifacts)
            for to_id in recipients
        ]

        db.execute(
            f"""UPDATE tasks
                SET status = 'done', output = ?, logs = ?, completed_at = {NOW}, updated_at = {NOW}
                WHERE id = ?""",
            (_output_text(output), _with_log(task, log), task_id),
        )
        _log_event(db, task_id, "status_changed", "in_progress", "done")

        unblocked: dict[str, str] = {}
        for dep_id in downstream:
            dependent = get_task(db, dep_id)
            if dependent.status != "ready" or not graph_mod.is_satisfied(db, dependent):
                continue
            state = graph_mod.readiness(db, dependent)
            db.execute(
                f"UPDATE tasks SET waiting_reason = NULL, logs = ?, updated_at = {NOW} WHERE id = ?",
                (_with_log(dependent, f"Unblocked: dependency {task_id} done"), dep_id),
            )
            _log_event(db, dep_id, "unblocked", "blocked", state)
            unblocked[dep_id] = state

    logger.info(
        "Task %s done; %d handoff(s), unblocked: %s",
        task_id, len(handoffs), ", ".join(unblocked) or "none",
    )
    return CompletionResult(task=get_task(db, task_id), handoffs=handoffs, unblocked=unblocked)


def self_unblock(
    db: sqlite3.Connection,
    task_id: str,
    new_dependency_ids: list[str],
    as_role: str = "agent",
    log: str | None = None,
    reason: str | None = None,
) -> Task:
    """Return a blocked agent task to ``ready`` behind new human-owned work."""
    if as_role != "agent":
        raise OwnerMismatchError(
            f"Self-unblock is only available to agents, not {as_role}", task_id=task_id, field="as_role"
        )
    ids = list(dict.fromkeys(new_dependency_ids or []))
    with transaction(db):
        task = require_task(db, task_id)
        if task.status != "in_progress":
            raise InvalidTransitionError(
                f"Task '{task_id}' is not in progress (status: {task.status})",
                task_id=task_id,
                field="status",
            )
        if task.owner != "agent":
            raise SelfUnblockError(
                f"Self-unblock rule: only agent-owned tasks can self-unblock; '{task_id}' is owned by {task.owner}",
                task_id=task_id,
                field="owner",
            )
        if not ids:
            raise SelfUnblockError(
                "Self-unblock rule: at least one human-owned dependency is required",
                task_id=task_id,
                field="depends_on",
            )
        for dep_id in ids:
            dep = get_task(db, dep_id)
            if not dep:
                raise DependencyNotFoundError(
                    f"Dependency task '{dep_id}' does not exist", task_id=task_id, field="depends_on"
                )
            if dep.owner != "human":
                raise SelfUnblockError(
                    f"Self-unblock rule: dependencies must be human-owned tasks; '{dep_id}' is owned by {dep.owner}",
                    task_id=task_id,
                    field="depends_on",
                )
        added = [d for d in ids if d not in task.depends_on]
        if not added:
            raise SelfUnblockError(
                "Self-unblock rule: must add at least one new human dependency "
                f"(already depends on {', '.join(ids)})",
                task_id=task_id,
                field="depends_on",
            )
        for dep_id in added:
            graph_mod.validate_new_edge(db, task_id, dep_id)
            graph_mod.insert_edge(db, task_id, dep_id)
            _log_event(db, task_id, "dependency_added", None, dep_id)

        task.depends_on = graph_mod.get_dependencies(db, task_id)
        waiting = None
        if not graph_mod.is_satisfied(db, task):
            waiting = reason or f"Waiting on human task(s): {', '.join(_unfinished(db, task))}"
        db.execute(
            f"""UPDATE tasks
                SET status = 'ready', claimed_by = NULL, waiting_reason = ?, logs = ?, updated_at = {NOW}
                WHERE id = ?""",
            (waiting, _with_log(task, log), task_id),
        )
        _log_event(db, task_id, "status_changed", "in_progress", "ready")
    logger.info("Task %s self-unblocked behind %s", task_id, ", ".join(added))
    return get_task(db, task_id)


def cancel(db: sqlite3.Connection, task_id: str, log: str | None = None) -> Task:
    """Cancel an open task. Dependents stay blocked until re-pointed."""
    with transaction(db):
        task = require_task(db, task_id)
        if task.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Task '{task_id}' cannot be cancelled (status: {task.status})",
                task_id=task_id,
                field="status",
            )
        db.execute(
            f"""UPDATE tasks
                SET status = 'cancelled', claimed_by = NULL, waiting_reason = NULL,
                    logs = ?, updated_at = {NOW}
                WHERE id = ?""",
            (_with_log(task, log), task_id),
        )
        _log_event(db, task_id, "status_changed", task.status, "cancelled")
    logger.info("Task %s cancelled", task_id)
    return get_task(db, task_id)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _require_claimed(db: sqlite3.Connection, task_id: str, as_role: str) -> Task:
    task = require_task(db, task_id)
    if task.status != "in_progress":
        raise InvalidTransitionError(
            f"Task '{task_id}' is not in progress (status: {task.status})",
            task_id=task_id,
            field="status",
        )
    if task.claimed_by != as_role:
        raise OwnerMismatchError(
            f"Task '{task_id}' was claimed by {task.claimed_by}, not {as_role}",
            task_id=task_id,
            field="claimed_by",
        )
    return task


def _check_role(role: str, field: str) -> None:
    if role not in OWNERS:
        raise ValidationError(
            f"Unknown role '{role}' (expected one of: {', '.join(OWNERS)})", field=field
        )


def _normalize_criteria(raw: str | list[str] | None) -> list[str]:
    if raw is None:
        return []
    items = [raw] if isinstance(raw, str) else list(raw)
    return [str(c).strip() for c in items if str(c).strip()]


def _unfinished(db: sqlite3.Connection, task: Task) -> list[str]:
    done = {
        r["id"]
        for r in db.execute(
            f"SELECT id FROM tasks WHERE status = 'done' AND id IN ({', '.join('?' for _ in task.depends_on)})",
            task.depends_on,
        ).fetchall()
    }
    return [d for d in task.depends_on if d not in done]


def _with_log(task: Task, entry: str | None) -> str:
    logs = list(task.logs)
    if entry:
        logs.append(entry)
    return json.dumps(logs)


def _output_text(output) -> str | None:
    if output is None or isinstance(output, str):
        return output
    return json.dumps(output)


def _next_id(db: sqlite3.Connection) -> str:
    last = db.execute(
        "SELECT MAX(CAST(substr(id, 6) AS INTEGER)) FROM tasks WHERE id LIKE 'task\\_%' ESCAPE '\\'"
    ).fetchone()[0]
    return f"task_{next_sequence(db, 'task', floor=last or 0):03d}"


def _log_event(
    db: sqlite3.Connection,
    task_id: str,
    event_type: str,
    old_value: str | None,
    new_value: str | None,
):
    db.execute(
        "INSERT INTO task_events (task_id, event_type, old_value, new_value) VALUES (?, ?, ?, ?)",
        (task_id, event_type, old_value, new_value),
    )


def _load(db: sqlite3.Connection, query: str, params: list) -> list[Task]:
    tasks = []
    for row in db.execute(query, params).fetchall():
        task = _row_to_task(row)
        task.depends_on = graph_mod.get_dependencies(db, task.id)
        tasks.append(task)
    return tasks


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        plan_id=row["plan_id"],
        title=row["title"],
        description=row["description"],
        acceptance_criteria=json.loads(row["acceptance_criteria"]),
        task_type=row["task_type"],
        owner=row["owner"],
        status=row["status"],
        priority=row["priority"],
        output=row["output"],
        logs=json.loads(row["logs"]),
        waiting_reason=row["waiting_reason"],
        claimed_by=row["claimed_by"],
        created_by=row["created_by"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
