"""Plan records: the goal text a chain of tasks was split from."""

import sqlite3
import uuid
from datetime import datetime

from task_relay.db.engine import transaction
from task_relay.db.models import Plan
from task_relay.errors import ValidationError


def create_plan(db: sqlite3.Connection, project_id: str, title: str, description: str) -> Plan:
    plan_id = f"plan_{uuid.uuid4().hex[:8]}"
    with transaction(db):
        db.execute(
            "INSERT INTO plans (id, project_id, title, description) VALUES (?, ?, ?, ?)",
            (plan_id, project_id, title, description),
        )
    return get_plan(db, plan_id)


def get_plan(db: sqlite3.Connection, plan_id: str) -> Plan | None:
    """Get a plan by ID with the ids of its tasks in creation order."""
    row = db.execute("SELECT * FROM plans WHERE id = ?", (plan_id,)).fetchone()
    if not row:
        return None
    plan = _row_to_plan(row)
    plan.task_ids = [
        r["id"]
        for r in db.execute(
            "SELECT id FROM tasks WHERE plan_id = ? ORDER BY created_at, id", (plan_id,)
        ).fetchall()
    ]
    return plan


def list_plans(db: sqlite3.Connection, project_id: str | None = None) -> list[Plan]:
    """List plans, newest first."""
    query = "SELECT * FROM plans"
    params: list = []
    if project_id:
        query += " WHERE project_id = ?"
        params.append(project_id)
    rows = db.execute(query + " ORDER BY created_at DESC", params).fetchall()
    return [_row_to_plan(r) for r in rows]


def delete_plan(db: sqlite3.Connection, plan_id: str) -> bool:
    """Delete a plan that no longer has tasks."""
    with transaction(db):
        plan = get_plan(db, plan_id)
        if not plan:
            return False
        if plan.task_ids:
            raise ValidationError(
                f"Plan '{plan_id}' still has {len(plan.task_ids)} task(s); delete or cancel them first",
                field="plan_id",
            )
        db.execute("DELETE FROM plans WHERE id = ?", (plan_id,))
    return True


def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        id=row["id"],
        project_id=row["project_id"],
        title=row["title"],
        description=row["description"],
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
