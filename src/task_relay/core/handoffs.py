"""Handoffs: context passed from a completed task to its dependents."""

import json
import sqlite3
from datetime import datetime

from task_relay.db.engine import next_sequence
from task_relay.db.models import Artifact, Handoff
from task_relay.errors import ValidationError


def create_handoff(
    db: sqlite3.Connection,
    from_task_id: str,
    to_task_id: str | None,
    summary: str,
    artifacts: list | None = None,
) -> Handoff:
    """Insert a handoff. Called from within the completing transaction."""
    if not summary or not summary.strip():
        raise ValidationError("Handoff summary must not be empty", task_id=from_task_id, field="summary")
    parsed = [_coerce_artifact(a) for a in (artifacts or [])]
    handoff_id = _next_id(db)
    db.execute(
        """INSERT INTO handoffs (id, from_task_id, to_task_id, summary, artifacts)
           VALUES (?, ?, ?, ?, ?)""",
        (
            handoff_id,
            from_task_id,
            to_task_id,
            summary,
            json.dumps([{"type": a.type, "payload": a.payload} for a in parsed]),
        ),
    )
    return get_handoff(db, handoff_id)


def get_handoff(db: sqlite3.Connection, handoff_id: str) -> Handoff | None:
    row = db.execute("SELECT * FROM handoffs WHERE id = ?", (handoff_id,)).fetchone()
    if not row:
        return None
    return _row_to_handoff(row)


def list_by_task(db: sqlite3.Connection, task_id: str) -> list[Handoff]:
    """Handoffs sent from or to a task, newest first."""
    rows = db.execute(
        """SELECT * FROM handoffs WHERE from_task_id = ? OR to_task_id = ?
           ORDER BY created_at DESC, rowid DESC""",
        (task_id, task_id),
    ).fetchall()
    return [_row_to_handoff(r) for r in rows]


def list_handoffs(
    db: sqlite3.Connection,
    from_task_id: str | None = None,
    to_task_id: str | None = None,
    audit_only: bool = False,
) -> list[Handoff]:
    """List handoffs, newest first. ``audit_only`` selects those with no recipient."""
    query = "SELECT * FROM handoffs WHERE 1=1"
    params: list = []
    if from_task_id:
        query += " AND from_task_id = ?"
        params.append(from_task_id)
    if audit_only:
        query += " AND to_task_id IS NULL"
    elif to_task_id:
        query += " AND to_task_id = ?"
        params.append(to_task_id)
    query += " ORDER BY created_at DESC, rowid DESC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_handoff(r) for r in rows]


def _next_id(db: sqlite3.Connection) -> str:
    count = db.execute("SELECT COUNT(*) FROM handoffs").fetchone()[0]
    return f"handoff_{next_sequence(db, 'handoff', floor=count):03d}"


def _coerce_artifact(raw) -> Artifact:
    if isinstance(raw, Artifact):
        return raw
    if isinstance(raw, dict) and raw.get("type"):
        return Artifact(type=str(raw["type"]), payload=raw.get("payload"))
    raise ValidationError(f"Artifact needs a 'type': {raw!r}", field="artifacts")


def _row_to_handoff(row: sqlite3.Row) -> Handoff:
    return Handoff(
        id=row["id"],
        from_task_id=row["from_task_id"],
        to_task_id=row["to_task_id"],
        summary=row["summary"],
        artifacts=[Artifact(a["type"], a.get("payload")) for a in json.loads(row["artifacts"])],
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
