"""Project management operations."""

import json
import logging
import re
import sqlite3
from datetime import datetime

from task_relay.core import templates as templates_mod
from task_relay.db.engine import NOW, transaction
from task_relay.db.models import PROJECT_STATUSES, Project
from task_relay.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def slugify(name: str) -> str:
    """Convert a name to a URL-friendly slug."""
    slug = name.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def create_project(
    db: sqlite3.Connection,
    project_id: str,
    name: str,
    template_id: str | None = None,
    workflow_instructions: str | None = None,
) -> Project:
    """Create a project bound to a snapshot of a routing template.

    Uses the default template when ``template_id`` is not given.
    """
    if not project_id or not name:
        raise ValidationError("Project id and name are required", field="project_id")
    if template_id:
        template = templates_mod.get_template(db, template_id)
        if not template:
            raise NotFoundError(f"Template not found: {template_id}", field="template_id")
    else:
        template = templates_mod.ensure_default_template(db)

    routing = templates_mod.template_to_dict(template)
    routing.pop("is_default", None)

    with transaction(db):
        if get_project(db, project_id):
            raise ValidationError(f"Project already exists: {project_id}", field="project_id")
        db.execute(
            """INSERT INTO projects (id, name, routing, workflow_instructions)
               VALUES (?, ?, ?, ?)""",
            (project_id, name, json.dumps(routing), workflow_instructions),
        )
    logger.info("Created project %s with template %s", project_id, template.id)
    return get_project(db, project_id)


def get_project(db: sqlite3.Connection, project_id: str) -> Project | None:
    """Get a project by ID."""
    row = db.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    if not row:
        return None
    return _row_to_project(row)


def require_project(db: sqlite3.Connection, project_id: str) -> Project:
    project = get_project(db, project_id)
    if not project:
        raise NotFoundError(f"Project not found: {project_id}", field="project_id")
    return project


def list_projects(db: sqlite3.Connection, status: str | None = None) -> list[Project]:
    """List projects, newest first."""
    query = "SELECT * FROM projects"
    params: list = []
    if status:
        if status not in PROJECT_STATUSES:
            raise ValidationError(
                f"Unknown project status '{status}' (expected one of: {', '.join(PROJECT_STATUSES)})",
                field="status",
            )
        query += " WHERE status = ?"
        params.append(status)
    rows = db.execute(query + " ORDER BY created_at DESC", params).fetchall()
    return [_row_to_project(r) for r in rows]


def update_instructions(
    db: sqlite3.Connection,
    project_id: str,
    workflow_instructions: str,
) -> Project:
    """Replace a project's free-text guidance. Routing rules are left untouched."""
    with transaction(db):
        require_project(db, project_id)
        db.execute(
            f"UPDATE projects SET workflow_instructions = ?, updated_at = {NOW} WHERE id = ?",
            (workflow_instructions, project_id),
        )
    return get_project(db, project_id)


def archive_project(db: sqlite3.Connection, project_id: str) -> Project:
    with transaction(db):
        require_project(db, project_id)
        db.execute(
            f"UPDATE projects SET status = 'archived', updated_at = {NOW} WHERE id = ?",
            (project_id,),
        )
    logger.info("Archived project %s", project_id)
    return get_project(db, project_id)


def delete_project(db: sqlite3.Connection, project_id: str) -> bool:
    """Delete a project that has no tasks or plans. Archive it otherwise."""
    with transaction(db):
        if not get_project(db, project_id):
            return False
        in_use = db.execute(
            """SELECT (SELECT COUNT(*) FROM tasks WHERE project_id = ?)
                    + (SELECT COUNT(*) FROM plans WHERE project_id = ?)""",
            (project_id, project_id),
        ).fetchone()[0]
        if in_use:
            raise ValidationError(
                f"Project '{project_id}' still has tasks or plans; archive it instead",
                field="project_id",
            )
        db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
    return True


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        routing=templates_mod.template_from_dict(json.loads(row["routing"])),
        workflow_instructions=row["workflow_instructions"],
        status=row["status"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
