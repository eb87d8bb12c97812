"""Split free-text plans into a chain of routed tasks.

Plan text looks like::

    Integrate payments
    1. Add payment enum
       - extend the Currency model
       Acceptance: enum covers all providers
    2. Provide Paddle API Key
    3. Implement payment service

The first line is the plan title. Numbered lines start tasks, bullets and
plain lines below a task form its body, and ``Acceptance:`` / ``AC:`` lines
in the body become acceptance criteria.
"""

import logging
import re
import sqlite3
from dataclasses import dataclass, field

from task_relay.core import plans as plans_mod
from task_relay.core import tasks as tasks_mod
from task_relay.core.projects import require_project
from task_relay.core.templates import match_category, owner_for
from task_relay.db.engine import transaction
from task_relay.db.models import Template
from task_relay.errors import ValidationError

logger = logging.getLogger(__name__)

NUMBERED = re.compile(r"^(\d+)[.)]\s*(.+)$")
BULLET = re.compile(r"^[-*]\s*(.+)$")
ACCEPTANCE = re.compile(r"^(?:acceptance(?:\s+criteria)?|ac|验收)\s*[:：]\s*(.*)$", re.IGNORECASE)


@dataclass
class ParsedTask:
    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    order: int = 0


def parse_plan_text(text: str) -> list[ParsedTask]:
    """Parse plan text into ordered task candidates. The title line is skipped."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    if not lines:
        raise ValidationError("Plan text is empty", field="plan")

    plan_title, body_lines = lines[0], lines[1:]
    parsed: list[ParsedTask] = []
    title: str | None = None
    body: list[str] = []

    def close():
        if title is not None:
            parsed.append(_build(title, body, len(parsed)))

    for line in body_lines:
        numbered = NUMBERED.match(line)
        if numbered:
            close()
            title, body = numbered.group(2).strip(), []
            continue
        bullet = BULLET.match(line)
        content = bullet.group(1).strip() if bullet else line
        if title is None:
            # Text before the first numbered item is an implicit first task.
            title, body = content, []
        else:
            body.append(content)
    close()

    if not parsed:
        parsed.append(_build(plan_title, [], 0))
    return parsed


def split_plan_to_tasks(
    db: sqlite3.Connection,
    project_id: str,
    text: str,
    template: Template | None = None,
    created_by: str | None = None,
) -> tuple[str, list[str]]:
    """Create a plan and its task chain. Returns the plan id and task ids in order.

    Tasks are routed with ``template``, or with the project's own routing when
    none is given. Each task depends on the one before it.
    """
    if not text or not text.strip():
        raise ValidationError("Plan text is empty", field="plan")
    project = require_project(db, project_id)
    routing = template or project.routing
    parsed = parse_plan_text(text)
    plan_title = next(line.strip() for line in text.splitlines() if line.strip())

    task_ids: list[str] = []
    with transaction(db):
        plan = plans_mod.create_plan(db, project_id, plan_title, text)
        for pt in parsed:
            category = match_category(routing, pt.title, pt.description)
            task = tasks_mod.create_task(
                db,
                project_id,
                title=pt.title,
                description=pt.description or pt.title,
                acceptance_criteria=pt.acceptance_criteria,
                owner=owner_for(routing, category),
                task_type=category,
                depends_on=task_ids[-1:],
                priority=-pt.order,
                plan_id=plan.id,
                created_by=created_by,
            )
            task_ids.append(task.id)

    logger.info("Split plan %s into %d task(s) using %s", plan.id, len(task_ids), routing.id)
    return plan.id, task_ids


def _build(title: str, body: list[str], order: int) -> ParsedTask:
    description_lines = []
    criteria = []
    for line in body:
        match = ACCEPTANCE.match(line)
        if match and match.group(1).strip():
            criteria.append(match.group(1).strip())
        elif not match:
            description_lines.append(line)
    description = "\n".join(description_lines).strip()
    if not criteria:
        criteria = ["\n".join(body).strip() or title]
    return ParsedTask(title=title, description=description, acceptance_criteria=criteria, order=order)
