"""MCP server exposing task relay tools to agents."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from task_relay.config import Config, get_config
from task_relay.core import graph as graph_mod
from task_relay.core import handoffs as handoffs_mod
from task_relay.core import planner as planner_mod
from task_relay.core import plans as plans_mod
from task_relay.core import projects as projects_mod
from task_relay.core import tasks as tasks_mod
from task_relay.core import templates as templates_mod
from task_relay.db.engine import init_db
from task_relay.errors import NotConfiguredError, NotFoundError, RelayError
from task_relay.integrations import slack as slack_mod


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Initialize DB connection on startup, close on shutdown."""
    config = get_config()
    db = init_db(config.db_path, timeout=config.busy_timeout)
    try:
        yield AppContext(db=db, config=config)
    finally:
        db.close()


mcp = FastMCP("task-relay", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _project(ctx: Context, project: str | None) -> str:
    project = project or _ctx(ctx).config.default_project
    if not project:
        raise NotConfiguredError("No project given and no default project configured", field="project")
    return project


def _error(e: RelayError) -> dict:
    result = {"error": str(e), "code": e.code}
    if e.task_id:
        result["task_id"] = e.task_id
    if e.field:
        result["field"] = e.field
    return result


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def create_task(
    ctx: Context,
    title: str,
    description: str,
    acceptance_criteria: list[str],
    project: str | None = None,
    owner: str | None = None,
    task_type: str | None = None,
    depends_on: list[str] | None = None,
    priority: int = 0,
    created_by: str | None = None,
) -> dict:
    """Create a task. Owner and type are routed from the title when omitted.

    Use owner='human' for work only a person can do (credentials, approvals,
    deploys). Higher priority runs first.
    """
    app = _ctx(ctx)
    try:
        project_id = _project(ctx, project)
        routing = projects_mod.require_project(app.db, project_id).routing
        task_type = task_type or templates_mod.match_category(routing, title, description)
        task = tasks_mod.create_task(
            app.db,
            project_id,
            title=title,
            description=description,
            acceptance_criteria=acceptance_criteria,
            owner=owner or templates_mod.owner_for(routing, task_type),
            task_type=task_type,
            depends_on=depends_on,
            priority=priority,
            created_by=created_by,
        )
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def list_tasks(
    ctx: Context,
    project: str | None = None,
    status: list[str] | None = None,
    owner: str | None = None,
    task_type: str | None = None,
    plan_id: str | None = None,
) -> list[dict]:
    """List tasks, optionally filtered by project, statuses, owner, task type and plan."""
    app = _ctx(ctx)
    tasks = tasks_mod.list_tasks(
        app.db,
        project or app.config.default_project,
        statuses=status,
        owner=owner,
        task_type=task_type,
        plan_id=plan_id,
    )
    return [_task_to_dict(app.db, t) for t in tasks]


@mcp.tool()
def get_executable_tasks(ctx: Context, project: str | None = None, owner: str | None = None) -> list[dict]:
    """Get tasks that can be claimed now (dependencies done), most urgent first."""
    app = _ctx(ctx)
    tasks = tasks_mod.get_executable_tasks(app.db, project or app.config.default_project, owner=owner)
    return [_task_to_dict(app.db, t) for t in tasks]


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get full details of a task including its handoffs and history."""
    app = _ctx(ctx)
    task = tasks_mod.get_task(app.db, task_id)
    if not task:
        return _error(NotFoundError(f"Task not found: {task_id}", task_id=task_id))
    result = _task_to_dict(app.db, task)
    result["handoffs"] = [_handoff_to_dict(h) for h in handoffs_mod.list_by_task(app.db, task_id)]
    result["events"] = [
        {"event_type": e.event_type, "old_value": e.old_value, "new_value": e.new_value,
         "created_at": e.created_at.isoformat() if e.created_at else None}
        for e in tasks_mod.get_task_events(app.db, task_id)
    ]
    return result


@mcp.tool()
def claim_task(ctx: Context, task_id: str, as_role: str = "agent", log: str | None = None) -> dict:
    """Claim a ready task. Only one claimer wins; the task must be owned by as_role."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.claim(app.db, task_id, as_role, log)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def start_task(ctx: Context, task_id: str, as_role: str = "agent", log: str | None = None) -> dict:
    """Record that work began on a claimed task."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.start(app.db, task_id, as_role, log)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def complete_task(
    ctx: Context,
    task_id: str,
    output: str,
    handoff_summary: str,
    as_role: str = "agent",
    log: str | None = None,
    artifacts: list[dict] | None = None,
) -> dict:
    """Complete a claimed task.

    handoff_summary must be at least 200 characters: it is the only context
    downstream tasks receive. Artifacts are dicts with 'type' and 'payload'.
    """
    app = _ctx(ctx)
    try:
        result = tasks_mod.complete(app.db, task_id, output, handoff_summary, as_role, log, artifacts)
    except RelayError as e:
        return _error(e)

    waiting = [
        tasks_mod.get_task(app.db, dep_id)
        for dep_id, state in result.unblocked.items()
        if state == "awaiting_human"
    ]
    slack_mod.notify_awaiting_human(
        app.config.slack_bot_token, app.config.slack_channel, waiting, upstream_id=task_id
    )
    return {
        "task": _task_to_dict(app.db, result.task),
        "handoffs": [_handoff_to_dict(h) for h in result.handoffs],
        "unblocked": result.unblocked,
    }


@mcp.tool()
def self_unblock_task(
    ctx: Context,
    task_id: str,
    depends_on: list[str],
    reason: str | None = None,
    log: str | None = None,
) -> dict:
    """Put your in-progress task back to ready behind new human-owned tasks.

    Create the human task first (owner='human'), then pass its id here. The
    task becomes claimable again once the human work is done.
    """
    app = _ctx(ctx)
    try:
        task = tasks_mod.self_unblock(app.db, task_id, depends_on, "agent", log, reason)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def cancel_task(ctx: Context, task_id: str, log: str | None = None) -> dict:
    """Cancel an open task. Its dependents stay blocked until re-pointed."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.cancel(app.db, task_id, log)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def add_task_dependency(ctx: Context, task_id: str, depends_on_id: str) -> dict:
    """Make a task depend on another. Self edges and cycles are rejected."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.add_task_dependency(app.db, task_id, depends_on_id)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def remove_task_dependency(ctx: Context, task_id: str, depends_on_id: str) -> dict:
    """Remove a dependency from a task."""
    app = _ctx(ctx)
    try:
        task = tasks_mod.remove_task_dependency(app.db, task_id, depends_on_id)
    except RelayError as e:
        return _error(e)
    return _task_to_dict(app.db, task)


@mcp.tool()
def delete_task(ctx: Context, task_id: str) -> dict:
    """Delete a task that nothing depends on."""
    app = _ctx(ctx)
    try:
        if not tasks_mod.delete_task(app.db, task_id):
            return _error(NotFoundError(f"Task not found: {task_id}", task_id=task_id))
    except RelayError as e:
        return _error(e)
    return {"deleted": task_id}


# ── Plan Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def split_plan(ctx: Context, text: str, project: str | None = None, template_id: str | None = None) -> dict:
    """Split a plan into a chain of tasks routed to agents or humans.

    First line is the plan title; numbered lines ('1.', '2)') start tasks;
    'Acceptance:' lines under a task become its acceptance criteria.
    """
    app = _ctx(ctx)
    try:
        template = None
        if template_id:
            template = templates_mod.get_template(app.db, template_id)
            if not template:
                raise NotFoundError(f"Template not found: {template_id}", field="template_id")
        plan_id, task_ids = planner_mod.split_plan_to_tasks(
            app.db, _project(ctx, project), text, template
        )
    except RelayError as e:
        return _error(e)
    return {
        "plan_id": plan_id,
        "tasks": [_task_to_dict(app.db, tasks_mod.get_task(app.db, t)) for t in task_ids],
    }


@mcp.tool()
def list_plans(ctx: Context, project: str | None = None) -> list[dict]:
    """List plans for a project, newest first."""
    app = _ctx(ctx)
    plans = plans_mod.list_plans(app.db, project or app.config.default_project)
    return [{"id": p.id, "title": p.title, "project_id": p.project_id} for p in plans]


@mcp.tool()
def get_plan(ctx: Context, plan_id: str) -> dict:
    """Get a plan with its task ids in order."""
    app = _ctx(ctx)
    plan = plans_mod.get_plan(app.db, plan_id)
    if not plan:
        return _error(NotFoundError(f"Plan not found: {plan_id}", field="plan_id"))
    return {
        "id": plan.id,
        "project_id": plan.project_id,
        "title": plan.title,
        "description": plan.description,
        "task_ids": plan.task_ids,
    }


# ── Handoff Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def list_handoffs(
    ctx: Context,
    task_id: str | None = None,
    from_task_id: str | None = None,
    to_task_id: str | None = None,
) -> list[dict]:
    """List handoffs newest first. Use to_task_id to read context passed to your task."""
    app = _ctx(ctx)
    if task_id:
        handoffs = handoffs_mod.list_by_task(app.db, task_id)
    else:
        handoffs = handoffs_mod.list_handoffs(app.db, from_task_id, to_task_id)
    return [_handoff_to_dict(h) for h in handoffs]


# ── Project Tools ────────────────────────────────────────────────────────────


@mcp.tool()
def list_projects(ctx: Context) -> list[dict]:
    """List all projects."""
    app = _ctx(ctx)
    return [_project_to_dict(p) for p in projects_mod.list_projects(app.db)]


@mcp.tool()
def get_project(ctx: Context, project: str | None = None) -> dict:
    """Get a project with its routing rules and workflow instructions."""
    app = _ctx(ctx)
    try:
        p = projects_mod.require_project(app.db, _project(ctx, project))
    except RelayError as e:
        return _error(e)
    return _project_to_dict(p)


@mcp.tool()
def update_project_instructions(ctx: Context, instructions: str, project: str | None = None) -> dict:
    """Replace a project's workflow instructions."""
    app = _ctx(ctx)
    try:
        p = projects_mod.update_instructions(app.db, _project(ctx, project), instructions)
    except RelayError as e:
        return _error(e)
    return _project_to_dict(p)


@mcp.tool()
def list_templates(ctx: Context) -> list[dict]:
    """List routing templates."""
    app = _ctx(ctx)
    templates_mod.ensure_default_template(app.db)
    return [templates_mod.template_to_dict(t) for t in templates_mod.list_templates(app.db)]


# ── Helpers ───────────────────────────────────────────────────────────────────


def _task_to_dict(db: sqlite3.Connection, task) -> dict:
    return {
        "id": task.id,
        "project_id": task.project_id,
        "plan_id": task.plan_id,
        "title": task.title,
        "description": task.description,
        "acceptance_criteria": task.acceptance_criteria,
        "task_type": task.task_type,
        "owner": task.owner,
        "status": task.status,
        "readiness": graph_mod.readiness(db, task),
        "priority": task.priority,
        "depends_on": task.depends_on,
        "output": task.output,
        "logs": task.logs,
        "waiting_reason": task.waiting_reason,
        "claimed_by": task.claimed_by,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
    }


def _handoff_to_dict(h) -> dict:
    return {
        "id": h.id,
        "from_task_id": h.from_task_id,
        "to_task_id": h.to_task_id,
        "summary": h.summary,
        "artifacts": [{"type": a.type, "payload": a.payload} for a in h.artifacts],
        "created_at": h.created_at.isoformat() if h.created_at else None,
    }


def _project_to_dict(p) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "status": p.status,
        "workflow_instructions": p.workflow_instructions,
        "routing": templates_mod.template_to_dict(p.routing),
    }
