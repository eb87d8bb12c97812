"""Read-only web API and dashboard for task relay."""

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from task_relay.config import get_config
from task_relay.core import graph as graph_mod
from task_relay.core import handoffs as handoffs_mod
from task_relay.core import plans as plans_mod
from task_relay.core import projects as projects_mod
from task_relay.core import tasks as tasks_mod
from task_relay.core import templates as templates_mod
from task_relay.db.engine import init_db
from task_relay.db.models import AWAITING_HUMAN, BLOCKED, READY
from task_relay.errors import (
    NotFoundError,
    RelayError,
    ValidationError,
)
from task_relay.web.dashboard import get_dashboard_html

READINESS_ORDER = (BLOCKED, READY, AWAITING_HUMAN, "in_progress", "done", "cancelled")


def _get_db():
    config = get_config()
    return init_db(config.db_path, timeout=config.busy_timeout)


def _error_response(e: RelayError) -> JSONResponse:
    if isinstance(e, NotFoundError):
        status = 404
    elif isinstance(e, ValidationError):
        status = 422
    else:
        status = 409
    return JSONResponse({"error": str(e), "code": e.code}, status_code=status)


# ── Handlers ──────────────────────────────────────────────────────────────────


async def index(request: Request):
    return HTMLResponse(get_dashboard_html())


async def api_list_projects(request: Request):
    db = _get_db()
    try:
        projects = projects_mod.list_projects(db, status=request.query_params.get("status"))
        return JSONResponse([_project_dict(p) for p in projects])
    except RelayError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_get_project(request: Request):
    project_id = request.path_params["project_id"]
    db = _get_db()
    try:
        project = projects_mod.require_project(db, project_id)
        return JSONResponse(_project_dict(project))
    except RelayError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_project_tasks(request: Request):
    project_id = request.path_params["project_id"]
    statuses = request.query_params.getlist("status") or None
    db = _get_db()
    try:
        projects_mod.require_project(db, project_id)
        tasks = tasks_mod.list_tasks(
            db,
            project_id,
            statuses=statuses,
            owner=request.query_params.get("owner"),
            plan_id=request.query_params.get("plan"),
        )
        return JSONResponse([_task_dict(db, t) for t in tasks])
    except RelayError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_project_ready(request: Request):
    project_id = request.path_params["project_id"]
    db = _get_db()
    try:
        tasks = tasks_mod.get_executable_tasks(db, project_id, owner=request.query_params.get("owner"))
        return JSONResponse([_task_dict(db, t) for t in tasks])
    finally:
        db.close()


async def api_project_summary(request: Request):
    project_id = request.path_params["project_id"]
    db = _get_db()
    try:
        projects_mod.require_project(db, project_id)
        counts = {state: 0 for state in READINESS_ORDER}
        for t in tasks_mod.list_tasks(db, project_id):
            state = graph_mod.readiness(db, t)
            counts[state] = counts.get(state, 0) + 1
        total = sum(counts.values())
        open_total = total - counts["cancelled"]
        progress = (counts["done"] / open_total * 100) if open_total > 0 else 0

        return JSONResponse({
            "project_id": project_id,
            "counts": counts,
            "total": total,
            "progress_pct": round(progress, 1),
        })
    except RelayError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_project_plans(request: Request):
    project_id = request.path_params["project_id"]
    db = _get_db()
    try:
        plans = plans_mod.list_plans(db, project_id)
        return JSONResponse([
            {
                "id": p.id,
                "title": p.title,
                "created_at": p.created_at.isoformat() if p.created_at else None,
            }
            for p in plans
        ])
    finally:
        db.close()


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    db = _get_db()
    try:
        task = tasks_mod.require_task(db, task_id)
        td = _task_dict(db, task)
        td["logs"] = task.logs
        td["output"] = task.output
        td["events"] = [_event_dict(e) for e in tasks_mod.get_task_events(db, task_id)]
        td["handoffs"] = [_handoff_dict(h) for h in handoffs_mod.list_by_task(db, task_id)]
        td["dependents"] = graph_mod.downstream_of(db, task_id)
        return JSONResponse(td)
    except RelayError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_list_handoffs(request: Request):
    db = _get_db()
    try:
        handoffs = handoffs_mod.list_handoffs(
            db,
            from_task_id=request.query_params.get("from"),
            to_task_id=request.query_params.get("to"),
        )
        return JSONResponse([_handoff_dict(h) for h in handoffs])
    finally:
        db.close()


async def api_list_templates(request: Request):
    db = _get_db()
    try:
        templates_mod.ensure_default_template(db)
        return JSONResponse([templates_mod.template_to_dict(t) for t in templates_mod.list_templates(db)])
    finally:
        db.close()


# ── Serialization ─────────────────────────────────────────────────────────────


def _project_dict(p) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "status": p.status,
        "workflow_instructions": p.workflow_instructions,
        "routing": templates_mod.template_to_dict(p.routing),
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


def _task_dict(db, t) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "acceptance_criteria": t.acceptance_criteria,
        "task_type": t.task_type,
        "owner": t.owner,
        "status": t.status,
        "readiness": graph_mod.readiness(db, t),
        "priority": t.priority,
        "project_id": t.project_id,
        "plan_id": t.plan_id,
        "depends_on": t.depends_on,
        "waiting_reason": t.waiting_reason,
        "claimed_by": t.claimed_by,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
        "completed_at": t.completed_at.isoformat() if t.completed_at else None,
    }


def _handoff_dict(h) -> dict:
    return {
        "id": h.id,
        "from_task_id": h.from_task_id,
        "to_task_id": h.to_task_id,
        "summary": h.summary,
        "artifacts": [{"type": a.type, "payload": a.payload} for a in h.artifacts],
        "created_at": h.created_at.isoformat() if h.created_at else None,
    }


def _event_dict(e) -> dict:
    return {
        "id": e.id,
        "event_type": e.event_type,
        "old_value": e.old_value,
        "new_value": e.new_value,
        "created_at": e.created_at.isoformat() if e.created_at else None,
    }


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    routes = [
        Route("/", index),
        Route("/api/projects", api_list_projects),
        Route("/api/projects/{project_id}", api_get_project),
        Route("/api/projects/{project_id}/tasks", api_project_tasks),
        Route("/api/projects/{project_id}/ready", api_project_ready),
        Route("/api/projects/{project_id}/summary", api_project_summary),
        Route("/api/projects/{project_id}/plans", api_project_plans),
        Route("/api/tasks/{task_id}", api_get_task),
        Route("/api/handoffs", api_list_handoffs),
        Route("/api/templates", api_list_templates),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
