"""CLI entry point for task relay."""

import json
import logging
import sys
from functools import wraps
from pathlib import Path

import click

from task_relay.config import (
    CONFIG_KEYS,
    PROJECT_CONFIG_FILENAME,
    get_config,
    load_project_config,
    save_project_config,
    set_project_config_value,
)
from task_relay.core import graph as graph_mod
from task_relay.core import handoffs as handoffs_mod
from task_relay.core import planner as planner_mod
from task_relay.core import plans as plans_mod
from task_relay.core import projects as projects_mod
from task_relay.core import tasks as tasks_mod
from task_relay.core import templates as templates_mod
from task_relay.db.engine import get_db
from task_relay.db.models import OWNERS, PROJECT_STATUSES, TASK_STATUSES, TASK_TYPES
from task_relay.errors import NotConfiguredError, NotFoundError, RelayError, ValidationError
from task_relay.integrations import slack as slack_mod


def _get_db():
    config = get_config()
    return get_db(config.db_path, timeout=config.busy_timeout)


def _project_id(project: str | None) -> str:
    project = project or get_config().default_project
    if not project:
        raise NotConfiguredError(
            "No project given and no default project configured (run `relay init`)", field="project"
        )
    return project


def _handle_errors(fn):
    """Map orchestration errors to `Error [code]: message` and the error's exit status."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except RelayError as e:
            click.echo(f"Error [{e.code}]: {e}", err=True)
            sys.exit(e.exit_code)

    return wrapper


@click.group()
def main():
    """relay - Task Relay CLI"""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Project Commands ──────────────────────────────────────────────────────────


@main.command("init")
@click.argument("project_name")
@click.option("--template", "template_id", default=None, help="Routing template ID (default template if omitted)")
@click.option("--instructions", default=None, help="Workflow instructions for agents and humans")
@click.option("--agent", "agent_command", default=None, help="Agent command for the daemon")
@click.option("--no-config", is_flag=True, help="Don't write .relay.json in the current directory")
@_handle_errors
def init_project(project_name, template_id, instructions, agent_command, no_config):
    """Initialize a new project."""
    project_id = projects_mod.slugify(project_name)

    with _get_db() as db:
        project = projects_mod.create_project(
            db, project_id, project_name, template_id, instructions
        )
        click.echo(f"Project created: {project.id} ({project.name})")
        click.echo(f"  Routing: {project.routing.name} v{project.routing.version}")

    if not no_config:
        values = {"project": project.id}
        if agent_command:
            values["agent"] = agent_command
        path = save_project_config(values, Path.cwd())
        click.echo(f"  Config: {path}")


@main.group("project")
def project_group():
    """Manage projects."""
    pass


@project_group.command("ls")
@click.option("--status", type=click.Choice(PROJECT_STATUSES), default=None)
def project_ls(status):
    """List projects."""
    with _get_db() as db:
        projects = projects_mod.list_projects(db, status=status)
        if not projects:
            click.echo("No projects found.")
            return
        for p in projects:
            click.echo(f"  {p.id}: {p.name} [{p.status}] routing={p.routing.id}")


@project_group.command("show")
@click.argument("project_id", required=False)
@_handle_errors
def project_show(project_id):
    """Show project details and task counts."""
    project_id = _project_id(project_id)
    with _get_db() as db:
        project = projects_mod.require_project(db, project_id)
        click.echo(f"Project: {project.id}")
        click.echo(f"  Name: {project.name}")
        click.echo(f"  Status: {project.status}")
        click.echo(f"  Routing: {project.routing.name} ({project.routing.id}) v{project.routing.version}")
        for rule in project.routing.rules:
            owner = "human" if rule.requires_human else "agent"
            click.echo(f"    {rule.task_type} -> {owner}")
        if project.workflow_instructions:
            click.echo(f"  Instructions: {project.workflow_instructions}")
        tasks = tasks_mod.list_tasks(db, project_id)
        counts = {s: sum(1 for t in tasks if t.status == s) for s in TASK_STATUSES}
        click.echo("  Tasks: " + ", ".join(f"{s}={n}" for s, n in counts.items()))


@project_group.command("instructions")
@click.argument("text")
@click.option("--project", default=None, help="Project ID")
@_handle_errors
def project_instructions(text, project):
    """Replace a project's workflow instructions."""
    with _get_db() as db:
        p = projects_mod.update_instructions(db, _project_id(project), text)
        click.echo(f"Updated instructions for {p.id}")


@project_group.command("archive")
@click.argument("project_id")
@_handle_errors
def project_archive(project_id):
    """Archive a project. Archived projects accept no new tasks."""
    with _get_db() as db:
        projects_mod.archive_project(db, project_id)
        click.echo(f"Archived project: {project_id}")


@project_group.command("rm")
@click.argument("project_id")
@_handle_errors
def project_rm(project_id):
    """Delete a project with no tasks or plans."""
    with _get_db() as db:
        if not projects_mod.delete_project(db, project_id):
            raise NotFoundError(f"Project not found: {project_id}", field="project_id")
        click.echo(f"Deleted project: {project_id}")


# ── Config Commands ───────────────────────────────────────────────────────────


@main.group("config")
def config_group():
    """View and change settings in .relay.json."""
    pass


@config_group.command("show")
def config_show():
    """Show the settings stored in .relay.json."""
    values = load_project_config(Path.cwd())
    if not values:
        click.echo(f"No config ({PROJECT_CONFIG_FILENAME} not found in {Path.cwd()})")
        return
    for key in CONFIG_KEYS:
        if key in values:
            click.echo(f"{key}: {values[key]}")


@config_group.command("get")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@_handle_errors
def config_get(key):
    """Print one setting."""
    values = load_project_config(Path.cwd()) or {}
    if key not in values:
        raise NotFoundError(f"Config key not set: {key}", field=key)
    click.echo(values[key])


@config_group.command("set")
@click.argument("key", type=click.Choice(CONFIG_KEYS))
@click.argument("value")
@_handle_errors
def config_set(key, value):
    """Set one setting, e.g. `relay config set agent "claude -p {prompt}"`."""
    set_project_config_value(key, value, Path.cwd())
    click.echo(f"Set {key} = {value}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("create")
@click.argument("title")
@click.option("--project", default=None, help="Project ID (defaults to .relay.json)")
@click.option("--description", "-d", required=True, help="Task description")
@click.option("--acceptance", "-a", multiple=True, required=True, help="Acceptance criterion (repeatable)")
@click.option("--owner", type=click.Choice(OWNERS), default=None, help="Owner (routed from the title if omitted)")
@click.option("--type", "task_type", type=click.Choice(TASK_TYPES), default=None, help="Task type")
@click.option("--depends-on", default=None, help="Comma-separated task IDs this depends on")
@click.option("--priority", "-p", default=0, type=int, help="Priority (higher runs first)")
@click.option("--created-by", default=None)
@_handle_errors
def task_create(title, project, description, acceptance, owner, task_type, depends_on, priority, created_by):
    """Create a new task."""
    deps = _split_ids(depends_on)
    project_id = _project_id(project)

    with _get_db() as db:
        routing = projects_mod.require_project(db, project_id).routing
        task_type = task_type or templates_mod.match_category(routing, title, description)
        owner = owner or templates_mod.owner_for(routing, task_type)
        task = tasks_mod.create_task(
            db,
            project_id,
            title=title,
            description=description,
            acceptance_criteria=list(acceptance),
            owner=owner,
            task_type=task_type,
            depends_on=deps,
            priority=priority,
            created_by=created_by,
        )
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Owner: {task.owner} ({task.task_type})")
        click.echo(f"  Status: {graph_mod.readiness(db, task)}")
        if task.depends_on:
            click.echo(f"  Depends on: {', '.join(task.depends_on)}")


@task_group.command("ls")
@click.option("--project", default=None, help="Project ID")
@click.option("--status", type=click.Choice(TASK_STATUSES), multiple=True, help="Filter by status")
@click.option("--owner", type=click.Choice(OWNERS), default=None)
@click.option("--type", "task_type", type=click.Choice(TASK_TYPES), default=None)
@click.option("--plan", "plan_id", default=None)
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
@_handle_errors
def task_ls(project, status, owner, task_type, plan_id, json_output):
    """List tasks."""
    with _get_db() as db:
        tasks = tasks_mod.list_tasks(
            db, _project_id(project), statuses=list(status) or None,
            owner=owner, task_type=task_type, plan_id=plan_id,
        )

        if json_output:
            click.echo(json.dumps([_task_dict(db, t) for t in tasks], indent=2))
            return

        if not tasks:
            click.echo("No tasks found.")
            return

        state_icons = {
            "ready": "○",
            "awaiting_human": "◐",
            "blocked": "✗",
            "in_progress": "●",
            "done": "✓",
            "cancelled": "-",
        }

        for task in tasks:
            state = graph_mod.readiness(db, task)
            icon = state_icons.get(state, "?")
            deps = f" [depends: {', '.join(task.depends_on)}]" if task.depends_on else ""
            click.echo(f"  {icon} {task.id}: {task.title} ({task.owner}, {state}){deps}")


@task_group.command("ready")
@click.option("--project", default=None, help="Project ID")
@click.option("--owner", type=click.Choice(OWNERS), default=None)
@_handle_errors
def task_ready(project, owner):
    """List tasks that can be claimed now, most urgent first."""
    with _get_db() as db:
        tasks = tasks_mod.get_executable_tasks(db, _project_id(project), owner=owner)
        if not tasks:
            click.echo("No executable tasks.")
            return
        for task in tasks:
            click.echo(f"  {task.id}: {task.title} ({task.owner}, priority {task.priority})")


@task_group.command("show")
@click.argument("task_id")
@_handle_errors
def task_show(task_id):
    """Show task details."""
    with _get_db() as db:
        task = tasks_mod.require_task(db, task_id)

        click.echo(f"Task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Owner: {task.owner}")
        click.echo(f"  Type: {task.task_type}")
        click.echo(f"  Status: {task.status} ({graph_mod.readiness(db, task)})")
        click.echo(f"  Priority: {task.priority}")
        click.echo(f"  Project: {task.project_id}")
        if task.plan_id:
            click.echo(f"  Plan: {task.plan_id}")
        click.echo(f"  Description: {task.description}")
        click.echo("  Acceptance:")
        for c in task.acceptance_criteria:
            click.echo(f"    - {c}")
        if task.depends_on:
            click.echo(f"  Depends on: {', '.join(task.depends_on)}")
        if task.waiting_reason:
            click.echo(f"  Waiting: {task.waiting_reason}")
        if task.claimed_by:
            click.echo(f"  Claimed by: {task.claimed_by}")
        if task.output:
            click.echo(f"  Output: {task.output}")
        if task.created_at:
            click.echo(f"  Created: {task.created_at}")
        if task.logs:
            click.echo("  Logs:")
            for entry in task.logs:
                click.echo(f"    - {entry}")

        handoffs = handoffs_mod.list_by_task(db, task_id)
        if handoffs:
            click.echo("  Handoffs:")
            for h in handoffs:
                click.echo(f"    {h.id}: {h.from_task_id} -> {h.to_task_id or '(audit)'}")

        events = tasks_mod.get_task_events(db, task_id)
        if events:
            click.echo("  History:")
            for e in events:
                click.echo(f"    [{e.created_at}] {e.event_type}: {e.old_value} -> {e.new_value}")


@task_group.command("claim")
@click.argument("task_id")
@click.option("--as", "as_role", type=click.Choice(OWNERS), required=True, help="Claiming role")
@click.option("--log", default=None, help="Log entry")
@_handle_errors
def task_claim(task_id, as_role, log):
    """Claim a ready task whose dependencies are done."""
    with _get_db() as db:
        task = tasks_mod.claim(db, task_id, as_role, log)
        click.echo(f"Claimed task: {task.id} ({task.title})")


@task_group.command("start")
@click.argument("task_id")
@click.option("--as", "as_role", type=click.Choice(OWNERS), required=True, help="Claiming role")
@click.option("--log", default=None, help="Log entry")
@_handle_errors
def task_start(task_id, as_role, log):
    """Record that work started on a claimed task."""
    with _get_db() as db:
        tasks_mod.start(db, task_id, as_role, log)
        click.echo(f"Started task: {task_id}")


@task_group.command("done")
@click.argument("task_id")
@click.option("--as", "as_role", type=click.Choice(OWNERS), required=True, help="Claiming role")
@click.option("--output", "-o", required=True, help="Task output")
@click.option("--handoff-summary", "-s", required=True, help="Context for downstream tasks (200+ chars)")
@click.option("--artifact", "artifacts", multiple=True, help="Artifact as TYPE=PAYLOAD (repeatable)")
@click.option("--log", default=None, help="Log entry")
@_handle_errors
def task_done(task_id, as_role, output, handoff_summary, artifacts, log):
    """Complete a task and hand off to its dependents."""
    config = get_config()
    with _get_db() as db:
        result = tasks_mod.complete(
            db, task_id, output, handoff_summary, as_role, log,
            artifacts=[_parse_artifact(a) for a in artifacts],
        )
        click.echo(f"Completed task: {task_id}")
        click.echo(f"  Handoffs: {', '.join(h.id for h in result.handoffs)}")
        for dep_id, state in result.unblocked.items():
            click.echo(f"  Unblocked: {dep_id} ({state})")

        waiting = [
            tasks_mod.get_task(db, dep_id)
            for dep_id, state in result.unblocked.items()
            if state == "awaiting_human"
        ]
        sent = slack_mod.notify_awaiting_human(
            config.slack_bot_token, config.slack_channel, waiting, upstream_id=task_id
        )
        if sent:
            click.echo(f"  Slack notifications sent to {config.slack_channel}: {sent}")


@task_group.command("self-unblock")
@click.argument("task_id")
@click.option("--depends-on", required=True, help="Comma-separated human task IDs to wait on")
@click.option("--reason", default=None, help="Why the task is waiting")
@click.option("--log", default=None, help="Log entry")
@_handle_errors
def task_self_unblock(task_id, depends_on, reason, log):
    """Return an agent task to ready behind new human tasks."""
    with _get_db() as db:
        task = tasks_mod.self_unblock(db, task_id, _split_ids(depends_on), "agent", log, reason)
        click.echo(f"Task {task.id} is waiting on: {', '.join(task.depends_on)}")
        click.echo(f"  Reason: {task.waiting_reason}")


@task_group.command("cancel")
@click.argument("task_id")
@click.option("--log", default=None, help="Log entry")
@_handle_errors
def task_cancel(task_id, log):
    """Cancel an open task."""
    with _get_db() as db:
        tasks_mod.cancel(db, task_id, log)
        click.echo(f"Cancelled task: {task_id}")
        dependents = graph_mod.downstream_of(db, task_id)
        if dependents:
            click.echo(f"  Still blocked: {', '.join(dependents)} (re-point with remove-dep)")


@task_group.command("add-dep")
@click.argument("task_id")
@click.argument("depends_on_id")
@_handle_errors
def task_add_dep(task_id, depends_on_id):
    """Add a dependency to a task."""
    with _get_db() as db:
        task = tasks_mod.add_task_dependency(db, task_id, depends_on_id)
        click.echo(f"Added dependency: {task_id} now depends on {depends_on_id}")
        click.echo(f"  Depends on: {', '.join(task.depends_on)}")


@task_group.command("remove-dep")
@click.argument("task_id")
@click.argument("depends_on_id")
@_handle_errors
def task_remove_dep(task_id, depends_on_id):
    """Remove a dependency from a task."""
    with _get_db() as db:
        task = tasks_mod.remove_task_dependency(db, task_id, depends_on_id)
        click.echo(f"Removed dependency: {task_id} no longer depends on {depends_on_id}")
        if task.depends_on:
            click.echo(f"  Remaining deps: {', '.join(task.depends_on)}")
        else:
            click.echo("  No remaining dependencies")


@task_group.command("rm")
@click.argument("task_id")
@_handle_errors
def task_rm(task_id):
    """Delete a task nothing depends on."""
    with _get_db() as db:
        if not tasks_mod.delete_task(db, task_id):
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        click.echo(f"Deleted task: {task_id}")


# ── Plan Commands ────────────────────────────────────────────────────────────


@main.group("plan")
def plan_group():
    """Split plans into task chains."""
    pass


@plan_group.command("add")
@click.argument("text", required=False)
@click.option("--file", "-f", "plan_file", type=click.File("r"), default=None, help="Read plan text from a file")
@click.option("--project", default=None, help="Project ID")
@click.option("--template", "template_id", default=None, help="Route with this template instead of the project's")
@_handle_errors
def plan_add(text, plan_file, project, template_id):
    """Split plan text into a chain of routed tasks."""
    if plan_file:
        text = plan_file.read()
    if not text:
        raise ValidationError("Provide plan text or --file", field="text")

    with _get_db() as db:
        template = None
        if template_id:
            template = templates_mod.get_template(db, template_id)
            if not template:
                raise NotFoundError(f"Template not found: {template_id}", field="template_id")
        plan_id, task_ids = planner_mod.split_plan_to_tasks(db, _project_id(project), text, template)
        click.echo(f"Created plan: {plan_id}")
        for task_id in task_ids:
            task = tasks_mod.get_task(db, task_id)
            click.echo(f"  {task.id}: {task.title} ({task.owner}, {task.task_type})")


@plan_group.command("ls")
@click.option("--project", default=None, help="Project ID")
@_handle_errors
def plan_ls(project):
    """List plans."""
    with _get_db() as db:
        plans = plans_mod.list_plans(db, _project_id(project))
        if not plans:
            click.echo("No plans found.")
            return
        for p in plans:
            click.echo(f"  {p.id}: {p.title}")


@plan_group.command("show")
@click.argument("plan_id")
@_handle_errors
def plan_show(plan_id):
    """Show a plan and its tasks."""
    with _get_db() as db:
        plan = plans_mod.get_plan(db, plan_id)
        if not plan:
            raise NotFoundError(f"Plan not found: {plan_id}", field="plan_id")
        click.echo(f"Plan: {plan.id}")
        click.echo(f"  Title: {plan.title}")
        click.echo(f"  Project: {plan.project_id}")
        for task_id in plan.task_ids:
            task = tasks_mod.get_task(db, task_id)
            click.echo(f"    - {task.id}: {task.title} ({task.owner}, {graph_mod.readiness(db, task)})")


@plan_group.command("rm")
@click.argument("plan_id")
@_handle_errors
def plan_rm(plan_id):
    """Delete a plan that has no tasks."""
    with _get_db() as db:
        if not plans_mod.delete_plan(db, plan_id):
            raise NotFoundError(f"Plan not found: {plan_id}", field="plan_id")
        click.echo(f"Deleted plan: {plan_id}")


# ── Template Commands ────────────────────────────────────────────────────────


@main.group("template")
def template_group():
    """Manage routing templates."""
    pass


@template_group.command("ls")
def template_ls():
    """List routing templates."""
    with _get_db() as db:
        templates_mod.ensure_default_template(db)
        for t in templates_mod.list_templates(db):
            marker = " (default)" if t.is_default else ""
            click.echo(f"  {t.id}: {t.name} v{t.version}{marker}")


@template_group.command("show")
@click.argument("template_id")
@_handle_errors
def template_show(template_id):
    """Show a template as JSON."""
    with _get_db() as db:
        template = templates_mod.get_template(db, template_id)
        if not template:
            raise NotFoundError(f"Template not found: {template_id}", field="template_id")
        click.echo(json.dumps(templates_mod.template_to_dict(template), indent=2, ensure_ascii=False))


@template_group.command("add")
@click.option("--file", "-f", "template_file", type=click.File("r"), required=True, help="Template JSON file")
@click.option("--default", "make_default", is_flag=True, help="Make this the default template")
@_handle_errors
def template_add(template_file, make_default):
    """Create a template from JSON: {name, version, rules, keywords}."""
    try:
        data = json.load(template_file)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid template JSON: {e}", field="file") from None

    with _get_db() as db:
        template = templates_mod.create_template(
            db,
            data.get("name", ""),
            rules=data.get("rules"),
            keywords=data.get("keywords"),
            version=data.get("version", "1.0"),
            is_default=make_default,
        )
        click.echo(f"Created template: {template.id} ({template.name})")


@template_group.command("set-default")
@click.argument("template_id")
@_handle_errors
def template_set_default(template_id):
    """Make a template the default for new projects."""
    with _get_db() as db:
        templates_mod.set_default_template(db, template_id)
        click.echo(f"Default template: {template_id}")


@template_group.command("rm")
@click.argument("template_id")
@_handle_errors
def template_rm(template_id):
    """Delete a template. Existing projects keep their routing snapshot."""
    with _get_db() as db:
        if not templates_mod.delete_template(db, template_id):
            raise NotFoundError(f"Template not found: {template_id}", field="template_id")
        click.echo(f"Deleted template: {template_id}")


# ── Handoff Commands ─────────────────────────────────────────────────────────


@main.group("handoff")
def handoff_group():
    """Inspect handoffs."""
    pass


@handoff_group.command("ls")
@click.option("--task", "task_id", default=None, help="Handoffs sent from or to this task")
@click.option("--from", "from_task_id", default=None)
@click.option("--to", "to_task_id", default=None)
def handoff_ls(task_id, from_task_id, to_task_id):
    """List handoffs, newest first."""
    with _get_db() as db:
        if task_id:
            handoffs = handoffs_mod.list_by_task(db, task_id)
        else:
            handoffs = handoffs_mod.list_handoffs(db, from_task_id, to_task_id)
        if not handoffs:
            click.echo("No handoffs found.")
            return
        for h in handoffs:
            click.echo(f"  {h.id}: {h.from_task_id} -> {h.to_task_id or '(audit)'}")
            click.echo(f"    {h.summary}")


@handoff_group.command("show")
@click.argument("handoff_id")
@_handle_errors
def handoff_show(handoff_id):
    """Show a handoff."""
    with _get_db() as db:
        h = handoffs_mod.get_handoff(db, handoff_id)
        if not h:
            raise NotFoundError(f"Handoff not found: {handoff_id}", field="handoff_id")
        click.echo(f"Handoff: {h.id}")
        click.echo(f"  From: {h.from_task_id}")
        click.echo(f"  To: {h.to_task_id or '(audit)'}")
        click.echo(f"  Created: {h.created_at}")
        click.echo(f"  Summary: {h.summary}")
        for a in h.artifacts:
            click.echo(f"  Artifact [{a.type}]: {a.payload}")


# ── Daemon Command ───────────────────────────────────────────────────────────


@main.command("daemon")
@click.option("--project", default=None, help="Only dispatch tasks of this project")
@click.option("--agent", "agent_command", default=None, help="Worker command ({task_id}, {project_id}, {prompt})")
@click.option("--interval", type=float, default=None, help="Seconds between polls")
@click.option("--once", is_flag=True, help="Run a single iteration and exit")
@_handle_errors
def daemon_command(project, agent_command, interval, once):
    """Poll for executable agent tasks and dispatch them to the worker."""
    from task_relay.core.scheduler import CommandInvoker, Scheduler

    config = get_config()
    command = agent_command or config.agent_command
    if not command:
        raise NotConfiguredError(
            "No agent command configured (use --agent, `relay config set agent` or RELAY_AGENT_COMMAND)",
            field="agent",
        )

    scheduler = Scheduler(
        config.db_path,
        CommandInvoker(command, cwd=Path.cwd()),
        poll_interval=interval or config.poll_interval,
        max_attempts=config.max_attempts,
        project_id=project or config.default_project,
        busy_timeout=config.busy_timeout,
    )
    if once:
        dispatched = scheduler.run_once()
        click.echo(f"Dispatched: {dispatched}" if dispatched else "Nothing to dispatch.")
        return

    click.echo(f"Scheduler polling every {scheduler.poll_interval}s (Ctrl+C to stop)")
    try:
        scheduler.run_forever()
    except KeyboardInterrupt:
        scheduler.stop()


# ── Dashboard Command ────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
@click.option("--open/--no-open", default=True, help="Open browser automatically")
def ui_command(host, port, open):
    """Launch the web dashboard."""
    import webbrowser

    from task_relay.web.app import run_server

    url = f"http://{host}:{port}"
    click.echo(f"Starting dashboard at {url}")
    if open:
        webbrowser.open(url)
    run_server(host=host, port=port)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from task_relay.mcp.server import mcp
    from task_relay.mcp import prompts  # noqa: F401 - registers prompts

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _split_ids(raw: str | None) -> list[str]:
    return [d.strip() for d in raw.split(",") if d.strip()] if raw else []


def _parse_artifact(raw: str) -> dict:
    kind, sep, payload = raw.partition("=")
    if not sep:
        return {"type": kind.strip(), "payload": None}
    return {"type": kind.strip(), "payload": payload}


def _task_dict(db, task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "owner": task.owner,
        "type": task.task_type,
        "status": task.status,
        "readiness": graph_mod.readiness(db, task),
        "priority": task.priority,
        "project": task.project_id,
        "plan": task.plan_id,
        "description": task.description,
        "acceptance_criteria": task.acceptance_criteria,
        "depends_on": task.depends_on,
        "waiting_reason": task.waiting_reason,
    }


if __name__ == "__main__":
    main()
