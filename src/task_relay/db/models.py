"""Data models for task relay."""

from dataclasses import dataclass, field
from datetime import datetime

TASK_STATUSES = ("ready", "in_progress", "done", "cancelled")
TERMINAL_STATUSES = ("done", "cancelled")
OWNERS = ("agent", "human")
TASK_TYPES = (
    "implementation",
    "testing",
    "review",
    "credentials",
    "deploy",
    "docs",
    "custom",
)
PROJECT_STATUSES = ("active", "archived")

# Derived readiness of a task that is still waiting to be claimed.
BLOCKED = "blocked"
READY = "ready"
AWAITING_HUMAN = "awaiting_human"


@dataclass
class TemplateRule:
    task_type: str
    requires_human: bool = False


@dataclass
class Template:
    id: str
    name: str
    version: str = "1.0"
    rules: list[TemplateRule] = field(default_factory=list)
    keywords: list[tuple[str, list[str]]] = field(default_factory=list)
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Project:
    id: str
    name: str
    routing: Template
    workflow_instructions: str | None = None
    status: str = "active"
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Plan:
    id: str
    project_id: str
    title: str
    description: str
    created_at: datetime | None = None
    task_ids: list[str] = field(default_factory=list)


@dataclass
class Task:
    id: str
    project_id: str
    title: str
    description: str
    acceptance_criteria: list[str]
    task_type: str
    owner: str
    status: str = "ready"
    priority: int = 0
    plan_id: str | None = None
    output: str | None = None
    logs: list[str] = field(default_factory=list)
    waiting_reason: str | None = None
    claimed_by: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    depends_on: list[str] = field(default_factory=list)


@dataclass
class Artifact:
    type: str
    payload: object = None


@dataclass
class Handoff:
    id: str
    from_task_id: str
    to_task_id: str | None
    summary: str
    artifacts: list[Artifact] = field(default_factory=list)
    created_at: datetime | None = None


@dataclass
class TaskEvent:
    id: int | None = None
    task_id: str = ""
    event_type: str = ""
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime | None = None


@dataclass
class CompletionResult:
    task: Task
    handoffs: list[Handoff]
    unblocked: dict[str, str] = field(default_factory=dict)
