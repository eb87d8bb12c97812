"""Routing templates: task category inference and owner routing."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime

from task_relay.db.engine import NOW, transaction
from task_relay.db.models import OWNERS, TASK_TYPES, Template, TemplateRule
from task_relay.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_ID = "template_default"
FALLBACK_CATEGORY = "implementation"

DEFAULT_RULES = [
    TemplateRule("credentials", requires_human=True),
    TemplateRule("implementation", requires_human=False),
    TemplateRule("testing", requires_human=False),
    TemplateRule("review", requires_human=True),
    TemplateRule("deploy", requires_human=True),
    TemplateRule("docs", requires_human=False),
    TemplateRule("custom", requires_human=False),
]

# Evaluated top to bottom; more specific categories first.
DEFAULT_KEYWORDS = [
    ("credentials", ["api key", "api_key", "apikey", "secret", "credential", "password", "access token"]),
    ("review", ["review", "approve", "approval", "sign off", "sign-off"]),
    ("deploy", ["deploy", "release", "go live", "go-live", "publish"]),
    ("testing", ["test", "verify"]),
    ("docs", ["docs", "documentation", "readme", "changelog"]),
]


def match_category(template: Template, title: str, description: str | None = "") -> str:
    """Infer a task category from its text. First declared category wins."""
    text = f"{title} {description or ''}".lower()
    for category, patterns in template.keywords:
        if any(p.lower() in text for p in patterns if p):
            return category
    return FALLBACK_CATEGORY


def owner_for(template: Template, category: str) -> str:
    """Owner required for a category; categories without a rule go to the agent."""
    for rule in template.rules:
        if rule.task_type == category:
            return "human" if rule.requires_human else "agent"
    return "agent"


def create_template(
    db: sqlite3.Connection,
    name: str,
    rules: list | None = None,
    keywords: list | dict | None = None,
    version: str = "1.0",
    is_default: bool = False,
    template_id: str | None = None,
) -> Template:
    """Create a template. Marking it default clears the previous default."""
    if not name or not name.strip():
        raise ValidationError("Template name is required", field="name")
    template_id = template_id or f"template_{uuid.uuid4().hex[:8]}"
    parsed_rules = [_coerce_rule(r) for r in (rules or [])]
    parsed_keywords = _coerce_keywords(keywords or [])

    with transaction(db):
        if is_default:
            db.execute("UPDATE templates SET is_default = 0 WHERE is_default = 1")
        db.execute(
            """INSERT INTO templates (id, name, version, rules, keywords, is_default)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                template_id,
                name.strip(),
                version,
                json.dumps([_rule_dict(r) for r in parsed_rules]),
                json.dumps([[c, p] for c, p in parsed_keywords]),
                1 if is_default else 0,
            ),
        )
    logger.info("Created template %s (%s)", template_id, name)
    return get_template(db, template_id)


def get_template(db: sqlite3.Connection, template_id: str) -> Template | None:
    """Get a template by ID."""
    row = db.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
    if not row:
        return None
    return _row_to_template(row)


def get_default_template(db: sqlite3.Connection) -> Template | None:
    row = db.execute("SELECT * FROM templates WHERE is_default = 1").fetchone()
    if not row:
        return None
    return _row_to_template(row)


def list_templates(db: sqlite3.Connection) -> list[Template]:
    """List templates, default first."""
    rows = db.execute(
        "SELECT * FROM templates ORDER BY is_default DESC, name ASC"
    ).fetchall()
    return [_row_to_template(r) for r in rows]


def set_default_template(db: sqlite3.Connection, template_id: str) -> Template:
    """Make a template the default, atomically clearing the previous one."""
    with transaction(db):
        if not db.execute("SELECT 1 FROM templates WHERE id = ?", (template_id,)).fetchone():
            raise NotFoundError(f"Template not found: {template_id}", field="template_id")
        db.execute("UPDATE templates SET is_default = 0 WHERE is_default = 1")
        db.execute(
            f"UPDATE templates SET is_default = 1, updated_at = {NOW} WHERE id = ?",
            (template_id,),
        )
    logger.info("Default template set to %s", template_id)
    return get_template(db, template_id)


def delete_template(db: sqlite3.Connection, template_id: str) -> bool:
    """Delete a template. Projects keep their own routing snapshot."""
    with transaction(db):
        cur = db.execute("DELETE FROM templates WHERE id = ?", (template_id,))
    return cur.rowcount > 0


def ensure_default_template(db: sqlite3.Connection) -> Template:
    """Return the default template, seeding the built-in one if none is set."""
    template = get_default_template(db)
    if template:
        return template
    if get_template(db, DEFAULT_TEMPLATE_ID):
        return set_default_template(db, DEFAULT_TEMPLATE_ID)
    return create_template(
        db,
        "Default Workflow",
        rules=DEFAULT_RULES,
        keywords=DEFAULT_KEYWORDS,
        is_default=True,
        template_id=DEFAULT_TEMPLATE_ID,
    )


# ── Serialization ─────────────────────────────────────────────────────────────


def template_to_dict(t: Template) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "version": t.version,
        "rules": [_rule_dict(r) for r in t.rules],
        "keywords": [[c, list(p)] for c, p in t.keywords],
        "is_default": t.is_default,
    }


def template_from_dict(data: dict) -> Template:
    return Template(
        id=data.get("id", ""),
        name=data.get("name", ""),
        version=data.get("version", "1.0"),
        rules=[_coerce_rule(r) for r in data.get("rules", [])],
        keywords=_coerce_keywords(data.get("keywords", [])),
        is_default=bool(data.get("is_default", False)),
    )


def _rule_dict(rule: TemplateRule) -> dict:
    return {"task_type": rule.task_type, "requires_human": rule.requires_human}


def _coerce_rule(raw) -> TemplateRule:
    if isinstance(raw, TemplateRule):
        rule = raw
    elif isinstance(raw, dict):
        if "requires_human" in raw:
            requires_human = bool(raw["requires_human"])
        else:
            owner = str(raw.get("default_owner", "agent")).split("_")[0]
            if owner not in OWNERS:
                raise ValidationError(f"Unknown owner in rule: {raw.get('default_owner')}", field="rules")
            requires_human = owner == "human"
        rule = TemplateRule(str(raw.get("task_type", "")), requires_human)
    else:
        raise ValidationError(f"Malformed template rule: {raw!r}", field="rules")
    if rule.task_type not in TASK_TYPES:
        raise ValidationError(f"Unknown task type in rule: {rule.task_type}", field="rules")
    return rule


def _coerce_keywords(raw) -> list[tuple[str, list[str]]]:
    pairs = raw.items() if isinstance(raw, dict) else raw
    table = []
    for entry in pairs:
        try:
            category, patterns = entry
        except (TypeError, ValueError):
            raise ValidationError(f"Malformed keyword entry: {entry!r}", field="keywords") from None
        if category not in TASK_TYPES:
            raise ValidationError(f"Unknown task type in keywords: {category}", field="keywords")
        if isinstance(patterns, str):
            patterns = [patterns]
        table.append((category, [str(p) for p in patterns]))
    return table


def _row_to_template(row: sqlite3.Row) -> Template:
    return Template(
        id=row["id"],
        name=row["name"],
        version=row["version"],
        rules=[_coerce_rule(r) for r in json.loads(row["rules"])],
        keywords=_coerce_keywords(json.loads(row["keywords"])),
        is_default=bool(row["is_default"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
