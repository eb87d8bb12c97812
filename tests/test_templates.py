"""Tests for routing templates."""

import tempfile
from pathlib import Path

import pytest

from task_relay.core import templates as templates_mod
from task_relay.db.engine import init_db
from task_relay.db.models import Template, TemplateRule
from task_relay.errors import NotFoundError, ValidationError


@pytest.fixture
def db():
    with tempfile.TemporaryDirectory() as tmp:
        conn = init_db(Path(tmp) / "test.db")
        yield conn
        conn.close()


@pytest.fixture
def default_template():
    return Template(
        id="t",
        name="t",
        rules=templates_mod.DEFAULT_RULES,
        keywords=templates_mod.DEFAULT_KEYWORDS,
    )


class TestMatching:
    def test_keyword_match_is_case_insensitive(self, default_template):
        assert templates_mod.match_category(default_template, "Provide Stripe API Key") == "credentials"

    def test_description_is_searched(self, default_template):
        assert templates_mod.match_category(default_template, "Step 4", "please REVIEW the diff") == "review"

    def test_first_declared_category_wins(self, default_template):
        assert templates_mod.match_category(default_template, "Review the deploy script") == "review"

    def test_fallback(self, default_template):
        assert templates_mod.match_category(default_template, "Refactor billing", None) == "implementation"

    def test_owner_for(self, default_template):
        assert templates_mod.owner_for(default_template, "credentials") == "human"
        assert templates_mod.owner_for(default_template, "testing") == "agent"

    def test_missing_rule_defaults_to_agent(self):
        template = Template(id="t", name="t", rules=[TemplateRule("deploy", True)])
        assert templates_mod.owner_for(template, "review") == "agent"


class TestTemplateStore:
    def test_default_seeded_once(self, db):
        first = templates_mod.ensure_default_template(db)
        second = templates_mod.ensure_default_template(db)
        assert first.id == second.id == templates_mod.DEFAULT_TEMPLATE_ID
        assert first.is_default
        assert len(templates_mod.list_templates(db)) == 1

    def test_single_default(self, db):
        templates_mod.ensure_default_template(db)
        custom = templates_mod.create_template(db, "Custom", is_default=True)

        defaults = [t for t in templates_mod.list_templates(db) if t.is_default]
        assert [t.id for t in defaults] == [custom.id]

        templates_mod.set_default_template(db, templates_mod.DEFAULT_TEMPLATE_ID)
        defaults = [t for t in templates_mod.list_templates(db) if t.is_default]
        assert [t.id for t in defaults] == [templates_mod.DEFAULT_TEMPLATE_ID]

    def test_set_default_unknown(self, db):
        templates_mod.ensure_default_template(db)
        with pytest.raises(NotFoundError):
            templates_mod.set_default_template(db, "template_missing")
        assert templates_mod.get_default_template(db).id == templates_mod.DEFAULT_TEMPLATE_ID

    def test_rules_and_keywords_persist_in_order(self, db):
        template = templates_mod.create_template(
            db,
            "Ops",
            rules=[{"task_type": "deploy", "default_owner": "human_worker"}],
            keywords={"deploy": "ship it", "testing": ["smoke"]},
            version="2.1",
        )
        loaded = templates_mod.get_template(db, template.id)
        assert loaded.version == "2.1"
        assert loaded.rules == [TemplateRule("deploy", True)]
        assert loaded.keywords == [("deploy", ["ship it"]), ("testing", ["smoke"])]

    def test_invalid_task_type(self, db):
        with pytest.raises(ValidationError):
            templates_mod.create_template(db, "Bad", rules=[{"task_type": "chores"}])
        with pytest.raises(ValidationError):
            templates_mod.create_template(db, "Bad", keywords=[["chores", ["x"]]])

    def test_name_required(self, db):
        with pytest.raises(ValidationError):
            templates_mod.create_template(db, " ")

    def test_delete(self, db):
        template = templates_mod.create_template(db, "Temp")
        assert templates_mod.delete_template(db, template.id) is True
        assert templates_mod.get_template(db, template.id) is None
        assert templates_mod.delete_template(db, template.id) is False

    def test_dict_round_trip(self, db):
        template = templates_mod.ensure_default_template(db)
        restored = templates_mod.template_from_dict(templates_mod.template_to_dict(template))
        assert restored.rules == template.rules
        assert restored.keywords == template.keywords
