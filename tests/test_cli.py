"""Tests for the CLI."""

import json
import os
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from task_relay.cli import main

SUMMARY = (
    "Created the payments project skeleton: the PaymentProvider enum lives in payments/models.py, "
    "the checkout serializer accepts it and tests cover both providers. Next step needs a live "
    "Paddle API key stored as PADDLE_API_KEY in the deployment secrets."
)


@pytest.fixture
def cli_env():
    """Set up a temp environment for CLI testing."""
    with tempfile.TemporaryDirectory() as tmp:
        env = {
            "RELAY_DB_PATH": str(Path(tmp) / "test.db"),
            "RELAY_PROJECT": "",
            "RELAY_AGENT_COMMAND": "",
            "SLACK_BOT_TOKEN": "",
        }
        old_env = {}
        for k, v in env.items():
            old_env[k] = os.environ.get(k)
            os.environ[k] = v

        runner = CliRunner()
        result = runner.invoke(main, ["init", "Shop", "--no-config"])
        assert result.exit_code == 0, result.output
        yield runner

        for k, v in old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _create(runner, title, *extra):
    return runner.invoke(
        main,
        ["task", "create", title, "--project", "shop", "-d", f"{title} details", "-a", f"{title} done", *extra],
    )


class TestCLI:
    def test_help(self, cli_env):
        result = cli_env.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "Task Relay" in result.output

    def test_project_commands(self, cli_env):
        result = cli_env.invoke(main, ["project", "ls"])
        assert "shop: Shop [active]" in result.output

        result = cli_env.invoke(main, ["project", "instructions", "Keep PRs small", "--project", "shop"])
        assert result.exit_code == 0

        result = cli_env.invoke(main, ["project", "show", "shop"])
        assert result.exit_code == 0
        assert "Keep PRs small" in result.output
        assert "credentials -> human" in result.output

    def test_create_routes_owner(self, cli_env):
        result = _create(cli_env, "Provide Stripe API key")
        assert result.exit_code == 0
        assert "Created task: task_001" in result.output
        assert "Owner: human (credentials)" in result.output
        assert "awaiting_human" in result.output

        result = _create(cli_env, "Add payment enum", "--owner", "agent")
        assert "Owner: agent (implementation)" in result.output

    def test_lifecycle_and_handoff(self, cli_env):
        _create(cli_env, "Add payment enum")
        _create(cli_env, "Provide API key", "--owner", "human", "--depends-on", "task_001")

        result = cli_env.invoke(main, ["task", "claim", "task_002", "--as", "human"])
        assert result.exit_code == 1
        assert "Error [dependencies_unsatisfied]" in result.output

        result = cli_env.invoke(main, ["task", "claim", "task_001", "--as", "human"])
        assert result.exit_code == 1
        assert "Error [owner_mismatch]" in result.output

        assert cli_env.invoke(main, ["task", "claim", "task_001", "--as", "agent"]).exit_code == 0
        assert cli_env.invoke(main, ["task", "start", "task_001", "--as", "agent"]).exit_code == 0

        result = cli_env.invoke(
            main, ["task", "done", "task_001", "--as", "agent", "-o", "enum", "-s", "too short"]
        )
        assert result.exit_code == 2
        assert "Error [handoff_too_short]" in result.output

        result = cli_env.invoke(
            main,
            ["task", "done", "task_001", "--as", "agent", "-o", "enum", "-s", SUMMARY,
             "--artifact", "file=payments/models.py"],
        )
        assert result.exit_code == 0, result.output
        assert "Unblocked: task_002 (awaiting_human)" in result.output

        result = cli_env.invoke(main, ["handoff", "ls", "--to", "task_002"])
        assert "task_001 -> task_002" in result.output

        result = cli_env.invoke(main, ["handoff", "show", "handoff_001"])
        assert "Artifact [file]: payments/models.py" in result.output

        result = cli_env.invoke(main, ["task", "show", "task_001"])
        assert "Status: done" in result.output
        assert "handoff_001: task_001 -> task_002" in result.output

    def test_self_unblock(self, cli_env):
        _create(cli_env, "Integrate payments", "--owner", "agent")
        _create(cli_env, "Provide Paddle key", "--owner", "human")
        cli_env.invoke(main, ["task", "claim", "task_001", "--as", "agent"])

        result = cli_env.invoke(main, ["task", "self-unblock", "task_001", "--depends-on", "task_001"])
        assert result.exit_code == 2
        assert "Error [self_unblock]" in result.output

        result = cli_env.invoke(
            main, ["task", "self-unblock", "task_001", "--depends-on", "task_002", "--reason", "Need key"]
        )
        assert result.exit_code == 0
        assert "waiting on: task_002" in result.output

        result = cli_env.invoke(main, ["task", "ls", "--project", "shop", "--json"])
        tasks = {t["id"]: t for t in json.loads(result.output)}
        assert tasks["task_001"]["readiness"] == "blocked"
        assert tasks["task_001"]["waiting_reason"] == "Need key"

    def test_dependency_errors(self, cli_env):
        _create(cli_env, "A", "--owner", "agent")
        _create(cli_env, "B", "--owner", "agent", "--depends-on", "task_001")

        result = cli_env.invoke(main, ["task", "add-dep", "task_001", "task_002"])
        assert result.exit_code == 2
        assert "Error [cycle]" in result.output

        result = cli_env.invoke(main, ["task", "add-dep", "task_001", "task_001"])
        assert "Error [self_dependency]" in result.output

        result = cli_env.invoke(main, ["task", "add-dep", "task_001", "task_404"])
        assert result.exit_code == 1
        assert "Error [dependency_not_found]" in result.output

        result = cli_env.invoke(main, ["task", "rm", "task_001"])
        assert result.exit_code == 2

        result = cli_env.invoke(main, ["task", "remove-dep", "task_002", "task_001"])
        assert "No remaining dependencies" in result.output

    def test_show_missing_task(self, cli_env):
        result = cli_env.invoke(main, ["task", "show", "task_404"])
        assert result.exit_code == 1
        assert "Error [not_found]" in result.output

    def test_ready_and_cancel(self, cli_env):
        _create(cli_env, "A", "--owner", "agent")
        _create(cli_env, "B", "--owner", "agent", "--depends-on", "task_001")

        result = cli_env.invoke(main, ["task", "ready", "--project", "shop"])
        assert "task_001" in result.output
        assert "task_002" not in result.output

        result = cli_env.invoke(main, ["task", "cancel", "task_001"])
        assert result.exit_code == 0
        assert "Still blocked: task_002" in result.output

    def test_plan_flow(self, cli_env):
        plan = "Integrate payments\n1. Add payment enum\n2. Provide Paddle API Key\n3. Deploy to production"
        result = cli_env.invoke(main, ["plan", "add", plan, "--project", "shop"])
        assert result.exit_code == 0, result.output
        assert "task_001: Add payment enum (agent, implementation)" in result.output
        assert "task_002: Provide Paddle API Key (human, credentials)" in result.output
        assert "task_003: Deploy to production (human, deploy)" in result.output

        plan_id = result.output.split("Created plan: ")[1].split()[0]
        result = cli_env.invoke(main, ["plan", "show", plan_id])
        assert "Integrate payments" in result.output

        result = cli_env.invoke(main, ["plan", "rm", plan_id])
        assert result.exit_code == 2

    def test_template_commands(self, cli_env, tmp_path):
        result = cli_env.invoke(main, ["template", "ls"])
        assert "template_default" in result.output
        assert "(default)" in result.output

        path = tmp_path / "ops.json"
        path.write_text(json.dumps({
            "name": "Ops",
            "version": "2.0",
            "rules": [{"task_type": "testing", "requires_human": True}],
            "keywords": [["testing", ["qa"]]],
        }))
        result = cli_env.invoke(main, ["template", "add", "-f", str(path), "--default"])
        assert result.exit_code == 0, result.output
        template_id = result.output.split("Created template: ")[1].split()[0]

        result = cli_env.invoke(main, ["template", "show", template_id])
        assert json.loads(result.output)["is_default"] is True

        result = cli_env.invoke(main, ["init", "Ops Project", "--no-config"])
        assert "Routing: Ops v2.0" in result.output

        result = cli_env.invoke(main, ["template", "set-default", "template_missing"])
        assert result.exit_code == 1
        assert "Error [not_found]" in result.output

    def test_init_writes_project_config(self, cli_env):
        with cli_env.isolated_filesystem():
            result = cli_env.invoke(main, ["init", "Local Project", "--agent", "worker {task_id}"])
            assert result.exit_code == 0
            config = json.loads(Path(".relay.json").read_text())
            assert config == {"project": "local-project", "agent": "worker {task_id}"}

            result = cli_env.invoke(
                main, ["task", "create", "Write docs", "-d", "Docs for the API", "-a", "README updated"]
            )
            assert result.exit_code == 0
            assert "Owner: agent (docs)" in result.output

    def test_daemon_once(self, cli_env):
        result = cli_env.invoke(main, ["daemon", "--once"])
        assert result.exit_code == 1
        assert "No agent command configured" in result.output

        _create(cli_env, "A", "--owner", "agent")
        result = cli_env.invoke(main, ["daemon", "--once", "--agent", "true {task_id}"])
        assert result.exit_code == 0
        assert "Dispatched: task_001" in result.output

    def test_config_commands(self, cli_env):
        with cli_env.isolated_filesystem():
            result = cli_env.invoke(main, ["config", "show"])
            assert "No config" in result.output

            result = cli_env.invoke(main, ["config", "get", "agent"])
            assert result.exit_code == 1
            assert "Error [not_found]" in result.output

            result = cli_env.invoke(main, ["config", "set", "agent", "true {task_id}"])
            assert result.exit_code == 0
            assert "Set agent = true {task_id}" in result.output

            result = cli_env.invoke(main, ["config", "set", "poll_interval", "soon"])
            assert result.exit_code == 2
            assert "Error [validation]" in result.output
            assert cli_env.invoke(main, ["config", "set", "poll_interval", "30"]).exit_code == 0

            result = cli_env.invoke(main, ["config", "set", "colour", "red"])
            assert result.exit_code == 2

            assert cli_env.invoke(main, ["config", "get", "agent"]).output == "true {task_id}\n"
            result = cli_env.invoke(main, ["config", "show"])
            assert "agent: true {task_id}" in result.output
            assert "poll_interval: 30" in result.output
            assert json.loads(Path(".relay.json").read_text()) == {
                "agent": "true {task_id}",
                "poll_interval": "30",
            }

            _create(cli_env, "A", "--owner", "agent")
            result = cli_env.invoke(main, ["daemon", "--once"])
            assert result.exit_code == 0
            assert "Dispatched: task_001" in result.output

    def test_missing_records_use_error_format(self, cli_env):
        for args in (
            ["task", "rm", "task_404"],
            ["plan", "show", "plan_missing"],
            ["plan", "rm", "plan_missing"],
            ["template", "show", "template_missing"],
            ["template", "rm", "template_missing"],
            ["handoff", "show", "handoff_404"],
            ["project", "rm", "nope"],
        ):
            result = cli_env.invoke(main, args)
            assert result.exit_code == 1, args
            assert "Error [not_found]" in result.output, args

    def test_missing_default_project(self, cli_env):
        with cli_env.isolated_filesystem():
            result = cli_env.invoke(main, ["task", "ls"])
        assert result.exit_code == 1
        assert "Error [not_configured]" in result.output
