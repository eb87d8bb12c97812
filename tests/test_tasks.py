"""Tests for task management and the lifecycle state machine."""

import tempfile
import threading
from pathlib import Path

import pytest

from task_relay.core import graph as graph_mod
from task_relay.core import handoffs as handoffs_mod
from task_relay.core import projects as projects_mod
from task_relay.core import tasks as tasks_mod
from task_relay.db.engine import init_db
from task_relay.errors import (
    CycleError,
    DependenciesUnsatisfiedError,
    DependencyNotFoundError,
    HandoffTooShortError,
    InvalidTransitionError,
    NotFoundError,
    OwnerMismatchError,
    SelfUnblockError,
    ValidationError,
)

SUMMARY = (
    "Added the PaymentProvider enum in payments/models.py with STRIPE and PADDLE members, "
    "wired it into the checkout serializer and covered both values in test_models.py. "
    "The next task can import PaymentProvider directly; no migrations were needed."
)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        conn = init_db(db_path)
        projects_mod.create_project(conn, "test", "Test Project")
        conn.close()
        yield db_path


@pytest.fixture
def db(db_path):
    """Create a temporary SQLite database for testing."""
    conn = init_db(db_path)
    yield conn
    conn.close()


def _task(db, title, owner="agent", depends_on=None, **kwargs):
    return tasks_mod.create_task(
        db, "test", title, f"Do: {title}", [f"{title} works"], owner,
        depends_on=depends_on, **kwargs,
    )


def _finish(db, task_id, owner="agent"):
    tasks_mod.claim(db, task_id, owner)
    return tasks_mod.complete(db, task_id, "ok", SUMMARY, owner)


class TestTaskCRUD:
    def test_create_task(self, db):
        task = _task(db, "Build login page")
        assert task.id == "task_001"
        assert task.status == "ready"
        assert task.owner == "agent"
        assert task.task_type == "implementation"
        assert task.acceptance_criteria == ["Build login page works"]
        assert task.claimed_by is None

    def test_ids_are_sequential(self, db):
        assert _task(db, "One").id == "task_001"
        assert _task(db, "Two").id == "task_002"

    def test_ids_not_reused_after_delete(self, db):
        _task(db, "One")
        two = _task(db, "Two")
        tasks_mod.delete_task(db, two.id)
        assert _task(db, "Three").id == "task_003"

    def test_acceptance_string_becomes_list(self, db):
        task = tasks_mod.create_task(db, "test", "T", "desc", "  it works  ", "agent")
        assert task.acceptance_criteria == ["it works"]

    def test_requires_description(self, db):
        with pytest.raises(ValidationError) as exc:
            tasks_mod.create_task(db, "test", "T", "  ", ["ok"], "agent")
        assert exc.value.field == "description"

    def test_requires_acceptance_criteria(self, db):
        with pytest.raises(ValidationError) as exc:
            tasks_mod.create_task(db, "test", "T", "desc", ["", "  "], "agent")
        assert exc.value.field == "acceptance_criteria"

    def test_rejects_unknown_owner_and_type(self, db):
        with pytest.raises(ValidationError):
            tasks_mod.create_task(db, "test", "T", "desc", ["ok"], "robot")
        with pytest.raises(ValidationError):
            tasks_mod.create_task(db, "test", "T", "desc", ["ok"], "agent", task_type="chores")

    def test_unknown_project(self, db):
        with pytest.raises(NotFoundError):
            tasks_mod.create_task(db, "nope", "T", "desc", ["ok"], "agent")

    def test_unknown_dependency(self, db):
        with pytest.raises(DependencyNotFoundError):
            _task(db, "T", depends_on=["task_999"])
        assert tasks_mod.list_tasks(db, "test") == []

    def test_duplicate_dependencies_collapse(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id, a.id])
        assert b.depends_on == [a.id]

    def test_archived_project_rejects_tasks(self, db):
        projects_mod.archive_project(db, "test")
        with pytest.raises(ValidationError):
            _task(db, "T")

    def test_get_nonexistent_task(self, db):
        assert tasks_mod.get_task(db, "task_404") is None
        with pytest.raises(NotFoundError):
            tasks_mod.require_task(db, "task_404")

    def test_list_tasks_filters(self, db):
        _task(db, "A")
        h = _task(db, "H", owner="human", task_type="credentials")
        tasks_mod.claim(db, h.id, "human")

        assert [t.id for t in tasks_mod.list_tasks(db, "test", owner="human")] == [h.id]
        assert [t.id for t in tasks_mod.list_tasks(db, "test", statuses=["in_progress"])] == [h.id]
        assert [t.id for t in tasks_mod.list_tasks(db, "test", task_type="credentials")] == [h.id]
        assert len(tasks_mod.list_tasks(db, "test", statuses=["ready", "in_progress"])) == 2

    def test_delete_task(self, db):
        task = _task(db, "Temp")
        assert tasks_mod.delete_task(db, task.id) is True
        assert tasks_mod.get_task(db, task.id) is None

    def test_delete_nonexistent(self, db):
        assert tasks_mod.delete_task(db, "task_404") is False

    def test_delete_rejected_while_depended_on(self, db):
        a = _task(db, "A")
        _task(db, "B", depends_on=[a.id])
        with pytest.raises(ValidationError):
            tasks_mod.delete_task(db, a.id)
        assert tasks_mod.get_task(db, a.id) is not None


class TestExecutable:
    def test_priority_then_creation_order(self, db):
        low = _task(db, "Low")
        high = _task(db, "High", priority=5)
        high2 = _task(db, "High too", priority=5)
        ids = [t.id for t in tasks_mod.get_executable_tasks(db, "test")]
        assert ids == [high.id, high2.id, low.id]

    def test_blocked_tasks_excluded(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id])
        assert [t.id for t in tasks_mod.get_executable_tasks(db, "test")] == [a.id]
        assert [t.id for t in tasks_mod.get_blocked_tasks(db, "test")] == [b.id]

    def test_owner_filter(self, db):
        _task(db, "A")
        h = _task(db, "H", owner="human")
        assert [t.id for t in tasks_mod.get_executable_tasks(db, "test", owner="human")] == [h.id]


class TestClaim:
    def test_claim(self, db):
        task = _task(db, "A")
        claimed = tasks_mod.claim(db, task.id, "agent", log="picked up")
        assert claimed.status == "in_progress"
        assert claimed.claimed_by == "agent"
        assert claimed.logs == ["picked up"]

    def test_owner_mismatch(self, db):
        task = _task(db, "H", owner="human")
        with pytest.raises(OwnerMismatchError):
            tasks_mod.claim(db, task.id, "agent")
        assert tasks_mod.get_task(db, task.id).status == "ready"

    def test_dependencies_unsatisfied(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id])
        with pytest.raises(DependenciesUnsatisfiedError) as exc:
            tasks_mod.claim(db, b.id, "agent")
        assert a.id in str(exc.value)

    def test_claim_twice(self, db):
        task = _task(db, "A")
        tasks_mod.claim(db, task.id, "agent")
        with pytest.raises(InvalidTransitionError):
            tasks_mod.claim(db, task.id, "agent")

    def test_claim_missing(self, db):
        with pytest.raises(NotFoundError):
            tasks_mod.claim(db, "task_404", "agent")

    def test_concurrent_claims_have_one_winner(self, db, db_path):
        task = _task(db, "Contended")
        barrier = threading.Barrier(2)
        results = []

        def worker():
            conn = init_db(db_path)
            try:
                barrier.wait()
                tasks_mod.claim(conn, task.id, "agent")
                results.append("ok")
            except InvalidTransitionError:
                results.append("lost")
            finally:
                conn.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["lost", "ok"]
        assert tasks_mod.get_task(db, task.id).status == "in_progress"


class TestStart:
    def test_start_logs_without_status_change(self, db):
        task = _task(db, "A")
        tasks_mod.claim(db, task.id, "agent")
        started = tasks_mod.start(db, task.id, "agent")
        assert started.status == "in_progress"
        assert started.logs == ["Started by agent"]

    def test_start_requires_claim(self, db):
        task = _task(db, "A")
        with pytest.raises(InvalidTransitionError):
            tasks_mod.start(db, task.id, "agent")

    def test_start_by_other_role(self, db):
        task = _task(db, "A")
        tasks_mod.claim(db, task.id, "agent")
        with pytest.raises(OwnerMismatchError):
            tasks_mod.start(db, task.id, "human")


class TestComplete:
    def test_complete_without_dependents_writes_audit_handoff(self, db):
        task = _task(db, "A")
        tasks_mod.claim(db, task.id, "agent")
        result = tasks_mod.complete(db, task.id, "built it", SUMMARY, "agent", log="done")

        assert result.task.status == "done"
        assert result.task.output == "built it"
        assert result.task.completed_at is not None
        assert result.task.logs == ["done"]
        assert len(result.handoffs) == 1
        assert result.handoffs[0].to_task_id is None
        assert result.unblocked == {}

    def test_fan_out_one_handoff_per_dependent(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id])
        c = _task(db, "C", depends_on=[a.id])
        result = _finish(db, a.id)

        assert [h.to_task_id for h in result.handoffs] == [b.id, c.id]
        assert result.unblocked == {b.id: "ready", c.id: "ready"}
        assert tasks_mod.get_task(db, b.id).logs == [f"Unblocked: dependency {a.id} done"]

    def test_partially_satisfied_dependent_stays_blocked(self, db):
        a = _task(db, "A")
        other = _task(db, "Other")
        c = _task(db, "C", depends_on=[a.id, other.id])
        result = _finish(db, a.id)

        assert result.unblocked == {}
        assert graph_mod.readiness(db, tasks_mod.get_task(db, c.id)) == "blocked"

    def test_short_summary_has_no_side_effects(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id])
        tasks_mod.claim(db, a.id, "agent")
        events_before = len(tasks_mod.get_task_events(db, a.id))

        with pytest.raises(HandoffTooShortError) as exc:
            tasks_mod.complete(db, a.id, "out", "x" * 199, "agent", log="should not appear")

        assert "200" in str(exc.value)
        task = tasks_mod.get_task(db, a.id)
        assert task.status == "in_progress"
        assert task.output is None
        assert task.logs == []
        assert handoffs_mod.list_by_task(db, a.id) == []
        assert len(tasks_mod.get_task_events(db, a.id)) == events_before
        assert graph_mod.readiness(db, tasks_mod.get_task(db, b.id)) == "blocked"

    def test_exactly_200_characters_is_enough(self, db):
        a = _task(db, "A")
        tasks_mod.claim(db, a.id, "agent")
        result = tasks_mod.complete(db, a.id, "out", "y" * 200, "agent")
        assert result.task.status == "done"

    def test_complete_requires_claimer(self, db):
        h = _task(db, "H", owner="human")
        tasks_mod.claim(db, h.id, "human")
        with pytest.raises(OwnerMismatchError):
            tasks_mod.complete(db, h.id, "out", SUMMARY, "agent")

    def test_complete_ready_task_rejected(self, db):
        a = _task(db, "A")
        with pytest.raises(InvalidTransitionError):
            tasks_mod.complete(db, a.id, "out", SUMMARY, "agent")

    def test_structured_output_and_artifacts(self, db):
        a = _task(db, "A")
        tasks_mod.claim(db, a.id, "agent")
        result = tasks_mod.complete(
            db, a.id, {"files": ["models.py"]}, SUMMARY, "agent",
            artifacts=[{"type": "file", "payload": "payments/models.py"}],
        )
        assert result.task.output == '{"files": ["models.py"]}'
        assert result.handoffs[0].artifacts[0].type == "file"
        assert result.handoffs[0].artifacts[0].payload == "payments/models.py"


class TestAgentToHumanScenario:
    def test_human_dependent_becomes_awaiting_human(self, db):
        a = _task(db, "Add payment enum")
        b = _task(db, "Provide API key", owner="human", depends_on=[a.id], task_type="credentials")
        assert graph_mod.readiness(db, b) == "blocked"

        tasks_mod.claim(db, a.id, "agent")
        tasks_mod.start(db, a.id, "agent")
        result = tasks_mod.complete(db, a.id, "enum added", SUMMARY, "agent")

        assert result.unblocked == {b.id: "awaiting_human"}
        b = tasks_mod.get_task(db, b.id)
        assert b.status == "ready"
        assert graph_mod.readiness(db, b) == "awaiting_human"

        handoffs = handoffs_mod.list_handoffs(db, from_task_id=a.id)
        assert len(handoffs) == 1
        assert handoffs[0].to_task_id == b.id
        assert handoffs[0].summary == SUMMARY

        # Humans can now claim it; agents still cannot.
        with pytest.raises(OwnerMismatchError):
            tasks_mod.claim(db, b.id, "agent")
        assert tasks_mod.claim(db, b.id, "human").status == "in_progress"


class TestSelfUnblock:
    def _in_progress(self, db, title="Integrate payments"):
        task = _task(db, title)
        tasks_mod.claim(db, task.id, "agent")
        return task

    def test_self_unblock(self, db):
        task = self._in_progress(db)
        key = _task(db, "Provide Paddle API key", owner="human")

        updated = tasks_mod.self_unblock(db, task.id, [key.id])

        assert updated.status == "ready"
        assert updated.claimed_by is None
        assert updated.depends_on == [key.id]
        assert key.id in updated.waiting_reason
        assert graph_mod.readiness(db, updated) == "blocked"

        _finish(db, key.id, owner="human")
        assert graph_mod.readiness(db, tasks_mod.get_task(db, task.id)) == "ready"
        assert tasks_mod.claim(db, task.id, "agent").status == "in_progress"

    def test_custom_reason(self, db):
        task = self._in_progress(db)
        key = _task(db, "Key", owner="human")
        updated = tasks_mod.self_unblock(db, task.id, [key.id], reason="Need prod credentials")
        assert updated.waiting_reason == "Need prod credentials"

    def test_done_human_dependency_leaves_no_waiting_reason(self, db):
        key = _task(db, "Provide Paddle API key", owner="human")
        _finish(db, key.id, owner="human")
        task = self._in_progress(db)

        updated = tasks_mod.self_unblock(db, task.id, [key.id], reason="Need the key")

        assert graph_mod.readiness(db, updated) == "ready"
        assert updated.waiting_reason is None

    def test_removing_human_dependency_clears_waiting_reason(self, db):
        task = self._in_progress(db)
        key = _task(db, "Provide Paddle API key", owner="human")
        tasks_mod.self_unblock(db, task.id, [key.id])

        updated = tasks_mod.remove_task_dependency(db, task.id, key.id)

        assert graph_mod.readiness(db, updated) == "ready"
        assert updated.waiting_reason is None

    def test_only_existing_dependencies_rejected(self, db):
        key = _task(db, "Key", owner="human")
        _finish(db, key.id, owner="human")
        task = _task(db, "Work", depends_on=[key.id])
        tasks_mod.claim(db, task.id, "agent")

        with pytest.raises(SelfUnblockError) as exc:
            tasks_mod.self_unblock(db, task.id, [key.id])
        assert "Self-unblock rule" in str(exc.value)
        assert tasks_mod.get_task(db, task.id).status == "in_progress"

    def test_agent_dependency_rejected(self, db):
        task = self._in_progress(db)
        helper = _task(db, "Helper")
        with pytest.raises(SelfUnblockError) as exc:
            tasks_mod.self_unblock(db, task.id, [helper.id])
        assert "human-owned" in str(exc.value)

    def test_empty_list_rejected(self, db):
        task = self._in_progress(db)
        with pytest.raises(SelfUnblockError):
            tasks_mod.self_unblock(db, task.id, [])

    def test_unknown_dependency(self, db):
        task = self._in_progress(db)
        with pytest.raises(DependencyNotFoundError):
            tasks_mod.self_unblock(db, task.id, ["task_999"])

    def test_humans_cannot_self_unblock(self, db):
        task = self._in_progress(db)
        key = _task(db, "Key", owner="human")
        with pytest.raises(OwnerMismatchError):
            tasks_mod.self_unblock(db, task.id, [key.id], as_role="human")

    def test_must_be_in_progress(self, db):
        task = _task(db, "Work")
        key = _task(db, "Key", owner="human")
        with pytest.raises(InvalidTransitionError):
            tasks_mod.self_unblock(db, task.id, [key.id])

    def test_cycle_rolls_back(self, db):
        task = self._in_progress(db)
        fresh = _task(db, "Fresh key", owner="human")
        loop = _task(db, "Approve work", owner="human", depends_on=[task.id])

        with pytest.raises(CycleError):
            tasks_mod.self_unblock(db, task.id, [fresh.id, loop.id])

        after = tasks_mod.get_task(db, task.id)
        assert after.status == "in_progress"
        assert after.depends_on == []


class TestCancel:
    def test_cancel_ready(self, db):
        task = _task(db, "A")
        assert tasks_mod.cancel(db, task.id, log="not needed").status == "cancelled"

    def test_cancel_in_progress_clears_claim(self, db):
        task = _task(db, "A")
        tasks_mod.claim(db, task.id, "agent")
        cancelled = tasks_mod.cancel(db, task.id)
        assert cancelled.status == "cancelled"
        assert cancelled.claimed_by is None

    def test_cancel_terminal_rejected(self, db):
        task = _task(db, "A")
        tasks_mod.cancel(db, task.id)
        with pytest.raises(InvalidTransitionError):
            tasks_mod.cancel(db, task.id)

    def test_cancel_done_rejected(self, db):
        task = _task(db, "A")
        _finish(db, task.id)
        with pytest.raises(InvalidTransitionError):
            tasks_mod.cancel(db, task.id)
        assert tasks_mod.get_task(db, task.id).status == "done"

    def test_dependents_stay_blocked(self, db):
        a = _task(db, "A")
        b = _task(db, "B", depends_on=[a.id])
        tasks_mod.cancel(db, a.id)

        b = tasks_mod.get_task(db, b.id)
        assert b.status == "ready"
        assert graph_mod.readiness(db, b) == "blocked"

        tasks_mod.remove_task_dependency(db, b.id, a.id)
        assert graph_mod.readiness(db, tasks_mod.get_task(db, b.id)) == "ready"


class TestEvents:
    def test_lifecycle_events_logged(self, db):
        task = _task(db, "A")
        _finish(db, task.id)
        events = tasks_mod.get_task_events(db, task.id)
        assert [e.event_type for e in events] == ["created", "status_changed", "status_changed"]
        assert (events[-1].old_value, events[-1].new_value) == ("in_progress", "done")

    def test_dependency_events(self, db):
        a = _task(db, "A")
        b = _task(db, "B")
        tasks_mod.add_task_dependency(db, b.id, a.id)
        tasks_mod.add_task_dependency(db, b.id, a.id)
        tasks_mod.remove_task_dependency(db, b.id, a.id)
        types = [e.event_type for e in tasks_mod.get_task_events(db, b.id)]
        assert types == ["created", "dependency_added", "dependency_removed"]
