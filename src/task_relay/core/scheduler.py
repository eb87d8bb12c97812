"""Polling scheduler that hands executable agent tasks to an external worker."""

import logging
import os
import shlex
import subprocess
import threading
from pathlib import Path
from typing import Protocol

from task_relay.core import tasks as tasks_mod
from task_relay.db.engine import get_db
from task_relay.db.models import Task

logger = logging.getLogger(__name__)


class Invoker(Protocol):
    def invoke(self, task: Task) -> int:
        """Run the worker for a task and return its exit status."""
        ...


def build_worker_prompt(task: Task) -> str:
    return (
        f"Execute task {task.id} in project {task.project_id}: {task.title}. "
        f"Run `relay task claim {task.id} --as agent`, read upstream context with "
        f"`relay handoff ls --task {task.id}`, do the work, then "
        f"`relay task done {task.id} --as agent --output ... --handoff-summary ...` "
        "with a handoff summary of at least 200 characters. If a human must act first, "
        f"create a human task and run `relay task self-unblock {task.id} --depends-on <id>`."
    )


class CommandInvoker:
    """Runs a configured shell command for each dispatched task.

    The command may use ``{task_id}``, ``{project_id}`` and ``{prompt}``
    placeholders; without any, the quoted prompt is appended. The worker also
    receives ``RELAY_TASK_ID`` and ``RELAY_PROJECT_ID`` in its environment.
    """

    PLACEHOLDERS = ("{task_id}", "{project_id}", "{prompt}")

    def __init__(self, command: str, cwd: Path | None = None, timeout: float | None = None):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def render(self, task: Task) -> str:
        prompt = shlex.quote(build_worker_prompt(task))
        if not any(p in self.command for p in self.PLACEHOLDERS):
            return f"{self.command} {prompt}"
        return (
            self.command.replace("{task_id}", shlex.quote(task.id))
            .replace("{project_id}", shlex.quote(task.project_id))
            .replace("{prompt}", prompt)
        )

    def invoke(self, task: Task) -> int:
        env = {**os.environ, "RELAY_TASK_ID": task.id, "RELAY_PROJECT_ID": task.project_id}
        result = subprocess.run(
            self.render(task),
            shell=True,
            env=env,
            cwd=str(self.cwd) if self.cwd else None,
            timeout=self.timeout,
        )
        return result.returncode


class Scheduler:
    """Single-threaded polling loop: at most one dispatch per iteration."""

    def __init__(
        self,
        db_path: Path,
        invoker: Invoker,
        poll_interval: float = 5.0,
        max_attempts: int = 3,
        project_id: str | None = None,
        busy_timeout: float = 10.0,
    ):
        self.db_path = db_path
        self.invoker = invoker
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.project_id = project_id
        self.busy_timeout = busy_timeout
        self.failures: dict[str, int] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        """Run the loop in a background thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="relay-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started")

    def stop(self):
        """Signal the loop to stop after the current iteration."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=10)
        logger.info("Scheduler stopped")

    def run_forever(self):
        """Run the loop in the calling thread until ``stop`` is called."""
        self._stop_event.clear()
        self._run()

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Error in scheduler loop")
            self._stop_event.wait(self.poll_interval)

    def run_once(self) -> str | None:
        """Dispatch the most urgent executable agent task. Returns its id, if any."""
        with get_db(self.db_path, timeout=self.busy_timeout) as db:
            candidates = tasks_mod.get_executable_tasks(db, self.project_id, owner="agent")

        # Drop counts for tasks that left the executable set.
        executable = {t.id for t in candidates}
        for task_id in [t for t in self.failures if t not in executable]:
            del self.failures[task_id]

        task = next(
            (t for t in candidates if self.failures.get(t.id, 0) < self.max_attempts),
            None,
        )
        if task is None:
            if candidates:
                logger.warning(
                    "Skipping %d task(s) that reached %d failed dispatches",
                    len(candidates), self.max_attempts,
                )
            else:
                logger.debug("Poll: no executable agent tasks")
            return None

        logger.info("Dispatching task %s (project %s)", task.id, task.project_id)
        try:
            exit_status = self.invoker.invoke(task)
        except Exception:
            logger.exception("Worker invocation failed for task %s", task.id)
            exit_status = None

        if exit_status == 0:
            self.failures.pop(task.id, None)
            logger.info("Worker exited with code 0 for task %s", task.id)
        else:
            self.failures[task.id] = self.failures.get(task.id, 0) + 1
            logger.warning(
                "Worker exited with code %s for task %s (attempt %d/%d)",
                exit_status, task.id, self.failures[task.id], self.max_attempts,
            )
        return task.id
