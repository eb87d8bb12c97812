"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

NOW = "(strftime('%Y-%m-%d %H:%M:%f', 'now'))"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS templates (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    version TEXT NOT NULL DEFAULT '1.0',
    rules TEXT NOT NULL DEFAULT '[]',
    keywords TEXT NOT NULL DEFAULT '[]',
    is_default INTEGER NOT NULL DEFAULT 0 CHECK (is_default IN (0, 1)),
    created_at TEXT DEFAULT {NOW},
    updated_at TEXT DEFAULT {NOW}
);

CREATE UNIQUE INDEX IF NOT EXISTS templates_single_default
    ON templates(is_default) WHERE is_default = 1;

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    routing TEXT NOT NULL,
    workflow_instructions TEXT,
    status TEXT DEFAULT 'active' CHECK (status IN ('active', 'archived')),
    created_at TEXT DEFAULT {NOW},
    updated_at TEXT DEFAULT {NOW}
);

CREATE TABLE IF NOT EXISTS plans (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    created_at TEXT DEFAULT {NOW}
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id),
    plan_id TEXT REFERENCES plans(id),
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    acceptance_criteria TEXT NOT NULL,
    task_type TEXT NOT NULL CHECK (task_type IN
        ('implementation', 'testing', 'review', 'credentials', 'deploy', 'docs', 'custom')),
    owner TEXT NOT NULL CHECK (owner IN ('agent', 'human')),
    status TEXT NOT NULL DEFAULT 'ready' CHECK (status IN ('ready', 'in_progress', 'done', 'cancelled')),
    priority INTEGER NOT NULL DEFAULT 0,
    output TEXT,
    logs TEXT NOT NULL DEFAULT '[]',
    waiting_reason TEXT,
    claimed_by TEXT CHECK (claimed_by IS NULL OR claimed_by IN ('agent', 'human')),
    created_by TEXT,
    created_at TEXT DEFAULT {NOW},
    updated_at TEXT DEFAULT {NOW},
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS task_dependencies (
    task_id TEXT NOT NULL REFERENCES tasks(id),
    depends_on_task_id TEXT NOT NULL REFERENCES tasks(id),
    position INTEGER NOT NULL,
    PRIMARY KEY (task_id, depends_on_task_id),
    CHECK (task_id != depends_on_task_id)
);

CREATE INDEX IF NOT EXISTS task_dependencies_upstream
    ON task_dependencies(depends_on_task_id);

CREATE TABLE IF NOT EXISTS task_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL REFERENCES tasks(id),
    event_type TEXT NOT NULL,
    old_value TEXT,
    new_value TEXT,
    created_at TEXT DEFAULT {NOW}
);

CREATE TABLE IF NOT EXISTS handoffs (
    id TEXT PRIMARY KEY,
    from_task_id TEXT NOT NULL REFERENCES tasks(id),
    to_task_id TEXT REFERENCES tasks(id),
    summary TEXT NOT NULL CHECK (length(summary) > 0),
    artifacts TEXT NOT NULL DEFAULT '[]',
    created_at TEXT DEFAULT {NOW}
);

CREATE TABLE IF NOT EXISTS counters (
    name TEXT PRIMARY KEY,
    value INTEGER NOT NULL
);
"""


def init_db(db_path: Path, timeout: float = 10.0) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed.

    The connection runs in autocommit mode; writes are grouped with
    ``transaction``.
    """
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    return conn


@contextmanager
def get_db(db_path: Path, timeout: float = 10.0):
    """Context manager for database connections."""
    conn = init_db(db_path, timeout=timeout)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db: sqlite3.Connection):
    """Run the enclosed statements as one write transaction.

    Takes the write lock up front so that check-then-write sequences see a
    stable row. Nested use joins the outer transaction.
    """
    if db.in_transaction:
        yield db
        return
    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.execute("ROLLBACK")
        raise
    db.execute("COMMIT")


def next_sequence(db: sqlite3.Connection, name: str, floor: int = 0) -> int:
    """Bump and return the named counter. Values are never reused.

    ``floor`` seeds a counter that does not exist yet. Call inside
    ``transaction`` so concurrent writers cannot read the same value.
    """
    db.execute("INSERT OR IGNORE INTO counters (name, value) VALUES (?, ?)", (name, floor))
    db.execute("UPDATE counters SET value = value + 1 WHERE name = ?", (name,))
    return db.execute("SELECT value FROM counters WHERE name = ?", (name,)).fetchone()[0]
