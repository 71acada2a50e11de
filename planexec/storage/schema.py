"""
SQLite database schema for planexec
"""

import sqlite3


def init_database(db_path: str) -> None:
    """Initialize database with table creation"""

    with sqlite3.connect(db_path) as conn:
        cursor = conn.cursor()

        # Plans produced by the planning collaborator
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS plans (
                request_id TEXT PRIMARY KEY,
                query TEXT NOT NULL DEFAULT '',
                plan TEXT NOT NULL,  -- JSON step graph
                status TEXT NOT NULL DEFAULT 'COMPLETED',
                created_at TEXT NOT NULL
            )
        """)

        # Execution aggregates
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                plan_request_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'PENDING',
                total_steps INTEGER NOT NULL DEFAULT 0,
                completed_steps INTEGER NOT NULL DEFAULT 0,
                failed_steps INTEGER NOT NULL DEFAULT 0,
                error TEXT,
                started_at TEXT,
                completed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # One row per step, written independently by concurrent steps
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS execution_steps (
                execution_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                tool TEXT NOT NULL,
                params TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'PENDING',
                result TEXT,
                error TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                dependencies TEXT NOT NULL DEFAULT '[]',
                started_at TEXT,
                completed_at TEXT,
                PRIMARY KEY (execution_id, step_index),
                FOREIGN KEY (execution_id) REFERENCES executions(execution_id) ON DELETE CASCADE
            )
        """)

        # Indexes for listing queries
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_executions_plan ON executions(plan_request_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_executions_status ON executions(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_executions_created ON executions(created_at)")

        conn.commit()


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get database connection"""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row  # For column access by name
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
