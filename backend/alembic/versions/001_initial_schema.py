"""Initial schema - users, schedules, tasks and chat rate limiting

Revision ID: 001
Revises: None
Create Date: 2025-04-10

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            email TEXT,
            name TEXT,
            picture TEXT,
            created_at TEXT NOT NULL,
            last_login TEXT
        )
    """))

    # One schedule per user; its tasks live in the tasks table
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS schedules (
            user_id TEXT PRIMARY KEY,
            notes TEXT,
            created_at TEXT NOT NULL,
            last_generated_at TEXT NOT NULL
        )
    """))

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            task_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            content TEXT NOT NULL,
            day TEXT,
            time TEXT,
            timestamp TEXT,
            notes TEXT,
            is_completed INTEGER DEFAULT 0
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_tasks_user_id ON tasks (user_id, position)"))

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS chat_requests (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL,
            requested_at TEXT NOT NULL
        )
    """))
    conn.execute(text("CREATE INDEX IF NOT EXISTS ix_chat_requests_user_id ON chat_requests (user_id, requested_at)"))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP TABLE IF EXISTS chat_requests"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
    conn.execute(text("DROP TABLE IF EXISTS schedules"))
    conn.execute(text("DROP TABLE IF EXISTS users"))
