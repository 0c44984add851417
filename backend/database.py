import sqlite3
import os
from datetime import datetime
from typing import Optional
from contextlib import contextmanager

from models import Task

DATABASE_PATH = os.getenv("STUDIOGENIE_DB", "studiogenie.db")

# Fields a user may change through the edit endpoint
ALLOWED_UPDATE_FIELDS = ("content", "day", "time", "notes")

@contextmanager
def get_db():
    """Context manager for database connections."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()

def init_db():
    """Initialize database by running Alembic migrations."""
    import subprocess

    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )

def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        task_id=row["task_id"],
        content=row["content"],
        day=row["day"],
        time=row["time"],
        timestamp=row["timestamp"],
        is_completed=bool(row["is_completed"]),
        notes=row["notes"],
    )


# User operations
def upsert_user(user_id: str, email: Optional[str] = None, name: Optional[str] = None, picture: Optional[str] = None):
    """Insert the user on first sight, refresh profile fields and last_login otherwise."""
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO users (user_id, email, name, picture, created_at, last_login)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   email = COALESCE(excluded.email, users.email),
                   name = COALESCE(excluded.name, users.name),
                   picture = COALESCE(excluded.picture, users.picture),
                   last_login = excluded.last_login""",
            (user_id, email, name, picture, now, now)
        )
        conn.commit()


# Schedule operations
def replace_schedule(user_id: str, tasks: list[Task], notes: Optional[str] = None):
    """
    Replace the user's whole task list with a freshly generated one.
    Creates the schedule row on first use; created_at is kept on later calls.
    """
    now = datetime.now().isoformat()
    with get_db() as conn:
        conn.execute(
            """INSERT INTO schedules (user_id, notes, created_at, last_generated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   notes = excluded.notes,
                   last_generated_at = excluded.last_generated_at""",
            (user_id, notes, now, now)
        )
        conn.execute("DELETE FROM tasks WHERE user_id = ?", (user_id,))
        conn.executemany(
            """INSERT INTO tasks
               (task_id, user_id, position, content, day, time, timestamp, notes, is_completed)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (task.task_id, user_id, position, task.content, task.day, task.time,
                 task.timestamp, task.notes, int(task.is_completed))
                for position, task in enumerate(tasks)
            ]
        )
        conn.commit()

def get_user_tasks(user_id: str) -> list[Task]:
    """All tasks for a user, in the order they were generated."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? ORDER BY position",
            (user_id,)
        ).fetchall()
        return [_row_to_task(row) for row in rows]

def get_schedule(user_id: str) -> Optional[dict]:
    """Returns {"tasks": [Task, ...], "notes": str | None}, or None if the user has no schedule."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT notes FROM schedules WHERE user_id = ?",
            (user_id,)
        ).fetchone()
    if not row:
        return None
    return {"tasks": get_user_tasks(user_id), "notes": row["notes"]}


# Task operations
def get_task(user_id: str, task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? AND task_id = ?",
            (user_id, task_id)
        ).fetchone()
        if row:
            return _row_to_task(row)
    return None

def set_task_completed(user_id: str, task_id: str, is_completed: bool) -> Optional[Task]:
    """Set completion status. Returns None if the task doesn't belong to the user."""
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE tasks SET is_completed = ? WHERE user_id = ? AND task_id = ?",
            (int(is_completed), user_id, task_id)
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
    return get_task(user_id, task_id)

def edit_task(user_id: str, task_id: str, /, **updates) -> Optional[Task]:
    """
    Update a task with any allowed fields provided.
    Fields outside ALLOWED_UPDATE_FIELDS (including task_id/user_id) are ignored.

    Args:
        user_id: Owner of the task
        task_id: Task ID to update
        **updates: Field names and values to update (content, day, time, notes)
    """
    changes = {field: value for field, value in updates.items() if field in ALLOWED_UPDATE_FIELDS}

    with get_db() as conn:
        row = conn.execute(
            "SELECT task_id FROM tasks WHERE user_id = ? AND task_id = ?",
            (user_id, task_id)
        ).fetchone()
        if not row:
            return None

        if changes:
            set_clause = ", ".join(f"{field} = ?" for field in changes.keys())
            values = list(changes.values()) + [user_id, task_id]
            conn.execute(f"UPDATE tasks SET {set_clause} WHERE user_id = ? AND task_id = ?", values)
            conn.commit()

    return get_task(user_id, task_id)

def delete_task(user_id: str, task_id: str) -> bool:
    with get_db() as conn:
        cursor = conn.execute(
            "DELETE FROM tasks WHERE user_id = ? AND task_id = ?",
            (user_id, task_id)
        )
        conn.commit()
        return cursor.rowcount > 0


# Rate limiting (sliding window of chat request timestamps per user)
def count_recent_chat_requests(user_id: str, window_start: datetime) -> int:
    with get_db() as conn:
        return conn.execute(
            "SELECT COUNT(*) FROM chat_requests WHERE user_id = ? AND requested_at >= ?",
            (user_id, window_start.isoformat())
        ).fetchone()[0]

def record_chat_request(user_id: str, requested_at: datetime, window_start: Optional[datetime] = None):
    """Store a chat request timestamp; timestamps older than window_start are pruned."""
    with get_db() as conn:
        if window_start is not None:
            conn.execute(
                "DELETE FROM chat_requests WHERE user_id = ? AND requested_at < ?",
                (user_id, window_start.isoformat())
            )
        conn.execute(
            "INSERT INTO chat_requests (user_id, requested_at) VALUES (?, ?)",
            (user_id, requested_at.isoformat())
        )
        conn.commit()
