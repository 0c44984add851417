"""
Shared pytest fixtures for backend tests.
Uses a temp-file SQLite database per test and a stubbed Anthropic client.
"""
import pytest
import sqlite3
import sys
import os
from types import SimpleNamespace

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database

USER_ID = "auth0|user-1"


@pytest.fixture
def test_db(monkeypatch, tmp_path):
    """
    Create an isolated test database for each test.
    Uses a temp file (not :memory:) because database.py opens new connections per operation.
    """
    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(database, "DATABASE_PATH", db_path)
    monkeypatch.setattr(database, "init_db", lambda: None)

    # Create tables directly (skip alembic for tests)
    conn = sqlite3.connect(db_path)
    conn.executescript("""
        CREATE TABLE users (
            user_id TEXT PRIMARY KEY,
            email TEXT,
            name TEXT,
            picture TEXT,
            created_at TEXT NOT NULL,
            last_login TEXT
        );

        CREATE TABLE schedules (
            user_id TEXT PRIMARY KEY,
            notes TEXT,
            created_at TEXT NOT NULL,
            last_generated_at TEXT NOT NULL
        );

        CREATE TABLE tasks (
            task_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            position INTEGER NOT NULL,
            content TEXT NOT NULL,
            day TEXT,
            time TEXT,
            timestamp TEXT,
            notes TEXT,
            is_completed INTEGER DEFAULT 0
        );

        CREATE TABLE chat_requests (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL,
            requested_at TEXT NOT NULL
        );
    """)
    conn.commit()
    conn.close()

    yield db_path


class FakeMessages:
    """Stands in for client.messages; returns canned text and records calls."""

    def __init__(self):
        self.reply = "{}"
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=self.reply)])


@pytest.fixture
def fake_llm(monkeypatch):
    """Replace the Anthropic client in main with a stub."""
    import main

    messages = FakeMessages()
    monkeypatch.setattr(main, "client", SimpleNamespace(messages=messages))
    monkeypatch.setattr(main, "ANTHROPIC_API_KEY", "test-key")
    return messages


@pytest.fixture
def app_client(test_db, monkeypatch):
    """
    Create a test client for the FastAPI app.
    Mocks init_db to skip alembic migrations.
    """
    from fastapi.testclient import TestClient
    import main

    # Skip alembic in tests - tables already created by test_db fixture
    monkeypatch.setattr(main, "init_db", lambda: None)

    with TestClient(main.app, headers={"X-User-Id": USER_ID}) as client:
        yield client
