"""
Tests for FastAPI endpoints in main.py.
The Anthropic client is replaced by the fake_llm fixture.
Uses replace_schedule to set up test data.
"""
import pytest
import json
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import replace_schedule, get_user_tasks
from models import Task

USER_ID = "auth0|user-1"  # matches the app_client fixture header


def seed_tasks(tasks=None):
    replace_schedule(USER_ID, tasks or [
        Task(task_id="id-1", content="Write report", day="2025-04-12", time="9:00 AM - 10:30 AM", notes="Draft"),
        Task(task_id="id-2", content="Gym", day="2025-04-12", time="6:00 PM"),
    ], "Schedule notes")


class TestAuth:
    """Every endpoint needs a user."""

    def test_missing_user_header(self, app_client):
        response = app_client.get("/schedule", headers={"X-User-Id": ""})
        assert response.status_code == 401


class TestScheduleEndpoints:
    """Tests for /schedule and /tasks endpoints."""

    def test_get_schedule_empty(self, app_client):
        response = app_client.get("/schedule")
        assert response.status_code == 200
        assert response.json() == {"tasks": [], "notes": "No schedule found."}

    def test_get_schedule(self, app_client):
        seed_tasks()

        response = app_client.get("/schedule")
        assert response.status_code == 200
        data = response.json()
        assert data["notes"] == "Schedule notes"
        assert [task["task_id"] for task in data["tasks"]] == ["id-1", "id-2"]

    def test_get_task(self, app_client):
        seed_tasks()

        response = app_client.get("/tasks/id-1")
        assert response.status_code == 200
        assert response.json()["task"]["content"] == "Write report"

    def test_get_task_not_found(self, app_client):
        assert app_client.get("/tasks/nonexistent").status_code == 404

    def test_update_completion(self, app_client):
        seed_tasks()

        response = app_client.patch("/tasks/id-1/completion", json={"is_completed": True})
        assert response.status_code == 200
        assert response.json()["task"]["is_completed"] is True

    def test_update_completion_requires_bool(self, app_client):
        seed_tasks()
        response = app_client.patch("/tasks/id-1/completion", json={})
        assert response.status_code == 422

    def test_update_completion_not_found(self, app_client):
        response = app_client.patch("/tasks/nonexistent/completion", json={"is_completed": True})
        assert response.status_code == 404

    def test_edit_task(self, app_client):
        seed_tasks()

        response = app_client.patch("/tasks/id-1", json={"day": "Friday", "content": "  "})
        assert response.status_code == 200
        task = response.json()["task"]
        assert task["day"] == "Friday"
        assert task["content"] == "Write report"

    def test_edit_task_clears_notes(self, app_client):
        seed_tasks()

        response = app_client.patch("/tasks/id-1", json={"notes": None})
        assert response.status_code == 200
        assert response.json()["task"]["notes"] is None

    def test_edit_task_no_valid_fields(self, app_client):
        seed_tasks()
        response = app_client.patch("/tasks/id-1", json={"time": ""})
        assert response.status_code == 400

    def test_edit_task_not_found(self, app_client):
        response = app_client.patch("/tasks/nonexistent", json={"content": "New"})
        assert response.status_code == 404

    def test_delete_task(self, app_client):
        seed_tasks()

        response = app_client.delete("/tasks/id-1")
        assert response.status_code == 200
        assert response.json()["status"] == "deleted"
        assert [task.task_id for task in get_user_tasks(USER_ID)] == ["id-2"]

    def test_delete_task_not_found(self, app_client):
        assert app_client.delete("/tasks/nonexistent").status_code == 404

    def test_other_users_tasks_are_hidden(self, app_client):
        seed_tasks()
        response = app_client.get("/tasks/id-1", headers={"X-User-Id": "someone-else"})
        assert response.status_code == 404


class TestExportEndpoint:
    """Tests for /export-schedule."""

    def test_export(self, app_client):
        seed_tasks()

        response = app_client.get("/export-schedule")
        assert response.status_code == 200
        assert response.headers["content-type"] == "text/calendar; charset=utf-8"
        assert 'filename="schedule.ics"' in response.headers["content-disposition"]
        assert response.text.count("BEGIN:VEVENT") == 2
        assert "UID:id-1" in response.text
        assert "DTSTART:20250412T090000Z" in response.text
        assert "DTEND:20250412T103000Z" in response.text

    def test_export_skips_unparseable(self, app_client):
        seed_tasks([
            Task(task_id="id-1", content="Good", day="2025-04-12", time="9 AM"),
            Task(task_id="id-2", content="Bad", day="Unspecified Day", time="Unspecified Time"),
        ])

        response = app_client.get("/export-schedule")
        assert response.status_code == 200
        assert response.text.count("BEGIN:VEVENT") == 1

    def test_export_no_schedule(self, app_client):
        response = app_client.get("/export-schedule")
        assert response.status_code == 404

    def test_export_nothing_parseable(self, app_client):
        seed_tasks([Task(task_id="id-1", content="Bad", day="Blursday", time="whenever")])

        response = app_client.get("/export-schedule")
        assert response.status_code == 400
        assert response.json()["detail"] == "Could not parse any tasks into valid calendar events."

    def test_export_serialization_failure(self, app_client, monkeypatch):
        import calendar_export

        seed_tasks()
        monkeypatch.setattr(calendar_export.Calendar, "to_ical", lambda self, *args, **kwargs: b"")

        response = app_client.get("/export-schedule")
        assert response.status_code == 500


class TestGoogleCalendarLink:
    """Tests for /tasks/{id}/google-calendar-link."""

    def test_link(self, app_client):
        seed_tasks()

        response = app_client.get("/tasks/id-1/google-calendar-link")
        assert response.status_code == 200
        url = response.json()["url"]
        assert url.startswith("https://calendar.google.com/calendar/render?action=TEMPLATE")
        assert "dates=20250412T090000%2F20250412T103000" in url
        assert "details=Draft" in url

    def test_link_unresolvable(self, app_client):
        seed_tasks([Task(task_id="id-1", content="Bad", day="Blursday", time="9 AM")])
        assert app_client.get("/tasks/id-1/google-calendar-link").status_code == 422


class TestGenerateSchedule:
    """Tests for /generate-schedule with a stubbed model."""

    def test_generate_schedule(self, app_client, fake_llm):
        fake_llm.reply = "```json\n" + json.dumps({
            "tasks": [
                {"content": "Write report", "day": "2025-04-12", "time": "9:00 AM - 10:30 AM", "notes": "Assumed 90 min"},
                {"day": "Monday"},
            ],
            "notes": "Kept mornings for focus work",
        }) + "\n```"

        response = app_client.post("/generate-schedule", json={
            "tasks": "Write report\nSomething",
            "availability": "Weekdays 9-5",
            "flexibility": "strict",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["notes"] == "Kept mornings for focus work"
        assert data["tasks"][0]["content"] == "Write report"
        assert data["tasks"][1]["content"] == "Unnamed Task"
        assert data["tasks"][1]["time"] == "Unspecified Time"
        assert data["tasks"][0]["task_id"] != data["tasks"][1]["task_id"]

        stored = get_user_tasks(USER_ID)
        assert [task.task_id for task in stored] == [task["task_id"] for task in data["tasks"]]

        prompt = fake_llm.calls[0]["messages"][0]["content"]
        assert "Weekdays 9-5" in prompt
        assert "Write report\nSomething" in prompt

    def test_malformed_task_fields(self, app_client, fake_llm):
        """A task with non-string fields doesn't sink the rest of the schedule."""
        fake_llm.reply = json.dumps({
            "tasks": [
                {"content": "Write report", "day": "2025-04-12", "time": "9:00 AM - 10:30 AM"},
                {"content": "Gym", "day": 12, "time": None, "notes": {"why": "?"}},
            ],
            "notes": ["not", "a", "string"],
        })

        response = app_client.post("/generate-schedule", json={"tasks": "Write report\nGym"})
        assert response.status_code == 200
        data = response.json()
        assert data["notes"] is None
        assert data["tasks"][1]["day"] == "12"
        assert data["tasks"][1]["time"] == "Unspecified Time"
        assert data["tasks"][1]["notes"] is None
        assert len(get_user_tasks(USER_ID)) == 2

    def test_empty_input(self, app_client, fake_llm):
        response = app_client.post("/generate-schedule", json={"tasks": "   "})
        assert response.status_code == 400
        assert fake_llm.calls == []

    def test_unparseable_reply(self, app_client, fake_llm):
        fake_llm.reply = "Sorry, I can't do that."
        response = app_client.post("/generate-schedule", json={"tasks": "Write report"})
        assert response.status_code == 500
        assert response.json()["detail"] == "Failed to parse AI schedule response."

    def test_missing_api_key(self, app_client, monkeypatch):
        import main
        monkeypatch.setattr(main, "ANTHROPIC_API_KEY", None)

        response = app_client.post("/generate-schedule", json={"tasks": "Write report"})
        assert response.status_code == 503


class TestChat:
    """Tests for /chat and /chat-status."""

    def test_chat(self, app_client, fake_llm):
        seed_tasks()
        fake_llm.reply = "Start with an outline."

        response = app_client.post("/chat", json={
            "messages": [{"role": "user", "content": "How do I start?"}],
            "task_id": "id-1",
        })
        assert response.status_code == 200
        assert response.json() == {"response": "Start with an outline."}
        assert "Write report" in fake_llm.calls[0]["system"]

    def test_chat_requires_user_message_last(self, app_client, fake_llm):
        response = app_client.post("/chat", json={
            "messages": [{"role": "assistant", "content": "Hi"}],
        })
        assert response.status_code == 400

    def test_rate_limit(self, app_client, fake_llm):
        fake_llm.reply = "ok"
        body = {"messages": [{"role": "user", "content": "hello"}]}

        for _ in range(5):
            assert app_client.post("/chat", json=body).status_code == 200

        response = app_client.post("/chat", json=body)
        assert response.status_code == 429
        assert response.json()["detail"]["limitExceeded"] is True
        assert len(fake_llm.calls) == 5

    def test_chat_status(self, app_client, fake_llm):
        assert app_client.get("/chat-status").json() == {"remaining": 5, "limit": 5, "windowMinutes": 10}

        app_client.post("/chat", json={"messages": [{"role": "user", "content": "hello"}]})
        assert app_client.get("/chat-status").json()["remaining"] == 4
