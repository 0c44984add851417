from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode
import logging
import sqlite3
import uuid
import os
import json
import anthropic
from dotenv import load_dotenv

from models import Task, ScheduleRequest, TaskEdit, CompletionUpdate, ChatRequest
from database import (
    init_db,
    upsert_user,
    replace_schedule,
    get_schedule,
    get_user_tasks,
    get_task,
    set_task_completed,
    edit_task,
    delete_task,
    count_recent_chat_requests,
    record_chat_request,
)
from date_utils import parse_task_datetime, format_for_google_calendar
from calendar_export import (
    ICS_CONTENT_TYPE,
    ICS_FILENAME,
    CalendarSerializationError,
    NothingToExportError,
    export_schedule,
)
from prompts import SCHEDULE_PROMPT, CHAT_PROMPT, TASK_CONTEXT

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

CORS_ORIGINS = os.getenv("STUDIOGENIE_CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in CORS_ORIGINS if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
MODEL = os.getenv("STUDIOGENIE_MODEL", "claude-sonnet-4-5")
client = anthropic.AsyncAnthropic(api_key=ANTHROPIC_API_KEY)

RATE_LIMIT_COUNT = 5
RATE_LIMIT_WINDOW_MINUTES = 10

GOOGLE_CALENDAR_URL = "https://calendar.google.com/calendar/render"


def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity comes from the auth proxy in front of the API as the X-User-Id header."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def require_api_key():
    if not ANTHROPIC_API_KEY or ANTHROPIC_API_KEY == "your-api-key-here":
        raise HTTPException(status_code=503, detail="API key not configured")


def strip_code_fences(text: str) -> str:
    """Strip a surrounding markdown code block (```json ... ```) if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = lines[1:]  # Remove first line (```json)
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]  # Remove last line (```)
        text = "\n".join(lines)
    return text.strip()


def parse_schedule_response(ai_text: str) -> dict:
    """
    Parse the model's schedule reply.
    Raises ValueError unless it is a JSON object holding a "tasks" list.
    """
    cleaned = strip_code_fences(ai_text)
    if not cleaned:
        raise ValueError("Received empty response from AI.")
    parsed = json.loads(cleaned)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tasks"), list):
        raise ValueError("AI response validation failed: 'tasks' array missing or invalid.")
    return parsed


def _text(value, default: Optional[str] = None) -> Optional[str]:
    """Model output as a string: numbers are stringified, other non-strings fall back to default."""
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value:
        return value
    return default


def to_tasks(raw_tasks: list) -> list[Task]:
    """Give each generated task an id and fill in defaults for missing or malformed fields."""
    tasks = []
    for raw in raw_tasks:
        if not isinstance(raw, dict):
            continue
        tasks.append(Task(
            task_id=str(uuid.uuid4()),
            content=_text(raw.get("content"), "Unnamed Task"),
            day=_text(raw.get("day"), "Unspecified Day"),
            time=_text(raw.get("time"), "Unspecified Time"),
            timestamp=_text(raw.get("timestamp")),
            is_completed=False,
            notes=_text(raw.get("notes")),
        ))
    return tasks


@app.post("/generate-schedule")
async def generate_schedule(request: ScheduleRequest, user_id: str = Depends(get_current_user)) -> dict:
    """Ask the model for a schedule, store it for the user and return it."""
    if not request.tasks.strip():
        raise HTTPException(status_code=400, detail="Tasks input cannot be empty.")
    require_api_key()

    prompt = SCHEDULE_PROMPT.format(
        tasks=request.tasks,
        availability=request.availability,
        flexibility=request.flexibility,
        today=datetime.now().strftime("%Y-%m-%d"),
    )

    try:
        response = await client.messages.create(
            model=MODEL,
            max_tokens=4096,
            temperature=0.5,
            messages=[{"role": "user", "content": prompt}]
        )
    except anthropic.APIError as e:
        logger.error("generate-schedule: API error: %s", e)
        raise HTTPException(status_code=502, detail=f"API error: {e}")

    ai_text = response.content[0].text
    logger.info("generate-schedule: raw model response: %s", ai_text)

    try:
        parsed = parse_schedule_response(ai_text)
    except ValueError as e:
        # json.JSONDecodeError is a ValueError too
        logger.error("generate-schedule: error parsing model response: %s", e)
        raise HTTPException(status_code=500, detail="Failed to parse AI schedule response.")

    tasks = to_tasks(parsed["tasks"])
    notes = _text(parsed.get("notes"))

    try:
        upsert_user(user_id)
        replace_schedule(user_id, tasks, notes)
        logger.info("generate-schedule: stored %d tasks for user %s", len(tasks), user_id)
    except sqlite3.Error:
        # The user still gets the generated schedule back
        logger.exception("generate-schedule: error saving schedule")

    return {"tasks": tasks, "notes": notes}


@app.get("/schedule")
def get_schedule_endpoint(user_id: str = Depends(get_current_user)) -> dict:
    schedule = get_schedule(user_id)
    if not schedule:
        return {"tasks": [], "notes": "No schedule found."}
    return schedule


@app.get("/tasks/{task_id}")
def get_task_endpoint(task_id: str, user_id: str = Depends(get_current_user)) -> dict:
    task = get_task(user_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task}


@app.patch("/tasks/{task_id}/completion")
def update_completion(task_id: str, update: CompletionUpdate, user_id: str = Depends(get_current_user)) -> dict:
    task = set_task_completed(user_id, task_id, update.is_completed)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task}


@app.patch("/tasks/{task_id}")
def edit_task_endpoint(task_id: str, task_data: TaskEdit, user_id: str = Depends(get_current_user)) -> dict:
    """Edit content/day/time/notes. Blank content, day or time are ignored; notes may be cleared."""
    updates = {}
    for field, value in task_data.model_dump(exclude_unset=True).items():
        if field == "notes":
            updates[field] = value
        elif isinstance(value, str) and value.strip():
            updates[field] = value

    if not updates:
        raise HTTPException(status_code=400, detail="No valid update fields provided.")

    task = edit_task(user_id, task_id, **updates)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"task": task}


@app.delete("/tasks/{task_id}")
def delete_task_endpoint(task_id: str, user_id: str = Depends(get_current_user)) -> dict:
    if not delete_task(user_id, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"status": "deleted"}


@app.get("/tasks/{task_id}/google-calendar-link")
def google_calendar_link(task_id: str, user_id: str = Depends(get_current_user)) -> dict:
    """Build an "add to Google Calendar" link for one task."""
    task = get_task(user_id, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")

    start, end = parse_task_datetime(task, datetime.now())
    if start is None or end is None:
        raise HTTPException(status_code=422, detail="Could not determine the task's date and time.")

    params = {
        "action": "TEMPLATE",
        "text": task.content,
        "dates": f"{format_for_google_calendar(start)}/{format_for_google_calendar(end)}",
    }
    if task.notes:
        params["details"] = task.notes
    return {"url": f"{GOOGLE_CALENDAR_URL}?{urlencode(params)}"}


@app.get("/export-schedule")
def export_schedule_endpoint(user_id: str = Depends(get_current_user)) -> Response:
    """Download the user's schedule as an .ics file."""
    tasks = get_user_tasks(user_id)
    if not tasks:
        raise HTTPException(status_code=404, detail="No schedule found or schedule is empty.")

    # One shared "now" for every task in the export
    reference_date = datetime.now()
    try:
        payload = export_schedule(tasks, reference_date)
    except NothingToExportError:
        raise HTTPException(status_code=400, detail="Could not parse any tasks into valid calendar events.")
    except CalendarSerializationError:
        logger.exception("export-schedule: failed to build calendar for user %s", user_id)
        raise HTTPException(status_code=500, detail="Failed to generate ICS data.")

    return Response(
        content=payload,
        media_type=ICS_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{ICS_FILENAME}"'},
    )


@app.get("/chat-status")
def chat_status(user_id: str = Depends(get_current_user)) -> dict:
    window_start = datetime.now() - timedelta(minutes=RATE_LIMIT_WINDOW_MINUTES)
    recent = count_recent_chat_requests(user_id, window_start)
    return {
        "remaining": max(0, RATE_LIMIT_COUNT - recent),
        "limit": RATE_LIMIT_COUNT,
        "windowMinutes": RATE_LIMIT_WINDOW_MINUTES,
    }


@app.post("/chat")
async def chat(chat_request: ChatRequest, user_id: str = Depends(get_current_user)):
    """Chat with the assistant about the schedule, limited per user by a sliding window."""
    require_api_key()

    now = datetime.now()
    window_start = now - timedelta(minutes=RATE_LIMIT_WINDOW_MINUTES)
    if count_recent_chat_requests(user_id, window_start) >= RATE_LIMIT_COUNT:
        logger.info("Rate limit exceeded for user: %s", user_id)
        raise HTTPException(status_code=429, detail={
            "message": f"Rate limit exceeded. Please wait. Limit is {RATE_LIMIT_COUNT} requests per {RATE_LIMIT_WINDOW_MINUTES} minutes.",
            "limitExceeded": True,
        })

    # Count the request before calling the model
    record_chat_request(user_id, now, window_start)

    if not chat_request.messages or chat_request.messages[-1].role != "user":
        raise HTTPException(status_code=400, detail="Invalid chat history provided.")

    task_context = ""
    if chat_request.task_id:
        task = get_task(user_id, chat_request.task_id)
        if task:
            task_context = TASK_CONTEXT.format(
                content=task.content,
                day=task.day,
                time=task.time,
                notes=task.notes or "none",
            )
    system_prompt = CHAT_PROMPT.format(task_context=task_context, today=now.strftime("%Y-%m-%d"))

    # Convert messages to Claude API format
    api_messages = [{"role": m.role, "content": m.content} for m in chat_request.messages]

    try:
        response = await client.messages.create(
            model=MODEL,
            max_tokens=1024,
            system=system_prompt,
            messages=api_messages
        )
    except anthropic.APIError as e:
        logger.error("chat: API error: %s", e)
        raise HTTPException(status_code=502, detail=f"API error: {e}")

    return {"response": response.content[0].text}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
