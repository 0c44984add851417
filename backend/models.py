from pydantic import BaseModel
from typing import Optional

class Task(BaseModel):
    task_id: str
    content: str
    day: Optional[str] = None  # YYYY-MM-DD, weekday name, today/tomorrow, "April 12"...
    time: Optional[str] = None  # "9:00 AM", "14:30" or "9:00 AM - 10:30 AM"
    timestamp: Optional[str] = None  # ISO 8601 start suggested by the AI, if any
    is_completed: bool = False
    notes: Optional[str] = None

class ScheduleRequest(BaseModel):
    tasks: str  # one task per line
    availability: str = ""
    flexibility: str = ""

class TaskEdit(BaseModel):
    content: Optional[str] = None
    day: Optional[str] = None
    time: Optional[str] = None
    notes: Optional[str] = None

class CompletionUpdate(BaseModel):
    is_completed: bool

class Message(BaseModel):
    role: str  # "user" or "assistant"
    content: str

class ChatRequest(BaseModel):
    messages: list[Message]
    task_id: Optional[str] = None  # task the conversation is about, if any
