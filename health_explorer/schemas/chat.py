from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from health_explorer.schemas.profile import PatientProfile

Role = Literal["user", "assistant"]
Urgency = Literal["routine", "urgent"]
ReasoningType = Literal["question_rationale", "analysis", "safety_flag"]
HealthCategory = Literal["sleep", "energy", "digestion", "pain", "mood", "other"]

HEALTH_CATEGORIES: tuple[str, ...] = ("sleep", "energy", "digestion", "pain", "mood", "other")


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


DEFAULT_TITLE = "New conversation"
TITLE_LIMIT = 50


def generate_session_title(first_message: str) -> str:
    """First message collapsed to one line, cut to 50 characters."""
    cleaned = " ".join(first_message.split())
    if len(cleaned) <= TITLE_LIMIT:
        return cleaned
    return cleaned[: TITLE_LIMIT - 3] + "..."


class ReasoningStep(BaseModel):
    id: str = Field(default_factory=new_id)
    type: ReasoningType
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    reasoning: Optional[List[ReasoningStep]] = None
    timestamp: datetime = Field(default_factory=utcnow)
    # correlation id generated by the client and echoed back unchanged
    client_id: Optional[str] = None


class ActionItemDraft(BaseModel):
    task: str
    why: str
    urgency: Urgency = "routine"


class ActionItem(ActionItemDraft):
    id: str = Field(default_factory=new_id)
    completed: bool = False
    session_id: str
    created_at: datetime = Field(default_factory=utcnow)


class InsightDraft(BaseModel):
    category: HealthCategory
    content: str


class HealthInsight(InsightDraft):
    id: str = Field(default_factory=new_id)
    source_session_id: str = ""
    created_at: datetime = Field(default_factory=utcnow)


class ChatSession(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str = DEFAULT_TITLE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    messages: List[Message] = Field(default_factory=list)
    action_items: List[ActionItem] = Field(default_factory=list)
    question_count: int = Field(default=0, ge=0)
    is_summary_mode: bool = False
    has_red_flag: bool = False


class ParsedResponse(BaseModel):
    """Structured view of one model completion."""
    answer: str
    follow_up_question: Optional[str] = None
    reasoning: Optional[str] = None
    is_summary: bool = False
    is_red_flag: bool = False
    action_items: List[ActionItemDraft] = Field(default_factory=list)
    insights: List[InsightDraft] = Field(default_factory=list)


class TurnResult(BaseModel):
    display_content: str
    reasoning: Optional[ReasoningStep] = None
    action_items: List[ActionItemDraft] = Field(default_factory=list)
    insights: List[InsightDraft] = Field(default_factory=list)
    is_summary: bool = False
    is_red_flag: bool = False
    raw_response: str = ""


# -------------------------
# API payloads
# -------------------------

class ChatRequest(BaseModel):
    session: ChatSession
    profile: Optional[PatientProfile] = None
    insights: List[HealthInsight] = Field(default_factory=list)


class MessageIn(BaseModel):
    content: str = Field(min_length=1)
    client_id: Optional[str] = None


class SessionCreate(BaseModel):
    title: Optional[str] = None
    first_message: Optional[str] = None


class ActionItemUpdate(BaseModel):
    completed: bool
