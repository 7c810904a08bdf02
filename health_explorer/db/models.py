# health_explorer/db/models.py
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


# -------------------------
# Base mixins
# -------------------------

class TimeStamped(SQLModel):
    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


# -------------------------
# Core entities
# -------------------------

class ProfileRow(TimeStamped, table=True):
    """Patient profile; one row per user, replaced wholesale on save."""
    __tablename__ = "profile"

    id: str = Field(primary_key=True, description="Owning user id")
    name: str = Field(default="")
    age: int = Field(default=0)
    sex: str = Field(default="other", description="male|female|other")
    medications: List[Dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
        description="Ordered [{name, dosage}] list.",
    )
    conditions: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    allergies: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))


class SessionRow(TimeStamped, table=True):
    """One conversation thread."""
    __tablename__ = "chat_session"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    title: str = Field(default="New conversation")
    question_count: int = Field(default=0, nullable=False)
    is_summary_mode: bool = Field(default=False, nullable=False)
    has_red_flag: bool = Field(default=False, nullable=False)


class MessageRow(SQLModel, table=True):
    """Append-only conversation turn."""
    __tablename__ = "message"

    id: str = Field(default_factory=new_id, primary_key=True)
    session_id: str = Field(foreign_key="chat_session.id", index=True, nullable=False)
    position: int = Field(default=0, nullable=False, description="Order within the session")
    role: str = Field(index=True, description="user|assistant")
    content: str = Field(default="")
    reasoning: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
        description="Serialized reasoning steps attached to assistant turns.",
    )
    client_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


class ActionItemRow(SQLModel, table=True):
    __tablename__ = "action_item"

    id: str = Field(default_factory=new_id, primary_key=True)
    session_id: str = Field(foreign_key="chat_session.id", index=True, nullable=False)
    position: int = Field(default=0, nullable=False)
    task: str
    why: str = Field(default="")
    urgency: str = Field(default="routine", description="routine|urgent")
    completed: bool = Field(default=False, nullable=False)
    created_at: datetime = Field(default_factory=utcnow, nullable=False)


class InsightRow(SQLModel, table=True):
    """Cross-session insight ledger; never updated after insert."""
    __tablename__ = "health_insight"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(index=True, nullable=False)
    # plain column: insights may outlive or predate their source session
    source_session_id: Optional[str] = Field(default=None, index=True)
    category: str = Field(index=True)
    content: str
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# -------------------------
# Table indexes
# -------------------------

Index(
    "ix_message_session_position",
    MessageRow.__table__.c.session_id,
    MessageRow.__table__.c.position,
)
Index(
    "ix_session_user_updated",
    SessionRow.__table__.c.user_id,
    SessionRow.__table__.c.updated_at,
)
