# health_explorer/runtime/context.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from health_explorer.runtime.prompts import SUMMARY_THRESHOLD, build_system_prompt
from health_explorer.schemas.chat import ChatSession, HealthInsight, Message
from health_explorer.schemas.profile import PatientProfile


@dataclass(frozen=True)
class AssembledContext:
    system_prompt: str
    messages: List[Dict[str, str]] = field(default_factory=list)


def relevant_insights(all_insights: Iterable[HealthInsight], session_id: str) -> List[HealthInsight]:
    """Insights from other sessions; a session never cites itself."""
    return [i for i in all_insights if i.source_session_id != session_id]


def windowed_history(messages: Sequence[Message], window: Optional[int] = None) -> List[Message]:
    """Newest ``window`` messages, starting on a user turn. ``None`` keeps everything."""
    if window is None or window <= 0 or len(messages) <= window:
        return list(messages)
    kept = list(messages[-window:])
    while kept and kept[0].role != "user":
        kept.pop(0)
    return kept


def build_context(
    session: ChatSession,
    profile: Optional[PatientProfile],
    insights: Sequence[HealthInsight],
    question_count: Optional[int] = None,
    *,
    history_window: Optional[int] = None,
    summary_threshold: int = SUMMARY_THRESHOLD,
) -> AssembledContext:
    """Assemble the model input for the session's next assistant turn.

    ``insights`` must already be filtered with :func:`relevant_insights`.
    ``question_count`` defaults to the session's own counter.
    """
    count = session.question_count if question_count is None else question_count
    system_prompt = build_system_prompt(profile, insights, count, threshold=summary_threshold)
    history = windowed_history(session.messages, history_window)
    return AssembledContext(
        system_prompt=system_prompt,
        messages=[{"role": m.role, "content": m.content} for m in history],
    )
