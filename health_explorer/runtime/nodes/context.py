# health_explorer/runtime/nodes/context.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pocketflow import AsyncNode

from health_explorer.config import Settings
from health_explorer.runtime.context import build_context, relevant_insights
from health_explorer.runtime.prompts import SUMMARY_THRESHOLD
from health_explorer.schemas.chat import ChatSession, HealthInsight
from health_explorer.schemas.profile import PatientProfile


class ContextAssemblyNode(AsyncNode):
    """
    Build the model input for the next assistant turn.
    - prep_async: I/O. Use the session/profile/insights already in shared
      (stateless requests) or load them from the repo (stored sessions).
    - exec_async: pure. Drop insights from this session, build prompt + history.
    - post_async: write the assembled context back to shared.
    """

    async def prep_async(self, shared: Dict[str, Any]) -> Dict[str, Any]:
        session: Optional[ChatSession] = shared.get("session")
        profile: Optional[PatientProfile] = shared.get("profile")
        insights: Optional[List[HealthInsight]] = shared.get("insights")

        repo = shared.get("repo")
        if repo is not None and shared.get("session_id"):
            user_id = shared["user_id"]
            session = await repo.get_session(user_id, shared["session_id"])
            if session is None:
                raise LookupError(f"chat session {shared['session_id']} does not exist")
            if profile is None:
                profile = await repo.get_profile(user_id)
            if insights is None:
                insights = await repo.list_insights(user_id)

        if session is None:
            raise ValueError("no chat session to build context from")

        settings: Optional[Settings] = shared.get("settings")
        return {
            "session": session,
            "profile": profile,
            "insights": list(insights or []),
            "history_window": settings.history_window if settings else None,
            "summary_threshold": settings.summary_threshold if settings else SUMMARY_THRESHOLD,
        }

    async def exec_async(self, prep: Dict[str, Any]) -> Dict[str, Any]:
        session: ChatSession = prep["session"]
        insights = relevant_insights(prep["insights"], session.id)
        context = build_context(
            session,
            prep["profile"],
            insights,
            history_window=prep["history_window"],
            summary_threshold=prep["summary_threshold"],
        )
        return {"context": context, "insight_count": len(insights)}

    async def post_async(self, shared: Dict[str, Any], prep: Dict[str, Any], exec_res: Dict[str, Any]) -> str:
        shared["session"] = prep["session"]
        shared["context"] = exec_res["context"]
        shared["prior_insight_count"] = exec_res["insight_count"]
        return "ok"
