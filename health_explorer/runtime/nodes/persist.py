# health_explorer/runtime/nodes/persist.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pocketflow import AsyncNode

from health_explorer.schemas.chat import ChatSession, Message, TurnResult


class PersistTurnNode(AsyncNode):
    """
    Persist the outcome of one assistant turn in a single transaction.
    - prep_async: snapshot inputs (no side-effects)
    - exec_async: compute a write plan (no side-effects)
    - post_async: execute store writes in a transaction and route
    """

    async def prep_async(self, shared: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "repo": shared["repo"],
            "user_id": shared["user_id"],
            "session": shared["session"],
            "result": shared.get("turn_result"),
            "notice": shared.get("interruption_notice"),
            "asked_followup": bool(shared.get("asked_followup")),
        }

    async def exec_async(self, prep: Dict[str, Any]) -> Dict[str, Any]:
        session: ChatSession = prep["session"]
        result: Optional[TurnResult] = prep["result"]

        if result is None:
            # interrupted turn: only the explanation is stored
            return {
                "message": Message(role="assistant", content=prep["notice"] or ""),
                "action_items": [],
                "insights": [],
                "fields": None,
            }

        fields = {
            "question_count": session.question_count + (1 if prep["asked_followup"] else 0),
            # both flags latch for the rest of the session
            "is_summary_mode": session.is_summary_mode or result.is_summary,
            "has_red_flag": session.has_red_flag or result.is_red_flag,
        }
        return {
            "message": Message(
                role="assistant",
                content=result.display_content,
                reasoning=[result.reasoning] if result.reasoning else None,
            ),
            "action_items": list(result.action_items),
            "insights": list(result.insights),
            "fields": fields,
        }

    async def post_async(self, shared: Dict[str, Any], prep: Dict[str, Any], exec_res: Dict[str, Any]) -> str:
        repo = prep["repo"]
        session_id = prep["session"].id
        user_id = prep["user_id"]

        stored_items: List[Any] = []
        stored_insights: List[Any] = []
        async with repo.transaction() as s:
            message = await repo.append_message(session_id, exec_res["message"], session=s)
            if exec_res["action_items"]:
                stored_items = await repo.append_action_items(
                    session_id, exec_res["action_items"], session=s
                )
            if exec_res["insights"]:
                stored_insights = await repo.append_insights(
                    user_id, exec_res["insights"], session_id, session=s
                )
            if exec_res["fields"] is not None:
                await repo.update_session_fields(session_id, **exec_res["fields"], session=s)

        shared["assistant_message"] = message
        shared["stored_action_items"] = stored_items
        shared["stored_insights"] = stored_insights
        shared["session_fields"] = exec_res["fields"]
        return "ok"
