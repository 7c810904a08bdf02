# health_explorer/runtime/nodes/record_user.py
from __future__ import annotations

from typing import Any, Dict

from pocketflow import AsyncNode

from health_explorer.schemas.chat import Message, generate_session_title


class RecordUserMessageNode(AsyncNode):
    """Append the incoming user message before the context is assembled.
    - prep_async: snapshot repo, session id, text and correlation id
    - exec_async: build the Message and the title it would give an untitled session (pure)
    - post_async: write it to the store, retitle a placeholder-titled session, route
    """

    async def prep_async(self, shared: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "repo": shared["repo"],
            "session_id": shared["session_id"],
            "content": str(shared.get("user_text") or ""),
            "client_id": shared.get("client_id"),
        }

    async def exec_async(self, prep: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "message": Message(role="user", content=prep["content"], client_id=prep["client_id"]),
            "title": generate_session_title(prep["content"]),
        }

    async def post_async(self, shared: Dict[str, Any], prep: Dict[str, Any], exec_res: Dict[str, Any]) -> str:
        repo = prep["repo"]
        async with repo.transaction() as s:
            stored = await repo.append_message(prep["session_id"], exec_res["message"], session=s)
            await repo.rename_default_session(prep["session_id"], exec_res["title"], session=s)
        shared["user_message"] = stored
        return "ok"
