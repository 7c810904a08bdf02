# health_explorer/runtime/nodes/outcome.py
from __future__ import annotations

from typing import Any, Dict, Optional

from pocketflow import AsyncNode

from health_explorer.runtime.decoder import EmptyResponseError
from health_explorer.runtime.grammar import build_turn_result
from health_explorer.schemas.chat import ParsedResponse

INTERRUPTED_TEXT = (
    "I apologize, but my response was interrupted before anything arrived. "
    "Please try again."
)


def interruption_text(error: BaseException) -> str:
    if isinstance(error, EmptyResponseError):
        return INTERRUPTED_TEXT
    return f"I apologize, but I encountered an error: {error}. Please try again."


class TurnOutcomeNode(AsyncNode):
    """Turn the decoded stream (or its failure) into what the session receives.
    - prep_async: gather parsed reply, raw text and any stream error
    - exec_async: pure. Build the TurnResult, or the interruption notice
    - post_async: publish to shared, route "complete" | "interrupted"
    """

    async def prep_async(self, shared: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "parsed": shared.get("parsed"),
            "raw_response": str(shared.get("raw_response") or ""),
            "error": shared.get("turn_error"),
        }

    async def exec_async(self, prep: Dict[str, Any]) -> Dict[str, Any]:
        error: Optional[BaseException] = prep["error"]
        parsed: Optional[ParsedResponse] = prep["parsed"]
        result = None
        if error is None and parsed is not None:
            result = build_turn_result(parsed, prep["raw_response"])
            if not result.display_content.strip():
                # tags present but nothing to show
                error = EmptyResponseError("model reply has no displayable content")
        if error is not None or result is None:
            error = error or EmptyResponseError("model returned an empty response")
            return {"interrupted": True, "error": error, "notice": interruption_text(error)}
        return {
            "interrupted": False,
            "result": result,
            "asked_followup": bool(parsed.follow_up_question),
        }

    async def post_async(self, shared: Dict[str, Any], prep: Dict[str, Any], exec_res: Dict[str, Any]) -> str:
        if exec_res["interrupted"]:
            shared["turn_error"] = exec_res["error"]
            shared["interruption_notice"] = exec_res["notice"]
            return "interrupted"
        shared["turn_result"] = exec_res["result"]
        shared["asked_followup"] = exec_res["asked_followup"]
        return "complete"
