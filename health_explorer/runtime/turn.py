# health_explorer/runtime/turn.py
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from pocketflow import AsyncFlow

from health_explorer.runtime.decoder import EmptyResponseError, decode_stream

logger = logging.getLogger(__name__)


async def stream_turn(shared: Dict[str, Any], completion_flow: AsyncFlow) -> AsyncIterator[Dict[str, Any]]:
    """Drain ``shared["reply_stream"]`` and yield the turn's events.

    Yields ``{"text": ...}`` per increment and ``{"reasoning": ...}`` whenever
    the live reasoning grows, then runs ``completion_flow`` and finishes with
    either ``{"done": True, "result": ...}`` or ``{"error": ...}``.
    """
    stream = shared.get("reply_stream")
    if stream is not None and shared.get("turn_error") is None:
        # decoder callbacks run inside the task; None marks the end
        pending: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        chunks: List[str] = []

        def on_text(text: str) -> None:
            chunks.append(text)
            pending.put_nowait({"text": text})

        task = asyncio.ensure_future(
            decode_stream(
                stream,
                on_text=on_text,
                on_reasoning=lambda reasoning: pending.put_nowait({"reasoning": reasoning}),
            )
        )
        task.add_done_callback(lambda _: pending.put_nowait(None))
        try:
            while True:
                item = await pending.get()
                if item is None:
                    break
                yield item
        finally:
            if not task.done():
                task.cancel()

        try:
            shared["parsed"] = task.result()
            shared["raw_response"] = "".join(chunks)
        except Exception as exc:
            shared["turn_error"] = exc

    await completion_flow.run_async(shared)

    error = shared.get("turn_error")
    if error is not None:
        logger.warning("Turn ended without a usable reply: %s", error)
        event: Dict[str, Any] = {
            "error": str(error),
            "empty_response": isinstance(error, EmptyResponseError),
        }
        if shared.get("assistant_message") is not None:
            event["message"] = shared["assistant_message"].model_dump(mode="json")
        yield event
        return

    done: Dict[str, Any] = {
        "done": True,
        "result": shared["turn_result"].model_dump(mode="json"),
    }
    if shared.get("user_message") is not None:
        done["user_message"] = shared["user_message"].model_dump(mode="json")
    if shared.get("assistant_message") is not None:
        done["message"] = shared["assistant_message"].model_dump(mode="json")
        done["action_items"] = [a.model_dump(mode="json") for a in shared.get("stored_action_items") or []]
        done["insights"] = [i.model_dump(mode="json") for i in shared.get("stored_insights") or []]
        done["session_fields"] = shared.get("session_fields")
    yield done
