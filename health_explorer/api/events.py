# health_explorer/api/events.py
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict

from pocketflow import AsyncFlow

from health_explorer.runtime.turn import stream_turn

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def sse(event: Dict[str, Any]) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


async def turn_event_stream(
    shared: Dict[str, Any],
    turn_flow: AsyncFlow,
    completion_flow: AsyncFlow,
) -> AsyncIterator[str]:
    """
    Server-sent events for one assistant turn:
    1. Run the turn flow (context + open model stream)
    2. Forward text / reasoning increments as they arrive
    3. Run the completion flow and send the final result or the error
    """
    client = shared.get("model_client")
    try:
        await turn_flow.run_async(shared)
        async for event in stream_turn(shared, completion_flow):
            yield sse(event)
    except Exception as e:
        logger.exception("Chat turn failed")
        yield sse({"error": str(e)})
    finally:
        closer = getattr(client, "aclose", None)
        if callable(closer):
            await closer()
