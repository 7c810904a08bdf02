# health_explorer/runtime/nodes/model.py
from __future__ import annotations

import logging
from typing import Any, Dict

from pocketflow import AsyncNode

from health_explorer.runtime.context import AssembledContext

logger = logging.getLogger(__name__)


class ModelStreamNode(AsyncNode):
    """Open the model completion stream for the assembled context.

    The stream is handed to the caller through ``shared["reply_stream"]``; it
    is drained outside the flow so increments can be forwarded live.
    """

    async def prep_async(self, shared: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "context": shared["context"],
            "client": shared.get("model_client"),
        }

    async def exec_async(self, prep: Dict[str, Any]) -> Dict[str, Any]:
        client = prep["client"]
        if client is None:
            raise RuntimeError("Model client not configured")
        context: AssembledContext = prep["context"]
        stream = client.stream_completion(context.system_prompt, context.messages)
        return {"stream": stream}

    async def exec_fallback_async(self, prep: Dict[str, Any], exc: Exception) -> Dict[str, Any]:
        logger.error("Could not open model stream: %s", exc)
        return {"stream": None, "error": exc, "degraded": True}

    async def post_async(self, shared: Dict[str, Any], prep: Dict[str, Any], exec_res: Dict[str, Any]) -> str:
        if exec_res.get("degraded"):
            shared["reply_stream"] = None
            shared["turn_error"] = exec_res["error"]
            return "failed"
        shared["reply_stream"] = exec_res["stream"]
        return "ok"
