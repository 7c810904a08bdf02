"""
Tests for the model stream node
"""
import pytest
from unittest.mock import MagicMock

from health_explorer.runtime.context import AssembledContext
from health_explorer.runtime.nodes.model import ModelStreamNode

from fakes import FakeModelClient


@pytest.mark.asyncio
async def test_model_node_exec_opens_stream_with_context():
    client = FakeModelClient(["<answer>hi</answer>"])
    prep = {
        "context": AssembledContext(system_prompt="SYS", messages=[{"role": "user", "content": "hello"}]),
        "client": client,
    }
    node = ModelStreamNode()
    result = await node.exec_async(prep)

    chunks = [c async for c in result["stream"]]
    assert chunks == ["<answer>hi</answer>"]
    assert client.last_args == {"system_prompt": "SYS", "messages": [{"role": "user", "content": "hello"}]}


@pytest.mark.asyncio
async def test_model_node_exec_fallback_async():
    node = ModelStreamNode()
    exc = RuntimeError("Test error")
    result = await node.exec_fallback_async({"context": MagicMock(), "client": None}, exc)

    assert result["stream"] is None
    assert result["error"] is exc
    assert result["degraded"] is True


@pytest.mark.asyncio
async def test_model_node_without_client_routes_failed():
    shared = {"context": AssembledContext(system_prompt="SYS")}
    node = ModelStreamNode()
    action = await node.run_async(shared)

    assert action == "failed"
    assert shared["reply_stream"] is None
    assert "not configured" in str(shared["turn_error"])


@pytest.mark.asyncio
async def test_model_node_post_async_publishes_stream():
    shared = {}
    stream = object()
    action = await ModelStreamNode().post_async(shared, {}, {"stream": stream})
    assert action == "ok"
    assert shared["reply_stream"] is stream
