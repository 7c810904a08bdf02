import pytest
from typing import Any, Dict

from pocketflow import AsyncFlow

from health_explorer.runtime.decoder import EmptyResponseError
from health_explorer.runtime.grammar import parse_response
from health_explorer.runtime.nodes.outcome import INTERRUPTED_TEXT, TurnOutcomeNode


async def _run(shared: Dict[str, Any]) -> str:
    node = TurnOutcomeNode()
    node.successors = {}
    return await AsyncFlow(start=node).run_async(shared)


@pytest.mark.asyncio
async def test_outcome_complete_builds_turn_result():
    raw = "<answer>Try resting.</answer><reasoning>Sleep matters</reasoning><followup>Hours?</followup>"
    shared: Dict[str, Any] = {"parsed": parse_response(raw), "raw_response": raw}

    action = await _run(shared)

    assert action == "complete"
    result = shared["turn_result"]
    assert result.display_content == "Try resting.\n\nHours?"
    assert result.reasoning.type == "question_rationale"
    assert result.raw_response == raw
    assert shared["asked_followup"] is True


@pytest.mark.asyncio
async def test_outcome_empty_response_is_interrupted():
    shared: Dict[str, Any] = {"turn_error": EmptyResponseError("empty")}
    action = await _run(shared)

    assert action == "interrupted"
    assert shared["interruption_notice"] == INTERRUPTED_TEXT
    assert "turn_result" not in shared


@pytest.mark.asyncio
async def test_outcome_transport_error_mentions_error():
    shared: Dict[str, Any] = {"turn_error": ConnectionError("connection reset")}
    action = await _run(shared)

    assert action == "interrupted"
    assert "connection reset" in shared["interruption_notice"]


@pytest.mark.asyncio
async def test_outcome_without_parse_or_error_counts_as_empty():
    shared: Dict[str, Any] = {}
    assert await _run(shared) == "interrupted"
    assert isinstance(shared["turn_error"], EmptyResponseError)


@pytest.mark.asyncio
async def test_outcome_blank_display_content_is_interrupted():
    raw = "<answer>   </answer><reasoning>thinking</reasoning>"
    shared: Dict[str, Any] = {"parsed": parse_response(raw), "raw_response": raw}

    assert await _run(shared) == "interrupted"
    assert isinstance(shared["turn_error"], EmptyResponseError)
    assert shared["interruption_notice"] == INTERRUPTED_TEXT
    assert "turn_result" not in shared
