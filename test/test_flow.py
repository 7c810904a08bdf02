# test/test_flow.py
import asyncio
import pytest
from typing import Any, Dict, List

from health_explorer.runtime.flow import make_completion_flow, make_turn_flow
from health_explorer.runtime.nodes.outcome import INTERRUPTED_TEXT
from health_explorer.runtime.prompts import BASE_PROMPT
from health_explorer.runtime.turn import stream_turn
from health_explorer.schemas.chat import ChatSession, HealthInsight, Message

from fakes import FakeModelClient, FakeRepo

REPLY = [
    "<answer>Fatigue can have many causes.</answer>\n<reas",
    "oning>Sleep quality is a common contributor.</reasoning>\n",
    "<followup>How many hours do you sleep?</followup>\n",
    '<actionitems>[{"task": "Track sleep", "why": "Find patterns", "urgency": "routine"}]</actionitems>',
    '<insights>[{"category": "energy", "content": "Tired for 3 months"}, {"category": "bogus", "content": "x"}]</insights>',
]


async def _collect(shared: Dict[str, Any], persist: bool = True) -> List[Dict[str, Any]]:
    return [e async for e in stream_turn(shared, make_completion_flow(persist=persist))]


@pytest.mark.asyncio
async def test_stored_turn_streams_parses_and_persists():
    session = ChatSession(id="s1", title="Tired", question_count=2)
    repo = FakeRepo(
        session=session,
        insights=[
            HealthInsight(category="sleep", content="Snores", source_session_id="s0"),
            HealthInsight(category="pain", content="Own insight", source_session_id="s1"),
        ],
    )
    client = FakeModelClient(REPLY)
    shared: Dict[str, Any] = {
        "repo": repo,
        "user_id": "u1",
        "session_id": "s1",
        "user_text": "Why am I always tired?",
        "client_id": "tmp-42",
        "model_client": client,
    }

    action = await make_turn_flow().run_async(shared)
    assert action == "ok"

    events = await _collect(shared)

    # model saw the new user message and only other sessions' insights
    assert client.last_args["messages"] == [{"role": "user", "content": "Why am I always tired?"}]
    assert client.last_args["system_prompt"].startswith(BASE_PROMPT)
    assert "Snores" in client.last_args["system_prompt"]
    assert "Own insight" not in client.last_args["system_prompt"]

    texts = [e["text"] for e in events if "text" in e]
    assert texts == REPLY
    reasoning = [e["reasoning"] for e in events if "reasoning" in e]
    assert reasoning[-1] == "Sleep quality is a common contributor."

    done = events[-1]
    assert done["done"] is True
    assert done["result"]["display_content"] == (
        "Fatigue can have many causes.\n\nHow many hours do you sleep?"
    )
    assert done["user_message"]["client_id"] == "tmp-42"
    assert done["session_fields"] == {"question_count": 3, "is_summary_mode": False, "has_red_flag": False}

    stored = repo.sessions["s1"]
    assert [m.role for m in stored.messages] == ["user", "assistant"]
    assert [a.task for a in stored.action_items] == ["Track sleep"]
    assert [i.content for i in repo.insights if i.source_session_id == "s1" and i.category == "energy"] == [
        "Tired for 3 months"
    ]
    assert all(i.category != "bogus" for i in repo.insights)


@pytest.mark.asyncio
async def test_stateless_turn_returns_result_without_store():
    session = ChatSession(id="s9", messages=[Message(role="user", content="Chest pain right now")])
    client = FakeModelClient(["<answer>Please seek immediate care.</answer>"])
    shared: Dict[str, Any] = {
        "session": session,
        "profile": None,
        "insights": [],
        "model_client": client,
    }

    await make_turn_flow(record_user=False).run_async(shared)
    events = await _collect(shared, persist=False)

    done = events[-1]
    assert done["done"] is True
    assert done["result"]["is_red_flag"] is True
    assert done["result"]["reasoning"]["type"] == "safety_flag"
    assert "message" not in done


@pytest.mark.asyncio
async def test_empty_stream_persists_interruption_notice():
    repo = FakeRepo(session=ChatSession(id="s1"))
    shared: Dict[str, Any] = {
        "repo": repo,
        "user_id": "u1",
        "session_id": "s1",
        "user_text": "hello",
        "model_client": FakeModelClient(["", "  "]),
    }

    await make_turn_flow().run_async(shared)
    events = await _collect(shared)

    assert events[-1]["empty_response"] is True
    assert events[-1]["message"]["content"] == INTERRUPTED_TEXT
    assert [m.content for m in repo.sessions["s1"].messages] == ["hello", INTERRUPTED_TEXT]
    assert repo.field_updates == []


@pytest.mark.asyncio
async def test_transport_error_mid_stream_keeps_partial_text_unparsed():
    repo = FakeRepo(session=ChatSession(id="s1"))
    shared: Dict[str, Any] = {
        "repo": repo,
        "user_id": "u1",
        "session_id": "s1",
        "user_text": "hello",
        "model_client": FakeModelClient(["<answer>Part"], error=ConnectionError("stream reset")),
    }

    await make_turn_flow().run_async(shared)
    events = await _collect(shared)

    assert events[0] == {"text": "<answer>Part"}
    assert events[-1]["error"] == "stream reset"
    assert events[-1]["empty_response"] is False
    assert "parsed" not in shared
    assert "stream reset" in repo.sessions["s1"].messages[-1].content


@pytest.mark.asyncio
async def test_missing_model_client_still_answers_with_notice():
    repo = FakeRepo(session=ChatSession(id="s1"))
    shared: Dict[str, Any] = {"repo": repo, "user_id": "u1", "session_id": "s1", "user_text": "hi"}

    action = await make_turn_flow().run_async(shared)
    assert action == "failed"

    events = await _collect(shared)
    assert "error" in events[-1]
    assert repo.sessions["s1"].messages[-1].role == "assistant"


@pytest.mark.asyncio
async def test_reply_with_only_empty_tags_is_treated_as_empty():
    repo = FakeRepo(session=ChatSession(id="s1", question_count=1))
    shared: Dict[str, Any] = {
        "repo": repo,
        "user_id": "u1",
        "session_id": "s1",
        "user_text": "hello",
        "model_client": FakeModelClient(["<answer>  </answer>"]),
    }

    await make_turn_flow().run_async(shared)
    events = await _collect(shared)

    assert all("done" not in e for e in events)
    assert events[-1]["empty_response"] is True
    assert events[-1]["message"]["content"] == INTERRUPTED_TEXT
    assert [m.content for m in repo.sessions["s1"].messages] == ["hello", INTERRUPTED_TEXT]
    assert repo.field_updates == []


@pytest.mark.asyncio
async def test_abandoned_turn_stops_reading_the_stream():
    state = {"closed": False}

    async def stalled():
        try:
            yield "<answer>Hel"
            await asyncio.Event().wait()
        finally:
            state["closed"] = True

    shared: Dict[str, Any] = {"reply_stream": stalled()}
    events = stream_turn(shared, make_completion_flow(persist=False))

    assert await events.__anext__() == {"text": "<answer>Hel"}
    await events.aclose()
    for _ in range(3):
        await asyncio.sleep(0)

    assert state["closed"] is True
    assert "parsed" not in shared
