# health_explorer/runtime/flow.py
from __future__ import annotations

from pocketflow import AsyncFlow

from health_explorer.runtime.nodes.context import ContextAssemblyNode
from health_explorer.runtime.nodes.model import ModelStreamNode
from health_explorer.runtime.nodes.outcome import TurnOutcomeNode
from health_explorer.runtime.nodes.persist import PersistTurnNode
from health_explorer.runtime.nodes.record_user import RecordUserMessageNode


def make_turn_flow(*, record_user: bool = True) -> AsyncFlow:
    """Turn opening flow:
    (record_user →) context → model

    Ends with shared["reply_stream"] set, or with shared["turn_error"] when
    the stream could not be opened.
    """

    context = ContextAssemblyNode()
    model = ModelStreamNode()

    context.successors = {"ok": model}
    model.successors = {}

    if not record_user:
        return AsyncFlow(start=context)

    record = RecordUserMessageNode()
    record.successors = {"ok": context}
    return AsyncFlow(start=record)


def make_completion_flow(*, persist: bool = True) -> AsyncFlow:
    """Turn closing flow, run after the stream was drained:
    outcome → (complete → persist)
            → (interrupted → persist)
    """

    outcome = TurnOutcomeNode()
    if not persist:
        outcome.successors = {}
        return AsyncFlow(start=outcome)

    store = PersistTurnNode()
    outcome.successors = {
        "complete": store,
        "interrupted": store,
    }
    store.successors = {}
    return AsyncFlow(start=outcome)
