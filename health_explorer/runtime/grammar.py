# health_explorer/runtime/grammar.py
"""Decoder for the tagged response format the system prompt asks the model to emit.

The model is expected to answer with ``<answer>``, ``<reasoning>``,
``<followup>``, ``<summary>``, ``<actionitems>`` and ``<insights>`` sections in
any order. Every section is optional and decoded independently, so a broken
section never costs the others. ``parse_response`` never raises.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, List, Optional, Protocol, Sequence, TypeVar

from health_explorer.schemas.chat import (
    HEALTH_CATEGORIES,
    ActionItemDraft,
    InsightDraft,
    ParsedResponse,
    ReasoningStep,
    TurnResult,
)

logger = logging.getLogger(__name__)

T_co = TypeVar("T_co", covariant=True)

KNOWN_TAGS = ("answer", "reasoning", "followup", "summary", "actionitems", "insights")

RED_FLAG_KEYWORDS = (
    "seek immediate",
    "emergency",
    "call 911",
    "urgent evaluation",
    "go to the hospital",
    "seek prompt care immediately",
)

SAFETY_FLAG_TEXT = "Safety concern detected. Please seek appropriate medical care."
UNKNOWN_TASK = "Unknown task"
NO_EXPLANATION = "No explanation provided"
FALLBACK_WHY = "Suggested by AI assistant"
FALLBACK_LIMIT = 5

_SECTION_RE = {tag: re.compile(rf"<{tag}>(.*?)</{tag}>", re.S) for tag in KNOWN_TAGS}
_BULLET_RE = re.compile(r"^[-*•]\s*")


def extract_section(text: str, tag: str) -> Optional[str]:
    """Raw interior of the first complete ``<tag>...</tag>`` pair, or None."""
    m = _SECTION_RE[tag].search(text)
    return m.group(1) if m else None


def strip_sections(text: str, tags: Iterable[str]) -> str:
    for tag in tags:
        text = _SECTION_RE[tag].sub("", text)
    return text


# ---------------------------
# Decode strategies
# ---------------------------

class DecodeStrategy(Protocol[T_co]):
    """Turns a section interior (or the whole reply) into a partial result.

    Returning None means "not mine", letting the next strategy try.
    """

    def decode(self, text: str) -> Optional[T_co]: ...


class JsonActionItems:
    """``[{"task", "why", "urgency"}]``; placeholders for missing fields."""

    def decode(self, text: str) -> Optional[List[ActionItemDraft]]:
        try:
            data = json.loads(text.strip())
        except ValueError:
            return None
        if not isinstance(data, list):
            return []
        items: List[ActionItemDraft] = []
        for entry in data:
            entry = entry if isinstance(entry, dict) else {}
            items.append(
                ActionItemDraft(
                    task=str(entry.get("task") or UNKNOWN_TASK),
                    why=str(entry.get("why") or NO_EXPLANATION),
                    urgency="urgent" if entry.get("urgency") == "urgent" else "routine",
                )
            )
        return items


class LineActionItems:
    """Best-effort reading of bulleted prose such as ``- Track sleep - why - urgent``."""

    def __init__(self, limit: int = FALLBACK_LIMIT, why: str = FALLBACK_WHY) -> None:
        self.limit = limit
        self.why = why

    def decode(self, text: str) -> Optional[List[ActionItemDraft]]:
        items: List[ActionItemDraft] = []
        for raw in text.splitlines():
            line = _BULLET_RE.sub("", raw.strip())
            if len(line) <= 5:
                continue
            items.append(
                ActionItemDraft(
                    task=line.split("-")[0].strip() or line,
                    why=self.why,
                    urgency="urgent" if "urgent" in line.lower() else "routine",
                )
            )
        return items[: self.limit]


class JsonInsights:
    """``[{"category", "content"}]``; entries outside the known categories are dropped."""

    def decode(self, text: str) -> Optional[List[InsightDraft]]:
        try:
            data = json.loads(text.strip())
        except ValueError:
            logger.warning("Discarding malformed <insights> section")
            return None
        if not isinstance(data, list):
            return []
        insights: List[InsightDraft] = []
        for entry in data:
            if not isinstance(entry, dict) or entry.get("category") not in HEALTH_CATEGORIES:
                continue
            content = entry.get("content")
            if not isinstance(content, str):
                continue
            insights.append(InsightDraft(category=entry["category"], content=content))
        return insights


class KeywordRedFlag:
    """Case-insensitive phrase match over the whole reply, tags or not."""

    def __init__(self, keywords: Sequence[str] = RED_FLAG_KEYWORDS) -> None:
        self.keywords = tuple(k.lower() for k in keywords)

    def decode(self, text: str) -> Optional[bool]:
        lowered = text.lower()
        return any(k in lowered for k in self.keywords)


def _first_decoded(strategies: Sequence[DecodeStrategy[Any]], text: str) -> Any:
    for strategy in strategies:
        result = strategy.decode(text)
        if result is not None:
            return result
    return None


# ---------------------------
# Parser
# ---------------------------

class ResponseParser:
    def __init__(
        self,
        *,
        action_item_strategies: Optional[Sequence[DecodeStrategy[List[ActionItemDraft]]]] = None,
        insight_strategies: Optional[Sequence[DecodeStrategy[List[InsightDraft]]]] = None,
        red_flag: Optional[DecodeStrategy[bool]] = None,
    ) -> None:
        self.action_item_strategies = list(
            action_item_strategies
            if action_item_strategies is not None
            else (JsonActionItems(), LineActionItems())
        )
        self.insight_strategies = list(
            insight_strategies if insight_strategies is not None else (JsonInsights(),)
        )
        self.red_flag = red_flag or KeywordRedFlag()

    def parse(self, text: str) -> ParsedResponse:
        raw = text or ""

        answer = extract_section(raw, "answer")
        if answer is not None:
            answer = answer.strip()
        else:
            logger.debug("No <answer> section; using the reply with known sections stripped")
            answer = strip_sections(raw, KNOWN_TAGS[1:]).strip() or raw.strip()

        reasoning = extract_section(raw, "reasoning")
        followup = extract_section(raw, "followup")

        summary = extract_section(raw, "summary")
        if summary is not None:
            answer += "\n\n" + summary.strip()

        action_items: List[ActionItemDraft] = []
        section = extract_section(raw, "actionitems")
        if section is not None:
            action_items = _first_decoded(self.action_item_strategies, section) or []

        insights: List[InsightDraft] = []
        section = extract_section(raw, "insights")
        if section is not None:
            insights = _first_decoded(self.insight_strategies, section) or []

        parsed = ParsedResponse(
            answer=answer,
            follow_up_question=followup.strip() if followup is not None else None,
            reasoning=reasoning.strip() if reasoning is not None else None,
            is_summary=summary is not None,
            is_red_flag=bool(self.red_flag.decode(raw)),
            action_items=action_items,
            insights=insights,
        )
        logger.debug(
            "Parsed reply: followup=%s reasoning=%s summary=%s red_flag=%s action_items=%d insights=%d",
            parsed.follow_up_question is not None,
            parsed.reasoning is not None,
            parsed.is_summary,
            parsed.is_red_flag,
            len(parsed.action_items),
            len(parsed.insights),
        )
        return parsed


_default_parser = ResponseParser()


def parse_response(text: str) -> ParsedResponse:
    return _default_parser.parse(text)


def display_content(parsed: ParsedResponse) -> str:
    """Answer (summary already folded in) followed by the follow-up question."""
    if parsed.follow_up_question:
        return parsed.answer + "\n\n" + parsed.follow_up_question
    return parsed.answer


def build_reasoning_step(parsed: ParsedResponse) -> Optional[ReasoningStep]:
    if parsed.is_red_flag:
        return ReasoningStep(type="safety_flag", content=SAFETY_FLAG_TEXT)
    if parsed.reasoning:
        return ReasoningStep(type="question_rationale", content=parsed.reasoning)
    return None


def build_turn_result(parsed: ParsedResponse, raw_response: str) -> TurnResult:
    return TurnResult(
        display_content=display_content(parsed),
        reasoning=build_reasoning_step(parsed),
        action_items=list(parsed.action_items),
        insights=list(parsed.insights),
        is_summary=parsed.is_summary,
        is_red_flag=parsed.is_red_flag,
        raw_response=raw_response,
    )
