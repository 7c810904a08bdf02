import pytest

from health_explorer.runtime.grammar import (
    FALLBACK_WHY,
    NO_EXPLANATION,
    SAFETY_FLAG_TEXT,
    UNKNOWN_TASK,
    JsonActionItems,
    KeywordRedFlag,
    LineActionItems,
    ResponseParser,
    build_reasoning_step,
    build_turn_result,
    display_content,
    parse_response,
)


def test_answer_tag_is_trimmed():
    parsed = parse_response("<answer>\n  Try resting more.  \n</answer>")
    assert parsed.answer == "Try resting more."
    assert parsed.follow_up_question is None
    assert parsed.reasoning is None
    assert parsed.is_summary is False
    assert parsed.action_items == []
    assert parsed.insights == []


def test_missing_answer_strips_known_sections():
    text = (
        "Fatigue has many causes.\n"
        "<reasoning>Sleep is a common factor.</reasoning>\n"
        "<followup>How many hours do you sleep?</followup>\n"
        '<insights>[{"category": "energy", "content": "Tired for 3 months"}]</insights>'
    )
    parsed = parse_response(text)
    assert parsed.answer == "Fatigue has many causes."
    assert parsed.reasoning == "Sleep is a common factor."
    assert parsed.follow_up_question == "How many hours do you sleep?"
    assert [i.category for i in parsed.insights] == ["energy"]


def test_missing_answer_with_nothing_left_falls_back_to_raw_text():
    text = "  <followup>Anything else?</followup>  "
    parsed = parse_response(text)
    assert parsed.answer == "<followup>Anything else?</followup>"


def test_plain_text_without_tags_becomes_answer():
    assert parse_response("  Just some advice.\n").answer == "Just some advice."


def test_end_to_end_answer_and_followup():
    parsed = parse_response(
        "<answer>Try resting.</answer><followup>How many hours do you sleep?</followup>"
    )
    assert display_content(parsed) == "Try resting.\n\nHow many hours do you sleep?"
    assert parsed.is_summary is False
    assert parsed.is_red_flag is False


def test_summary_is_appended_to_answer():
    text = "<answer>Thanks for sharing.</answer><summary>\n**What's emerging:**\n- Poor sleep\n</summary>"
    parsed = parse_response(text)
    assert parsed.is_summary is True
    assert parsed.answer == "Thanks for sharing.\n\n**What's emerging:**\n- Poor sleep"
    assert parsed.answer.endswith("**What's emerging:**\n- Poor sleep")
    # parser is pure
    assert parse_response(text) == parsed


def test_action_items_json_normalizes_urgency_and_defaults():
    text = (
        "<answer>ok</answer><actionitems>"
        '[{"task": "t", "why": "w", "urgency": "urgent"},'
        ' {"task": "Track meals", "urgency": "URGENT"},'
        ' {"why": "because"}]'
        "</actionitems>"
    )
    items = parse_response(text).action_items
    assert len(items) == 3
    assert (items[0].task, items[0].why, items[0].urgency) == ("t", "w", "urgent")
    assert items[1].urgency == "routine"
    assert items[1].why == NO_EXPLANATION
    assert items[2].task == UNKNOWN_TASK


def test_action_items_json_that_is_not_a_list_yields_nothing():
    parsed = parse_response('<answer>ok</answer><actionitems>{"task": "x"}</actionitems>')
    assert parsed.action_items == []


def test_action_items_fallback_to_lines():
    text = (
        "<answer>ok</answer><actionitems>\n"
        "- Track sleep for two weeks - to find patterns - routine\n"
        "* Book an urgent evaluation for chest pain\n"
        "</actionitems>"
    )
    items = parse_response(text).action_items
    assert len(items) == 2
    assert items[0].task == "Track sleep for two weeks"
    assert items[0].urgency == "routine"
    assert items[1].task == "Book an urgent evaluation for chest pain"
    assert items[1].urgency == "urgent"
    assert all(i.why == FALLBACK_WHY for i in items)


def test_action_items_fallback_is_capped_at_five():
    lines = "\n".join(f"- Suggested step number {n}" for n in range(9))
    items = parse_response(f"<answer>ok</answer><actionitems>{lines}</actionitems>").action_items
    assert len(items) == 5


def test_action_items_fallback_skips_short_lines():
    items = LineActionItems().decode("- a\n\n-   \n- Drink more water daily")
    assert [i.task for i in items] == ["Drink more water daily"]


def test_insights_drop_unknown_categories():
    text = (
        "<answer>ok</answer><insights>"
        '[{"category": "unknown", "content": "x"},'
        ' {"category": "sleep", "content": "Wakes at 3am"},'
        ' {"category": "mood", "content": "Feels low"},'
        ' "not an object"]'
        "</insights>"
    )
    insights = parse_response(text).insights
    assert [(i.category, i.content) for i in insights] == [
        ("sleep", "Wakes at 3am"),
        ("mood", "Feels low"),
    ]


def test_malformed_insights_are_lost_not_fatal():
    parsed = parse_response("<answer>ok</answer><insights>sleep: bad</insights>")
    assert parsed.insights == []
    assert parsed.answer == "ok"


@pytest.mark.parametrize(
    "text",
    [
        "EMERGENCY services can help.",
        "<answer>Seek immediate care.</answer>",
        "Please Call 911 now",
        "you should go to the hospital",
    ],
)
def test_red_flag_keywords_are_case_insensitive_and_tag_independent(text):
    assert parse_response(text).is_red_flag is True


def test_no_red_flag_for_calm_reply():
    assert parse_response("<answer>Keep a sleep diary.</answer>").is_red_flag is False


def test_red_flag_overrides_reasoning_with_safety_step():
    parsed = parse_response("<answer>Seek immediate care.</answer>")
    step = build_reasoning_step(parsed)
    assert step is not None
    assert step.type == "safety_flag"
    assert step.content == SAFETY_FLAG_TEXT

    parsed = parse_response(
        "<answer>This is an emergency.</answer><reasoning>Checking onset</reasoning>"
    )
    assert build_reasoning_step(parsed).type == "safety_flag"


def test_reasoning_becomes_question_rationale():
    parsed = parse_response("<answer>a</answer><reasoning> Timing matters. </reasoning>")
    step = build_reasoning_step(parsed)
    assert step.type == "question_rationale"
    assert step.content == "Timing matters."


def test_no_reasoning_step_without_reasoning_or_red_flag():
    assert build_reasoning_step(parse_response("<answer>a</answer>")) is None


def test_turn_result_carries_display_content_and_raw_text():
    raw = "<answer>Try resting.</answer><followup>Since when?</followup>"
    result = build_turn_result(parse_response(raw), raw)
    assert result.display_content == "Try resting.\n\nSince when?"
    assert result.raw_response == raw
    assert result.reasoning is None


def test_custom_strategies_can_replace_defaults():
    class AlwaysFlag:
        def decode(self, text):
            return True

    parser = ResponseParser(
        action_item_strategies=[JsonActionItems()],
        red_flag=AlwaysFlag(),
    )
    parsed = parser.parse("<answer>fine</answer><actionitems>- not json at all</actionitems>")
    assert parsed.is_red_flag is True
    # no line fallback configured
    assert parsed.action_items == []


def test_keyword_classifier_accepts_custom_phrases():
    flag = KeywordRedFlag(["Severe Bleeding"])
    assert flag.decode("there is severe bleeding") is True
    assert flag.decode("emergency") is False


def test_parse_never_raises_on_odd_input():
    for text in ["", "<answer>", "</answer><answer>", "<actionitems>[</actionitems>", None]:
        parsed = parse_response(text)
        assert isinstance(parsed.answer, str)
