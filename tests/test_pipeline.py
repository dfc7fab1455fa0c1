"""End-to-end tests for prepare_messages: invariants and scenarios."""

from __future__ import annotations

import pytest

from prompt_budget.config import BudgetConfig, Config
from prompt_budget.context.budget import compute_budget
from prompt_budget.formats.integrity import EMPTY_MESSAGE, payload_chars
from prompt_budget.models.capabilities import FIMRequest
from prompt_budget.models.messages import AssistantMessage, ToolMessage, UserMessage
from prompt_budget.pipeline import (
    GUIDELINES_HEADER,
    compose_system_message,
    prepare_fim,
    prepare_messages,
)


def _make_conversation(n: int, size: int) -> list:
    msgs = []
    for i in range(n):
        text = f"{i:03d}" + "x" * (size - 3)
        msgs.append(UserMessage(text) if i % 2 == 0 else AssistantMessage(text))
    return msgs


def _content_chars(messages: list[dict]) -> int:
    total = 0
    for m in messages:
        content = m.get("content", "")
        if isinstance(content, str):
            total += len(content)
        else:
            total += sum(len(b.get("text", "")) for b in content)
    return total


LIVE_REQUEST = "Now rename parse_header to read_header everywhere."


def _make_tool_conversation(turns: int, size: int) -> list:
    msgs = [UserMessage("refactor the parser module")]
    for i in range(turns):
        msgs.append(AssistantMessage(f"Reading file {i:02d}. " + "r" * 200))
        msgs.append(
            ToolMessage(
                id=f"call_{i}",
                name="read_file",
                content=f"/src/mod_{i:02d}.py\n" + "c" * size,
                raw_params={"uri": f"/src/mod_{i:02d}.py", "pattern": "p" * 300},
            )
        )
    msgs.append(UserMessage(LIVE_REQUEST))
    return msgs


def _last_user_text(messages: list[dict]) -> str:
    last = [m for m in messages if m["role"] == "user"][-1]
    body = last.get("content", last.get("parts"))
    if isinstance(body, str):
        return body
    return "".join(block.get("text", "") for block in body)


def _is_empty(message: dict) -> bool:
    content = message.get("content", message.get("parts"))
    if isinstance(content, str):
        return content == ""
    return not content


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestScenarios:
    def test_long_conversation_small_window(self):
        config = Config(budget=BudgetConfig(chars_per_token=4))
        msgs = _make_conversation(60, 2_000)
        last_user = msgs[58].content

        prepared = prepare_messages(msgs, context_window=8_000, config=config)

        budget = compute_budget(8_000, config=config.budget)
        total = _content_chars(prepared.messages)
        assert total <= budget.available_input_chars
        assert total < (8_000 - 1_600) * 4
        user_turns = [m for m in prepared.messages if m["role"] == "user"]
        assert user_turns[-1]["content"] == last_user
        assert prepared.report.initial_chars < 60 * 2_000

    def test_tiny_window_truncates_system(self):
        prepared = prepare_messages(
            [UserMessage("hello")],
            system_message="s" * 2_000,
            context_window=500,
        )
        system, user = prepared.messages
        assert system["role"] == "system"
        assert len(system["content"]) < 2_000
        assert user == {"role": "user", "content": "hello"}
        assert prepared.report.tier_c

    def test_openai_tool_pairing(self):
        prepared = prepare_messages(
            [AssistantMessage("let me check"), ToolMessage(id="t1", name="ls", content="a.txt")],
            special_tool_format="openai-style",
        )
        assistant, tool = prepared.messages
        assert assistant["tool_calls"] == [
            {"type": "function", "id": "t1", "function": {"name": "ls", "arguments": "{}"}}
        ]
        assert tool == {"role": "tool", "tool_call_id": "t1", "content": "a.txt"}

    def test_empty_assistant_gets_placeholder(self):
        prepared = prepare_messages(
            [UserMessage("hi"), AssistantMessage(""), UserMessage("again")]
        )
        assert prepared.messages[1] == {"role": "assistant", "content": EMPTY_MESSAGE}


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


CASES = [
    (128_000, 200, 500),
    (32_000, 120, 3_000),
    (16_000, 40, 5_000),
    (8_000, 60, 2_000),
    (4_096, 10, 10_000),
]


class TestInvariants:
    @pytest.mark.parametrize("window,n,size", CASES)
    @pytest.mark.parametrize("fmt", [None, "openai-style", "anthropic-style"])
    def test_budget_and_protection(self, window, n, size, fmt):
        msgs = _make_conversation(n, size)
        if n % 2 == 0:
            msgs.append(UserMessage("final question " * 20))
        last_user = [m for m in msgs if isinstance(m, UserMessage)][-1].content

        prepared = prepare_messages(
            msgs,
            system_message="You are helpful.",
            special_tool_format=fmt,
            context_window=window,
        )
        budget = compute_budget(window)

        user_text = [m["content"] for m in prepared.messages if m["role"] == "user"]
        assert user_text[-1] == last_user
        if len("You are helpful.") + len(last_user) <= budget.available_input_chars:
            assert _content_chars(prepared.messages) <= budget.available_input_chars

    @pytest.mark.parametrize("fmt", [None, "openai-style", "anthropic-style", "gemini-style"])
    def test_no_empty_messages(self, fmt):
        msgs = [
            UserMessage("  "),
            AssistantMessage(""),
            ToolMessage(id="t1", name="ls", content=""),
            UserMessage(""),
            AssistantMessage("   "),
            UserMessage("go"),
        ]
        prepared = prepare_messages(msgs, special_tool_format=fmt)
        # tool results and assistant turns carrying tool_calls may be empty
        checked = [m for m in prepared.messages if m["role"] != "tool" and not m.get("tool_calls")]
        assert checked
        assert not any(_is_empty(m) for m in checked)

    def test_caller_messages_not_mutated(self):
        msgs = _make_conversation(60, 2_000)
        before = [m.content for m in msgs]
        prepare_messages(msgs, context_window=8_000)
        assert [m.content for m in msgs] == before

    def test_last_user_whitespace_kept(self):
        prepared = prepare_messages([AssistantMessage("  hi  "), UserMessage("  spaced  ")])
        assert prepared.messages[0]["content"] == "hi"
        assert prepared.messages[1]["content"] == "  spaced  "


# ---------------------------------------------------------------------------
# System message handling
# ---------------------------------------------------------------------------


class TestSystemMessage:
    def test_compose_with_instructions(self):
        assert compose_system_message("use tabs", "SYS") == GUIDELINES_HEADER + "use tabs\n\nSYS"

    def test_compose_without_instructions(self):
        assert compose_system_message("", "SYS") == "SYS"
        assert compose_system_message(None, None) == ""

    def test_instructions_reach_output(self):
        prepared = prepare_messages(
            [UserMessage("hi")], system_message="SYS", ai_instructions="use tabs"
        )
        assert prepared.messages[0]["content"].startswith("GUIDELINES (from the user's rules file):")

    def test_separated(self):
        prepared = prepare_messages(
            [UserMessage("hi")], system_message="SYS", supports_system_message="separated"
        )
        assert prepared.separate_system_message == "SYS"
        assert prepared.messages == [{"role": "user", "content": "hi"}]

    def test_no_system_message(self):
        prepared = prepare_messages([UserMessage("hi")])
        assert prepared.messages == [{"role": "user", "content": "hi"}]
        assert prepared.separate_system_message is None

    def test_payload(self):
        payload = prepare_messages([UserMessage("hi")]).as_payload()
        assert set(payload) == {"messages", "separate_system_message", "report"}


class TestPrepareFIM:
    def test_passthrough(self):
        req = FIMRequest(prefix="def f(", suffix=")\n", stop_tokens=["\n\n"])
        assert prepare_fim(req) is req


# ---------------------------------------------------------------------------
# Tool turns: markup added by adaptation counts against the window
# ---------------------------------------------------------------------------

TOOL_CASES = [
    (128_000, 30, 20_000),
    (16_000, 20, 3_000),
    (8_000, 23, 150),
    (8_000, 12, 4_000),
]


class TestToolTurnInvariants:
    @pytest.mark.parametrize("window,turns,size", TOOL_CASES)
    @pytest.mark.parametrize("fmt", [None, "openai-style", "anthropic-style", "gemini-style"])
    @pytest.mark.parametrize("system_support", ["system-role", False])
    def test_payload_fits_and_live_request_survives(self, window, turns, size, fmt, system_support):
        prepared = prepare_messages(
            _make_tool_conversation(turns, size),
            system_message="You are helpful.",
            supports_system_message=system_support,
            special_tool_format=fmt,
            context_window=window,
        )
        budget = compute_budget(window)

        assert payload_chars(prepared.messages, prepared.separate_system_message) <= (
            budget.available_input_chars
        )
        # an XML tool result right before the live turn shares its user message
        assert _last_user_text(prepared.messages).endswith(LIVE_REQUEST)

    def test_markup_heavy_history_is_retrimmed(self):
        msgs = _make_tool_conversation(23, 150)
        prepared = prepare_messages(msgs, system_message="You are helpful.", context_window=8_000)
        budget = compute_budget(8_000)

        content_only = sum(len(m.content) for m in msgs) + len("You are helpful.")
        assert content_only <= budget.safe_input_chars
        # the restated tool parameters alone would overflow the window
        assert prepared.report.dropped_messages > 0
        assert payload_chars(prepared.messages) <= budget.available_input_chars
