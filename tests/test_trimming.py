"""Tests for the weighted trimmer and its fallback tiers.

The weighting constants are empirically tuned; the values pinned here are
a regression baseline, not a claim that they are optimal.
"""

from __future__ import annotations

import pytest

from prompt_budget.config import BudgetConfig, RoleMultipliers, TrimPolicy
from prompt_budget.context.budget import compute_budget
from prompt_budget.context.trimming import (
    EMERGENCY_MARKER,
    ELLIPSIS,
    TrimReport,
    message_weight,
    trim_to_budget,
)
from prompt_budget.models.messages import (
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    UserMessage,
    total_chars,
)


def _make_assistants(n: int, size: int = 1_000) -> list:
    return [AssistantMessage("a" * size) for _ in range(n)]


def _weight(msgs, index, last_user=-1, trimmed=None, policy=None):
    return message_weight(
        msgs[index],
        index,
        len(msgs),
        last_user_idx=last_user,
        trimmed=trimmed or set(),
        policy=policy or TrimPolicy(),
    )


# ---------------------------------------------------------------------------
# Policy baseline
# ---------------------------------------------------------------------------


class TestPolicyBaseline:
    def test_defaults_pinned(self):
        p = TrimPolicy()
        assert p.trim_to_len == 500
        assert p.max_iterations == 100
        assert p.anchor_multiplier == 0.05
        assert p.head_anchor_count == 2
        assert p.tail_anchor_count == 4
        assert p.structural_keep_tail == 3
        assert p.emergency_keep_chars == 200
        assert p.system_floor_chars == 2_000
        assert p.ultimate_reserve_chars == 1_000

    def test_role_multipliers_pinned(self):
        r = RoleMultipliers()
        assert (r.system, r.user, r.assistant, r.tool) == (0.01, 0.5, 10.0, 10.0)


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------


class TestMessageWeight:
    def test_middle_assistant(self):
        msgs = _make_assistants(10)
        # age ramp 1 + 4/10, assistant x10
        assert _weight(msgs, 5) == pytest.approx(14_000)

    def test_head_anchor_damped(self):
        msgs = _make_assistants(10)
        assert _weight(msgs, 0) == pytest.approx(1_000 * 1.9 * 10 * 0.05)

    def test_tail_anchor_damped(self):
        msgs = _make_assistants(10)
        assert _weight(msgs, 9) == pytest.approx(1_000 * 1.0 * 10 * 0.05)

    def test_older_is_heavier(self):
        msgs = _make_assistants(10)
        assert _weight(msgs, 2) > _weight(msgs, 5)

    def test_user_lighter_than_tool(self):
        msgs = _make_assistants(10)
        msgs[4] = UserMessage("u" * 1_000)
        msgs[5] = ToolMessage(id="t", name="ls", content="t" * 1_000)
        assert _weight(msgs, 4) < _weight(msgs, 5)

    def test_last_user_is_weightless(self):
        msgs = _make_assistants(10)
        msgs[5] = UserMessage("u" * 5_000)
        assert _weight(msgs, 5, last_user=5) == 0.0

    def test_trimmed_is_weightless(self):
        msgs = _make_assistants(10)
        assert _weight(msgs, 5, trimmed={5}) == 0.0

    def test_system_nearly_weightless(self):
        msgs = [SystemMessage("s" * 1_000)] + _make_assistants(9)
        assert _weight(msgs, 0) == pytest.approx(1_000 * 1.9 * 0.01 * 0.05)

    def test_custom_policy(self):
        msgs = _make_assistants(10)
        policy = TrimPolicy(roles=RoleMultipliers(assistant=1.0))
        assert _weight(msgs, 5, policy=policy) == pytest.approx(1_400)


# ---------------------------------------------------------------------------
# Trim loop
# ---------------------------------------------------------------------------


class TestTrimToBudget:
    def test_under_budget_untouched(self):
        msgs = [SystemMessage("sys"), UserMessage("hi"), AssistantMessage("hello")]
        result, report = trim_to_budget(msgs, compute_budget(128_000))

        assert [m.content for m in result] == ["sys", "hi", "hello"]
        assert report.iterations == 0
        assert not (report.tier_a or report.tier_b or report.tier_c)
        assert report.dropped_messages == 0

    def test_returns_copy(self):
        msgs = [UserMessage("hi")]
        result, _ = trim_to_budget(msgs, compute_budget(128_000))
        assert result[0] is not msgs[0]

    def test_input_not_mutated(self):
        msgs = [UserMessage("q")] + _make_assistants(30, size=2_000) + [UserMessage("now")]
        before = [m.content for m in msgs]
        trim_to_budget(msgs, compute_budget(8_000))
        assert [m.content for m in msgs] == before

    def test_trims_heaviest_to_fit_target(self):
        # window 16000 -> 4096 reserved -> 41664 available chars; no margin
        budget = compute_budget(16_000, config=BudgetConfig(safety_margin=1.0))
        msgs = [SystemMessage("sys"), UserMessage("q")]
        msgs += _make_assistants(10, size=5_000)
        msgs += [UserMessage("now")]
        result, report = trim_to_budget(msgs, budget)

        assert total_chars(result) <= budget.trim_target_chars
        assert report.iterations > 0
        assert report.trimmed_indices
        assert not report.tier_a
        assert result[-1].content == "now"
        trimmed = [m for m in result if m.content.endswith(ELLIPSIS)]
        assert trimmed

    def test_last_user_never_trimmed(self):
        budget = compute_budget(8_000)
        big_request = "r" * 12_000
        msgs = [UserMessage("old")] + _make_assistants(10, size=3_000) + [UserMessage(big_request)]
        result, report = trim_to_budget(msgs, budget)
        assert result[-1].content == big_request
        assert total_chars(result) <= budget.available_input_chars

    def test_report_payload(self):
        report = TrimReport(initial_chars=10, final_chars=5, trimmed_indices=[1, 2], tier_a=True)
        payload = report.as_payload()
        assert payload["trimmed_messages"] == 2
        assert payload["tier_a"] is True
        assert payload["initial_chars"] == 10


# ---------------------------------------------------------------------------
# Fallback tiers
# ---------------------------------------------------------------------------


class TestFallbackTiers:
    def test_tier_a_shrinks_proportionally(self):
        # target floor of 20000 keeps the main loop idle below that size
        budget = compute_budget(8_000, config=BudgetConfig(chars_per_token=4))
        msgs = [UserMessage("q" * 1_000)] + _make_assistants(4, size=4_000) + [UserMessage("now")]
        result, report = trim_to_budget(msgs, budget)

        assert report.tier_a
        assert not report.tier_b
        assert all(m.content.endswith(EMERGENCY_MARKER) for m in result[1:5])
        assert total_chars(result) <= budget.safe_input_chars + len(EMERGENCY_MARKER) * 5

    def test_tier_b_structural_collapse(self):
        budget = compute_budget(8_000, config=BudgetConfig(chars_per_token=4))
        msgs = [SystemMessage("sys")] + [UserMessage("u" * 1_900) for _ in range(11)]
        msgs += [AssistantMessage("a" * 50)]
        result, report = trim_to_budget(msgs, budget)

        assert report.tier_a
        assert report.tier_b
        assert isinstance(result[0], SystemMessage)
        assert len(result) <= 4
        assert result[-2].content == "u" * 1_900
        assert report.dropped_messages == len(msgs) - len(result)

    def test_tier_c_keeps_system_and_last_user(self):
        budget = compute_budget(500)
        msgs = [SystemMessage("s" * 2_000), AssistantMessage("a" * 300), UserMessage("hello")]
        result, report = trim_to_budget(msgs, budget)

        assert report.tier_c
        assert [type(m) for m in result] == [SystemMessage, UserMessage]
        assert result[1].content == "hello"
        # the system floor keeps 2000 chars
        assert len(result[0].content) == 2_000

    def test_tier_c_cuts_system_above_floor(self):
        budget = compute_budget(10_000)  # 20664 available chars
        msgs = [SystemMessage("s" * 30_000), UserMessage("u" * 1_000)]
        # keep the main loop off the system message so only tier C can cut it
        policy = TrimPolicy(roles=RoleMultipliers(system=0.0))
        result, report = trim_to_budget(msgs, budget, policy)

        assert report.tier_c
        assert result[1].content == "u" * 1_000
        assert len(result[0].content) == 20_664 - 1_000 - 1_000

    def test_tier_c_system_floor_holds_on_small_budget(self):
        budget = compute_budget(4_811)  # 2502 available chars
        msgs = [SystemMessage("s" * 750), UserMessage("u" * 2_000)]
        result, report = trim_to_budget(msgs, budget)

        assert report.tier_c
        # below system_floor_chars the system message is kept whole
        assert len(result[0].content) == 750
        assert result[1].content == "u" * 2_000
        assert total_chars(result) > budget.available_input_chars

    def test_tier_c_without_user(self):
        budget = compute_budget(500)
        msgs = [SystemMessage("s" * 100), AssistantMessage("a" * 100)]
        result, report = trim_to_budget(msgs, budget)
        assert report.tier_c
        assert [type(m) for m in result] == [SystemMessage, AssistantMessage]
