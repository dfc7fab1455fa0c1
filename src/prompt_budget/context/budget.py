"""Token and character budgets derived from a model's context window.

Budgets are computed in characters using a fixed chars-per-token ratio.
This deliberately avoids a real tokenizer: the ratio is tuned for mixed
English/CJK text and the trimmer adds its own safety margin on top.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace

from prompt_budget.config import BudgetConfig

SYSTEM_TRUNCATION_MARKER = "\n...[system prompt truncated for context budget]..."


@dataclass(frozen=True)
class Budget:
    """Character budgets for one request."""

    context_window: int
    reserved_output_tokens: int
    chars_per_token: float
    available_input_chars: int
    """(context_window - reserved_output_tokens) in chars; never negative."""
    trim_target_chars: int
    """What the weighted trim loop aims for; at least min_retained_chars."""
    safe_input_chars: int
    system_message_budget: int

    @property
    def available_input_tokens(self) -> int:
        return max(self.context_window - self.reserved_output_tokens, 0)

    def shrink(self, chars: int) -> Budget:
        """This budget with every input bound lowered by ``chars``."""
        return replace(
            self,
            available_input_chars=max(self.available_input_chars - chars, 0),
            trim_target_chars=max(self.trim_target_chars - chars, 0),
            safe_input_chars=max(self.safe_input_chars - chars, 0),
        )


def estimate_tokens(text: str, chars_per_token: float = 3.5) -> int:
    """Rough token estimate from the fixed chars-per-token ratio."""
    return math.ceil(len(text) / chars_per_token)


def reserved_output_tokens(
    context_window: int,
    explicit: int | None = None,
    config: BudgetConfig | None = None,
) -> int:
    """Tokens withheld for the model's reply.

    ``max(min(window * ratio, cap), explicit or default)``: large windows
    reserve a share of the window (capped), small ones at least the
    explicit reservation or the default.
    """
    if config is None:
        config = BudgetConfig()
    share = min(context_window * config.reserved_output_ratio, config.reserved_output_cap)
    floor = explicit if explicit is not None else config.default_reserved_output_tokens
    return int(max(share, floor))


def compute_budget(
    context_window: int,
    reserved_output_token_space: int | None = None,
    config: BudgetConfig | None = None,
) -> Budget:
    if config is None:
        config = BudgetConfig()

    reserved = reserved_output_tokens(context_window, reserved_output_token_space, config)
    available_tokens = max(context_window - reserved, 0)
    available_chars = int(available_tokens * config.chars_per_token)

    return Budget(
        context_window=context_window,
        reserved_output_tokens=reserved,
        chars_per_token=config.chars_per_token,
        available_input_chars=available_chars,
        trim_target_chars=max(available_chars, config.min_retained_chars),
        safe_input_chars=int(available_chars * config.safety_margin),
        system_message_budget=int(
            min(available_chars * config.system_message_max_ratio, config.system_message_hard_cap)
        ),
    )


def cap_system_message(text: str, budget: Budget) -> str:
    """Cut an oversized system message, keeping its beginning.

    Core instructions come first in the system message, so the tail
    (workspace rules, appended guidelines) is what gets dropped.
    """
    limit = budget.system_message_budget
    if len(text) <= limit:
        return text
    return text[: max(limit - len(SYSTEM_TRUNCATION_MARKER), 0)] + SYSTEM_TRUNCATION_MARKER
