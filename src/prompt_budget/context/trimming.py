"""Weighted character trimming to fit the input budget.

Every message gets an eviction weight; the heaviest is shrunk until the
total fits.  Weight grows with length, with age, and for machine-written
text (assistant/tool), and collapses to zero for the live user request and
for messages that were already trimmed.

After the loop, three tiers run unconditionally and each only acts if the
previous step left the list too large:

  A. Margin check: shrink every shrinkable message proportionally.
  B. Structural collapse: keep system, last user, and the last few messages.
  C. Ultimate fallback: keep only system + last user; cut the system
     message (never the user message) to make room.

Tier C guarantees a bounded, non-empty result for any input, including a
context window smaller than a single message.
"""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field

import structlog

from prompt_budget.config import TrimPolicy
from prompt_budget.context.budget import Budget
from prompt_budget.models.messages import (
    SystemMessage,
    WorkingMessage,
    last_user_index,
    total_chars,
)

log = structlog.get_logger()

ELLIPSIS = "..."
EMERGENCY_MARKER = "\n...[emergency truncation]..."
SYSTEM_MARKER = "\n...[system message truncated]..."


@dataclass
class TrimReport:
    """What the trimmer did to one request."""

    initial_chars: int = 0
    final_chars: int = 0
    iterations: int = 0
    trimmed_indices: list[int] = field(default_factory=list)
    exhausted_collapse: bool = False
    tier_a: bool = False
    tier_b: bool = False
    tier_c: bool = False
    dropped_messages: int = 0

    def as_payload(self) -> dict[str, object]:
        return {
            "initial_chars": self.initial_chars,
            "final_chars": self.final_chars,
            "iterations": self.iterations,
            "trimmed_messages": len(self.trimmed_indices),
            "exhausted_collapse": self.exhausted_collapse,
            "tier_a": self.tier_a,
            "tier_b": self.tier_b,
            "tier_c": self.tier_c,
            "dropped_messages": self.dropped_messages,
        }


def message_weight(
    message: WorkingMessage,
    index: int,
    total: int,
    *,
    last_user_idx: int,
    trimmed: set[int],
    policy: TrimPolicy,
) -> float:
    """Eviction weight; the highest weight is trimmed first, 0 means never."""
    if index == last_user_idx or index in trimmed:
        return 0.0

    # 2.0 for the oldest message down to ~1.0 for the newest
    multiplier = 1 + (total - 1 - index) / total
    multiplier *= getattr(policy.roles, message.role)

    if index < policy.head_anchor_count or index >= total - policy.tail_anchor_count:
        multiplier *= policy.anchor_multiplier

    return len(message.content) * multiplier


def _find_heaviest(
    messages: list[WorkingMessage],
    last_user_idx: int,
    trimmed: set[int],
    policy: TrimPolicy,
) -> int:
    """Index of the max-weight message, or -1 when nothing has weight."""
    best_idx = -1
    best_weight = 0.0
    total = len(messages)
    for i, msg in enumerate(messages):
        w = message_weight(
            msg, i, total, last_user_idx=last_user_idx, trimmed=trimmed, policy=policy
        )
        if w > best_weight:
            best_weight = w
            best_idx = i
    return best_idx


def _keep_only(messages: list[WorkingMessage], keep: set[int]) -> list[WorkingMessage]:
    return [m for i, m in enumerate(messages) if i in keep]


def _structural_keep_set(
    messages: list[WorkingMessage],
    last_user_idx: int,
    *,
    head: int,
    tail: int,
) -> set[int]:
    n = len(messages)
    keep = set(range(min(head, n)))
    if last_user_idx >= 0:
        keep.add(last_user_idx)
    keep.update(range(max(0, n - tail), n))
    return keep


def trim_to_budget(
    messages: list[WorkingMessage],
    budget: Budget,
    policy: TrimPolicy | None = None,
) -> tuple[list[WorkingMessage], TrimReport]:
    """Shrink ``messages`` until they fit ``budget``.

    ``messages`` should start with the system pseudo-message.  The input is
    not mutated; a trimmed deep copy is returned together with a report.
    """
    if policy is None:
        policy = TrimPolicy()

    msgs = copy.deepcopy(messages)
    report = TrimReport(initial_chars=total_chars(msgs))
    original_count = len(msgs)
    last_user = last_user_index(msgs)

    # ---- weighted loop ----
    deficit = report.initial_chars - budget.trim_target_chars
    trimmed: set[int] = set()

    while deficit > 0 and report.iterations < policy.max_iterations:
        report.iterations += 1

        idx = _find_heaviest(msgs, last_user, trimmed, policy)
        if idx == -1:
            break

        msg = msgs[idx]
        if len(msg.content) <= policy.trim_to_len:
            trimmed.add(idx)
            if len(trimmed) >= len(msgs) - policy.exhausted_slack:
                if len(msgs) > policy.collapse_min_messages:
                    keep = _structural_keep_set(
                        msgs,
                        last_user,
                        head=policy.head_anchor_count,
                        tail=policy.structural_keep_tail,
                    )
                    msgs = _keep_only(msgs, keep)
                    last_user = last_user_index(msgs)
                    report.exhausted_collapse = True
                    log.info("trim_exhausted_collapse", kept=len(msgs))
                break
            continue

        will_free = len(msg.content) - policy.trim_to_len
        if will_free > deficit:
            cut = len(msg.content) - deficit - len(ELLIPSIS)
            msg.content = msg.content[:cut].rstrip() + ELLIPSIS
            report.trimmed_indices.append(idx)
            break

        deficit -= will_free
        msg.content = msg.content[: policy.trim_to_len - len(ELLIPSIS)] + ELLIPSIS
        trimmed.add(idx)
        report.trimmed_indices.append(idx)

    # ---- tier A: margin check ----
    current = total_chars(msgs)
    safe = budget.safe_input_chars
    if current > safe:
        report.tier_a = True
        ratio = safe / current
        for i, msg in enumerate(msgs):
            if isinstance(msg, SystemMessage) or i == last_user:
                continue
            target = max(policy.emergency_keep_chars, math.floor(len(msg.content) * ratio))
            if len(msg.content) > target:
                msg.content = msg.content[: max(target - len(EMERGENCY_MARKER), 0)] + EMERGENCY_MARKER
        log.warning("trim_tier_applied", tier="A", before=current, after=total_chars(msgs), safe=safe)

        # ---- tier B: structural collapse ----
        if total_chars(msgs) > safe and len(msgs) > 4:
            report.tier_b = True
            keep = _structural_keep_set(msgs, last_user, head=1, tail=policy.structural_keep_tail)
            msgs = _keep_only(msgs, keep)
            last_user = last_user_index(msgs)
            log.warning("trim_tier_applied", tier="B", kept=len(msgs), chars=total_chars(msgs))

    # ---- tier C: ultimate fallback ----
    available = budget.available_input_chars
    if total_chars(msgs) > available:
        report.tier_c = True
        system = next((m for m in msgs if isinstance(m, SystemMessage)), None)
        if last_user >= 0:
            anchor = msgs[last_user]
        else:
            anchor = next((m for m in reversed(msgs) if not isinstance(m, SystemMessage)), None)

        msgs = []
        if system is not None:
            anchor_len = len(anchor.content) if anchor is not None else 0
            max_system = max(
                policy.system_floor_chars,
                available - anchor_len - policy.ultimate_reserve_chars,
            )
            if len(system.content) > max_system:
                system.content = system.content[: max(max_system - len(SYSTEM_MARKER), 0)] + SYSTEM_MARKER
            msgs.append(system)
        if anchor is not None:
            msgs.append(anchor)
        log.warning(
            "trim_tier_applied",
            tier="C",
            chars=total_chars(msgs),
            available=available,
        )

    report.final_chars = total_chars(msgs)
    report.dropped_messages = original_count - len(msgs)
    return msgs, report
