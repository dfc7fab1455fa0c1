"""The budgeting pipeline: uniform history in, provider payload out.

    system cap -> whitespace cleanup -> coarse prune -> compression
    -> weighted trim -> format adapter -> integrity guard

The last three steps repeat with a tighter budget if the adapted payload,
markup included, does not fit.

Everything here is synchronous and works on a deep copy; the caller's
messages are never mutated.  Timeouts and collaborators (system-message
generation, caching) live in ``orchestrator.preparer``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

import structlog

from prompt_budget.config import Config
from prompt_budget.context.budget import Budget, cap_system_message, compute_budget
from prompt_budget.context.compression import compress_history
from prompt_budget.context.history import prune_history
from prompt_budget.context.trimming import TrimReport, trim_to_budget
from prompt_budget.formats.adapter import adapt_for_provider
from prompt_budget.formats.integrity import payload_chars
from prompt_budget.logging import request_context
from prompt_budget.models.capabilities import FIMRequest, SystemMessageSupport
from prompt_budget.models.messages import (
    Message,
    ProviderMessage,
    SystemMessage,
    WorkingMessage,
    last_user_index,
    total_chars,
)

log = structlog.get_logger()

GUIDELINES_HEADER = "GUIDELINES (from the user's rules file):\n"

# Re-trims allowed when adaptation markup pushes the payload over budget
MAX_FIT_ATTEMPTS = 5


@dataclass
class PreparedMessages:
    messages: list[ProviderMessage]
    separate_system_message: str | None = None
    report: TrimReport = field(default_factory=TrimReport)

    def as_payload(self) -> dict[str, Any]:
        return {
            "messages": self.messages,
            "separate_system_message": self.separate_system_message,
            "report": self.report.as_payload(),
        }


def compose_system_message(ai_instructions: str | None, system_message: str | None) -> str:
    """User guidelines go ahead of the generated system message."""
    parts = []
    if ai_instructions:
        parts.append(GUIDELINES_HEADER + ai_instructions)
    if system_message:
        parts.append(system_message)
    return "\n\n".join(parts)


def _strip_whitespace(messages: list[WorkingMessage]) -> None:
    # The live request is sent exactly as typed.
    keep = last_user_index(messages)
    for i, msg in enumerate(messages):
        if i != keep:
            msg.content = msg.content.strip()


def prepare_messages(
    messages: Sequence[Message],
    system_message: str | None = None,
    ai_instructions: str | None = None,
    supports_system_message: SystemMessageSupport = "system-role",
    special_tool_format: str | None = None,
    supports_reasoning: bool = False,
    context_window: int = 128_000,
    reserved_output_token_space: int | None = None,
    provider_name: str = "",
    *,
    config: Config | None = None,
) -> PreparedMessages:
    """Fit ``messages`` to the model's window and serialize them."""
    if config is None:
        config = Config()

    with request_context(provider=provider_name, format=special_tool_format or "xml"):
        budget = compute_budget(context_window, reserved_output_token_space, config.budget)

        working: list[WorkingMessage] = copy.deepcopy(list(messages))
        system_text = compose_system_message(ai_instructions, system_message)
        if system_text:
            working.insert(0, SystemMessage(content=cap_system_message(system_text, budget)))

        _strip_whitespace(working)
        working = prune_history(working, config.history)
        working = compress_history(working, config.compression)

        def adapt(trimmed: list[WorkingMessage]) -> tuple[list[ProviderMessage], str | None]:
            system_out: str | None = None
            if trimmed and isinstance(trimmed[0], SystemMessage):
                system_out = trimmed.pop(0).content
            return adapt_for_provider(
                trimmed,  # type: ignore[arg-type]
                system_out,
                supports_system_message=supports_system_message,
                special_tool_format=special_tool_format,
                supports_reasoning=supports_reasoning,
                provider_name=provider_name,
            )

        adapted, separate, report = _fit(working, budget, config, adapt)

        log.debug(
            "messages_prepared",
            input_messages=len(messages),
            output_messages=len(adapted),
            budget_chars=budget.available_input_chars,
            **report.as_payload(),
        )
    return PreparedMessages(messages=adapted, separate_system_message=separate, report=report)


def _fit(
    working: list[WorkingMessage],
    budget: Budget,
    config: Config,
    adapt: Callable[[list[WorkingMessage]], tuple[list[ProviderMessage], str | None]],
) -> tuple[list[ProviderMessage], str | None, TrimReport]:
    """Trim and adapt until the serialized payload fits the budget.

    Adaptation adds tool-call markup and system wrappers the trimmer never
    saw.  When that pushes the payload over, the trim is redone from the
    untrimmed messages with the budget lowered by at least the markup size.
    """
    limit = budget.available_input_chars
    fitted = budget
    shrink_by = 0
    for attempt in range(MAX_FIT_ATTEMPTS):
        trimmed, report = trim_to_budget(working, fitted, config.trim)
        content = total_chars(trimmed)
        adapted, separate = adapt(trimmed)
        size = payload_chars(adapted, separate)
        overflow = size - limit
        if overflow <= 0 or fitted.available_input_chars == 0:
            break
        shrink_by = max(shrink_by + overflow, size - content)
        log.debug(
            "payload_over_budget",
            overflow=overflow,
            markup=size - content,
            attempt=attempt + 1,
        )
        fitted = budget.shrink(shrink_by)
    return adapted, separate, report


def prepare_fim(request: FIMRequest) -> FIMRequest:
    """Fill-in-the-middle requests are sent as raw code context, untouched."""
    return request
