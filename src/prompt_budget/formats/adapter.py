"""Dispatch budgeted uniform messages to a provider wire format."""

from __future__ import annotations

from typing import Sequence

import structlog

from prompt_budget.formats.anthropic import to_anthropic_messages
from prompt_budget.formats.gemini import to_gemini_messages
from prompt_budget.formats.integrity import ensure_non_empty
from prompt_budget.formats.openai import to_openai_messages
from prompt_budget.formats.system import place_system_message
from prompt_budget.formats.xml import to_xml_messages
from prompt_budget.models.capabilities import TOOL_FORMATS, SystemMessageSupport
from prompt_budget.models.messages import UNIFORM_TYPES, Message, ProviderMessage

log = structlog.get_logger()

GEMINI_PROVIDER = "gemini"


def normalize_tool_format(special_tool_format: str | None) -> str | None:
    """Known formats pass through; anything else means inline XML (None)."""
    if special_tool_format in TOOL_FORMATS:
        return special_tool_format
    if special_tool_format is not None:
        log.warning("unknown_tool_format", format=special_tool_format, fallback="xml")
    return None


def adapt_messages(
    messages: Sequence[Message | ProviderMessage],
    special_tool_format: str | None,
    supports_reasoning: bool = False,
) -> list[ProviderMessage]:
    """Serialize uniform messages to ``special_tool_format``.

    Messages that are already dicts were adapted before and are returned
    as they are.  Gemini output is produced by :func:`adapt_for_provider`,
    here ``gemini-style`` yields the Anthropic sequence it is built from.
    """
    if all(isinstance(m, dict) for m in messages):
        return list(messages)  # type: ignore[arg-type]
    if not all(isinstance(m, UNIFORM_TYPES) for m in messages):
        raise TypeError("cannot adapt a mix of uniform and provider messages")

    uniform: list[Message] = list(messages)  # type: ignore[arg-type]
    fmt = normalize_tool_format(special_tool_format)
    if fmt == "openai-style":
        return to_openai_messages(uniform)
    if fmt in ("anthropic-style", "gemini-style"):
        return to_anthropic_messages(uniform, supports_reasoning)
    return to_xml_messages(uniform, supports_reasoning)


def adapt_for_provider(
    messages: Sequence[Message | ProviderMessage],
    system_message: str | None,
    *,
    supports_system_message: SystemMessageSupport,
    special_tool_format: str | None,
    supports_reasoning: bool = False,
    provider_name: str = "",
) -> tuple[list[ProviderMessage], str | None]:
    """Adapt, place the system message and guard against empty turns.

    Returns ``(messages, separate_system_message)``.
    """
    fmt = normalize_tool_format(special_tool_format)
    gemini = provider_name.lower() == GEMINI_PROVIDER or fmt == "gemini-style"

    if gemini and fmt != "gemini-style":
        # Gemini without native tools still gets the XML protocol inside its parts.
        fmt = None
    adapted = adapt_messages(messages, fmt, supports_reasoning)
    adapted, separate = place_system_message(adapted, system_message, supports_system_message)

    if gemini and adapted and "parts" not in adapted[0]:
        adapted, lifted = to_gemini_messages(adapted)
        if lifted is not None:
            separate = lifted if separate is None else f"{separate}\n\n{lifted}"

    return ensure_non_empty(adapted), separate
