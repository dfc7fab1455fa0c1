"""Where the system message goes for each kind of provider."""

from __future__ import annotations

from prompt_budget.models.capabilities import SystemMessageSupport
from prompt_budget.models.messages import ProviderMessage


def wrap_system_text(text: str) -> str:
    return f"<SYSTEM_MESSAGE>\n{text}\n</SYSTEM_MESSAGE>\n"


def place_system_message(
    messages: list[ProviderMessage],
    text: str | None,
    support: SystemMessageSupport,
) -> tuple[list[ProviderMessage], str | None]:
    """Insert ``text`` according to ``support``.

    Returns ``(messages, separate_system_message)``.  ``separate`` is only
    set for providers that take the system prompt outside the message list.
    Without system-role support the text is prefixed, wrapped in a
    ``<SYSTEM_MESSAGE>`` tag, onto the first user turn.
    """
    if not text:
        return messages, None

    if support == "separated":
        return messages, text
    if support == "system-role":
        return [{"role": "system", "content": text}, *messages], None
    if support == "developer-role":
        return [{"role": "developer", "content": text}, *messages], None

    wrapped = wrap_system_text(text)
    result = list(messages)
    first = result[0] if result else None
    if first is None or first["role"] != "user":
        return [{"role": "user", "content": wrapped.rstrip("\n")}, *result], None

    content = first["content"]
    if isinstance(content, str):
        result[0] = {**first, "content": wrapped + content}
    else:
        result[0] = {**first, "content": [{"type": "text", "text": wrapped}, *content]}
    return result, None
