"""Gemini ``contents`` shape, mapped from the Anthropic block sequence.

Gemini function responses do not repeat the function name, so the name of
the most recent ``tool_use`` is carried forward to label the next
``tool_result``; a result with no earlier call is dropped.  A system or
developer turn cannot appear in ``contents`` and is lifted out for the
caller to send as ``systemInstruction``.
"""

from __future__ import annotations

from typing import Any

from prompt_budget.models.messages import ProviderMessage

_ROLE_MAP = {"assistant": "model", "user": "user"}


def _blocks(content: Any) -> list[dict[str, Any]]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return list(content or [])


def to_gemini_messages(messages: list[ProviderMessage]) -> tuple[list[ProviderMessage], str | None]:
    """Map assistant/user turns to ``{role, parts}``.

    Returns the contents and the lifted system text, if any.
    """
    result: list[ProviderMessage] = []
    system_text: str | None = None
    latest_tool_name = ""

    for msg in messages:
        role = msg["role"]
        if role in ("system", "developer"):
            text = msg["content"]
            system_text = text if system_text is None else f"{system_text}\n\n{text}"
            continue
        if role not in _ROLE_MAP:
            raise ValueError(f"no Gemini role for {role!r}")

        parts: list[dict[str, Any]] = []
        for block in _blocks(msg["content"]):
            kind = block.get("type")
            if kind == "text":
                parts.append({"text": block.get("text", "")})
            elif kind == "tool_use":
                latest_tool_name = block["name"]
                parts.append({
                    "functionCall": {
                        "id": block["id"],
                        "name": block["name"],
                        "args": block.get("input", {}),
                    }
                })
            elif kind == "tool_result":
                if not latest_tool_name:
                    # no call to name the response after
                    continue
                parts.append({
                    "functionResponse": {
                        "id": block["tool_use_id"],
                        "name": latest_tool_name,
                        "response": {"output": block.get("content", "")},
                    }
                })
            # thinking blocks are Anthropic-only

        result.append({"role": _ROLE_MAP[role], "parts": parts})

    return result, system_text
