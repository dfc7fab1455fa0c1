"""Last pass over adapted messages: no provider accepts an empty turn.

Also measures what the adapted messages cost, since tool-call markup and
wrappers added during adaptation count against the window too.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from prompt_budget.models.messages import ProviderMessage

EMPTY_MESSAGE = "(empty message)"

_TOOL_BLOCK_TYPES = frozenset({"tool_use", "tool_result"})
_TOOL_PART_KEYS = ("functionCall", "functionResponse")


def _has_tool_block(blocks: list[dict[str, Any]]) -> bool:
    return any(
        block.get("type") in _TOOL_BLOCK_TYPES or any(key in block for key in _TOOL_PART_KEYS)
        for block in blocks
    )


def _is_text_block(block: dict[str, Any]) -> bool:
    # Anthropic blocks carry a type; Gemini parts are bare {"text": ...}
    return block.get("type") == "text" or (set(block) == {"text"})


def _guard_blocks(blocks: list[dict[str, Any]], *, text_key_typed: bool) -> list[dict[str, Any]]:
    if _has_tool_block(blocks):
        return [b for b in blocks if not (_is_text_block(b) and not b.get("text"))]

    guarded = []
    for block in blocks:
        if _is_text_block(block) and not block.get("text"):
            block = {**block, "text": EMPTY_MESSAGE}
        guarded.append(block)
    if not guarded:
        guarded = [{"type": "text", "text": EMPTY_MESSAGE} if text_key_typed else {"text": EMPTY_MESSAGE}]
    return guarded


def ensure_non_empty(messages: list[ProviderMessage]) -> list[ProviderMessage]:
    """Replace empty content with ``EMPTY_MESSAGE``.

    Block arrays that carry tool calls or results keep their tool blocks and
    lose empty text blocks.  An assistant turn followed by a ``tool`` message
    is left alone, since its ``tool_calls`` make it non-empty.  ``tool``
    messages are never altered.
    """
    result: list[ProviderMessage] = []
    for i, msg in enumerate(messages):
        nxt = messages[i + 1] if i + 1 < len(messages) else None
        if msg.get("role") == "tool":
            result.append(msg)
            continue

        if "parts" in msg:
            result.append({**msg, "parts": _guard_blocks(msg["parts"], text_key_typed=False)})
            continue

        content = msg.get("content")
        if nxt is not None and nxt.get("role") == "tool" and msg.get("tool_calls"):
            result.append(msg)
        elif isinstance(content, list):
            result.append({**msg, "content": _guard_blocks(content, text_key_typed=True)})
        elif not content:
            result.append({**msg, "content": EMPTY_MESSAGE})
        else:
            result.append(msg)
    return result


# String fields the model reads; tool arguments held as objects count as JSON
_TEXT_KEYS = frozenset({"content", "text", "thinking", "arguments", "output"})
_OBJECT_KEYS = frozenset({"input", "args"})


def _value_chars(value: Any, key: str | None = None) -> int:
    if isinstance(value, str):
        return len(value) if key in _TEXT_KEYS else 0
    if isinstance(value, dict):
        return sum(
            len(json.dumps(v, ensure_ascii=False)) if k in _OBJECT_KEYS else _value_chars(v, k)
            for k, v in value.items()
        )
    if isinstance(value, list):
        return sum(_value_chars(item, key) for item in value)
    return 0


def payload_chars(messages: Sequence[ProviderMessage], separate_system_message: str | None = None) -> int:
    """Characters of model-visible text in adapted messages, in any format."""
    return len(separate_system_message or "") + sum(_value_chars(m) for m in messages)
