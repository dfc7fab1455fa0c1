"""Inline-XML tool protocol, for models without native tool calling.

The model emits tool calls as XML in its own text.  When replaying history
we restate each call after the assistant text that made it, and wrap each
result as ``<name_result>...</name_result>`` inside a user turn.
"""

from __future__ import annotations

import copy
import json
from typing import Any

from prompt_budget.models.messages import (
    AssistantMessage,
    Message,
    ProviderMessage,
    ToolMessage,
    UserMessage,
)


def _param_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def tool_call_xml(tool_name: str, params: dict[str, Any]) -> str:
    """Re-serialize a parsed tool call into the XML the model would write."""
    body = "\n".join(f"<{name}>{_param_text(value)}</{name}>" for name, value in params.items())
    if body:
        return f"<{tool_name}>\n{body}\n</{tool_name}>"
    return f"<{tool_name}>\n</{tool_name}>"


def tool_result_xml(tool_name: str, content: str) -> str:
    return f"<{tool_name}_result>\n{content}\n</{tool_name}_result>"


def with_reasoning(content: str, reasoning: list[dict[str, Any]] | None, supported: bool) -> str | list[dict[str, Any]]:
    """Prefix thinking blocks ahead of the text block when supported."""
    if not reasoning or not supported:
        return content
    blocks = copy.deepcopy(reasoning)
    if content:
        blocks.append({"type": "text", "text": content})
    return blocks


def to_xml_messages(messages: list[Message], supports_reasoning: bool = False) -> list[ProviderMessage]:
    result: list[ProviderMessage] = []
    for i, msg in enumerate(messages):
        nxt = messages[i + 1] if i + 1 < len(messages) else None

        if isinstance(msg, AssistantMessage):
            text = msg.content
            if isinstance(nxt, ToolMessage):
                text = f"{text}\n\n{tool_call_xml(nxt.name, nxt.raw_params)}"
            result.append({
                "role": "assistant",
                "content": with_reasoning(text, msg.reasoning, supports_reasoning),
            })
        elif isinstance(msg, (UserMessage, ToolMessage)):
            text = msg.content if isinstance(msg, UserMessage) else tool_result_xml(msg.name, msg.content)
            prev = result[-1] if result else None
            if prev is not None and prev["role"] == "user" and isinstance(prev["content"], str):
                prev["content"] += "\n\n" + text
            else:
                result.append({"role": "user", "content": text})
        else:
            raise TypeError(f"unexpected message type: {type(msg).__name__}")
    return result
