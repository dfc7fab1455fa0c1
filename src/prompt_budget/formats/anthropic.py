"""Anthropic messages tool protocol.

Converts::

    assistant: text
    tool: (id, name, params, result)

into::

    assistant: [text, tool_use(id, name, params)]
    user:      [tool_result(id, result)]

Parallel tool turns after one assistant turn add further ``tool_use``
blocks to it and further ``tool_result`` blocks to the same user turn.
"""

from __future__ import annotations

import copy

from prompt_budget.formats.xml import tool_result_xml, with_reasoning
from prompt_budget.models.messages import (
    AssistantMessage,
    Message,
    ProviderMessage,
    ToolMessage,
    UserMessage,
)


def _is_tool_result_turn(msg: ProviderMessage) -> bool:
    content = msg["content"]
    return (
        msg["role"] == "user"
        and isinstance(content, list)
        and bool(content)
        and all(block.get("type") == "tool_result" for block in content)
    )


def to_anthropic_messages(messages: list[Message], supports_reasoning: bool = False) -> list[ProviderMessage]:
    result: list[ProviderMessage] = []
    for msg in messages:
        if isinstance(msg, AssistantMessage):
            result.append({
                "role": "assistant",
                "content": with_reasoning(msg.content, msg.reasoning, supports_reasoning),
            })
        elif isinstance(msg, UserMessage):
            result.append({"role": "user", "content": msg.content})
        elif isinstance(msg, ToolMessage):
            tool_use = {
                "type": "tool_use",
                "id": msg.id,
                "name": msg.name,
                "input": copy.deepcopy(msg.raw_params),
            }
            tool_result = {"type": "tool_result", "tool_use_id": msg.id, "content": msg.content}

            prev = result[-1] if result else None
            if prev is not None and prev["role"] == "assistant":
                if isinstance(prev["content"], str):
                    prev["content"] = [{"type": "text", "text": prev["content"]}]
                prev["content"].append(tool_use)
                result.append({"role": "user", "content": [tool_result]})
            elif (
                prev is not None
                and _is_tool_result_turn(prev)
                and len(result) >= 2
                and result[-2]["role"] == "assistant"
                and isinstance(result[-2]["content"], list)
            ):
                result[-2]["content"].append(tool_use)
                prev["content"].append(tool_result)
            else:
                result.append({"role": "user", "content": tool_result_xml(msg.name, msg.content)})
        else:
            raise TypeError(f"unexpected message type: {type(msg).__name__}")
    return result
