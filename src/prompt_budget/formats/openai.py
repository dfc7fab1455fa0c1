"""OpenAI chat-completions tool protocol.

A tool turn becomes ``{"role": "tool", "tool_call_id", "content"}`` and
the assistant turn that requested it is retroactively given a matching
``tool_calls`` entry.  Consecutive tool turns after one assistant turn are
treated as parallel calls of that turn.
"""

from __future__ import annotations

import json

from openai.types.chat import (
    ChatCompletionAssistantMessageParam,
    ChatCompletionToolMessageParam,
    ChatCompletionUserMessageParam,
)

from prompt_budget.formats.xml import tool_result_xml
from prompt_budget.models.messages import (
    AssistantMessage,
    Message,
    ProviderMessage,
    ToolMessage,
    UserMessage,
)


def _calling_assistant(result: list[ProviderMessage]) -> ProviderMessage | None:
    """The assistant turn a new tool result belongs to, skipping earlier results."""
    for msg in reversed(result):
        if msg["role"] == "tool":
            continue
        return msg if msg["role"] == "assistant" else None
    return None


def to_openai_messages(messages: list[Message]) -> list[ProviderMessage]:
    result: list[ProviderMessage] = []
    for msg in messages:
        if isinstance(msg, UserMessage):
            result.append(ChatCompletionUserMessageParam(role="user", content=msg.content))
        elif isinstance(msg, AssistantMessage):
            # reasoning blocks have no place in this protocol
            result.append(ChatCompletionAssistantMessageParam(role="assistant", content=msg.content))
        elif isinstance(msg, ToolMessage):
            assistant = _calling_assistant(result)
            if assistant is None:
                # No call to pair with: show the result as plain user text.
                result.append(
                    ChatCompletionUserMessageParam(
                        role="user", content=tool_result_xml(msg.name, msg.content)
                    )
                )
                continue
            assistant.setdefault("tool_calls", []).append({
                "type": "function",
                "id": msg.id,
                "function": {
                    "name": msg.name,
                    "arguments": json.dumps(msg.raw_params),
                },
            })
            result.append(
                ChatCompletionToolMessageParam(
                    role="tool", tool_call_id=msg.id, content=msg.content
                )
            )
        else:
            raise TypeError(f"unexpected message type: {type(msg).__name__}")
    return result
