"""Uniform message types shared by every budgeting stage.

A conversation is a list of ``ToolMessage | UserMessage | AssistantMessage``,
independent of any provider wire format.  ``SystemMessage`` only exists
while the trimmer runs and is removed again before format adaptation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Union

ReasoningBlock = dict[str, Any]
"""A provider thinking block, e.g. {"type": "thinking", "thinking", "signature"}."""

ProviderMessage = dict[str, Any]


@dataclass
class ToolMessage:
    """Result of one tool invocation, paired by id with its assistant turn."""

    id: str
    name: str
    content: str
    raw_params: dict[str, Any] = field(default_factory=dict)

    role: ClassVar[str] = "tool"


@dataclass
class UserMessage:
    content: str

    role: ClassVar[str] = "user"


@dataclass
class AssistantMessage:
    content: str
    reasoning: list[ReasoningBlock] | None = None

    role: ClassVar[str] = "assistant"


@dataclass
class SystemMessage:
    content: str

    role: ClassVar[str] = "system"


Message = Union[ToolMessage, UserMessage, AssistantMessage]
WorkingMessage = Union[ToolMessage, UserMessage, AssistantMessage, SystemMessage]

UNIFORM_TYPES = (ToolMessage, UserMessage, AssistantMessage)


def last_user_index(messages: list[WorkingMessage]) -> int:
    """Index of the last UserMessage, or -1 if there is none."""
    for i in range(len(messages) - 1, -1, -1):
        if isinstance(messages[i], UserMessage):
            return i
    return -1


def total_chars(messages: list[WorkingMessage]) -> int:
    return sum(len(m.content) for m in messages)
