"""Convert editor thread records into uniform messages."""

from __future__ import annotations

import copy
from typing import Iterable, Protocol

from prompt_budget.models.messages import AssistantMessage, Message, ToolMessage, UserMessage
from prompt_budget.models.thread import (
    AssistantRecord,
    CheckpointRecord,
    InterruptedToolRecord,
    ThreadRecord,
    ToolRecord,
    UserRecord,
)


class PrunedToolLookup(Protocol):
    """Whatever decided which old tool outputs are no longer worth sending."""

    def is_pruned(self, tool_id: str) -> bool: ...

    def pruned_content(self, tool_name: str, content: str) -> str: ...


def normalize_thread(
    records: Iterable[ThreadRecord],
    pruned: PrunedToolLookup | None = None,
) -> list[Message]:
    """Map thread records to ``ToolMessage | UserMessage | AssistantMessage``.

    Checkpoints and interrupted-tool markers are dropped.  Assistant turns
    use their display text.  Tool outputs that ``pruned`` reports as pruned
    are replaced by its summary.  Order is preserved.
    """
    messages: list[Message] = []
    for record in records:
        if isinstance(record, (CheckpointRecord, InterruptedToolRecord)):
            continue
        if isinstance(record, UserRecord):
            messages.append(UserMessage(content=record.content))
        elif isinstance(record, AssistantRecord):
            text = record.display_content if record.display_content is not None else record.content
            messages.append(
                AssistantMessage(
                    content=text,
                    reasoning=copy.deepcopy(record.reasoning) if record.reasoning else None,
                )
            )
        elif isinstance(record, ToolRecord):
            content = record.content
            if pruned is not None and pruned.is_pruned(record.id):
                content = pruned.pruned_content(record.name, record.content)
            messages.append(
                ToolMessage(
                    id=record.id,
                    name=record.name,
                    content=content,
                    raw_params=copy.deepcopy(record.raw_params),
                )
            )
        else:
            raise TypeError(f"unknown thread record: {type(record).__name__}")
    return messages
