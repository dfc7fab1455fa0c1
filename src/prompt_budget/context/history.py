"""Whole-message pruning for very long conversations.

Character-level trimming across hundreds of messages is slow and leaves
many tiny fragments behind.  Past a message-count threshold we instead
drop entire old turns, keeping the structural anchors of the thread.
"""

from __future__ import annotations

import structlog

from prompt_budget.config import HistoryConfig
from prompt_budget.models.messages import (
    SystemMessage,
    UserMessage,
    WorkingMessage,
    last_user_index,
)

log = structlog.get_logger()


def first_user_index(messages: list[WorkingMessage]) -> int:
    for i, msg in enumerate(messages):
        if isinstance(msg, UserMessage):
            return i
    return -1


def prune_history(
    messages: list[WorkingMessage],
    config: HistoryConfig | None = None,
) -> list[WorkingMessage]:
    """Drop old messages once the list grows past ``max_messages``.

    Keeps: the system message, the first user message, the last user
    message (even when it is older than the recent window), and the last
    ``keep_recent`` messages.  Returns a new list; the kept message
    objects are shared with the input.
    """
    if config is None:
        config = HistoryConfig()

    n = len(messages)
    if n <= config.max_messages:
        return list(messages)

    keep: set[int] = set()
    if isinstance(messages[0], SystemMessage):
        keep.add(0)
    first_user = first_user_index(messages)
    if first_user >= 0:
        keep.add(first_user)
    last_user = last_user_index(messages)
    if last_user >= 0:
        keep.add(last_user)
    keep.update(range(max(0, n - config.keep_recent), n))

    result = [m for i, m in enumerate(messages) if i in keep]
    log.info("history_pruned", before=n, after=len(result), dropped=n - len(result))
    return result
