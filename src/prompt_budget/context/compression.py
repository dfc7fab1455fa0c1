"""Lossy, deterministic compression of older conversation turns.

Only messages outside the most recent window are touched, and never the
live user request.  Compression is role-aware:

  - user       → head + tail (instructions up front, file mentions at the end)
  - assistant  → lead paragraph, with a count of elided code blocks
  - tool       → structural summary chosen by tool name (see summaries.py)

Every function here is total: bad input degrades to a shorter string,
it never raises.
"""

from __future__ import annotations

import re
from dataclasses import replace

import structlog

from prompt_budget.config import CompressionConfig
from prompt_budget.context.summaries import (
    head_tail,
    summarize_command_output,
    summarize_directory_listing,
    summarize_file_read,
    summarize_search_results,
)
from prompt_budget.models.messages import (
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    UserMessage,
    WorkingMessage,
)

log = structlog.get_logger()

USER_MARKER = "\n...[message truncated]...\n"
ASSISTANT_MARKER = "\n...[response truncated]..."
TOOL_MARKER = "\n...[result truncated]..."

_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)

_SEARCH_TOOLS = frozenset({"search_for_files", "search_pathnames_only"})
_LISTING_TOOLS = frozenset({"ls_dir", "get_dir_tree"})
_EDIT_TOOLS = frozenset({"edit_file", "rewrite_file", "create_file_or_folder"})


def compress_user(content: str, max_len: int = 500) -> str:
    return head_tail(content, max_len, USER_MARKER)


def compress_assistant(content: str, max_len: int = 500) -> str:
    """Keep the lead of a long reply, cut at a paragraph or sentence end."""
    if len(content) <= max_len:
        return content

    summary = content[:max_len]
    cut_at = max(summary.rfind("\n"), summary.rfind("。"), summary.rfind(". "))
    if cut_at > max_len * 0.5:
        summary = summary[: cut_at + 1]

    elided = len(_CODE_BLOCK_RE.findall(content)) - len(_CODE_BLOCK_RE.findall(summary))
    if elided > 0:
        plural = "s" if elided != 1 else ""
        return summary + f"\n...[{elided} code block{plural} omitted]..." + ASSISTANT_MARKER
    return summary + ASSISTANT_MARKER


def compress_tool(content: str, tool_name: str | None, max_len: int = 500, max_identifiers: int = 20) -> str:
    if len(content) <= max_len:
        return content

    if tool_name == "read_file":
        return summarize_file_read(content, max_identifiers)
    if tool_name in _SEARCH_TOOLS:
        return summarize_search_results(content)
    if tool_name in _LISTING_TOOLS:
        return summarize_directory_listing(content)
    if tool_name in _EDIT_TOOLS:
        # Edit confirmations are short; the head is the useful part.
        return content[:max_len]
    if tool_name == "run_command":
        summary = summarize_command_output(content)
        if summary is not None:
            return summary

    return content[:max_len] + TOOL_MARKER


def compress_message(
    content: str,
    role: str,
    tool_name: str | None = None,
    config: CompressionConfig | None = None,
) -> str:
    """Compress one message's content according to its role."""
    if config is None:
        config = CompressionConfig()
    if role == "user":
        return compress_user(content, config.max_compressed_length)
    if role == "assistant":
        return compress_assistant(content, config.max_compressed_length)
    if role == "tool":
        return compress_tool(content, tool_name, config.max_compressed_length, config.max_identifiers)
    return content


def compress_history(
    messages: list[WorkingMessage],
    config: CompressionConfig | None = None,
) -> list[WorkingMessage]:
    """Compress every message older than the recent window.

    The system message is skipped and does not count toward the window.
    Short conversations (at most ``keep_recent * 1.5`` messages) are left
    alone.  Returns a new list; compressed messages are new objects.
    """
    if config is None:
        config = CompressionConfig()

    positions = [i for i, m in enumerate(messages) if not isinstance(m, SystemMessage)]
    total = len(positions)
    if total <= config.keep_recent * 1.5:
        return list(messages)

    last_user = -1
    for i in reversed(positions):
        if isinstance(messages[i], UserMessage):
            last_user = i
            break

    result = list(messages)
    compressed = 0
    for rank, i in enumerate(positions):
        if rank >= total - config.keep_recent or i == last_user:
            continue
        msg = messages[i]
        if isinstance(msg, ToolMessage):
            new_content = compress_message(msg.content, "tool", msg.name, config)
        elif isinstance(msg, (UserMessage, AssistantMessage)):
            new_content = compress_message(msg.content, msg.role, None, config)
        else:
            raise TypeError(f"unexpected message type: {type(msg).__name__}")
        if new_content != msg.content:
            result[i] = replace(msg, content=new_content)
            compressed += 1

    if compressed:
        log.debug("history_compressed", compressed=compressed, total=total)
    return result
