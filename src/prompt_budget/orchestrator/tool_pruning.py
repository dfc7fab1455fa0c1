"""Drop the bodies of old tool outputs once a thread gets large.

The pruner remembers which tool ids it has pruned for the lifetime of a
conversation; the normalizer then asks it for a short stand-in text
instead of the original output.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Sequence

import structlog

from prompt_budget.config import PruningConfig
from prompt_budget.context.budget import estimate_tokens
from prompt_budget.models.thread import (
    AssistantRecord,
    ThreadRecord,
    ToolRecord,
    UserRecord,
)

log = structlog.get_logger()


@dataclass
class TokenUsage:
    total_tokens: int
    context_limit: int
    available_tokens: int
    usage_percentage: float
    needs_compaction: bool


@dataclass
class PruneResult:
    pruned_count: int = 0
    pruned_tokens: int = 0
    remaining_tokens: int = 0


@dataclass
class CompactionStats:
    compaction_count: int = 0
    total_pruned_tokens: int = 0
    pruned_tools: int = 0
    last_compaction_time: float | None = None


def _record_text(record: ThreadRecord) -> str:
    if isinstance(record, (UserRecord, AssistantRecord, ToolRecord)):
        return record.content
    return ""


class ToolOutputPruner:
    def __init__(self, config: PruningConfig | None = None, chars_per_token: float = 3.5) -> None:
        self.config = config or PruningConfig()
        self.chars_per_token = chars_per_token
        self._pruned_ids: set[str] = set()
        self._stats = CompactionStats()
        self._lock = threading.Lock()

    def _tokens(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def _total_tokens(self, records: Sequence[ThreadRecord]) -> int:
        return sum(self._tokens(_record_text(r)) for r in records)

    def check_needs_compaction(self, records: Sequence[ThreadRecord], context_window: int) -> TokenUsage:
        total = self._total_tokens(records)
        available = max(context_window - self.config.reserved_output_tokens, 1)
        usage = total / available
        return TokenUsage(
            total_tokens=total,
            context_limit=context_window,
            available_tokens=available,
            usage_percentage=usage,
            needs_compaction=usage >= self.config.overflow_threshold,
        )

    def prune_tool_outputs(self, records: Sequence[ThreadRecord]) -> PruneResult:
        """Mark old tool outputs as pruned.

        Oversized outputs are always pruned, wherever they are.  Older
        outputs beyond the protected recent turns are pruned once their
        accumulated size passes ``protect_tokens``, but only if that saves
        at least ``minimum_tokens`` in total.
        """
        cfg = self.config
        with self._lock:
            pruned_tokens = 0
            pruned_count = 0

            for record in reversed(records):
                if (
                    isinstance(record, ToolRecord)
                    and record.id not in self._pruned_ids
                    and len(record.content) > cfg.large_output_threshold
                ):
                    self._pruned_ids.add(record.id)
                    pruned_tokens += self._tokens(record.content)
                    pruned_count += 1

            candidates: list[tuple[str, int]] = []
            accumulated = 0
            user_turns = 0
            for record in reversed(records):
                if isinstance(record, UserRecord):
                    user_turns += 1
                if user_turns < cfg.protect_recent_turns:
                    continue
                if not isinstance(record, ToolRecord) or record.id in self._pruned_ids:
                    continue
                if record.name in cfg.protected_tools:
                    continue
                tokens = self._tokens(record.content)
                accumulated += tokens
                if accumulated > cfg.protect_tokens:
                    candidates.append((record.id, tokens))

            candidate_tokens = sum(tokens for _, tokens in candidates)
            if pruned_tokens + candidate_tokens >= cfg.minimum_tokens:
                self._pruned_ids.update(tool_id for tool_id, _ in candidates)
                pruned_tokens += candidate_tokens
                pruned_count += len(candidates)

            remaining = self._total_tokens(records) - pruned_tokens
            if pruned_count == 0:
                return PruneResult(remaining_tokens=remaining)

            self._stats.compaction_count += 1
            self._stats.total_pruned_tokens += pruned_tokens
            self._stats.pruned_tools = len(self._pruned_ids)
            self._stats.last_compaction_time = time.time()

        log.info("tool_outputs_pruned", count=pruned_count, tokens=pruned_tokens)
        return PruneResult(
            pruned_count=pruned_count,
            pruned_tokens=pruned_tokens,
            remaining_tokens=remaining,
        )

    def is_pruned(self, tool_id: str) -> bool:
        with self._lock:
            return tool_id in self._pruned_ids

    def pruned_content(self, tool_name: str, content: str) -> str:
        """Stand-in text telling the model what it used to see."""
        if tool_name == "read_file" and content:
            lines = content.split("\n")
            path = lines[0] or "unknown file"
            return (
                f"[Previously read: {path} ({len(lines)} lines) - content pruned. "
                "Use read_file to re-read if needed.]"
            )
        if tool_name in ("search_for_files", "search_pathnames_only"):
            return "[Previous search results pruned. Re-run search if needed.]"
        if tool_name == "run_command":
            return "[Previous command output pruned.]"
        if tool_name in ("ls_dir", "get_dir_tree"):
            return "[Previous directory listing pruned. Use ls_dir to re-list if needed.]"
        if tool_name in ("edit_file", "rewrite_file"):
            return "[Previous edit result - change was applied successfully.]"
        return f"[{tool_name} output pruned to save context space.]"

    def stats(self) -> CompactionStats:
        with self._lock:
            return CompactionStats(**vars(self._stats))

    def reset(self) -> None:
        """Forget pruning state; call when a new conversation starts."""
        with self._lock:
            self._pruned_ids.clear()
            self._stats = CompactionStats()
