"""Chat-request preparation service.

Wraps the pure pipeline with the parts that touch the outside world:
system-message generation (cached, with a directory listing under its own
timeout), tool-output pruning, and an overall timeout.  A preparation that
fails or times out never aborts the conversation turn; it degrades to a
single user message.
"""

from __future__ import annotations

import concurrent.futures
import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import structlog

from prompt_budget.config import Config
from prompt_budget.context.normalizer import normalize_thread
from prompt_budget.formats.adapter import GEMINI_PROVIDER
from prompt_budget.logging import request_context
from prompt_budget.models.capabilities import FIMRequest, ModelCapabilities
from prompt_budget.models.messages import Message
from prompt_budget.models.thread import ThreadRecord, UserRecord
from prompt_budget.orchestrator.cache import (
    DirectoryChangeInvalidator,
    SystemMessageCache,
    TTLCache,
    system_cache_key,
)
from prompt_budget.orchestrator.system_prompt import (
    DefaultSystemPromptBuilder,
    DirectoryLister,
    FilesystemDirectoryLister,
    SystemPromptBuilder,
    WorkspaceInfo,
    combine_ai_instructions,
    cut_off_message,
    directory_fallback,
    read_rules_files,
)
from prompt_budget.orchestrator.tool_pruning import ToolOutputPruner
from prompt_budget.pipeline import PreparedMessages, prepare_fim, prepare_messages

log = structlog.get_logger()

FALLBACK_USER_MESSAGE = "Continue..."


def fallback_messages(records: Sequence[ThreadRecord], provider_name: str = "") -> PreparedMessages:
    """Smallest legal request: the latest user turn and nothing else."""
    text = next(
        (r.content for r in reversed(records) if isinstance(r, UserRecord) and r.content),
        FALLBACK_USER_MESSAGE,
    )
    if provider_name.lower() == GEMINI_PROVIDER:
        message = {"role": "user", "parts": [{"text": text}]}
    else:
        message = {"role": "user", "content": text}
    return PreparedMessages(messages=[message], separate_system_message=None)


class MessagePreparer:
    def __init__(
        self,
        config: Config | None = None,
        *,
        cache: SystemMessageCache | None = None,
        builder: SystemPromptBuilder | None = None,
        lister: DirectoryLister | None = None,
        pruner: ToolOutputPruner | None = None,
        global_instructions: str | None = None,
        max_workers: int = 4,
    ) -> None:
        self.config = config or Config()
        self.cache = cache if cache is not None else TTLCache()
        self.builder = builder or DefaultSystemPromptBuilder()
        self.lister = lister or FilesystemDirectoryLister()
        self.pruner = pruner or ToolOutputPruner(
            self.config.pruning, chars_per_token=self.config.budget.chars_per_token
        )
        self.global_instructions = global_instructions
        self.invalidator = DirectoryChangeInvalidator(
            self.cache, self.config.preparation.invalidation_debounce_seconds
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="prepare")
        # Separate pool so a listing never waits behind the preparation that needs it.
        self._aux_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dirlist")

    # ---- entry points ----

    def prepare_simple(
        self,
        messages: Sequence[Message],
        system_message: str | None,
        capabilities: ModelCapabilities,
        ai_instructions: str | None = None,
    ) -> PreparedMessages:
        """Run the pipeline on uniform messages, no collaborators involved."""
        return prepare_messages(
            messages,
            system_message=system_message,
            ai_instructions=ai_instructions,
            supports_system_message=capabilities.supports_system_message,
            special_tool_format=capabilities.special_tool_format,
            supports_reasoning=capabilities.supports_reasoning,
            context_window=capabilities.context_window,
            reserved_output_token_space=capabilities.reserved_output_token_space,
            provider_name=capabilities.provider_name,
            config=self.config,
        )

    def prepare_chat(
        self,
        records: Sequence[ThreadRecord],
        chat_mode: str,
        capabilities: ModelCapabilities,
        workspace: WorkspaceInfo | None = None,
        *,
        system_message: str | None = None,
    ) -> PreparedMessages:
        """Prepare a chat thread for ``capabilities``, within the total timeout.

        ``system_message`` replaces the generated system message when given.
        """
        workspace = workspace or WorkspaceInfo()
        timeout = self.config.preparation.total_timeout_seconds
        with request_context(provider=capabilities.provider_name, chat_mode=chat_mode):
            # the worker logs with this request's bound fields
            future = self._executor.submit(
                contextvars.copy_context().run,
                self._prepare_chat, records, chat_mode, capabilities, workspace, system_message
            )
            try:
                return future.result(timeout=timeout)
            except concurrent.futures.TimeoutError:
                future.cancel()
                log.error("prepare_timeout", timeout=timeout, records=len(records))
            except Exception:
                log.exception("prepare_failed", records=len(records))
            return fallback_messages(records, capabilities.provider_name)

    def prepare_fim(self, request: FIMRequest) -> FIMRequest:
        return prepare_fim(request)

    def on_files_changed(
        self,
        added: Sequence[str] = (),
        deleted: Sequence[str] = (),
        updated: Sequence[str] = (),
    ) -> bool:
        return self.invalidator.on_files_changed(added, deleted, updated)

    # ---- internals ----

    def _prepare_chat(
        self,
        records: Sequence[ThreadRecord],
        chat_mode: str,
        capabilities: ModelCapabilities,
        workspace: WorkspaceInfo,
        system_message: str | None,
    ) -> PreparedMessages:
        prep = self.config.preparation
        if system_message is None:
            if prep.disable_system_message:
                system_message = ""
            else:
                system_message = self.system_message(workspace, chat_mode, capabilities.special_tool_format)

        ai_instructions = combine_ai_instructions(
            self.global_instructions, read_rules_files(workspace.folders)
        )

        if prep.prune_tool_outputs:
            usage = self.pruner.check_needs_compaction(records, capabilities.context_window)
            if usage.needs_compaction:
                log.info(
                    "context_compaction_needed",
                    usage_pct=round(usage.usage_percentage * 100, 1),
                    tokens=usage.total_tokens,
                )
                self.pruner.prune_tool_outputs(records)

        messages = normalize_thread(records, self.pruner)
        return self.prepare_simple(messages, system_message, capabilities, ai_instructions)

    def system_message(self, workspace: WorkspaceInfo, chat_mode: str, special_tool_format: str | None) -> str:
        """Cached or freshly generated system message for this workspace."""
        prep = self.config.preparation
        key = system_cache_key(
            workspace.folders,
            chat_mode,
            special_tool_format,
            workspace.mcp_tools_count,
            len(workspace.persistent_terminal_ids),
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        directory_str = self._directory_listing(workspace.folders, chat_mode)
        text = self.builder.build(
            workspace,
            chat_mode,
            directory_str,
            include_xml_tool_definitions=not special_tool_format,
        )
        self.cache.set(key, text, prep.system_cache_ttl_seconds)
        return text

    def _directory_listing(self, folders: Sequence[str], chat_mode: str) -> str:
        timeout = self.config.preparation.directory_timeout_seconds
        future = self._aux_executor.submit(
            self.lister.list_directories, list(folders), cut_off_message(chat_mode)
        )
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            log.warning("directory_listing_timeout", timeout=timeout)
        except Exception:
            log.exception("directory_listing_failed")
        return directory_fallback(folders)

    def close(self) -> None:
        self.invalidator.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._aux_executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> MessagePreparer:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
