"""Cache for generated system-message text.

Generating the system message walks the workspace tree, so the text is
cached per workspace/mode fingerprint.  Only structural changes (paths
added or deleted) invalidate it; editing file contents does not.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Callable, Protocol, Sequence

import structlog

log = structlog.get_logger()


class SystemMessageCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str, ttl: float) -> None: ...

    def invalidate(self) -> None: ...


class TTLCache:
    """Thread-safe in-memory TTL cache."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def invalidate(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def system_cache_key(
    workspace_folders: Sequence[str],
    chat_mode: str,
    special_tool_format: str | None,
    mcp_tools_count: int = 0,
    persistent_terminal_count: int = 0,
) -> str:
    """Fingerprint of everything that changes the generated system message.

    Open and active editors are not part of the key.
    """
    return json.dumps(
        {
            "workspace_folders": list(workspace_folders),
            "chat_mode": chat_mode,
            "special_tool_format": special_tool_format,
            "mcp_tools_count": mcp_tools_count,
            "persistent_terminal_count": persistent_terminal_count,
        },
        sort_keys=True,
    )


class DirectoryChangeInvalidator:
    """Debounced cache invalidation on directory-structure changes."""

    def __init__(self, cache: SystemMessageCache, debounce_seconds: float = 2.0) -> None:
        self.cache = cache
        self.debounce_seconds = debounce_seconds
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    def on_files_changed(
        self,
        added: Sequence[str] = (),
        deleted: Sequence[str] = (),
        updated: Sequence[str] = (),
    ) -> bool:
        """Schedule an invalidation; returns False for content-only changes."""
        if not added and not deleted:
            return False

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            if self.debounce_seconds <= 0:
                self._timer = None
                self._fire()
                return True
            self._timer = threading.Timer(self.debounce_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()
        log.debug("system_cache_invalidation_scheduled", added=len(added), deleted=len(deleted))
        return True

    def _fire(self) -> None:
        self.cache.invalidate()
        log.info("system_cache_invalidated")

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None and self._timer.is_alive()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
