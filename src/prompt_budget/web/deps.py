"""Shared application state for the HTTP API."""

from __future__ import annotations

from pathlib import Path

from prompt_budget.config import Config, load_config
from prompt_budget.orchestrator.preparer import MessagePreparer


class AppState:
    """Created once at startup."""

    def __init__(self, config_path: Path | None = None, *, config: Config | None = None) -> None:
        self.config: Config = config if config is not None else load_config(config_path)
        self.preparer = MessagePreparer(self.config)


# Module-level singleton set by create_app()
_state: AppState | None = None


def set_state(state: AppState) -> None:
    global _state
    _state = state


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("AppState not initialized, call create_app() first")
    return _state


def get_preparer() -> MessagePreparer:
    return get_state().preparer
