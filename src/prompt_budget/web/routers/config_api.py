"""Configuration endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from prompt_budget.web.deps import get_state

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("")
def get_config():
    """Return non-sensitive configuration values."""
    config = get_state().config
    return {
        "budget": config.budget.model_dump(),
        "history": config.history.model_dump(),
        "compression": config.compression.model_dump(),
        "trim": config.trim.model_dump(),
        "preparation": {
            "total_timeout_seconds": config.preparation.total_timeout_seconds,
            "directory_timeout_seconds": config.preparation.directory_timeout_seconds,
            "system_cache_ttl_seconds": config.preparation.system_cache_ttl_seconds,
            "disable_system_message": config.preparation.disable_system_message,
            "prune_tool_outputs": config.preparation.prune_tool_outputs,
        },
    }
