"""FastAPI application factory."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prompt_budget.web.deps import AppState, set_state
from prompt_budget.web.routers import config_api, prepare


def create_app(config_path: Path | None = None, state: AppState | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if state is None:
        state = AppState(config_path)
    set_state(state)

    app = FastAPI(
        title="prompt-budget",
        description="Fit chat histories to a model's context window",
        version="0.1.0",
    )

    # Editor webviews call from their own origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(prepare.router)
    app.include_router(prepare.workspace_router)
    app.include_router(config_api.router)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        state.preparer.close()

    return app
