"""Chat and FIM preparation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from prompt_budget.models.capabilities import FIMRequest, ModelCapabilities
from prompt_budget.models.thread import ThreadRecord
from prompt_budget.orchestrator.preparer import MessagePreparer
from prompt_budget.orchestrator.system_prompt import WorkspaceInfo
from prompt_budget.web.deps import get_preparer

router = APIRouter(prefix="/api/prepare", tags=["prepare"])
workspace_router = APIRouter(prefix="/api/workspace", tags=["workspace"])


class WorkspacePayload(BaseModel):
    folders: list[str] = Field(default_factory=list)
    opened_files: list[str] = Field(default_factory=list)
    active_file: str | None = None
    persistent_terminal_ids: list[str] = Field(default_factory=list)
    mcp_tools_count: int = 0


class PrepareRequest(BaseModel):
    records: list[ThreadRecord]
    chat_mode: str = "normal"
    capabilities: ModelCapabilities = ModelCapabilities()
    workspace: WorkspacePayload = WorkspacePayload()
    system_message: str | None = Field(
        default=None, description="Use this system message instead of generating one"
    )


class FileChanges(BaseModel):
    added: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)


@router.post("")
def prepare_chat(req: PrepareRequest, preparer: MessagePreparer = Depends(get_preparer)) -> dict[str, Any]:
    """Budget and serialize a chat thread for the given model."""
    workspace = WorkspaceInfo(**req.workspace.model_dump())
    prepared = preparer.prepare_chat(
        req.records,
        req.chat_mode,
        req.capabilities,
        workspace,
        system_message=req.system_message,
    )
    return prepared.as_payload()


@router.post("/fim")
def prepare_fim(req: FIMRequest, preparer: MessagePreparer = Depends(get_preparer)) -> FIMRequest:
    return preparer.prepare_fim(req)


@workspace_router.post("/changes")
def workspace_changes(changes: FileChanges, preparer: MessagePreparer = Depends(get_preparer)):
    """File-system events from the editor; only structural changes invalidate."""
    scheduled = preparer.on_files_changed(changes.added, changes.deleted, changes.updated)
    return {"invalidation_scheduled": scheduled}
