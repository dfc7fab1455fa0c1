"""Pydantic models for the editor's chat-thread records.

Thread records carry roles the model never sees (checkpoints, markers for
tool calls interrupted mid-stream) and editor-only fields such as the
display text of an assistant turn.  ``parse_thread`` validates raw JSON into
these records; the normalizer turns them into uniform messages.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class UserRecord(BaseModel):
    role: Literal["user"]
    content: str = Field(description="Text sent to the model for this turn")
    display_content: str | None = Field(
        default=None, description="Text shown in the chat panel, if different"
    )


class AssistantRecord(BaseModel):
    role: Literal["assistant"]
    content: str = ""
    display_content: str | None = Field(
        default=None,
        description="Text rendered to the user; preferred over content when set",
    )
    reasoning: list[dict[str, Any]] | None = Field(
        default=None, description="Provider thinking blocks, in order"
    )


class ToolRecord(BaseModel):
    role: Literal["tool"]
    id: str
    name: str
    content: str = ""
    raw_params: dict[str, Any] = Field(default_factory=dict)


class CheckpointRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["checkpoint"]


class InterruptedToolRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Literal["interrupted_streaming_tool"]
    name: str | None = None


ThreadRecord = Annotated[
    Union[UserRecord, AssistantRecord, ToolRecord, CheckpointRecord, InterruptedToolRecord],
    Field(discriminator="role"),
]

_THREAD_ADAPTER: TypeAdapter[list[ThreadRecord]] = TypeAdapter(list[ThreadRecord])


def parse_thread(data: Any) -> list[ThreadRecord]:
    """Validate a JSON-decoded list of thread records."""
    return _THREAD_ADAPTER.validate_python(data)
