"""Model limits consumed by the pipeline.

Capability lookup itself lives outside this package; callers hand in a
``ModelCapabilities`` describing the selected model.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SystemMessageSupport = Literal[False, "system-role", "developer-role", "separated"]

TOOL_FORMATS = ("openai-style", "anthropic-style", "gemini-style")


class ModelCapabilities(BaseModel):
    provider_name: str = ""
    model_name: str = ""
    context_window: int = Field(default=128_000, gt=0)
    reserved_output_token_space: int | None = None
    supports_system_message: SystemMessageSupport = "system-role"
    special_tool_format: str | None = Field(
        default=None,
        description="openai-style, anthropic-style, gemini-style; anything else means XML tools",
    )
    supports_reasoning: bool = False


class FIMRequest(BaseModel):
    """A fill-in-the-middle completion request."""

    prefix: str
    suffix: str
    stop_tokens: list[str] = Field(default_factory=list)
