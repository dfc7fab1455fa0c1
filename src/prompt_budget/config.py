from __future__ import annotations

import sys

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


class BudgetConfig(BaseModel):
    chars_per_token: float = 3.5
    """Fixed chars-per-token ratio; an approximation, not a tokenizer."""

    default_reserved_output_tokens: int = 4_096
    reserved_output_ratio: float = 0.20
    reserved_output_cap: int = 16_000

    min_retained_chars: int = 20_000
    """The main trim loop never cuts history below this many chars."""

    safety_margin: float = 0.85
    system_message_max_ratio: float = 0.30
    system_message_hard_cap: int = 60_000

    @model_validator(mode="after")
    def validate_ratios(self) -> BudgetConfig:
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        if not 0 < self.safety_margin <= 1:
            raise ValueError("safety_margin must be in (0, 1]")
        return self


class HistoryConfig(BaseModel):
    max_messages: int = 50
    keep_recent: int = 15


class CompressionConfig(BaseModel):
    keep_recent: int = 10
    max_compressed_length: int = 500
    max_identifiers: int = 20


class RoleMultipliers(BaseModel):
    system: float = 0.01
    user: float = 0.5
    assistant: float = 10.0
    tool: float = 10.0


class TrimPolicy(BaseModel):
    """Weighting table for the character trimmer.

    The numbers are empirically tuned; tests pin them as a baseline.
    """

    trim_to_len: int = 500
    max_iterations: int = 100
    roles: RoleMultipliers = RoleMultipliers()
    anchor_multiplier: float = 0.05
    head_anchor_count: int = 2
    tail_anchor_count: int = 4
    exhausted_slack: int = 3
    collapse_min_messages: int = 10
    structural_keep_tail: int = 3
    emergency_keep_chars: int = 200
    system_floor_chars: int = 2_000
    ultimate_reserve_chars: int = 1_000


class PruningConfig(BaseModel):
    overflow_threshold: float = 0.55
    reserved_output_tokens: int = 4_000
    protect_tokens: int = 20_000
    minimum_tokens: int = 15_000
    protect_recent_turns: int = 3
    protected_tools: list[str] = Field(default_factory=lambda: ["search_pathnames_only"])
    large_output_threshold: int = 50_000


class PreparationConfig(BaseModel):
    total_timeout_seconds: float = 30.0
    directory_timeout_seconds: float = 10.0
    system_cache_ttl_seconds: float = 300.0
    invalidation_debounce_seconds: float = 2.0
    disable_system_message: bool = False
    prune_tool_outputs: bool = True


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_file: Path | None = None
    json_format: bool = False


class Config(BaseModel):
    budget: BudgetConfig = BudgetConfig()
    history: HistoryConfig = HistoryConfig()
    compression: CompressionConfig = CompressionConfig()
    trim: TrimPolicy = TrimPolicy()
    pruning: PruningConfig = PruningConfig()
    preparation: PreparationConfig = PreparationConfig()
    logging: LoggingConfig = LoggingConfig()


DEFAULT_CONFIG_PATH = Path(__file__).parents[2] / "config" / "default.toml"


def load_config(path: Path | None = None) -> Config:
    if path is None and not DEFAULT_CONFIG_PATH.is_file():
        # Installed without the repo checkout: built-in defaults.
        return Config()
    config_path = path or DEFAULT_CONFIG_PATH
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return Config(**data)
