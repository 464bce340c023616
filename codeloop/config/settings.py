# codeloop/config/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, model_validator
from pathlib import Path
import logging
from typing import List, Optional

from codeloop.exceptions.config import ConfigError

logger = logging.getLogger("Settings")

PERMISSION_PRESET_NAMES = ("read_only", "explore", "safe", "allow_all", "ask_all")

DEFAULT_COMPLETION_KEYWORDS = [
    r"\b(?:task|work|job)\s+(?:is\s+)?(?:done|finished|complete|completed)\b",
    r"^\s*(?:done|finished|completed)\b",
    r"\ball\s+(?:changes|steps|tasks)\s+(?:are\s+|have\s+been\s+)?(?:done|complete|completed|applied)\b",
    r"\bin\s+summary\b",
    r"\bto\s+summari[sz]e\b",
    r"完成",
    r"总结",
]

DEFAULT_PENDING_QUESTION_KEYWORDS = [
    r"\bneed(?:s)?\b.{0,40}\b(?:information|info|details|confirmation)\b",
    r"\bplease\s+(?:provide|confirm|specify|clarify)\b",
    r"\bneed(?:s)?\b.{0,20}\bconfirm",
    r"\b(?:should|shall)\s+I\s+(?:continue|proceed)\b",
    r"\bwhether\b.{0,40}\bcontinue\b",
    r"请提供",
    r"是否继续",
]


class Settings(BaseSettings):
    # === Model backend ===
    model_base_url: str = "http://localhost:11434/v1"
    model_name: str = "qwen2.5-coder:7b"
    model_api_key: Optional[str] = None
    model_timeout: float = 30.0
    model_temperature: float = 0.7
    model_max_tokens: int = 4096

    # === Retry policy for the model client ===
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_multiplier: float = 2.0

    # === Agent loop ===
    max_iterations: int = 10
    auto_approve: bool = False
    agent_profile: str = "default"
    working_dir: Path = Field(default_factory=Path.cwd)

    # === Permissions ===
    permission_preset: Optional[str] = None
    permission_default: str = "allow"

    # === Tool dispatch ===
    tool_timeout: float = 120.0
    max_tool_timeout: float = 600.0
    # Dotted modules whose module-level ToolDefinition objects are registered at startup.
    tool_modules: List[str] = Field(default_factory=list)

    # === Output truncation ===
    truncation_max_lines: int = 2000
    truncation_max_bytes: int = 50 * 1024
    tool_output_dir: Path = Field(
        default_factory=lambda: Path.home() / ".codeloop" / "tool-output"
    )
    tool_output_retention_days: int = 7

    # === Context window ===
    max_context_tokens: int = 8000
    reserve_tokens: int = 2000
    prune_minimum: int = 2000
    prune_protect: int = 4000
    protected_tools: List[str] = Field(default_factory=list)
    auto_compact: bool = True

    # === Tool-call parser ===
    parse_time_budget: float = 1.0
    max_tool_calls_per_response: int = 10
    parse_cache_size: int = 100
    parse_cache_ttl: float = 300.0

    # === Finish detection ===
    completion_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_COMPLETION_KEYWORDS)
    )
    pending_question_keywords: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PENDING_QUESTION_KEYWORDS)
    )

    # === History ===
    history_dir: Path = Field(
        default_factory=lambda: Path.home() / ".codeloop" / "history"
    )
    session_id: Optional[str] = None

    # === Logging ===
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # === Pydantic V2 Configuration ===
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # NO prefix - clean names match exactly
        extra="ignore",
        case_sensitive=False,
        protected_namespaces=(),
    )

    @model_validator(mode="after")
    def validate_limits(self) -> "Settings":
        """Validate cross-field constraints."""

        if self.max_iterations < 1:
            raise ConfigError(
                "max_iterations must be at least 1",
                field_name="max_iterations",
                invalid_value=self.max_iterations,
            )

        if self.reserve_tokens >= self.max_context_tokens:
            raise ConfigError(
                f"reserve_tokens ({self.reserve_tokens}) must be smaller than "
                f"max_context_tokens ({self.max_context_tokens})",
                field_name="reserve_tokens",
                invalid_value=self.reserve_tokens,
            )

        if self.tool_timeout <= 0 or self.tool_timeout > self.max_tool_timeout:
            raise ConfigError(
                f"tool_timeout ({self.tool_timeout}) must be positive and not exceed "
                f"max_tool_timeout ({self.max_tool_timeout})",
                field_name="tool_timeout",
                invalid_value=self.tool_timeout,
            )

        if (
            self.permission_preset is not None
            and self.permission_preset not in PERMISSION_PRESET_NAMES
        ):
            raise ConfigError(
                f"Unknown permission preset: {self.permission_preset}. "
                f"Expected one of {', '.join(PERMISSION_PRESET_NAMES)}",
                field_name="permission_preset",
                invalid_value=self.permission_preset,
            )

        if self.permission_default.lower() not in ("allow", "deny", "ask"):
            raise ConfigError(
                f"permission_default must be allow, deny or ask, got {self.permission_default}",
                field_name="permission_default",
                invalid_value=self.permission_default,
            )
        self.permission_default = self.permission_default.lower()

        self.log_level = self.log_level.upper()
        logger.debug("Settings loaded (model=%s, profile=%s)", self.model_name, self.agent_profile)
        return self

    @property
    def compaction_budget(self) -> int:
        """Tokens the conversation may occupy before compaction kicks in."""
        return self.max_context_tokens - self.reserve_tokens


def load_settings(**overrides) -> Settings:
    """
    Build Settings from the environment, the .env file and explicit overrides.
    """
    return Settings(**overrides)
