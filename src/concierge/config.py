"""Concierge configuration using pydantic-settings.

This module defines two layers of configuration:

- ConciergeSettings: reads the process environment (CONCIERGE_ prefix)
  at the service boundary only.
- OrchestrationConfig: an immutable, explicit configuration record that
  is passed into every core component at construction time. Core logic
  never reads the environment.

Requirements:
- Loop bound (default 3), per-stage critique thresholds (6/5/7),
  compression threshold (2000 bytes), off-topic strike limit (2) and
  off-topic confidence threshold (0.75) are supplied to the core
- Bot identity is supplied explicitly, never read from ambient state
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrchestrationConfig(BaseModel):
    """Explicit configuration consumed by the orchestration core.

    Instances are frozen so a component cannot mutate configuration that
    other components share.

    Attributes:
        bot_username: Login of the bot account; its comments are the only
            trusted source of persisted state.
        max_user_loops: Number of question rounds a user gets before the
            conversation escalates.
        triage_threshold: Pass threshold for the triage stage (0-10).
        research_threshold: Pass threshold for the research stage (0-10).
        response_threshold: Pass threshold for the response stage (0-10).
        compression_threshold_bytes: Serialized state above this size is
            compressed before embedding.
        off_topic_strike_limit: Strikes after which a user is blocked.
        off_topic_confidence_threshold: Minimum judged confidence for a
            comment to count as an off-topic strike.
        max_asked_fields_history: Asked fields kept per user when pruning.
        max_shared_findings: Shared findings kept per thread when pruning.
        max_questions_per_round: Follow-up questions asked per loop.
        judge_enabled: Whether judge rubric items are scored by the LLM.
        write_mode: When False, comments are composed but never posted.
    """

    model_config = ConfigDict(frozen=True)

    bot_username: str = Field(default="support-concierge[bot]", min_length=1)
    max_user_loops: int = Field(default=3, ge=1)
    triage_threshold: float = Field(default=6.0, ge=0.0, le=10.0)
    research_threshold: float = Field(default=5.0, ge=0.0, le=10.0)
    response_threshold: float = Field(default=7.0, ge=0.0, le=10.0)
    compression_threshold_bytes: int = Field(default=2000, ge=1)
    off_topic_strike_limit: int = Field(default=2, ge=1)
    off_topic_confidence_threshold: float = Field(default=0.75, ge=0.0, le=1.0)
    max_asked_fields_history: int = Field(default=20, ge=1)
    max_shared_findings: int = Field(default=50, ge=1)
    max_questions_per_round: int = Field(default=3, ge=1)
    judge_enabled: bool = True
    write_mode: bool = True

    def is_bot(self, username: Optional[str]) -> bool:
        """Return True if the username belongs to the bot account."""
        if not username:
            return False
        return username.strip().lower() == self.bot_username.strip().lower()


class ConciergeSettings(BaseSettings):
    """Service configuration from environment variables.

    All environment variables are prefixed with CONCIERGE_ (e.g.,
    CONCIERGE_GITHUB_TOKEN).

    Required fields (must be set via environment variables):
    - github_token: GitHub API token for reading comments and posting
    - bot_username: Login of the account the service posts as
    - llm_url: URL of the OpenAI-compatible completion endpoint
    """

    model_config = SettingsConfigDict(
        env_prefix="CONCIERGE_",
        case_sensitive=False,
    )

    # -------------------------------------------------------------------------
    # GitHub Configuration
    # -------------------------------------------------------------------------
    github_token: str

    # Base URL for GitHub API (supports GitHub Enterprise)
    github_base_url: str = "https://api.github.com"

    bot_username: str

    # -------------------------------------------------------------------------
    # LLM Configuration
    # -------------------------------------------------------------------------
    llm_url: str

    llm_model: str = "gpt-4o-mini"

    llm_api_key: str = "not-needed"

    # Upper bound for a single completion call
    llm_timeout_seconds: float = 30.0

    # Upper bound for a single evidence source call
    evidence_timeout_seconds: float = 10.0

    # Upper bound for the triage, research and response stages together
    stage_timeout_seconds: float = 120.0

    # -------------------------------------------------------------------------
    # Orchestration Configuration
    # -------------------------------------------------------------------------
    max_user_loops: int = 3

    triage_threshold: float = 6.0

    research_threshold: float = 5.0

    response_threshold: float = 7.0

    compression_threshold_bytes: int = 2000

    off_topic_strike_limit: int = 2

    off_topic_confidence_threshold: float = 0.75

    max_asked_fields_history: int = 20

    judge_enabled: bool = True

    # When false, comments are composed and logged but not posted
    write_mode: bool = True

    # Optional YAML file overriding the built-in categories and checklists
    spec_pack_path: Optional[str] = None

    # -------------------------------------------------------------------------
    # Server Configuration
    # -------------------------------------------------------------------------
    host: str = "0.0.0.0"

    port: int = 8080

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("github_token", "bot_username")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate that required identity fields are not empty."""
        if not v or not v.strip():
            raise ValueError("value cannot be empty")
        return v

    @field_validator("llm_url")
    @classmethod
    def validate_llm_url(cls, v: str) -> str:
        """Validate that LLM URL is a valid URL format."""
        if not v or not v.strip():
            raise ValueError("llm_url cannot be empty")
        if not v.startswith(("http://", "https://")):
            raise ValueError("llm_url must start with http:// or https://")
        return v

    @field_validator("triage_threshold", "research_threshold", "response_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        """Validate that a critique threshold is on the 0-10 scale."""
        if not 0.0 <= v <= 10.0:
            raise ValueError("critique thresholds must be between 0 and 10")
        return v

    @field_validator("off_topic_confidence_threshold")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        """Validate that confidence threshold is a probability."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("off_topic_confidence_threshold must be between 0 and 1")
        return v

    @field_validator(
        "max_user_loops",
        "compression_threshold_bytes",
        "off_topic_strike_limit",
        "max_asked_fields_history",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate that counters and limits are positive."""
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator("llm_timeout_seconds", "evidence_timeout_seconds", "stage_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate that timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate that port is in valid range."""
        if not 1 <= v <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return v

    def to_orchestration_config(self) -> OrchestrationConfig:
        """Build the immutable configuration record for the core.

        Returns:
            OrchestrationConfig populated from these settings.
        """
        return OrchestrationConfig(
            bot_username=self.bot_username,
            max_user_loops=self.max_user_loops,
            triage_threshold=self.triage_threshold,
            research_threshold=self.research_threshold,
            response_threshold=self.response_threshold,
            compression_threshold_bytes=self.compression_threshold_bytes,
            off_topic_strike_limit=self.off_topic_strike_limit,
            off_topic_confidence_threshold=self.off_topic_confidence_threshold,
            max_asked_fields_history=self.max_asked_fields_history,
            judge_enabled=self.judge_enabled,
            write_mode=self.write_mode,
        )


def get_settings() -> ConciergeSettings:
    """Create and return ConciergeSettings instance.

    Returns:
        ConciergeSettings: Configured settings instance.

    Raises:
        pydantic.ValidationError: If required fields are missing or invalid.
    """
    return ConciergeSettings()
