"""
Configuration management for the adaptive research workflow.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"


class WorkflowConfig(BaseModel):
    """Routing budgets and quality thresholds."""

    # Hard termination guarantee: routing decisions per run
    max_total_iterations: int = Field(default=15, ge=1)
    # Per-step retry budget (first execution counts against it)
    max_retries: int = Field(default=3, ge=1)
    # Budget for the secondary loops (simple-query citation retry,
    # research-intent loop, response improvement)
    secondary_retry_budget: int = Field(default=2, ge=1)

    # Complex query detection
    complexity_threshold: int = 6
    complex_query_length: int = 100
    complex_query_keywords: tuple[str, ...] = ("compare", "analyze", "comprehensive", "detailed")

    # Citation sufficiency
    min_citations: int = 3
    min_citations_simple: int = 2
    research_min_citations: int = 3
    improvement_min_citations: int = 5

    # Quality thresholds
    relevance_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    sufficiency_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    response_quality_threshold: float = Field(default=0.6, ge=0.0, le=1.0)

    # Where orchestration continues after a fan-out merge
    convergence_step: str = "reasoning_selection"


class RetryConfig(BaseModel):
    """Back-off between transport retries of the same step."""

    base_delay: float = Field(default=0.5, ge=0.0)
    max_delay: float = Field(default=10.0, ge=0.0)
    jitter: bool = True


class ExecutionConfig(BaseModel):
    """Step execution limits."""

    step_timeout_s: float | None = 120.0  # None disables the per-step timeout
    max_concurrency: int = Field(default=4, ge=1)
    # Finished sessions kept for get_progress; oldest are evicted first
    max_retained_sessions: int = Field(default=100, ge=0)


class QualityConfig(BaseModel):
    """Quality assessment weights."""

    relevance_weight: float = 0.5
    diversity_weight: float = 0.3
    richness_weight: float = 0.2
    richness_target_chars: int = Field(default=10_000, ge=1)


class RateLimitingConfig(BaseModel):
    """Rate limiting for chat model collaborators.

    Disabled by default; enable it for free-tier API keys.
    """

    enabled: bool = False
    requests_per_minute: int = Field(default=15, ge=1)


class LLMConfig(BaseModel):
    """Chat model adapter configuration."""

    rate_limiting: RateLimitingConfig = Field(default_factory=RateLimitingConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    log_file: Path | None = None


class Settings(BaseSettings):
    """Main configuration class."""

    model_config = ConfigDict(
        env_prefix="ADAPTIVE_RESEARCH_",
        env_nested_delimiter="__",
    )

    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    quality: QualityConfig = Field(default_factory=QualityConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override values read from the YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def load_config(config_path: str | Path = DEFAULT_CONFIG_PATH) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Args:
        config_path: Path to the YAML configuration file (missing file means defaults)

    Returns:
        Settings object with loaded configuration
    """
    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r") as f:
            config_dict = yaml.safe_load(f) or {}
    else:
        config_dict = {}

    # Create settings, which will also load from environment variables
    return Settings(**config_dict)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_config()
    return _settings


def reset_settings() -> None:
    """Drop the cached global settings (used by tests)."""
    global _settings
    _settings = None
