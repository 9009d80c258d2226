"""Application settings using Pydantic BaseSettings for environment variable management."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Global engine settings loaded from environment variables.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log output format (json for production, console for dev)
        session_timeout_seconds: Global wall-clock budget for one verification run
        task_timeout_factor: Per-task budget as a multiple of expected duration
        fallback_confidence_floor: Confidence used when the global timeout forces completion
        inconclusive_confidence: Confidence attached to an INCONCLUSIVE verdict
        extraction_confidence_floor: Below this extraction confidence a claim goes to manual review
        extraction_adequate_confidence: Extraction confidence at which no penalty applies
        tier2_min_agreeing: Independent complaint sources needed for a tier-2 verdict
        tier3_min_pattern_categories: Distinct pattern categories needed for a tier-3 verdict
        tier4_min_risk_indicators: Distinct risk indicators needed for a tier-4 verdict
        clarification_threshold: Verdicts below this confidence trigger follow-up questions
        answer_window_seconds: How long a session waits for follow-up answers
        session_retention_seconds: How long a finished session stays resumable
        keepalive_interval_seconds: Client keep-alive ping interval
        reconnect_base_delay: First reconnect delay in seconds
        reconnect_max_delay: Reconnect delay ceiling in seconds
        reconnect_max_attempts: Reconnect attempts before the client gives up
        capability_cache_ttl_seconds: Lifetime of a cached capability result
        capability_cache_max_entries: LRU capacity of the capability cache (0 disables it)
        health_check_timeout_seconds: Budget for one source health check
        host: Bind address for the websocket server
        port: Bind port for the websocket server
    """

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: json or console"
    )
    session_timeout_seconds: float = Field(
        default=12.0,
        gt=0,
        description="Global timeout for the verification stage of a session"
    )
    task_timeout_factor: float = Field(
        default=3.0,
        gt=0,
        description="Per-task timeout = expected_duration * factor"
    )
    fallback_confidence_floor: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Confidence floor for timeout-forced completion"
    )
    inconclusive_confidence: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Confidence of an INCONCLUSIVE verdict"
    )
    extraction_confidence_floor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum extraction confidence for automated verification"
    )
    extraction_adequate_confidence: float = Field(
        default=0.8,
        gt=0.0,
        le=1.0,
        description="Extraction confidence treated as fully reliable"
    )
    tier2_min_agreeing: int = Field(
        default=2,
        ge=1,
        description="Independent agreeing sources required at tier 2"
    )
    tier3_min_pattern_categories: int = Field(
        default=3,
        ge=1,
        description="Pattern categories required at tier 3"
    )
    tier4_min_risk_indicators: int = Field(
        default=2,
        ge=1,
        description="Risk indicators required at tier 4"
    )
    clarification_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Confidence below which follow-up questions are asked"
    )
    answer_window_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Wait for follow-up answers before completing with the preliminary verdict"
    )
    session_retention_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Retention of finished sessions for resume"
    )
    keepalive_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Keep-alive ping interval"
    )
    reconnect_base_delay: float = Field(
        default=1.0,
        gt=0,
        description="Base reconnect delay in seconds"
    )
    reconnect_max_delay: float = Field(
        default=30.0,
        gt=0,
        description="Maximum reconnect delay in seconds"
    )
    reconnect_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Reconnect attempts before forced completion"
    )
    capability_cache_ttl_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Lifetime of a cached capability result"
    )
    capability_cache_max_entries: int = Field(
        default=1000,
        ge=0,
        description="Cached capability results kept before LRU eviction; 0 disables the cache"
    )
    health_check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Time a source health check may take before it counts as unhealthy"
    )
    host: str = Field(
        default="127.0.0.1",
        description="Server bind address"
    )
    port: int = Field(
        default=8765,
        description="Server bind port"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "TRUTH_ENGINE_",
        "case_sensitive": False,
    }


# Singleton instance - import this throughout the application
settings = Settings()
