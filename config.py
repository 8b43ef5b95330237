"""
Configuration settings for the lingo pedagogy engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.pedagogy.affective_filter import FilterThresholds
from src.pedagogy.calibration import CalibrationConfig
from src.pedagogy.content_client import ContentClientConfig
from src.pedagogy.engine import EngineConfig, SessionConfig
from src.pedagogy.srs import SRSConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Scheduler (SM-2 variant)
    # ========================================
    srs_initial_ease_factor: float = Field(
        default=2.5,
        description="Ease factor for a newly created acquisition record",
    )
    srs_min_ease_factor: float = Field(
        default=1.3,
        description="Lower ease factor bound",
    )
    srs_max_ease_factor: float = Field(
        default=3.0,
        description="Upper ease factor bound",
    )
    srs_max_interval_days: int = Field(
        default=180,
        description="Longest review interval in days",
    )
    srs_acquired_min_repetitions: int = Field(
        default=3,
        description="Clean repetitions needed before LEARNING becomes ACQUIRED",
    )
    srs_acquired_min_ease_factor: float = Field(
        default=2.0,
        description="Ease factor needed before LEARNING becomes ACQUIRED",
    )
    srs_decay_scan_limit: int = Field(
        default=100,
        description="Acquired records scanned per overdue decay pass",
    )

    # ========================================
    # Calibration (i+1)
    # ========================================
    calibration_confidence_weight: float = Field(
        default=0.3,
        description="Level shift per unit of confidence above or below 0.5",
    )
    calibration_risk_weight: float = Field(
        default=0.2,
        description="Level penalty per unit of filter risk",
    )
    filter_risk_threshold: float = Field(
        default=0.7,
        description="Risk above which i+1 is suppressed and drop-back triggers",
    )
    drop_back_confidence_threshold: float = Field(
        default=0.4,
        description="Confidence below which the learner consolidates",
    )
    drop_back_window: int = Field(
        default=5,
        description="Recent activities examined for drop-back",
    )
    drop_back_wrong_count: int = Field(
        default=3,
        description="Wrong answers in the window that trigger drop-back",
    )

    # ========================================
    # Affective Filter
    # ========================================
    filter_wrong_streak_threshold: int = Field(
        default=3,
        description="Trailing wrong answers that mark the filter as rising",
    )
    filter_mixed_help_count: int = Field(
        default=2,
        description="Help signals that, with repeated wrong answers, mark the filter as rising",
    )
    filter_mixed_slow_count: int = Field(
        default=2,
        description="Slow signals that, with repeated wrong answers, mark the filter as rising",
    )
    filter_signal_window: int = Field(
        default=10,
        description="Recent signals examined when choosing an adaptation",
    )
    filter_recency_days: float = Field(
        default=3.0,
        description="Days a past struggle keeps adding to the filter score",
    )

    # ========================================
    # Session
    # ========================================
    session_default_duration_minutes: int = Field(
        default=10,
        description="Session length when the caller gives none",
    )
    session_max_new_chunks: int = Field(
        default=5,
        description="New chunks introduced per session",
    )
    session_max_review_chunks: int = Field(
        default=10,
        description="Review chunks planned per session",
    )
    session_context_chunks: int = Field(
        default=5,
        description="Known chunks used as scaffolding",
    )
    session_wrong_streak_threshold: int = Field(
        default=3,
        description="Unaided wrong answers in a row that record a struggle",
    )
    session_minutes_per_activity: float = Field(
        default=1.5,
        description="Estimated minutes per activity",
    )
    session_default_topic: str = Field(
        default="everyday-conversations",
        description="Topic when the learner has no interests",
    )

    # ========================================
    # Content Generation
    # ========================================
    content_api_url: str = Field(
        default="http://localhost:8200",
        description="Chunk generation service URL",
    )
    content_api_key: str = Field(
        default="",
        description="Bearer token for the chunk generation service",
    )
    content_timeout_ms: int = Field(
        default=30000,
        description="Request timeout in milliseconds",
    )
    content_retry_attempts: int = Field(
        default=3,
        description="Attempts before a generation request fails",
    )
    content_min_request_interval_ms: int = Field(
        default=500,
        description="Minimum gap between generation requests",
    )

    def has_content_generator_configured(self) -> bool:
        """Check if a content generation service is configured."""
        return bool(self.content_api_url)

    def get_srs_config(self) -> SRSConfig:
        """Get scheduler constants."""
        return SRSConfig(
            initial_ease_factor=self.srs_initial_ease_factor,
            min_ease_factor=self.srs_min_ease_factor,
            max_ease_factor=self.srs_max_ease_factor,
            max_interval_days=self.srs_max_interval_days,
            acquired_min_repetitions=self.srs_acquired_min_repetitions,
            acquired_min_ease_factor=self.srs_acquired_min_ease_factor,
            decay_scan_limit=self.srs_decay_scan_limit,
        )

    def get_calibration_config(self) -> CalibrationConfig:
        """Get i+1 calibration constants."""
        return CalibrationConfig(
            confidence_weight=self.calibration_confidence_weight,
            risk_weight=self.calibration_risk_weight,
            filter_risk_threshold=self.filter_risk_threshold,
            drop_back_confidence=self.drop_back_confidence_threshold,
            drop_back_window=self.drop_back_window,
            drop_back_wrong_count=self.drop_back_wrong_count,
        )

    def get_filter_thresholds(self) -> FilterThresholds:
        """Get affective filter weights and thresholds."""
        return FilterThresholds(
            wrong_streak_threshold=self.filter_wrong_streak_threshold,
            mixed_help_count=self.filter_mixed_help_count,
            mixed_slow_count=self.filter_mixed_slow_count,
            signal_window=self.filter_signal_window,
            struggle_recency_days=self.filter_recency_days,
        )

    def get_session_config(self) -> SessionConfig:
        """Get session pacing constants."""
        return SessionConfig(
            default_duration_minutes=self.session_default_duration_minutes,
            max_new_chunks=self.session_max_new_chunks,
            max_review_chunks=self.session_max_review_chunks,
            context_chunks=self.session_context_chunks,
            wrong_streak_threshold=self.session_wrong_streak_threshold,
            minutes_per_activity=self.session_minutes_per_activity,
            default_topic=self.session_default_topic,
        )

    def get_engine_config(self) -> EngineConfig:
        """Get all engine constants in one object."""
        return EngineConfig(
            srs=self.get_srs_config(),
            calibration=self.get_calibration_config(),
            filter=self.get_filter_thresholds(),
            session=self.get_session_config(),
        )

    def get_content_client_config(self) -> ContentClientConfig:
        """Get content generation client settings."""
        return ContentClientConfig(
            api_url=self.content_api_url,
            api_key=self.content_api_key,
            timeout_ms=self.content_timeout_ms,
            retry_attempts=self.content_retry_attempts,
            min_request_interval_ms=self.content_min_request_interval_ms,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
