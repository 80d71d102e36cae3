"""
Configuration settings for the frailearn progress engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///frailearn.db",
        description="SQLAlchemy connection string (PostgreSQL in production)",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default="logs/frailearn.log",
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Curriculum Gating
    # ========================================
    section_size: int = Field(
        default=5,
        ge=1,
        description="Chapters per section (a section is gated by one progress test)",
    )
    chapters_per_level: int = Field(
        default=15,
        ge=1,
        description="Chapters synthesized when a whole level is generated up front",
    )
    generate_whole_level: bool = Field(
        default=True,
        description="Bootstrap a level in one request; chapters past the first section start locked",
    )
    passing_score: int = Field(
        default=80,
        ge=0,
        le=100,
        description="Minimum percentage required to pass a gate assessment",
    )
    weak_area_threshold: int = Field(
        default=70,
        description="Topic accuracy (%) below which a topic is reported as weak",
    )
    strong_area_threshold: int = Field(
        default=85,
        description="Topic accuracy (%) at or above which a topic is reported as strong",
    )

    # ========================================
    # Remediation
    # ========================================
    mistake_threshold: int = Field(
        default=2,
        ge=1,
        description="Unaddressed mistakes per topic before a remedial chapter is synthesized",
    )
    remedial_sample_size: int = Field(
        default=3,
        ge=1,
        description="Mistakes sent to the synthesizer as examples",
    )

    # ========================================
    # Spaced Repetition (SM-2)
    # ========================================
    review_batch_size: int = Field(
        default=20,
        ge=1,
        description="Maximum due cards returned per review session",
    )
    sm2_initial_ease: float = Field(
        default=2.5,
        description="Ease factor for newly issued flashcards",
    )
    sm2_minimum_ease: float = Field(
        default=1.3,
        description="Floor for the ease factor",
    )
    sm2_first_interval: int = Field(
        default=1,
        description="Days until the first review after a correct answer",
    )
    sm2_second_interval: int = Field(
        default=6,
        description="Days until the second review after a correct answer",
    )
    sm2_ease_bonus: float = Field(
        default=0.1,
        description="Ease added on a correct review",
    )
    sm2_ease_penalty: float = Field(
        default=0.2,
        description="Ease removed on an incorrect review",
    )

    # ========================================
    # Sweeps
    # ========================================
    sweep_interval_hours: float = Field(
        default=3.0,
        description="Interval between remedial sweeps when running `sweep watch`",
    )
    active_learner_days: int = Field(
        default=7,
        description="Learners active within this window are included in the remedial sweep",
    )
    mistake_retention_days: int = Field(
        default=180,
        description="Addressed mistakes older than this are deleted by the retention sweep",
    )
    assessment_keep_latest: int = Field(
        default=10,
        description="Failed gate assessments kept per learner by the retention sweep",
    )

    # ========================================
    # Content Synthesis Service
    # ========================================
    synthesis_base_url: str = Field(
        default="http://localhost:8200",
        description="Base URL of the content synthesis service",
    )
    synthesis_api_key: str = Field(
        default="",
        description="Bearer token for the content synthesis service",
    )
    synthesis_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout applied to every synthesis request",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
