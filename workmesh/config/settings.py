"""
Configuration settings for the workmesh coordinator.
"""
from pydantic_settings import BaseSettings
from typing import Dict, Optional


class Settings(BaseSettings):
    """Application settings. Every field can be set as WORKMESH_<NAME>."""

    # Fit scoring
    weight_domain: float = 0.35
    weight_expertise: float = 0.25
    weight_specialization: float = 0.20
    weight_complexity: float = 0.20
    min_fit_score: float = 0.7

    # Assignment
    auto_assign: bool = True
    collaborator_cost_share: float = 0.5

    # Status tracking
    liveness_timeout: float = 120.0  # seconds
    liveness_check_interval: float = 15.0
    overload_threshold: float = 0.9

    # Analytics
    ema_alpha: float = 0.3
    bottleneck_ratio: float = 1.2
    outcome_history_limit: int = 5000

    # Log pipeline
    flush_threshold: int = 50
    flush_interval: float = 30.0
    buffer_cap: int = 10000
    drain_attempts: int = 3
    backoff_initial: float = 1.0
    backoff_max: float = 30.0
    backoff_factor: float = 2.0
    backoff_jitter: bool = True

    # Retention (days)
    retention_debug_days: float = 7
    retention_info_days: float = 30
    retention_warn_days: float = 90
    retention_error_days: float = 365
    retention_interval: float = 3600.0

    # Storage
    data_dir: Optional[str] = None  # JSON files under this directory; in memory when unset
    file_lock_timeout: float = 10.0

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    class Config:
        env_prefix = "WORKMESH_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def fit_weights(self) -> Dict[str, float]:
        return {
            "domain": self.weight_domain,
            "expertise": self.weight_expertise,
            "specialization": self.weight_specialization,
            "complexity": self.weight_complexity,
        }

    def retention_days(self) -> Dict[str, float]:
        """Retention window per level name. CRITICAL has none."""
        return {
            "DEBUG": self.retention_debug_days,
            "INFO": self.retention_info_days,
            "WARN": self.retention_warn_days,
            "ERROR": self.retention_error_days,
        }
