"""
Configuration management for the Intelligence Core using Pydantic Settings.

Loads configuration from environment variables with type validation and sane defaults.
"""

from typing import Dict, List, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MUTATION_BOUNDS: Dict[str, Dict[str, float]] = {
    "setupDuration": {"min": 0.0, "max": 1.0, "step": 0.15},
    "punchlineTiming": {"min": 0.0, "max": 1.0, "step": 0.15},
    "toneShiftDensity": {"min": 0.0, "max": 1.0, "step": 0.2},
    "escalationDensity": {"min": 0.0, "max": 1.0, "step": 0.2},
    "deliveryPaceWps": {"min": 0.0, "max": 1.0, "step": 0.1},
}


class Settings(BaseSettings):
    """Application configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: str = Field(default="development", description="Environment: development, staging, production")
    debug: bool = Field(default=False, description="Debug mode")

    # API
    api_title: str = Field(default="Intelligence Core API", description="OpenAPI title")
    api_version: str = Field(default="1.0.0", description="API version")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    # Database
    database_url: str = Field(default="sqlite:///./intelcore.db", description="SQLAlchemy connection URL")

    # Logging
    log_level: str = Field(default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="text", description="Log format: json or text")
    log_file: str = Field(default="", description="Log file path (empty disables the file sink)")

    # Training
    min_training_records: int = Field(default=10, description="Active records required before a dataset is trained")
    core_min_training_records: int = Field(default=3, description="Hard floor below which the solver refuses to fit")
    train_ratio: float = Field(default=0.8, gt=0, lt=1, description="Chronological train/test split ratio")

    # Accuracy & drift tracking
    rolling_accuracy_window: int = Field(default=20, description="Prediction logs used for rolling accuracy")
    drift_window: int = Field(default=10, description="Validated predictions examined by drift detection")
    drift_history_limit: int = Field(default=20, description="Prediction logs loaded for drift checks")

    # Exploration / optimization
    exploration_base_epsilon: float = Field(default=0.15, ge=0, le=1, description="Base epsilon for epsilon-greedy")
    mutation_bounds: Dict[str, Dict[str, float]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_MUTATION_BOUNDS.items()},
        description="Per-feature mutation bounds {min, max, step}",
    )
    optimization_step_size: float = Field(default=0.05, gt=0, description="Perturbation size for lift search")

    # Correlation
    max_lag_days: int = Field(default=14, ge=0, description="Largest lag tested between attention layers")

    # Signal ingestion
    signal_fetch_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-source fetch timeout")
    signal_user_agent: str = Field(default="IntelCore/1.0 (signal-sources)", description="User agent for signal APIs")
    rate_limit_enabled: bool = Field(default=True, description="Enforce per-source update frequency")

    # Signal source credentials
    reddit_client_id: Optional[str] = Field(default=None, description="Reddit OAuth client id")
    reddit_client_secret: Optional[str] = Field(default=None, description="Reddit OAuth client secret")
    gnews_api_key: Optional[str] = Field(default=None, description="GNews API key")
    youtube_api_key: Optional[str] = Field(default=None, description="YouTube Data API key")
    ebay_api_key: Optional[str] = Field(default=None, description="eBay Finding API app name")

    @field_validator("mutation_bounds")
    @classmethod
    def validate_mutation_bounds(cls, v: Dict[str, Dict[str, float]]) -> Dict[str, Dict[str, float]]:
        """Every bound needs min <= max and a positive step."""
        for name, bound in v.items():
            missing = {"min", "max", "step"} - set(bound)
            if missing:
                raise ValueError(f"mutation bound '{name}' missing keys: {sorted(missing)}")
            if bound["min"] > bound["max"]:
                raise ValueError(f"mutation bound '{name}' has min > max")
            if bound["step"] <= 0:
                raise ValueError(f"mutation bound '{name}' needs a positive step")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("json", "text"):
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.app_env == "development"


# Global settings instance
settings = Settings()
