"""
Application configuration using Pydantic Settings
Reads from environment variables and .env file
"""
from decimal import Decimal
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    db_user: str = Field(default="expense_terminal", alias="DB_USER")
    db_password: Optional[str] = Field(default=None, alias="DB_PASSWORD")
    db_name: str = Field(default="expense_terminal", alias="DB_NAME")
    db_host: str = Field(default="postgres", alias="DB_HOST")
    db_port: int = Field(default=5432, alias="DB_PORT")
    database_url_override: Optional[str] = Field(default=None, alias="DATABASE_URL")

    @property
    def database_url(self) -> str:
        """Construct database URL (DATABASE_URL wins when set)"""
        if self.database_url_override:
            return self.database_url_override
        password = f":{self.db_password}" if self.db_password else ""
        return f"postgresql://{self.db_user}{password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis / Celery
    celery_broker_url: str = Field(default="redis://redis:6379/1", alias="CELERY_BROKER_URL")
    celery_result_backend: str = Field(default="redis://redis:6379/2", alias="CELERY_RESULT_BACKEND")

    # Application
    environment: str = Field(default="production", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Reasoning service (Anthropic)
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    classifier_model: str = Field(default="claude-sonnet-4-5", alias="CLASSIFIER_MODEL")
    classifier_max_tokens: int = Field(default=512, alias="CLASSIFIER_MAX_TOKENS")
    classifier_max_attempts: int = Field(default=3, alias="CLASSIFIER_MAX_ATTEMPTS")
    classifier_backoff_seconds: float = Field(default=0.5, alias="CLASSIFIER_BACKOFF_SECONDS")

    # Classification pipeline
    classify_batch_size: int = Field(default=20, alias="CLASSIFY_BATCH_SIZE")
    classification_cache_backend: str = Field(default="database", alias="CLASSIFICATION_CACHE_BACKEND")

    # Tax configuration (US, Schedule C / SE)
    social_security_wage_bases: Dict[int, Decimal] = Field(
        default_factory=lambda: {
            2022: Decimal("147000"),
            2023: Decimal("160200"),
            2024: Decimal("168600"),
            2025: Decimal("176100"),
            2026: Decimal("184500"),
        },
        alias="SOCIAL_SECURITY_WAGE_BASES",
    )
    default_tax_rate: Optional[Decimal] = Field(default=Decimal("0.24"), alias="DEFAULT_TAX_RATE")
    mileage_rates: Dict[int, Decimal] = Field(
        default_factory=lambda: {
            2023: Decimal("0.655"),
            2024: Decimal("0.67"),
            2025: Decimal("0.70"),
        },
        alias="MILEAGE_RATES",
    )

    # Monitoring
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")

    # Development
    use_mock_data: bool = Field(default=False, alias="USE_MOCK_DATA")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"ENVIRONMENT must be one of {valid_envs}")
        return v.lower()

    @field_validator("classification_cache_backend")
    @classmethod
    def validate_cache_backend(cls, v):
        valid_backends = ["database", "memory"]
        if v.lower() not in valid_backends:
            raise ValueError(f"CLASSIFICATION_CACHE_BACKEND must be one of {valid_backends}")
        return v.lower()

    @field_validator("classify_batch_size", "classifier_max_attempts")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("default_tax_rate")
    @classmethod
    def validate_tax_rate(cls, v):
        if v is not None and not Decimal("0") <= v <= Decimal("1"):
            raise ValueError("DEFAULT_TAX_RATE must be between 0 and 1")
        return v

    @field_validator("social_security_wage_bases")
    @classmethod
    def validate_wage_bases(cls, v):
        for year, base in v.items():
            if base <= 0:
                raise ValueError(f"Social Security wage base for {year} must be positive")
        return v

    def wage_base_for(self, tax_year: int) -> Optional[Decimal]:
        """Social Security wage base for a tax year, None when not configured"""
        return self.social_security_wage_bases.get(tax_year)

    def mileage_rate_for(self, tax_year: int) -> Optional[Decimal]:
        """IRS standard mileage rate for a tax year, None when not configured"""
        return self.mileage_rates.get(tax_year)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
