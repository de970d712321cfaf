"""
Configuration Management for Budget Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FirestoreSettings(BaseSettings):
    """Firestore document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        extra="ignore"
    )

    project_id: str = Field(
        ...,
        description="Google Cloud project hosting the Firestore database"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to a service account JSON (default credentials if unset)"
    )
    user_id: str = Field(
        ...,
        description="Owner of the ledgers; documents live under users/{user_id}"
    )

    # Collection names under the user document
    ledgers_collection: str = Field(
        default="monthlyData",
        description="Collection holding one document per YYYY-MM ledger"
    )
    rules_collection: str = Field(
        default="recurringTransactions",
        description="Collection holding recurring rule documents"
    )
    audit_collection: str = Field(
        default="auditLog",
        description="Collection holding audit events"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firestore credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=1024,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class RatesSettings(BaseSettings):
    """Exchange rate provider configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RATES_",
        extra="ignore"
    )

    base_url: str = Field(
        default="https://api.frankfurter.app",
        description="Frankfurter-compatible rates endpoint"
    )
    timeout_seconds: float = Field(
        default=8.0,
        gt=0,
        description="Timeout for a single rate fetch"
    )


class LedgerSettings(BaseSettings):
    """
    Engine behaviour settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    default_currency: str = Field(
        default="USD",
        min_length=3,
        max_length=3,
        description="Base currency for ledgers created without a template"
    )
    default_limit: float = Field(
        default=0.0,
        ge=0.0,
        description="Spending limit for ledgers created without a template"
    )
    recurring_suffix: str = Field(
        default=" (recurring)",
        description="Marker appended to machine-generated descriptions"
    )
    include_current_period: bool = Field(
        default=False,
        description="Materialize a rule's period as soon as its date is reached"
    )

    # Caller-side retries for transient store errors
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a retryable ledger operation"
    )
    retry_wait_min: float = Field(
        default=0.5,
        ge=0.0,
        description="Minimum exponential backoff in seconds"
    )
    retry_wait_max: float = Field(
        default=8.0,
        ge=0.0,
        description="Maximum exponential backoff in seconds"
    )

    @field_validator('default_currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.strip().upper()


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def rates(self) -> RatesSettings:
        return RatesSettings()

    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("firestore", "gemini", "rates", "ledger"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
