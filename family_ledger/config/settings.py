"""
Configuration Management for Family Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Which store backs the ledger, how the synthetic category is named and
how logs are rendered are all decided in one place and validated at startup.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Document store configuration."""
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        extra="ignore"
    )
    
    backend: str = Field(
        default="memory",
        pattern="^(memory|mongo)$",
        description="Which document store implementation to use"
    )
    mongo_uri: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string (mongo backend only)"
    )
    database_name: str = Field(
        default="family_ledger",
        description="Database holding the ledger collections"
    )
    connect_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Connection attempts before giving up"
    )


class LedgerSettings(BaseSettings):
    """Domain-level knobs for budgets, categories and the checklist."""
    
    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        extra="ignore"
    )
    
    default_checklist_group: str = Field(
        default="general",
        min_length=1,
        description="Group label given to checklist items without one"
    )
    uncategorized_category_id: str = Field(
        default="system-uncategorized",
        description="Fixed id of the synthetic 'Uncategorized' category"
    )
    uncategorized_category_name: str = Field(
        default="Uncategorized",
        description="Display name of the synthetic category"
    )
    strict_member_listing: bool = Field(
        default=False,
        description="Require owner/member access to list budget members"
    )
    persist_audit_events: bool = Field(
        default=True,
        description="Write audit events to the store as well as the log"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.
    
    Loads configuration from environment variables and .env file.
    """
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
    
    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    
    # Logging
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )
    log_format: str = Field(
        default="json",
        pattern="^(json|console)$",
        description="Render logs as JSON lines or for a console"
    )
    
    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept any casing of the standard level names."""
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level
    
    @property
    def effective_log_level(self) -> str:
        """debug_mode forces DEBUG regardless of log_level."""
        return "DEBUG" if self.debug_mode else self.log_level


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
    def store(self) -> StoreSettings:
        return StoreSettings()
    
    @property
    def ledger(self) -> LedgerSettings:
        return LedgerSettings()
    
    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).
    
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
    
    for name in ("store", "ledger", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)
    
    return results
