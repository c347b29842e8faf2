"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class PocketBankConfig(BaseSettings):
    """Pocket bank service configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "pocket_bank.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origins: List[str] = ["http://localhost:5173"]

    # Session configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    session_ttl_days: int = 7
    session_cookie_name: str = "token"
    cookie_secure: bool = False  # Set to True behind HTTPS
    cookie_samesite: str = "strict"

    # Credential rules
    password_min_length: int = 6

    # Account number allocation
    account_number_prefix: str = "KB"
    account_number_max_attempts: int = 10

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    model_config = SettingsConfigDict(
        env_prefix="POCKETBANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global configuration instance
config = PocketBankConfig()


def get_config() -> PocketBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> PocketBankConfig:
    """Reload configuration from environment"""
    global config
    config = PocketBankConfig()
    return config
