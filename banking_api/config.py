"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based
configuration of both the main API and the auth service.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankingConfig(BaseSettings):
    """Banking API and auth service configuration"""

    # Token configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    access_token_expiry_hours: int = 24
    refresh_token_expiry_days: int = 30
    rotate_refresh_tokens: bool = False
    password_min_length: int = 6

    # Authorization configuration
    admin_emergency_bypass: bool = True  # "admin" passes even when the table misses

    # Auth service configuration
    auth_mode: str = "remote"  # remote or local
    auth_service_url: str = "http://localhost:8181"
    auth_verify_timeout: float = 3.0
    auth_startup_timeout: float = 10.0
    wait_for_auth_service: bool = True

    # Server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    auth_host: str = "0.0.0.0"
    auth_port: int = 8181
    shutdown_grace_seconds: int = 5

    # Database configuration
    database_url: str = "sqlite:///banking.db"  # memory:// for in-memory storage
    seed_demo_data: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    class Config:
        env_prefix = "BANKING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankingConfig()


def get_config() -> BankingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankingConfig:
    """Reload configuration from environment"""
    global config
    config = BankingConfig()
    return config
