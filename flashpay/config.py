"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class FlashPayConfig(BaseSettings):
    """FlashPay transfer service configuration"""

    # Storage configuration
    database_path: str = "flashpay.db"
    use_sqlite: bool = True
    store_timeout_seconds: float = 5.0  # Max wait for a store lock or database busy

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production-at-least-32-bytes"
    jwt_algorithm: str = "HS256"
    access_token_ttl_hours: int = 24
    refresh_token_ttl_days: int = 7
    revoked_token_retention_days: int = 1

    # Transfer engine
    transfer_max_retries: int = 3

    # Token sweeper
    enable_token_sweeper: bool = True
    expired_sweep_interval_seconds: int = 3600  # hourly
    revoked_sweep_interval_seconds: int = 86400  # daily
    statistics_interval_seconds: int = 21600  # every 6 hours

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    class Config:
        env_prefix = "FLASHPAY_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = FlashPayConfig()


def get_config() -> FlashPayConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> FlashPayConfig:
    """Reload configuration from environment"""
    global config
    config = FlashPayConfig()
    return config
