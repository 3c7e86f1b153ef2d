"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class ResolveConfig(BaseSettings):
    """ResolveSuite complaint management configuration"""

    # Database configuration
    database_path: str = "resolvesuite.db"
    use_sqlite: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    cors_origins: str = "*"  # Comma separated

    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production-resolvesuite-jwt-key"
    jwt_algorithm: str = "HS256"
    jwt_expiry_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Workflow configuration
    scheduler_enabled: bool = True
    scheduler_interval_seconds: int = 300  # 5 minutes

    # Email configuration
    email_transport: str = "log"  # log or webhook
    email_webhook_url: str = ""
    email_webhook_timeout: float = 10.0
    email_from_address: str = "noreply@resolvesuite.local"
    email_from_name: str = "ResolveSuite"
    frontend_url: Optional[str] = None  # Used for complaint links in emails

    class Config:
        env_prefix = "RESOLVE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = ResolveConfig()


def get_config() -> ResolveConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ResolveConfig:
    """Reload configuration from environment"""
    global config
    config = ResolveConfig()
    return config
