"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class SecureBankConfig(BaseSettings):
    """SecureBank core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="SECUREBANK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///securebank.db"  # "memory" for in-process storage

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production-securebank-signing-key"
    jwt_algorithm: str = "HS256"
    session_ttl_hours: int = 24
    password_hash_iterations: int = 100_000
    password_min_length: int = 8
    max_failed_login_attempts: int = 5
    lockout_minutes: int = 15

    # Rate limiting
    login_rate_limit_attempts: int = 10
    login_rate_limit_window_minutes: int = 15
    transfer_velocity_max: int = 10
    transfer_velocity_window_minutes: int = 60

    # Concurrency
    lock_timeout_seconds: float = 5.0

    # Background sweep of expired sessions and stale pending transfers; 0 disables
    maintenance_interval_seconds: float = 300.0

    # Logging configuration
    log_level: str = "INFO"

    # Business rules configuration (Decimal strings)
    internal_bank_code: str = "SECBZAJJ"
    max_transaction_amount: str = "1000000.00"
    transfer_limit: str = "100000.00"
    deposit_limit: str = "500000.00"
    withdrawal_limit: str = "50000.00"
    withdrawal_fee_rate: str = "0.001"
    withdrawal_fee_cap: str = "50.00"
    pending_transfer_timeout_hours: int = 72
    risk_timezone: str = "Africa/Johannesburg"

    # Bootstrap administrator, created on startup when both are set
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None


# Global configuration instance
config = SecureBankConfig()


def get_config() -> SecureBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SecureBankConfig:
    """Reload configuration from environment"""
    global config
    config = SecureBankConfig()
    return config
