"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Retail ledger service configuration"""

    # Database configuration
    database_url: str = "sqlite:///retail_ledger.db"  # or memory://

    # Ledger configuration
    currency: str = "ZAR"
    registration_current_balance: str = "5000.00"  # Opening balance for new current accounts
    registration_savings_balance: str = "2500.00"  # Opening balance for new savings accounts

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    password_min_length: int = 8

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Payment network configuration
    payment_network_url: str = ""  # Empty = in-process mock network
    payment_network_timeout: float = 5.0
    payment_network_api_key: str = ""
    settlement_timeout_seconds: int = 900  # Pending transfers older than this fail
    settlement_sweep_interval_seconds: int = 60  # 0 disables the background expiry sweep

    # Feature flags
    enable_audit_logging: bool = True
    seed_demo_data: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
