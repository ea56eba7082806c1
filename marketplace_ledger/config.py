"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from enum import Enum
from typing import Optional

from pydantic_settings import BaseSettings


class ClosedPeriodPolicy(str, Enum):
    """What posting does when the voucher date falls in a closed period"""
    ALLOW = "allow"    # Period close is a reporting boundary only
    REJECT = "reject"  # Posting into a closed period raises PeriodClosedError


class LedgerConfig(BaseSettings):
    """Marketplace ledger configuration"""

    # Storage configuration
    database_url: str = "memory://"  # or sqlite:///path/to/ledger.db

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    system_actor: str = "system"
    closed_period_policy: ClosedPeriodPolicy = ClosedPeriodPolicy.ALLOW
    commission_precision: int = 2

    # Pagination
    default_page_limit: int = 20
    ledger_page_limit: int = 50
    audit_page_limit: int = 50
    max_page_limit: int = 500

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
