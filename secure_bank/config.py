"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import Dict, Optional

from .currency import Currency


class SecureBankConfig(BaseSettings):
    """Secure bank service configuration"""

    # Ledger configuration
    currency: str = "USD"  # ISO 4217 code of the ledger currency

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_audit_logging: bool = True

    # Realm definition, INI style: "password, role1, role2" per user
    # and "permission1, permission2" per role
    realm_users: Dict[str, str] = {
        "dan": "123, user",
        "sally": "1234, supervisor",
    }
    realm_roles: Dict[str, str] = {
        "user": "bankAccount:create, bankAccount:operate, bankAccount:read",
        "supervisor": "bankAccount:close, bankAccount:read",
    }
    realm_file: Optional[str] = None  # If set, realm is loaded from this INI file

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if code not in Currency.__members__:
            supported = ", ".join(Currency.__members__)
            raise ValueError(f"Unsupported currency '{value}', expected one of: {supported}")
        return code

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, value: str) -> str:
        if value not in ("json", "text"):
            raise ValueError(f"log_format must be 'json' or 'text', got '{value}'")
        return value

    class Config:
        env_prefix = "SECURE_BANK_"
        env_file = ".env"
        case_sensitive = False


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
