"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class SVBankConfig(BaseSettings):
    """SV Bank transaction core configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="SVBANK_",
        env_file=".env",
        case_sensitive=False,
    )
    
    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    database_path: str = "svbank.db"
    sqlite_timeout_seconds: float = 30.0  # Wait for the write lock this long
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5000
    
    # Authenticator configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    
    # Logging configuration
    log_level: str = "INFO"
    
    # Business rules configuration
    default_currency: str = "INR"
    default_account_type: str = "Savings"
    opening_balance: str = "100.00"
    max_transaction_amount: str = "1000000.00"
    recent_transactions_limit: int = 10
    default_page_size: int = 30
    max_page_size: int = 100


# Global configuration instance
config = SVBankConfig()


def get_config() -> SVBankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> SVBankConfig:
    """Reload configuration from environment"""
    global config
    config = SVBankConfig()
    return config
