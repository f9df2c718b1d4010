"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class GlobalPayConfig(BaseSettings):
    """GlobalPay ledger configuration"""

    # Database configuration
    database_url: str = "sqlite:///globalpay.db"  # memory://, sqlite:///<path>, postgresql://...
    database_timeout: float = 30.0  # Seconds to wait on a lock before StoreUnavailable

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    api_workers: int = 1
    cors_origins: str = "*"  # Comma separated

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Fee schedule (decimal strings)
    fee_local_rate: str = "0.005"
    fee_local_fixed: str = "0.50"
    fee_international_rate: str = "0.02"
    fee_international_fixed: str = "3.00"
    fee_express_rate: str = "0.03"
    fee_express_fixed: str = "5.00"
    fee_card_surcharge: str = "0.029"
    fee_paypal_surcharge: str = "0.039"
    fee_crypto_surcharge: str = "0.01"

    # Business rules configuration
    fallback_exchange_rate: str = "1"
    max_transaction_amount: str = "1000000.00"
    commit_retry_limit: int = 1
    default_page_size: int = 20
    max_page_size: int = 100
    default_withdraw_method: str = "bank"
    default_country: str = "KE"

    class Config:
        env_prefix = "GLOBALPAY_"
        env_file = ".env"
        case_sensitive = False

    def cors_origin_list(self):
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


# Global configuration instance
config = GlobalPayConfig()


def get_config() -> GlobalPayConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> GlobalPayConfig:
    """Reload configuration from environment"""
    global config
    config = GlobalPayConfig()
    return config
