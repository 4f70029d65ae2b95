"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Dict, Optional


class LedgerConfig(BaseSettings):
    """Coin ledger bot configuration"""
    
    # Discord credentials
    discord_bot_token: str = ""
    discord_client_id: str = ""
    discord_guild_id: str = ""
    discord_public_key: str = ""  # hex Ed25519 key used to verify interactions
    discord_api_base: str = "https://discord.com/api/v10"
    discord_timeout: float = 10.0
    register_commands_on_startup: bool = True
    
    # Ledger store configuration
    ledger_backend: str = "sqlite"  # memory, sqlite or redis
    sqlite_path: str = "coin_ledger.db"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: Optional[str] = None
    redis_socket_timeout: float = 5.0
    redis_key_prefix: str = "users:"
    store_max_retries: int = 25  # collisions tolerated by atomic_update
    
    # Business rules configuration
    transfer_strategy: str = "sequential"  # sequential or saga
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    
    class Config:
        env_prefix = "COINLEDGER_"
        env_file = ".env"
        case_sensitive = False
    
    def describe_credentials(self) -> Dict[str, str]:
        """Report which credentials are set without exposing their values"""
        fields = {
            "DISCORD_BOT_TOKEN": self.discord_bot_token,
            "DISCORD_CLIENT_ID": self.discord_client_id,
            "DISCORD_GUILD_ID": self.discord_guild_id,
            "DISCORD_PUBLIC_KEY": self.discord_public_key,
        }
        return {name: "Found" if value else "Not Found!" for name, value in fields.items()}
    
    @property
    def can_register_commands(self) -> bool:
        """True when every value needed to register guild commands is set"""
        return bool(self.discord_bot_token and self.discord_client_id and self.discord_guild_id)


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
