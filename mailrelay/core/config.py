"""
Configuration management for the Mail Relay service.

Loads configuration from:
1. .env file (secrets and endpoints - never committed)
2. config.yaml (runtime settings such as the polling interval)
"""

from dataclasses import dataclass, asdict
from typing import List, Optional
import logging
import os
import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class TelegramConfig:
    """Telegram Bot API configuration."""

    bot_token: str = ""
    api_url: str = "https://api.telegram.org"
    parse_mode: str = "Markdown"
    request_timeout_seconds: int = 10

    @property
    def send_message_url(self) -> str:
        """Full URL of the sendMessage method for this bot."""
        return f"{self.api_url.rstrip('/')}/bot{self.bot_token}/sendMessage"


@dataclass
class MailboxConfig:
    """mail.tm API configuration."""

    base_url: str = "https://api.mail.tm"
    request_timeout_seconds: int = 30


@dataclass
class ServerConfig:
    """HTTP server binding."""

    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class AppConfig:
    """Runtime application configuration (from config.yaml)."""

    # Polling
    poll_interval_seconds: float = 15
    token_retry_delay_seconds: float = 1

    # Notifications
    body_excerpt_limit: int = 800

    # Shutdown: how long to wait for in-flight ticks
    shutdown_grace_seconds: float = 10

    # Rate limit for manual inbox checks
    manual_check_rate_limit: str = "10/minute"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ConfigManager:
    """Central configuration manager.

    Loads configuration from:
    - .env file for secrets (bot token) and provider endpoints
    - config.yaml for runtime settings
    """

    def __init__(self, env_file: Optional[str] = None, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (default: .env in working directory)
            config_file: Path to config.yaml file (default: config.yaml in working directory)
        """
        if env_file is None:
            env_file = ".env"
        load_dotenv(env_file)

        if config_file is None:
            config_file = os.getenv("MAILRELAY_CONFIG", "config.yaml")
        self.config_file = config_file

        self._load_env_config()
        self._load_yaml_config()

    def _load_env_config(self):
        """Load secrets and endpoints from the environment."""

        self.telegram = TelegramConfig(
            bot_token=os.getenv("BOT_TOKEN") or os.getenv("TELEGRAM_BOT_TOKEN", ""),
            api_url=os.getenv("TELEGRAM_API_URL", "https://api.telegram.org"),
            parse_mode=os.getenv("TELEGRAM_PARSE_MODE", "Markdown"),
        )

        self.mailbox = MailboxConfig(
            base_url=os.getenv("MAILTM_BASE_URL", "https://api.mail.tm"),
            request_timeout_seconds=int(os.getenv("MAILTM_TIMEOUT_SECONDS", "30")),
        )

        self.server = ServerConfig(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
        )

    def _load_yaml_config(self):
        """Load runtime configuration from config.yaml."""
        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, "r") as f:
                    data = yaml.safe_load(f) or {}
                self.app = AppConfig(**data)
            except (yaml.YAMLError, TypeError) as e:
                logger.warning(f"Failed to load {self.config_file}: {e}. Using default configuration")
                self.app = AppConfig()
        else:
            self.app = AppConfig()

    def save_yaml_config(self):
        """Save runtime configuration to config.yaml."""
        with open(self.config_file, "w") as f:
            yaml.dump(asdict(self.app), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {self.config_file}")

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.telegram.bot_token:
            errors.append("BOT_TOKEN not set in .env")
        if not self.mailbox.base_url:
            errors.append("MAILTM_BASE_URL is empty")

        if self.app.poll_interval_seconds <= 0:
            errors.append("poll_interval_seconds must be > 0")
        if self.app.token_retry_delay_seconds < 0:
            errors.append("token_retry_delay_seconds must be >= 0")
        if self.app.body_excerpt_limit < 1:
            errors.append("body_excerpt_limit must be >= 1")
        if self.app.shutdown_grace_seconds < 0:
            errors.append("shutdown_grace_seconds must be >= 0")

        return errors


# Global singleton instance
_config: Optional[ConfigManager] = None


def get_config(env_file: Optional[str] = None, config_file: Optional[str] = None) -> ConfigManager:
    """
    Get global configuration manager instance (singleton).

    Args:
        env_file: Path to .env file (only used on first call)
        config_file: Path to config.yaml file (only used on first call)

    Returns:
        ConfigManager instance
    """
    global _config
    if _config is None:
        _config = ConfigManager(env_file=env_file, config_file=config_file)
    return _config

