"""
FastAPI Dependencies

Hands the monitoring engine created in the app lifespan to route handlers.
"""

from typing import Optional

from fastapi import Request

from ..core.config import ConfigManager, get_config
from ..monitor import MonitorScheduler


# Config of the most recently created app; slowapi limit providers get no request
_rate_limit_config: Optional[ConfigManager] = None


def get_scheduler(request: Request) -> MonitorScheduler:
    """
    Dependency to get the monitor scheduler.

    Args:
        request: FastAPI request

    Returns:
        MonitorScheduler owned by the running application
    """
    return request.app.state.scheduler


def use_rate_limit_config(config: ConfigManager):
    """Read rate limits from the given config instead of the global one."""
    global _rate_limit_config
    _rate_limit_config = config


def manual_check_limit() -> str:
    """Rate limit for manual inbox checks."""
    config = _rate_limit_config or get_config()
    return config.app.manual_check_rate_limit
