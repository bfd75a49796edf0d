"""
Core package containing configuration, database and logging.
"""
from orderdesk.core.config import Settings, get_settings, settings
from orderdesk.core.database import Base, get_db_context
from orderdesk.core.logging import configure_logging, get_logger

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Base",
    "get_db_context",
    "configure_logging",
    "get_logger",
]
