"""
Utils package initialization file.
"""

from .config import ConfigManager as ConfigManager
from .config import get_config as get_config
from .database import TrackerDatabaseManager as TrackerDatabaseManager

__all__ = ["TrackerDatabaseManager", "get_config", "ConfigManager"]
