"""
Centralized configuration management package.

This package provides a single configuration interface that loads settings
from a JSON file and environment variables, validates them, and makes them
available throughout the application.

Usage:
    from config import config

    # Access using attribute notation
    interval = config.scheduler.check_interval

    # Or using get() method with dot notation
    interval = config.get("scheduler.check_interval")

    # For required values (raises exception if missing)
    uri = config.require("database.uri")
"""

from config.config_manager import AppConfig, config

# Export the public interface
__all__ = ["config", "AppConfig"]
