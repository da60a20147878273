"""
Main configuration module for the application.

Provides centralized configuration management with validation, loading from
multiple sources, and a clean access interface.
"""

import os
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field
from dotenv import load_dotenv

from config.config import (
    PathConfig,
    DatabaseConfig,
    SchedulerConfig,
    SystemConfig,
)
from errors import ConfigError, ErrorCode

ENV_PREFIX = "AUTOMATION_"


class AppConfig(BaseModel):
    """
    Central configuration manager for the application.

    Handles loading from multiple sources:
    1. JSON configuration files
    2. Environment variables (AUTOMATION_<SECTION>__<KEY>)

    Provides validated access to all application settings.
    """

    paths: PathConfig = Field(default_factory=PathConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)

    @classmethod
    def load(cls, config_path: Optional[Union[str, Path]] = None) -> "AppConfig":
        """
        Load configuration from various sources and create a config instance.

        Args:
            config_path: Optional path to a JSON configuration file

        Returns:
            Validated AppConfig instance

        Raises:
            ConfigError: If configuration is invalid or required values are missing
        """
        # Load environment variables
        load_dotenv()

        # Start with empty config
        config_data: Dict[str, Dict[str, Any]] = {}

        # Load from file if provided
        if config_path:
            path = Path(config_path)
            if not path.exists():
                raise ConfigError(
                    f"Configuration file not found: {path}",
                    ErrorCode.CONFIG_NOT_FOUND
                )

            try:
                with open(path, "r") as f:
                    file_config = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(
                    f"Invalid JSON in configuration file: {e}",
                    ErrorCode.INVALID_CONFIG
                )
            except OSError as e:
                raise ConfigError(
                    f"Error loading configuration file: {e}",
                    ErrorCode.INVALID_CONFIG
                )
            config_data.update(file_config)

        # Environment variables win over the file
        for section_name, section_data in cls._load_from_env().items():
            config_data.setdefault(section_name, {}).update(section_data)

        try:
            # First create an instance with default values
            instance = cls()

            # Then overlay each known section, re-validating it
            for section_name, section_data in config_data.items():
                if section_name not in cls.model_fields or not isinstance(section_data, dict):
                    logging.warning(f"Ignoring unknown configuration section: {section_name}")
                    continue
                section = getattr(instance, section_name)
                merged = {**section.model_dump(), **section_data}
                setattr(instance, section_name, type(section).model_validate(merged))

            # Create directories
            cls._ensure_directories(instance)

            return instance
        except Exception as e:
            raise ConfigError(
                f"Error initializing configuration: {e}",
                ErrorCode.INVALID_CONFIG
            )

    @classmethod
    def _load_from_env(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load configuration from environment variables.
        Nested keys are separated by '__'.

        Examples:
            AUTOMATION_SCHEDULER__CHECK_INTERVAL=30
            AUTOMATION_SYSTEM__LOG_LEVEL=DEBUG

        Returns:
            Nested dictionary of configuration values from environment
        """
        config: Dict[str, Dict[str, Any]] = {}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            config_key = key[len(ENV_PREFIX):].lower()

            # Top-level settings not supported, must use section
            if "__" not in config_key:
                continue

            section, setting = config_key.split("__", 1)
            # Values such as frequency_overrides arrive as JSON
            try:
                parsed_value = json.loads(value)
            except json.JSONDecodeError:
                parsed_value = value
            config.setdefault(section, {})[setting] = parsed_value

        return config

    @classmethod
    def _ensure_directories(cls, config: "AppConfig") -> None:
        """
        Ensure required directories exist based on configuration.

        Args:
            config: Configuration instance
        """
        Path(config.paths.data_dir).mkdir(parents=True, exist_ok=True)
        Path(config.paths.persistent_dir).mkdir(parents=True, exist_ok=True)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., "scheduler.check_interval")
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        parts = key.split(".")

        if len(parts) == 1:
            return getattr(self, parts[0], default)

        if len(parts) == 2:
            section = getattr(self, parts[0], None)
            if section is None:
                return default
            return getattr(section, parts[1], default)

        # Unsupported nesting level
        return default

    def require(self, key: str) -> Any:
        """
        Get a required configuration value.

        Args:
            key: Configuration key in dot notation (e.g., "database.uri")

        Returns:
            Configuration value

        Raises:
            ConfigError: If the key is not found
        """
        value = self.get(key)
        if value is None:
            raise ConfigError(
                f"Required configuration key not found: {key}",
                ErrorCode.MISSING_ENV_VAR
            )
        return value

    def as_dict(self) -> Dict[str, Any]:
        """
        Get the full configuration as a dictionary.

        Returns:
            Configuration dictionary
        """
        return self.model_dump()


def initialize_config() -> AppConfig:
    """
    Initialize the configuration.

    Reads AUTOMATION_CONFIG_PATH for an optional JSON file, then applies
    environment overrides and configures logging.

    Returns:
        Initialized AppConfig instance
    """
    try:
        config_instance = AppConfig.load(os.getenv("AUTOMATION_CONFIG_PATH"))

        # Set up logging
        logging.basicConfig(
            level=getattr(logging, config_instance.system.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        logging.info("Configuration loaded successfully")

        return config_instance

    except ConfigError:
        raise
    except Exception as e:
        error_msg = f"Error initializing configuration: {e}"
        logging.error(error_msg)
        raise ConfigError(
            error_msg,
            ErrorCode.INVALID_CONFIG
        )


# Create the global configuration instance
config = initialize_config()
