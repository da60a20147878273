"""
Error logging configuration for separate system and rule error logs.

This module sets up dedicated loggers for different error types so that
failed automation runs and rule problems are persisted for later review,
independently of the application's console logging.
"""
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


# Ensure logs directory exists
LOG_DIR = Path(os.getenv("AUTOMATION_LOG_DIR", "persistent/logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)


def setup_error_loggers():
    """
    Set up separate loggers for system errors and rule errors.

    System errors cover persistence, locking and scheduler failures. Rule
    errors cover unknown operators, unknown action kinds and formula
    evaluation problems raised while a workflow is evaluated.

    Returns:
        tuple: (system_logger, rule_logger)
    """
    # Configure formatters
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S UTC'
    )

    # System error logger - for core system errors
    system_logger = logging.getLogger('errors.system')
    system_logger.setLevel(logging.ERROR)
    if not system_logger.handlers:
        system_handler = RotatingFileHandler(
            LOG_DIR / 'system_errors.log',
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        system_handler.setFormatter(detailed_formatter)
        system_logger.addHandler(system_handler)

    # Rule error logger - for condition/action/formula problems
    rule_logger = logging.getLogger('errors.rule')
    rule_logger.setLevel(logging.WARNING)
    if not rule_logger.handlers:
        rule_handler = RotatingFileHandler(
            LOG_DIR / 'rule_errors.log',
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        rule_handler.setFormatter(detailed_formatter)
        rule_logger.addHandler(rule_handler)

    return system_logger, rule_logger


# Create singleton instances
system_error_logger, rule_error_logger = setup_error_loggers()
