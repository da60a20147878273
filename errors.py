"""
Custom exception hierarchy for the automation core.

This module defines standardized error codes, messages, and categorization
for the errors that can occur while schedules are computed and workflow
rules are evaluated.
"""
from contextlib import contextmanager
from enum import Enum
import logging
from typing import Optional, Dict, Any, Type, Union
import uuid

# Import dedicated error loggers
from utils.error_logging import system_error_logger, rule_error_logger


class ErrorCode(Enum):
    """
    Enumeration of error codes for standardized error handling.

    Error codes are grouped by category for easier identification:
    - 1xx: Configuration errors
    - 2xx: Schedule errors
    - 3xx: Rule (condition/action/formula) errors
    - 4xx: Persistence errors
    - 5xx: Concurrency errors
    - 9xx: Uncategorized/system errors
    """
    # Configuration errors (1xx)
    CONFIG_NOT_FOUND = 101
    INVALID_CONFIG = 102
    MISSING_ENV_VAR = 103

    # Schedule errors (2xx)
    INVALID_FREQUENCY_PARAMS = 201
    UNKNOWN_FREQUENCY = 202
    INVALID_TIMEZONE = 203
    INVALID_SCHEDULE = 204

    # Rule errors (3xx)
    UNKNOWN_OPERATOR = 301
    UNKNOWN_ACTION_KIND = 302
    FORMULA_EVALUATION_ERROR = 303
    INVALID_RULE = 304

    # Persistence errors (4xx)
    RECORD_NOT_FOUND = 401
    PERSISTENCE_ERROR = 402
    WORKFLOW_NOT_FOUND = 403

    # Concurrency errors (5xx)
    CONCURRENT_RUN_CONFLICT = 501
    RATE_LIMITED = 502

    # Uncategorized/system errors (9xx)
    UNKNOWN_ERROR = 901
    NOT_IMPLEMENTED = 902


class AutomationError(Exception):
    """
    Base exception class for all automation-related errors.

    All other custom exceptions inherit from this class, allowing for
    standardized error handling throughout the system.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize a new AutomationError.

        Args:
            message: Human-readable error message
            code: Error code from the ErrorCode enum
            details: Additional error details for debugging or logging
        """
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message}"


class ConfigError(AutomationError):
    """Exception raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_CONFIG,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class ScheduleError(AutomationError):
    """Exception raised for schedule definition errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_SCHEDULE,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class InvalidFrequencyParams(ScheduleError):
    """
    Raised when a frequency parameter is malformed.

    The next-run calculator never lets this escape: it logs the problem and
    falls back to the documented default for that parameter.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, ErrorCode.INVALID_FREQUENCY_PARAMS, details)


class RuleError(AutomationError):
    """Exception raised while evaluating workflow conditions or actions."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_RULE,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class UnknownOperator(RuleError):
    """Raised when a condition uses an operator the evaluator does not know."""

    def __init__(self, operator: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Unknown condition operator: {operator}", ErrorCode.UNKNOWN_OPERATOR, details)
        self.operator = operator


class UnknownActionKind(RuleError):
    """Raised when an action has a kind the executor does not know."""

    def __init__(self, kind: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Unknown action kind: {kind}", ErrorCode.UNKNOWN_ACTION_KIND, details)
        self.kind = kind


class FormulaEvaluationError(RuleError):
    """Raised when a CALCULATE formula cannot be parsed or evaluated."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.FORMULA_EVALUATION_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class PersistenceError(AutomationError):
    """Exception raised when a store collaborator fails to load or save."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.PERSISTENCE_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code, details)


class RecordNotFound(PersistenceError):
    """Raised when a target record does not exist in the record store."""

    def __init__(self, record_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Record {record_id} not found", ErrorCode.RECORD_NOT_FOUND, details)
        self.record_id = record_id


class ConcurrentRunConflict(AutomationError):
    """Raised when a run is requested for an automation that is already running."""

    def __init__(self, automation_id: Any, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            f"Automation {automation_id} is already running",
            ErrorCode.CONCURRENT_RUN_CONFLICT,
            details
        )
        self.automation_id = automation_id


@contextmanager
def error_context(
    component_name: str,
    operation: Optional[str] = None,
    error_class: Type[AutomationError] = AutomationError,
    error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
    logger: Optional[logging.Logger] = None
):
    """
    Context manager for standardized error handling across the system.

    Provides consistent error handling, logging, and error wrapping
    for any component operation. Use with a 'with' statement to wrap code
    that may raise exceptions.

    Args:
        component_name: Name of the component (for error messages)
        operation: Description of the operation (for error messages)
        error_class: The AutomationError subclass to use for wrapping
        error_code: Error code to use for non-AutomationError exceptions
        logger: Logger to use (if None, creates a new one)

    Yields:
        Control to the wrapped code block

    Raises:
        AutomationError: With appropriate error information
    """
    # Set up logger if not provided
    if logger is None:
        logger = logging.getLogger(f"error.{component_name}")

    try:
        yield
    except Exception as e:
        # Generate a unique error ID for tracking
        error_id = str(uuid.uuid4())

        # Already part of the taxonomy: log and re-raise untouched
        if isinstance(e, AutomationError):
            if isinstance(e, RuleError):
                rule_error_logger.warning(f"[{error_id}] {component_name} - {e}")
            else:
                system_error_logger.error(f"[{error_id}] {component_name} - {e}")
            raise

        # Generate error message
        error_msg = f"Error in {component_name}"
        if operation:
            error_msg += f" during {operation}"

        # Log and wrap other exceptions - sanitize for sensitive data
        error_string = str(e)
        if any(sensitive in error_string.lower() for sensitive in ["token", "bearer", "password", "secret"]):
            error_string = "[REDACTED SENSITIVE INFORMATION]"

        wrapped_error = error_class(
            f"{error_msg}: {error_string}",
            error_code,
            {"original_error": error_string, "error_id": error_id}
        )

        if isinstance(wrapped_error, RuleError):
            rule_error_logger.warning(f"[{error_id}] {error_msg}: {error_string}")
        else:
            system_error_logger.error(f"[{error_id}] {error_msg}: {error_string}")
        logger.debug(f"[{error_id}] wrapped {type(e).__name__} as {error_class.__name__}")

        raise wrapped_error from e


def handle_error(error: Exception) -> str:
    """
    Utility function for standardized error handling.

    Converts exceptions to the short reason strings reported on failed
    trigger outcomes.

    Args:
        error: The exception to handle

    Returns:
        A user-friendly error message
    """
    if isinstance(error, AutomationError):
        return f"{error.code.name}: {error.message}"
    return f"An unexpected error occurred: {error}"
