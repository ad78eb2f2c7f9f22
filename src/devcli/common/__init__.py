"""Common utilities and shared functionality."""

from .cancellation import CancellationToken
from .exceptions import (
    ConfigError,
    DevCLIError,
    DuplicatePortError,
    PodNotFoundError,
    PortUnavailableError,
    PortValidationError,
    ProcessError,
    ResolutionError,
    ToolCancelledError,
    ToolError,
    ToolMissingError,
)
from .logging import get_logger, setup_logging
from .session_config import SessionConfig
from .utils import (
    MAX_PORT,
    MIN_PORT,
    first_line,
    first_word,
    validate_non_empty_string,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    # Exceptions
    "DevCLIError",
    "ConfigError",
    "PortValidationError",
    "DuplicatePortError",
    "PortUnavailableError",
    "ToolError",
    "ToolMissingError",
    "ToolCancelledError",
    "ResolutionError",
    "PodNotFoundError",
    "ProcessError",
    # Logging
    "get_logger",
    "setup_logging",
    # Configuration
    "SessionConfig",
    # Utils
    "validate_non_empty_string",
    "first_line",
    "first_word",
    "MIN_PORT",
    "MAX_PORT",
]
