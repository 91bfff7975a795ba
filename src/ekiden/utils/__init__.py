"""Utility helpers for logging and host platform checks."""

from ekiden.utils.platform_utils import check_dependencies, require_dependencies
from ekiden.utils.structured_logging import bind_logger, setup_structured_logging

__all__ = [
    "bind_logger",
    "check_dependencies",
    "require_dependencies",
    "setup_structured_logging",
]
