"""Ekiden exception hierarchy."""

from __future__ import annotations

from typing import Iterable, List, Optional

__all__ = [
    "ConfigurationError",
    "DependencyError",
    "EkidenError",
    "LifecycleError",
    "RemoteCommandError",
    "RemoteError",
    "ShutdownRequested",
    "TimeoutError",
    "TokenError",
    "VMError",
]


class EkidenError(Exception):
    """Base class for Ekiden exceptions."""


class ConfigurationError(EkidenError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, message: str, problems: Optional[Iterable[str]] = None) -> None:
        self.problems: List[str] = list(problems or [])
        if self.problems:
            message = f"{message}: {'; '.join(self.problems)}"
        super().__init__(message)


class DependencyError(EkidenError):
    """Raised when required host tools are not installed."""


class TokenError(EkidenError):
    """Raised when a registration token cannot be obtained."""


class VMError(EkidenError):
    """Raised when a tart operation fails."""


class LifecycleError(VMError):
    """Raised on an illegal VM lifecycle transition."""


class RemoteError(EkidenError):
    """Raised when a remote session cannot be used."""


class RemoteCommandError(RemoteError):
    """Raised when a remote command exits non-zero."""

    def __init__(self, command: str, exit_code: int, output: str = "") -> None:
        super().__init__(f"remote command exited with code {exit_code}")
        self.command = command
        self.exit_code = exit_code
        self.output = output


class TimeoutError(EkidenError):
    """Raised when a wait exceeds its time limit."""


class ShutdownRequested(EkidenError):
    """Raised at a wait point once a graceful shutdown has been requested."""
