"""Host platform checks for the tools the runner shells out to."""

from __future__ import annotations

import platform
import shutil
from typing import Iterable, List, Sequence

from ekiden.exceptions import DependencyError

__all__ = [
    "REQUIRED_TOOLS",
    "check_dependencies",
    "is_macos_arm",
    "require_dependencies",
]

REQUIRED_TOOLS: Sequence[str] = ("tart", "sshpass", "ssh", "ssh-keygen")


def check_dependencies(tools: Iterable[str] = REQUIRED_TOOLS) -> List[str]:
    """Return the tools from ``tools`` that are not on ``PATH``."""
    return [tool for tool in tools if shutil.which(tool) is None]


def require_dependencies(tools: Iterable[str] = REQUIRED_TOOLS) -> None:
    """Raise ``DependencyError`` naming every missing tool."""
    missing = check_dependencies(tools)
    if missing:
        raise DependencyError(
            f"missing required tools: {', '.join(missing)}. "
            "Install them on the host (see `ekiden doctor`)."
        )


def is_macos_arm() -> bool:
    """Return True on Apple Silicon, the only platform tart supports."""
    return platform.system() == "Darwin" and platform.machine() == "arm64"
