"""Environment diagnostics (doctor) for the Ekiden CLI."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Any

from rich.console import Console

from ekiden.config import load_config
from ekiden.exceptions import ConfigurationError
from ekiden.utils.platform_utils import REQUIRED_TOOLS, check_dependencies, is_macos_arm

__all__ = ["run_doctor"]

Row = tuple[str, str, str, list[str]]

_INSTALL_HINTS = {
    "tart": "brew install cirruslabs/cli/tart",
    "sshpass": "brew install hudochenkov/sshpass/sshpass",
    "ssh": "enable OpenSSH (ships with macOS)",
    "ssh-keygen": "enable OpenSSH (ships with macOS)",
}


def _print_rows(console: Console, rows: list[Row]) -> int:
    ok = all(status != "✗" for status, *_ in rows)
    for status, title, message, tries in rows:
        if status in ("✓", "✗"):
            console.print(f"{status} {title}: {message}")
        else:
            console.print(f"i {title}: {message}")
        if status == "✗" and tries:
            console.print("Try:")
            for t in tries[:3]:
                console.print(f"  • {t}")
    return 0 if ok else 1


def _check_platform(rows: list[Row]) -> None:
    if is_macos_arm():
        rows.append(("✓", "platform", "macOS on Apple Silicon", []))
    else:
        rows.append(("i", "platform", "tart only runs on macOS/arm64 hosts", []))


def _check_tools(rows: list[Row]) -> None:
    missing = set(check_dependencies(REQUIRED_TOOLS))
    for tool in REQUIRED_TOOLS:
        if tool in missing:
            rows.append(("✗", tool, "not found on PATH", [_INSTALL_HINTS[tool]]))
        else:
            rows.append(("✓", tool, shutil.which(tool) or "found", []))


def _check_disk(rows: list[Row]) -> None:
    try:
        stat = shutil.disk_usage(str(Path.home()))
        free_gb = stat.free / (1024**3)
        if free_gb >= 50:
            rows.append(("✓", "disk", f"{free_gb:.1f}GB free", []))
        else:
            rows.append(
                (
                    "✗",
                    "disk",
                    f"low disk space: {free_gb:.1f}GB free (<50GB)",
                    ["tart prune --entries=caches", "free space on this volume"],
                )
            )
    except OSError as e:  # pragma: no cover - platform dependent
        rows.append(("i", "disk", f"could not check: {e}", []))


def _check_config(path: Path | None, rows: list[Row]) -> None:
    try:
        config = load_config(config_path=path)
    except ConfigurationError as e:
        tries = list(e.problems) or ["create ekiden.yaml", "pass --config FILE"]
        rows.append(("✗", "config", "invalid configuration", tries))
        return
    rows.append(
        (
            "✓",
            "config",
            f"image {config.registry.image_name}, {config.concurrency} slot(s)",
            [],
        )
    )


async def run_doctor(console: Console, args: Any) -> int:
    """Run host checks and print friendly advice.

    Returns 0 on success, 1 if any check failed.
    """
    rows: list[Row] = []
    _check_platform(rows)
    _check_tools(rows)
    _check_disk(rows)
    _check_config(getattr(args, "config", None), rows)
    return _print_rows(console, rows)
