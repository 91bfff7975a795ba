"""`ekiden run`: load config, set up logging, drive the dispatcher."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from ekiden.config import Config, load_config
from ekiden.exceptions import ConfigurationError, DependencyError, EkidenError
from ekiden.runner import run as run_dispatcher
from ekiden.utils.structured_logging import setup_structured_logging

__all__ = ["run"]


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "options": {"max_concurrent_runners": getattr(args, "max_concurrent", None)},
    }


def _log_file(config: Config) -> Optional[Path]:
    if not config.options.log_file:
        return None
    path = Path(config.options.log_file).expanduser()
    if not path.is_absolute() and config.options.working_directory:
        path = Path(config.options.working_directory).expanduser() / path
    return path


def setup_logging(config: Config, args: argparse.Namespace) -> None:
    setup_structured_logging(
        _log_file(config),
        level=config.logging.level,
        verbose=bool(getattr(args, "verbose", False)),
        quiet=bool(getattr(args, "quiet", False)),
        max_bytes=config.logging.max_file_size,
        backup_count=config.logging.backup_count,
    )


def _print_problems(console: Console, exc: ConfigurationError) -> None:
    console.print("[red]Invalid configuration:[/red]")
    if not exc.problems:
        console.print(str(exc), markup=False)
        return
    for problem in exc.problems:
        console.print(f"  • {problem}", markup=False)


def _handle_interrupt(console: Console) -> int:
    console.print("\n[yellow]Interrupted, VMs may need manual cleanup (tart list)[/yellow]")
    return 2


async def run(console: Console, args: argparse.Namespace) -> int:
    try:
        config = load_config(
            cli_args=_cli_overrides(args), config_path=getattr(args, "config", None)
        )
    except ConfigurationError as exc:
        _print_problems(console, exc)
        return 1

    setup_logging(config, args)
    logger = logging.getLogger("ekiden")
    logger.info(
        "Starting ekiden (runner=%s, max_concurrent=%d)",
        config.github.runner_name,
        config.concurrency,
    )
    try:
        stats = await run_dispatcher(config, logger)
    except (KeyboardInterrupt, asyncio.CancelledError):
        return _handle_interrupt(console)
    except DependencyError as exc:
        console.print(f"[red]{exc}[/red]")
        return 1
    except ConfigurationError as exc:
        _print_problems(console, exc)
        return 1
    except EkidenError as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        console.print(f"[red]Error: {exc}[/red]")
        return 1
    console.print(
        f"[green]Stopped.[/green] {stats['iterations']} run(s): "
        f"{stats['completed']} completed, {stats['failed']} failed, "
        f"{stats['canceled']} canceled"
    )
    return 0
