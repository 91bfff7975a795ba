"""Ekiden CLI entrypoint.

A thin shell that delegates to the per-command helpers in this package.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Final

from rich.console import Console

from ekiden.cli import config_print, dispatcher_runner, doctor
from ekiden.cli.parser import create_parser

__all__: Final = ["main"]


async def _dispatch(console: Console, args: argparse.Namespace) -> int:
    cmd = (args.command or "").strip().lower()
    if cmd == "doctor":
        return await doctor.run_doctor(console, args)
    if cmd == "config":
        return await config_print.run_config_print(console, args)
    return await dispatcher_runner.run(console, args)


def main() -> None:
    """CLI entrypoint."""
    parser = create_parser()
    args = parser.parse_args()
    console = Console()
    rc = asyncio.run(_dispatch(console, args))
    sys.exit(int(rc))


if __name__ == "__main__":
    main()
