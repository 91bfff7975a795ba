"""CLI parser builder for Ekiden."""

from __future__ import annotations

import argparse
from pathlib import Path

from ekiden.version import __version__

__all__ = ["create_parser"]


def _epilog() -> str:
    return (
        "Quick examples:\n"
        "  # Run runners with ./ekiden.yaml\n"
        "  ekiden run\n\n"
        "  # Four concurrent VMs, verbose console\n"
        "  ekiden run -c /etc/ekiden/ekiden.yaml --max-concurrent 4 -v\n\n"
        "  # Check host tools and configuration\n"
        "  ekiden doctor\n\n"
        "  # Show the effective configuration (secrets redacted)\n"
        "  ekiden config --json\n\n"
        "Tips:\n"
        "  • Create the shutdown flag file (default .shutdown) to drain and exit.\n"
        "  • Press Ctrl-C once to drain, twice to cancel running jobs.\n"
    )


def _add_config_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to ekiden.yaml (default: search ., ~/.ekiden, /etc/ekiden)",
    )


def _add_run_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("run", help="Run ephemeral runners until shutdown")
    _add_config_arg(p)
    verbosity = p.add_mutually_exclusive_group()
    verbosity.add_argument(
        "-v", "--verbose", action="store_true", help="Debug output on the console"
    )
    verbosity.add_argument(
        "-q", "--quiet", action="store_true", help="Only errors on the console"
    )
    p.add_argument(
        "--max-concurrent",
        type=int,
        default=None,
        metavar="N",
        help="Maximum number of concurrent runner VMs (overrides config)",
    )


def _add_doctor_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("doctor", help="Check host tools and configuration")
    _add_config_arg(p)


def _add_config_parser(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("config", help="Print the effective configuration")
    _add_config_arg(p)
    p.add_argument("--json", action="store_true", help="Print as JSON")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ekiden",
        description=(
            "Run GitHub Actions jobs on ephemeral tart VMs.\n"
            "Each job gets a fresh clone that is deleted afterwards."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_epilog(),
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True
    _add_run_parser(sub)
    _add_doctor_parser(sub)
    _add_config_parser(sub)
    return parser
