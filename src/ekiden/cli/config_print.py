"""Effective configuration printing for the Ekiden CLI."""

from __future__ import annotations

import argparse
import json
from typing import Any, Dict

from rich.console import Console

from ekiden.config import load_config
from ekiden.exceptions import ConfigurationError

__all__ = ["run_config_print"]


def _flat(d: Dict[str, Any] | None, p: str = "") -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (d or {}).items():
        kk = f"{p}.{k}" if p else str(k)
        if isinstance(v, dict):
            out.update(_flat(v, kk))
        else:
            out[kk] = v
    return out


async def run_config_print(console: Console, args: argparse.Namespace) -> int:
    try:
        config = load_config(config_path=getattr(args, "config", None))
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    data = config.to_dict(redact=True)
    if getattr(args, "json", False):
        print(json.dumps(data, indent=2, default=str))
        return 0
    flat = _flat(data)
    for k in sorted(flat):
        console.print(f"{k}: {flat[k]}", markup=False)
    return 0
