"""Assemble the effective configuration for a run."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ekiden.config.defaults import (
    find_config_file,
    get_default_config,
    load_dotenv_config,
    load_env_config,
    load_yaml_config,
    merge_config,
)
from ekiden.config.models import Config
from ekiden.config.validation import build_config

__all__ = ["load_config", "load_raw_config"]


def load_raw_config(
    cli_args: Optional[Mapping[str, Any]] = None,
    config_path: Optional[Path] = None,
    dotenv_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Merge defaults, config file, dotenv, environment and CLI overrides."""
    return merge_config(
        cli_args=cli_args or {},
        env_config=load_env_config(environ),
        dotenv_config=load_dotenv_config(dotenv_path),
        file_config=load_yaml_config(find_config_file(config_path)),
        defaults=get_default_config(),
    )


def load_config(
    cli_args: Optional[Mapping[str, Any]] = None,
    config_path: Optional[Path] = None,
    dotenv_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Load and validate configuration; raises ``ConfigurationError``."""
    return build_config(
        load_raw_config(
            cli_args=cli_args,
            config_path=config_path,
            dotenv_path=dotenv_path,
            environ=environ,
        )
    )
