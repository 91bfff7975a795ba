"""Configuration loading: defaults, YAML files, dotenv, environment, CLI."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml
from dotenv import dotenv_values

from ekiden.exceptions import ConfigurationError

__all__ = [
    "CONFIG_FILENAME",
    "deep_merge",
    "find_config_file",
    "get_default_config",
    "load_dotenv_config",
    "load_env_config",
    "load_yaml_config",
    "merge_config",
]

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "ekiden.yaml"

_ENV_TO_CONFIG_KEY = {
    "EKIDEN_GITHUB_API_TOKEN": ("github", "api_token"),
    "EKIDEN_GITHUB_REGISTRATION_ENDPOINT": ("github", "registration_endpoint"),
    "EKIDEN_GITHUB_RUNNER_URL": ("github", "runner_url"),
    "EKIDEN_RUNNER_NAME": ("github", "runner_name"),
    "EKIDEN_VM_USERNAME": ("vm", "username"),
    "EKIDEN_VM_PASSWORD": ("vm", "password"),
    "EKIDEN_REGISTRY_URL": ("registry", "url"),
    "EKIDEN_REGISTRY_USERNAME": ("registry", "username"),
    "EKIDEN_REGISTRY_PASSWORD": ("registry", "password"),
    "EKIDEN_MAX_CONCURRENT_RUNNERS": ("options", "max_concurrent_runners"),
    "EKIDEN_SHUTDOWN_FLAG_FILE": ("options", "shutdown_flag_file"),
}


def get_default_config() -> Dict[str, Any]:
    """Return a fresh copy of Ekiden's default configuration."""
    return {
        "github": {
            "api_token": "",
            "registration_endpoint": "",
            "runner_url": "",
            "runner_name": "runner",
            "runner_labels": ["self-hosted", "arm64"],
        },
        "vm": {
            "username": "admin",
            "password": "admin",
        },
        "registry": {
            "url": "",
            "image_name": "",
            "username": "",
            "password": "",
        },
        "options": {
            "max_concurrent_runners": 1,
            "shutdown_flag_file": ".shutdown",
            "truncate_size": "",
            "log_file": "runner.log",
            "working_directory": "",
        },
        "logging": {
            "level": "INFO",
            "max_file_size": 10_485_760,
            "backup_count": 5,
        },
    }


def deep_merge(base: Dict[str, Any], overlay: Mapping[str, Any]) -> None:
    """Recursively merge ``overlay`` into ``base`` in place."""
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value


def merge_config(
    cli_args: Mapping[str, Any],
    env_config: Mapping[str, Any],
    dotenv_config: Mapping[str, Any],
    file_config: Mapping[str, Any],
    defaults: Dict[str, Any],
) -> Dict[str, Any]:
    """Merge configuration dictionaries honoring precedence order."""
    merged = defaults
    deep_merge(merged, file_config)
    deep_merge(merged, dotenv_config)
    deep_merge(merged, env_config)
    deep_merge(merged, _drop_none(cli_args))
    return merged


def find_config_file(
    explicit: Optional[Path] = None,
    search_dirs: Optional[Iterable[Path]] = None,
) -> Optional[Path]:
    """Return the config file to load, or None when no candidate exists.

    An explicitly requested path must exist.
    """
    if explicit is not None:
        if not explicit.exists():
            raise ConfigurationError(f"Config file not found: {explicit}")
        return explicit

    if search_dirs is None:
        search_dirs = [Path.cwd(), Path.home() / ".ekiden", Path("/etc/ekiden")]
    for directory in search_dirs:
        candidate = directory / CONFIG_FILENAME
        try:
            if candidate.is_file():
                return candidate
        except OSError:
            continue
    return None


def load_yaml_config(path: Optional[Path]) -> Dict[str, Any]:
    """Load a YAML config file; a missing path yields an empty mapping."""
    if path is None:
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (yaml.YAMLError, OSError) as exc:
        raise ConfigurationError(f"Failed to load {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    logger.debug("Loaded configuration from %s", path)
    return data


def load_dotenv_config(dotenv_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load supported settings from a ``.env`` file."""
    path = dotenv_path or Path(".env")
    if not path.exists():
        return {}
    return _map_env(dotenv_values(path))


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load supported settings from the process environment."""
    return _map_env(os.environ if environ is None else environ)


def _map_env(values: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for env_key, (section, key) in _ENV_TO_CONFIG_KEY.items():
        value = values.get(env_key)
        if value is None:
            continue
        config.setdefault(section, {})[key] = value
    return config


def _drop_none(values: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            nested = _drop_none(value)
            if nested:
                cleaned[key] = nested
        elif value is not None:
            cleaned[key] = value
    return cleaned
