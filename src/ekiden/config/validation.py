"""Validation of merged configuration mappings."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import urlparse

from ekiden.config.models import (
    Config,
    CoordinatorConfig,
    LoggingConfig,
    RegistryConfig,
    RunnerOptions,
    VMCredentials,
)
from ekiden.exceptions import ConfigurationError

__all__ = ["build_config", "validate_config"]

Problem = Tuple[str, str, str]

_REQUIRED = (
    ("github", "api_token", "ghp_xxx"),
    ("github", "runner_url", "https://github.com/my-org"),
    ("registry", "image_name", "ghcr.io/my-org/macos-runner:latest"),
    ("vm", "username", "admin"),
    ("vm", "password", "admin"),
)
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _add(problems: List[Problem], field: str, reason: str, example: str = "") -> None:
    problems.append((field, reason, example))


def _section(cfg: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = cfg.get(name) or {}
    return value if isinstance(value, Mapping) else {}


def _validate_required(cfg: Mapping[str, Any], problems: List[Problem]) -> None:
    for section, key, example in _REQUIRED:
        value = _section(cfg, section).get(key)
        if not isinstance(value, str) or not value.strip():
            _add(problems, f"{section}.{key}", "is required", example)


def _validate_endpoint(cfg: Mapping[str, Any], problems: List[Problem]) -> None:
    endpoint = _section(cfg, "github").get("registration_endpoint")
    example = "https://api.github.com/orgs/my-org/actions/runners/registration-token"
    if not endpoint:
        _add(problems, "github.registration_endpoint", "is required", example)
        return
    parsed = urlparse(str(endpoint))
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        _add(problems, "github.registration_endpoint", "must be a valid URL", example)


def _validate_options(cfg: Mapping[str, Any], problems: List[Problem]) -> None:
    raw = _section(cfg, "options").get("max_concurrent_runners", 1)
    try:
        if isinstance(raw, bool) or int(raw) <= 0:
            _add(problems, "options.max_concurrent_runners", "must be > 0", "1")
    except (TypeError, ValueError):
        _add(problems, "options.max_concurrent_runners", "must be an integer", "1")


def _validate_logging(cfg: Mapping[str, Any], problems: List[Problem]) -> None:
    section = _section(cfg, "logging")
    level = str(section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        _add(problems, "logging.level", "must be a standard level name", "INFO")
    for key, example in (("max_file_size", "10485760"), ("backup_count", "5")):
        try:
            if int(section.get(key, 0)) < 0:
                _add(problems, f"logging.{key}", "must be >= 0", example)
        except (TypeError, ValueError):
            _add(problems, f"logging.{key}", "must be an integer", example)


def validate_config(cfg: Mapping[str, Any]) -> List[Problem]:
    """Return every ``(field, reason, example)`` problem found in ``cfg``."""
    problems: List[Problem] = []
    _validate_required(cfg, problems)
    _validate_endpoint(cfg, problems)
    _validate_options(cfg, problems)
    _validate_logging(cfg, problems)
    return problems


def _labels(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw or [])
    labels = tuple(str(item).strip() for item in items if str(item).strip())
    return labels or ("self-hosted",)


def build_config(cfg: Mapping[str, Any]) -> Config:
    """Validate ``cfg`` and freeze it into a :class:`Config`."""
    problems = validate_config(cfg)
    if problems:
        raise ConfigurationError(
            "Invalid configuration",
            [f"{field} {reason}" for field, reason, _ in problems],
        )

    github = _section(cfg, "github")
    vm = _section(cfg, "vm")
    registry = _section(cfg, "registry")
    options = _section(cfg, "options")
    log_cfg = _section(cfg, "logging")
    extra: Dict[str, Any] = {}
    if github.get("api_version"):
        extra["api_version"] = str(github["api_version"])

    config = Config(
        github=CoordinatorConfig(
            api_token=str(github["api_token"]),
            registration_endpoint=str(github["registration_endpoint"]),
            runner_url=str(github["runner_url"]),
            runner_name=str(github.get("runner_name") or "runner"),
            runner_labels=_labels(github.get("runner_labels")),
            **extra,
        ),
        vm=VMCredentials(username=str(vm["username"]), password=str(vm["password"])),
        registry=RegistryConfig(
            image_name=str(registry["image_name"]),
            url=str(registry.get("url") or "").rstrip("/"),
            username=str(registry.get("username") or ""),
            password=str(registry.get("password") or ""),
        ),
        options=RunnerOptions(
            max_concurrent_runners=int(options.get("max_concurrent_runners", 1)),
            shutdown_flag_file=str(options.get("shutdown_flag_file") or ""),
            truncate_size=str(options.get("truncate_size") or ""),
            log_file=str(options.get("log_file") or ""),
            working_directory=str(options.get("working_directory") or ""),
        ),
        logging=LoggingConfig(
            level=str(log_cfg.get("level", "INFO")).upper(),
            max_file_size=int(log_cfg.get("max_file_size", 10_485_760)),
            backup_count=int(log_cfg.get("backup_count", 5)),
        ),
    )
    logging.getLogger(__name__).debug(
        "Configuration validated (runner=%s, concurrency=%s)",
        config.github.runner_name,
        config.concurrency,
    )
    return config
