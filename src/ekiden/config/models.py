"""Immutable configuration models consumed by the runner core."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

__all__ = [
    "Config",
    "CoordinatorConfig",
    "LoggingConfig",
    "RegistryConfig",
    "RunnerOptions",
    "VMCredentials",
]

_REDACTED = "***"


@dataclass(frozen=True, slots=True)
class CoordinatorConfig:
    """GitHub API access and runner registration settings."""

    api_token: str = field(repr=False)
    registration_endpoint: str
    runner_url: str
    runner_name: str = "runner"
    runner_labels: Tuple[str, ...] = ("self-hosted", "arm64")
    api_version: str = "2022-11-28"


@dataclass(frozen=True, slots=True)
class VMCredentials:
    """Login used for SSH sessions into guest VMs."""

    username: str = "admin"
    password: str = field(default="admin", repr=False)


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """OCI registry holding the base VM image."""

    image_name: str
    url: str = ""
    username: str = ""
    password: str = field(default="", repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.url and self.username)


@dataclass(frozen=True, slots=True)
class RunnerOptions:
    """Runtime options for the orchestration loop."""

    max_concurrent_runners: int = 1
    shutdown_flag_file: str = ".shutdown"
    truncate_size: str = ""
    log_file: str = "runner.log"
    working_directory: str = ""


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    level: str = "INFO"
    max_file_size: int = 10_485_760
    backup_count: int = 5


@dataclass(frozen=True, slots=True)
class Config:
    """Validated, read-only configuration for one process lifetime."""

    github: CoordinatorConfig
    registry: RegistryConfig
    vm: VMCredentials = field(default_factory=VMCredentials)
    options: RunnerOptions = field(default_factory=RunnerOptions)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def concurrency(self) -> int:
        return max(1, int(self.options.max_concurrent_runners))

    def to_dict(self, *, redact: bool = True) -> Dict[str, Any]:
        """Return a plain mapping, masking secrets unless ``redact`` is False."""

        def _secret(value: str) -> str:
            return _REDACTED if (redact and value) else value

        return {
            "github": {
                "api_token": _secret(self.github.api_token),
                "registration_endpoint": self.github.registration_endpoint,
                "runner_url": self.github.runner_url,
                "runner_name": self.github.runner_name,
                "runner_labels": list(self.github.runner_labels),
                "api_version": self.github.api_version,
            },
            "vm": {
                "username": self.vm.username,
                "password": _secret(self.vm.password),
            },
            "registry": {
                "url": self.registry.url,
                "image_name": self.registry.image_name,
                "username": self.registry.username,
                "password": _secret(self.registry.password),
            },
            "options": {
                "max_concurrent_runners": self.options.max_concurrent_runners,
                "shutdown_flag_file": self.options.shutdown_flag_file,
                "truncate_size": self.options.truncate_size,
                "log_file": self.options.log_file,
                "working_directory": self.options.working_directory,
            },
            "logging": {
                "level": self.logging.level,
                "max_file_size": self.logging.max_file_size,
                "backup_count": self.logging.backup_count,
            },
        }
