"""Configuration models, loading, validation, and defaults."""

from ekiden.config.defaults import (
    deep_merge,
    find_config_file,
    get_default_config,
    load_dotenv_config,
    load_env_config,
    load_yaml_config,
    merge_config,
)
from ekiden.config.loader import load_config, load_raw_config
from ekiden.config.models import (
    Config,
    CoordinatorConfig,
    LoggingConfig,
    RegistryConfig,
    RunnerOptions,
    VMCredentials,
)
from ekiden.config.validation import build_config, validate_config

__all__ = [
    "Config",
    "CoordinatorConfig",
    "LoggingConfig",
    "RegistryConfig",
    "RunnerOptions",
    "VMCredentials",
    "build_config",
    "deep_merge",
    "find_config_file",
    "get_default_config",
    "load_config",
    "load_dotenv_config",
    "load_env_config",
    "load_raw_config",
    "load_yaml_config",
    "merge_config",
    "validate_config",
]
