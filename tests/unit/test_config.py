from pathlib import Path

import pytest

from ekiden.config import (
    build_config,
    deep_merge,
    find_config_file,
    get_default_config,
    load_config,
    load_dotenv_config,
    load_env_config,
    load_raw_config,
    validate_config,
)
from ekiden.exceptions import ConfigurationError

_YAML = """
github:
  api_token: ghp_from_file
  registration_endpoint: https://api.github.com/orgs/acme/actions/runners/registration-token
  runner_url: https://github.com/acme
  runner_labels: [self-hosted, arm64, xcode]
registry:
  url: ghcr.io/acme/
  image_name: macos:14
options:
  max_concurrent_runners: 2
"""


def _write(tmp_path: Path, text: str = _YAML) -> Path:
    path = tmp_path / "ekiden.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_file_values_override_defaults(tmp_path: Path) -> None:
    config = load_config(config_path=_write(tmp_path), environ={}, dotenv_path=tmp_path / ".env")

    assert config.github.api_token == "ghp_from_file"
    assert config.github.runner_labels == ("self-hosted", "arm64", "xcode")
    assert config.registry.url == "ghcr.io/acme"
    assert config.vm.username == "admin"
    assert config.options.log_file == "runner.log"
    assert config.options.shutdown_flag_file == ".shutdown"
    assert config.concurrency == 2


def test_precedence_env_over_dotenv_over_file_and_cli_over_all(tmp_path: Path) -> None:
    dotenv = tmp_path / ".env"
    dotenv.write_text(
        "EKIDEN_GITHUB_API_TOKEN=ghp_from_dotenv\nEKIDEN_VM_PASSWORD=dotenv_pw\n",
        encoding="utf-8",
    )
    raw = load_raw_config(
        cli_args={"options": {"max_concurrent_runners": 5, "truncate_size": None}},
        config_path=_write(tmp_path),
        dotenv_path=dotenv,
        environ={"EKIDEN_GITHUB_API_TOKEN": "ghp_from_env", "EKIDEN_MAX_CONCURRENT_RUNNERS": "3"},
    )

    assert raw["github"]["api_token"] == "ghp_from_env"
    assert raw["vm"]["password"] == "dotenv_pw"
    assert raw["options"]["max_concurrent_runners"] == 5
    assert raw["options"]["truncate_size"] == ""


def test_env_values_are_coerced_by_build(tmp_path: Path) -> None:
    config = load_config(
        config_path=_write(tmp_path),
        dotenv_path=tmp_path / ".env",
        environ={"EKIDEN_MAX_CONCURRENT_RUNNERS": "4"},
    )
    assert config.options.max_concurrent_runners == 4


def test_validation_collects_every_problem() -> None:
    cfg = get_default_config()
    cfg["github"]["registration_endpoint"] = "not a url"
    cfg["options"]["max_concurrent_runners"] = 0
    cfg["logging"]["level"] = "CHATTY"

    fields = {field for field, _, _ in validate_config(cfg)}

    assert fields == {
        "github.api_token",
        "github.registration_endpoint",
        "github.runner_url",
        "registry.image_name",
        "options.max_concurrent_runners",
        "logging.level",
    }
    with pytest.raises(ConfigurationError) as info:
        build_config(cfg)
    assert len(info.value.problems) == 6


def test_boolean_concurrency_is_rejected() -> None:
    cfg = get_default_config()
    cfg["options"]["max_concurrent_runners"] = True

    assert ("options.max_concurrent_runners", "must be > 0", "1") in validate_config(cfg)


def test_labels_accept_comma_string(tmp_path: Path) -> None:
    path = _write(tmp_path, _YAML.replace("[self-hosted, arm64, xcode]", '"self-hosted, gpu"'))

    config = load_config(config_path=path, environ={}, dotenv_path=tmp_path / ".env")

    assert config.github.runner_labels == ("self-hosted", "gpu")


def test_to_dict_redacts_secrets(tmp_path: Path) -> None:
    config = load_config(config_path=_write(tmp_path), environ={}, dotenv_path=tmp_path / ".env")

    data = config.to_dict()

    assert data["github"]["api_token"] == "***"
    assert data["vm"]["password"] == "***"
    assert data["registry"]["password"] == ""
    assert config.to_dict(redact=False)["github"]["api_token"] == "ghp_from_file"
    assert "ghp_from_file" not in repr(config)


def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        find_config_file(tmp_path / "nope.yaml")


def test_config_file_search_order(tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.mkdir()
    second.mkdir()
    (second / "ekiden.yaml").write_text("{}", encoding="utf-8")

    assert find_config_file(search_dirs=[first, second]) == second / "ekiden.yaml"
    assert find_config_file(search_dirs=[first]) is None


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(
            config_path=_write(tmp_path, "- a\n- b\n"),
            environ={},
            dotenv_path=tmp_path / ".env",
        )


def test_env_and_dotenv_mapping(tmp_path: Path) -> None:
    assert load_env_config({"EKIDEN_REGISTRY_URL": "ghcr.io/acme", "HOME": "/x"}) == {
        "registry": {"url": "ghcr.io/acme"}
    }
    assert load_dotenv_config(tmp_path / "missing.env") == {}


def test_deep_merge_is_recursive() -> None:
    base = {"a": {"b": 1, "c": 2}, "d": 1}
    deep_merge(base, {"a": {"c": 3}, "e": 4})
    assert base == {"a": {"b": 1, "c": 3}, "d": 1, "e": 4}
