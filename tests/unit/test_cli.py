from __future__ import annotations

import json
from argparse import Namespace
from io import StringIO
from pathlib import Path

import pytest
from rich.console import Console

from ekiden.cli import config_print, dispatcher_runner, doctor
from ekiden.cli.parser import create_parser
from ekiden.exceptions import DependencyError

_YAML = """
github:
  api_token: ghp_secret_value
  registration_endpoint: https://api.github.com/orgs/acme/actions/runners/registration-token
  runner_url: https://github.com/acme
registry:
  image_name: macos:14
options:
  log_file: ""
"""


def _console() -> tuple[Console, StringIO]:
    out = StringIO()
    return Console(file=out, force_terminal=False, color_system=None, width=200), out


def _config_file(tmp_path: Path, text: str = _YAML) -> Path:
    path = tmp_path / "ekiden.yaml"
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for key in ("EKIDEN_GITHUB_API_TOKEN", "EKIDEN_MAX_CONCURRENT_RUNNERS"):
        monkeypatch.delenv(key, raising=False)


def test_parser_run_options() -> None:
    args = create_parser().parse_args(["run", "-c", "x.yaml", "-v", "--max-concurrent", "3"])

    assert args.command == "run"
    assert args.config == Path("x.yaml")
    assert args.verbose and not args.quiet
    assert args.max_concurrent == 3


def test_parser_rejects_verbose_with_quiet() -> None:
    with pytest.raises(SystemExit) as info:
        create_parser().parse_args(["run", "-v", "-q"])
    assert info.value.code == 2


def test_parser_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        create_parser().parse_args([])


@pytest.mark.asyncio
async def test_config_print_redacts_secrets(tmp_path: Path, capsys) -> None:
    console, _ = _console()
    args = Namespace(config=_config_file(tmp_path), json=True)

    rc = await config_print.run_config_print(console, args)

    data = json.loads(capsys.readouterr().out)
    assert rc == 0
    assert data["github"]["api_token"] == "***"
    assert data["registry"]["image_name"] == "macos:14"


@pytest.mark.asyncio
async def test_config_print_reports_invalid_config(tmp_path: Path) -> None:
    console, out = _console()
    args = Namespace(config=_config_file(tmp_path, "github: {}\n"), json=False)

    assert await config_print.run_config_print(console, args) == 1
    assert "github.api_token" in out.getvalue()


@pytest.mark.asyncio
async def test_doctor_flags_missing_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(doctor, "check_dependencies", lambda tools: ["sshpass"])
    console, out = _console()

    rc = await doctor.run_doctor(console, Namespace(config=_config_file(tmp_path)))

    text = out.getvalue()
    assert rc == 1
    assert "✗ sshpass" in text
    assert "✓ tart" in text
    assert "✓ config" in text


@pytest.mark.asyncio
async def test_run_returns_1_on_invalid_config(tmp_path: Path) -> None:
    console, out = _console()
    args = Namespace(config=_config_file(tmp_path, "{}\n"), verbose=False, quiet=True, max_concurrent=None)

    assert await dispatcher_runner.run(console, args) == 1
    assert "Invalid configuration" in out.getvalue()


@pytest.mark.asyncio
async def test_run_returns_1_on_missing_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _fail(config, logger):
        raise DependencyError("missing required tools: tart")

    monkeypatch.setattr(dispatcher_runner, "run_dispatcher", _fail)
    monkeypatch.setattr(dispatcher_runner, "setup_logging", lambda config, args: None)
    console, out = _console()
    args = Namespace(config=_config_file(tmp_path), verbose=False, quiet=True, max_concurrent=2)

    assert await dispatcher_runner.run(console, args) == 1
    assert "missing required tools" in out.getvalue()


@pytest.mark.asyncio
async def test_run_passes_cli_overrides_and_returns_0(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    async def _ok(config, logger):
        seen["concurrency"] = config.concurrency
        return {"iterations": 4, "completed": 3, "failed": 1, "canceled": 0, "crashed": 0}

    monkeypatch.setattr(dispatcher_runner, "run_dispatcher", _ok)
    monkeypatch.setattr(dispatcher_runner, "setup_logging", lambda config, args: None)
    console, out = _console()
    args = Namespace(config=_config_file(tmp_path), verbose=False, quiet=True, max_concurrent=3)

    assert await dispatcher_runner.run(console, args) == 0
    assert seen["concurrency"] == 3
    assert "4 run(s)" in out.getvalue()
