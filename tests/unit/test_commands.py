import asyncio
import sys
from typing import List

import pytest

from ekiden.exceptions import DependencyError
from ekiden.runner.commands import child_env, run_command
from ekiden.utils import platform_utils

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="needs a POSIX shell")


@pytest.mark.asyncio
async def test_run_command_captures_combined_output() -> None:
    result = await run_command(["sh", "-c", "echo out; echo err >&2; exit 3"])

    assert result.code == 3
    assert not result.ok
    assert "out" in result.output and "err" in result.output


@pytest.mark.asyncio
async def test_run_command_streams_lines_and_passes_env() -> None:
    lines: List[str] = []

    result = await run_command(
        ["sh", "-c", 'echo "$EKIDEN_TEST_VALUE"; echo second'],
        env={"EKIDEN_TEST_VALUE": "first"},
        on_line=lines.append,
    )

    assert result.ok
    assert lines == ["first", "second"]


@pytest.mark.asyncio
async def test_missing_binary_is_reported_not_raised() -> None:
    result = await run_command(["ekiden-no-such-binary"])

    assert result.code == 127


@pytest.mark.asyncio
async def test_cancelled_command_kills_child() -> None:
    task = asyncio.create_task(run_command(["sleep", "30"]))
    await asyncio.sleep(0.2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=5)


def test_child_env_overlays_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EKIDEN_BASE", "1")

    env = child_env({"TART_NO_AUTO_PRUNE": ""})

    assert env is not None
    assert env["EKIDEN_BASE"] == "1"
    assert env["TART_NO_AUTO_PRUNE"] == ""
    assert child_env(None) is None


def test_check_dependencies_reports_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        platform_utils.shutil,
        "which",
        lambda tool: None if tool == "sshpass" else f"/usr/bin/{tool}",
    )

    assert platform_utils.check_dependencies() == ["sshpass"]
    with pytest.raises(DependencyError, match="sshpass"):
        platform_utils.require_dependencies()
