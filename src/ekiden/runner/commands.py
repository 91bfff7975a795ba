"""Subprocess helpers shared by the VM and remote layers."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a subprocess invocation."""

    code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.code == 0


class CommandRunner(Protocol):
    def __call__(
        self,
        cmd: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
        on_line: Optional[LineCallback] = None,
    ) -> Awaitable[CommandResult]: ...


def child_env(extra: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, str]]:
    """Return the inherited environment overlaid with ``extra``."""
    if not extra:
        return None
    env = dict(os.environ)
    env.update(extra)
    return env


async def run_command(
    cmd: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    on_line: Optional[LineCallback] = None,
) -> CommandResult:
    """Run a command to completion and capture combined stdout/stderr.

    ``env`` entries are added to the inherited environment. When ``on_line``
    is given each output line is handed to it as soon as it is read. A
    cancelled caller kills the child before the cancellation propagates.
    """
    logger.debug("Running command: %s", cmd[0] if cmd else "")
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=child_env(env),
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.error("Command failed to start: %s", exc)
        return CommandResult(127, str(exc))

    try:
        if on_line is None:
            stdout, _ = await process.communicate()
            output = stdout.decode("utf-8", errors="replace") if stdout else ""
        else:
            output = await _stream_lines(process, on_line)
            await process.wait()
    except asyncio.CancelledError:
        _kill(process)
        raise

    logger.debug("Command completed with code %s", process.returncode)
    return CommandResult(process.returncode or 0, output)


async def _stream_lines(
    process: asyncio.subprocess.Process, on_line: LineCallback
) -> str:
    assert process.stdout is not None
    chunks = []
    while True:
        raw = await process.stdout.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace")
        chunks.append(line)
        on_line(line.rstrip("\n"))
    return "".join(chunks)


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass


async def start_process(
    cmd: Sequence[str], *, env: Optional[Mapping[str, str]] = None
) -> asyncio.subprocess.Process:
    """Start a long-running child whose output is discarded."""
    return await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        env=child_env(env),
    )


__all__ = [
    "CommandResult",
    "CommandRunner",
    "child_env",
    "run_command",
    "start_process",
]
