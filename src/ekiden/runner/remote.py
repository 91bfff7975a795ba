"""Remote command execution on guest VMs over password-authenticated SSH."""

from __future__ import annotations

import asyncio
import logging
import shlex
from typing import Callable, Dict, List, Optional, Union

from ekiden.config.models import CoordinatorConfig, VMCredentials
from ekiden.exceptions import RemoteCommandError
from ekiden.runner.commands import CommandRunner, run_command
from ekiden.runner.polling import DEFAULT_POLL_INTERVAL, DEFAULT_POLL_TIMEOUT, poll_until

Logger = Union[logging.Logger, logging.LoggerAdapter]

READINESS_COMMAND = "pwd"
RUNNER_DIR = "./actions-runner"
RUN_JOB_COMMAND = f"source ~/.zprofile && {RUNNER_DIR}/run.sh"


class RemoteExecutor:
    """Run commands on a VM through ``sshpass``/``ssh``.

    The password travels only through the ``SSHPASS`` environment variable;
    host-key checking is disabled because every VM is a fresh clone.
    """

    def __init__(
        self,
        credentials: VMCredentials,
        coordinator: CoordinatorConfig,
        *,
        logger: Optional[Logger] = None,
        runner: CommandRunner = run_command,
        stop_event: Optional[asyncio.Event] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float = DEFAULT_POLL_TIMEOUT,
    ) -> None:
        self.credentials = credentials
        self.coordinator = coordinator
        self.logger: Logger = logger or logging.getLogger(__name__)
        self._runner = runner
        self._stop_event = stop_event
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

    def _ssh_argv(
        self, ip: str, command: str, *, connect_timeout: Optional[int] = None
    ) -> List[str]:
        argv = ["sshpass", "-e", "ssh", "-q"]
        if connect_timeout is not None:
            argv += ["-o", f"ConnectTimeout={connect_timeout}"]
        argv += [
            "-o",
            "StrictHostKeyChecking=no",
            f"{self.credentials.username}@{ip}",
            command,
        ]
        return argv

    @property
    def _env(self) -> Dict[str, str]:
        return {"SSHPASS": self.credentials.password}

    def _line_logger(self, ip: str) -> Callable[[str], None]:
        def _log(line: str) -> None:
            self.logger.info("%s", line, extra={"ip": ip, "stream": "remote"})

        return _log

    async def _probe_ready(self, ip: str) -> Optional[bool]:
        result = await self._runner(
            self._ssh_argv(ip, READINESS_COMMAND, connect_timeout=1), env=self._env
        )
        return True if result.ok else None

    async def wait_for_ready(self, ip: str) -> None:
        """Poll until a trivial remote command succeeds."""
        self.logger.info("Waiting for SSH to be available on %s", ip, extra={"ip": ip})
        await poll_until(
            lambda: self._probe_ready(ip),
            what=f"SSH on {ip}",
            interval=self.poll_interval,
            timeout=self.ready_timeout,
            stop_event=self._stop_event,
        )
        self.logger.info("SSH is available on %s", ip, extra={"ip": ip})

    async def execute(self, ip: str, command: str, *, stream_output: bool = False) -> str:
        """Run ``command`` on the VM and return its combined output.

        With ``stream_output`` each output line is logged as it arrives.
        A non-zero exit raises ``RemoteCommandError``.
        """
        self.logger.debug("Executing SSH command on %s", ip, extra={"ip": ip})
        result = await self._runner(
            self._ssh_argv(ip, command),
            env=self._env,
            on_line=self._line_logger(ip) if stream_output else None,
        )
        if not result.ok:
            raise RemoteCommandError(command, result.code, result.output)
        return result.output

    def configure_command(self, token: str, instance_name: str) -> str:
        labels = ",".join(self.coordinator.runner_labels) or "self-hosted"
        return " ".join(
            [
                f"{RUNNER_DIR}/config.sh",
                "--url",
                shlex.quote(self.coordinator.runner_url),
                "--token",
                shlex.quote(token),
                "--ephemeral",
                "--name",
                shlex.quote(instance_name),
                "--labels",
                shlex.quote(labels),
                "--unattended",
                "--replace",
            ]
        )

    async def configure(self, ip: str, token: str, instance_name: str) -> None:
        """Register an ephemeral runner named ``instance_name`` on the VM."""
        self.logger.info("Configuring GitHub Actions runner %s", instance_name)
        try:
            await self.execute(ip, self.configure_command(token, instance_name))
        except RemoteCommandError as exc:
            # The token is part of the command line; never surface it.
            raise RemoteCommandError(
                f"{RUNNER_DIR}/config.sh", exc.exit_code, exc.output
            ) from None

    async def run_job(self, ip: str) -> None:
        """Start the runner and block until it exits after one job."""
        self.logger.info("Starting GitHub Actions runner on %s", ip, extra={"ip": ip})
        await self.execute(ip, RUN_JOB_COMMAND, stream_output=True)


__all__ = ["READINESS_COMMAND", "RUN_JOB_COMMAND", "RemoteExecutor"]
