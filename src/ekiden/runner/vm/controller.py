"""Tart VM lifecycle for a single iteration: clone, boot, address, teardown."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Awaitable, List, Mapping, Optional, Sequence, Union

from ekiden.exceptions import EkidenError, LifecycleError, VMError
from ekiden.runner.commands import CommandRunner, run_command, start_process
from ekiden.runner.polling import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_POLL_TIMEOUT,
    poll_until,
)
from ekiden.runner.vm.images import ImageRef, is_valid_ipv4
from ekiden.shared.status import LifecycleState, can_transition

Logger = Union[logging.Logger, logging.LoggerAdapter]
ProcessSpawner = Callable[..., Awaitable[Any]]

DEFAULT_CLEANUP_TIMEOUT = 30.0
_NO_AUTO_PRUNE_ENV = {"TART_NO_AUTO_PRUNE": ""}


class VMProcess:
    """Handle on a booted ``tart run`` process.

    The process exit is awaited by an independent task so the caller is never
    blocked on the VM's full run duration.
    """

    def __init__(self, instance_name: str, process: Any) -> None:
        self.instance_name = instance_name
        self.process = process
        self.wait_task: asyncio.Task = asyncio.create_task(
            process.wait(), name=f"vm-exit-{instance_name}"
        )

    @property
    def exited(self) -> bool:
        return self.wait_task.done()

    async def wait_exit(self, timeout: float) -> Optional[int]:
        """Wait up to ``timeout`` seconds for exit; None if still running."""
        try:
            return await asyncio.wait_for(asyncio.shield(self.wait_task), timeout)
        except asyncio.TimeoutError:
            return None

    def detach(self) -> None:
        if not self.wait_task.done():
            self.wait_task.cancel()


class VMController:
    """Drive one VM instance through its lifecycle with the ``tart`` tool."""

    def __init__(
        self,
        image: ImageRef,
        *,
        logger: Optional[Logger] = None,
        runner: CommandRunner = run_command,
        spawner: ProcessSpawner = start_process,
        stop_event: Optional[asyncio.Event] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        address_timeout: float = DEFAULT_POLL_TIMEOUT,
        cleanup_timeout: float = DEFAULT_CLEANUP_TIMEOUT,
        tart_binary: str = "tart",
    ) -> None:
        self.image = image
        self.logger: Logger = logger or logging.getLogger(__name__)
        self._runner = runner
        self._spawner = spawner
        self._stop_event = stop_event
        self.poll_interval = poll_interval
        self.address_timeout = address_timeout
        self.cleanup_timeout = cleanup_timeout
        self._tart = tart_binary
        self._state = LifecycleState.IDLE
        self.history: List[LifecycleState] = [LifecycleState.IDLE]

    @property
    def state(self) -> LifecycleState:
        return self._state

    def transition(self, target: LifecycleState) -> None:
        """Advance the lifecycle; illegal moves raise ``LifecycleError``."""
        if not can_transition(self._state, target):
            raise LifecycleError(
                f"illegal lifecycle transition {self._state.value} -> {target.value}"
            )
        self.logger.debug("Lifecycle %s -> %s", self._state.value, target.value)
        self._state = target
        self.history.append(target)

    def fail(self) -> None:
        """Mark the iteration failed unless it already is or is finished."""
        if can_transition(self._state, LifecycleState.FAILED):
            self.transition(LifecycleState.FAILED)

    async def _tart_cmd(
        self,
        args: Sequence[str],
        *,
        env: Optional[Mapping[str, str]] = None,
    ):
        return await self._runner([self._tart, *args], env=env)

    async def clone(self, instance_name: str) -> None:
        self.logger.info("Cloning VM %s from %s", instance_name, self.image.resolved)
        result = await self._tart_cmd(
            ["clone", self.image.resolved, instance_name], env=_NO_AUTO_PRUNE_ENV
        )
        if not result.ok:
            raise VMError(
                f"tart clone failed (exit {result.code}): {result.output.strip()}"
            )
        self.transition(LifecycleState.CLONED)

    async def start(self, instance_name: str) -> VMProcess:
        """Boot the instance headless without waiting for it to exit."""
        self.logger.info("Starting VM %s", instance_name)
        try:
            process = await self._spawner(
                [self._tart, "run", "--no-graphics", instance_name]
            )
        except OSError as exc:
            raise VMError(f"tart run failed: {exc}") from exc
        self.transition(LifecycleState.BOOTING)
        return VMProcess(instance_name, process)

    async def _probe_address(self, instance_name: str) -> Optional[str]:
        result = await self._tart_cmd(["ip", instance_name])
        if not result.ok:
            return None
        candidate = result.output.strip()
        return candidate if is_valid_ipv4(candidate) else None

    async def wait_for_address(self, instance_name: str) -> str:
        """Poll ``tart ip`` until a valid IPv4 address is reported."""
        self.logger.info("Waiting for VM IP address of %s", instance_name)
        ip = await poll_until(
            lambda: self._probe_address(instance_name),
            what=f"IP address of {instance_name}",
            interval=self.poll_interval,
            timeout=self.address_timeout,
            stop_event=self._stop_event,
        )
        self.logger.info("VM IP obtained: %s", ip, extra={"ip": ip})
        await self._forget_host_key(ip)
        self.transition(LifecycleState.HAS_ADDRESS)
        return ip

    async def _forget_host_key(self, ip: str) -> None:
        # The address may have belonged to an earlier VM with another host key.
        result = await self._runner(["ssh-keygen", "-R", ip])
        if not result.ok:
            self.logger.debug("ssh-keygen -R %s exited %s", ip, result.code)

    async def stop(self, instance_name: str) -> None:
        self.logger.info("Stopping VM %s", instance_name)
        result = await self._tart_cmd(["stop", instance_name])
        if not result.ok:
            raise VMError(
                f"tart stop failed (exit {result.code}): {result.output.strip()}"
            )

    async def delete(self, instance_name: str) -> None:
        self.logger.info("Deleting VM %s", instance_name)
        result = await self._tart_cmd(["delete", instance_name])
        if not result.ok:
            raise VMError(
                f"tart delete failed (exit {result.code}): {result.output.strip()}"
            )

    async def cleanup(self, instance_name: str) -> bool:
        """Stop and delete the instance; never raises.

        Runs under its own ``cleanup_timeout`` limit, independent of any stop
        request, and returns True when the delete succeeded.
        """
        self.logger.info("Cleaning up VM %s", instance_name)
        if self._state is not LifecycleState.STOPPING and can_transition(
            self._state, LifecycleState.STOPPING
        ):
            self.transition(LifecycleState.STOPPING)
        try:
            deleted = await asyncio.wait_for(
                self._teardown(instance_name), timeout=self.cleanup_timeout
            )
        except asyncio.TimeoutError:
            self.logger.error(
                "Cleanup of %s exceeded %.0fs", instance_name, self.cleanup_timeout
            )
            return False
        if deleted and can_transition(self._state, LifecycleState.DELETED):
            self.transition(LifecycleState.DELETED)
        return deleted

    async def _teardown(self, instance_name: str) -> bool:
        try:
            await self.stop(instance_name)
        except (EkidenError, OSError) as exc:
            self.logger.warning("Stop during cleanup of %s failed: %s", instance_name, exc)
        try:
            await self.delete(instance_name)
        except (EkidenError, OSError) as exc:
            self.logger.error("Delete during cleanup of %s failed: %s", instance_name, exc)
            return False
        return True


__all__ = ["DEFAULT_CLEANUP_TIMEOUT", "VMController", "VMProcess"]
