"""One runner iteration inside a slot: token, VM, job, teardown."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union

from ekiden.config.models import Config
from ekiden.exceptions import EkidenError, RemoteCommandError, ShutdownRequested
from ekiden.runner.polling import sleep_unless_stopped
from ekiden.runner.remote import RemoteExecutor
from ekiden.runner.token_provider import TokenProvider
from ekiden.runner.vm.controller import VMController, VMProcess
from ekiden.runner.vm.image_initializer import ImageInitializer
from ekiden.runner.vm.images import ImageRef
from ekiden.shared import IterationResult, LifecycleState
from ekiden.utils.structured_logging import ContextAdapter, bind_logger

Logger = Union[logging.Logger, logging.LoggerAdapter]
EventCallback = Callable[[Dict[str, Any]], None]
ControllerFactory = Callable[[ImageRef, Logger], VMController]
RemoteFactory = Callable[[Logger], RemoteExecutor]

DEFAULT_BACKOFF_SECONDS = 10.0
DEFAULT_VM_EXIT_GRACE = 30.0


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


def instance_name_for(
    runner_name: str, slot: int, concurrency: int, run_id: Optional[str] = None
) -> str:
    """Name the VM for this iteration.

    With several slots the slot id keeps concurrent names distinct; a single
    slot gets a fresh random run id per iteration instead.
    """
    suffix = str(slot) if concurrency > 1 else (run_id or new_run_id())
    return f"runner_{runner_name}_{suffix}"


class Worker:
    """Runs one full VM lifecycle iteration bound to a slot."""

    def __init__(
        self,
        slot: int,
        config: Config,
        *,
        token_provider: TokenProvider,
        image_initializer: ImageInitializer,
        stop_event: asyncio.Event,
        logger: Optional[Logger] = None,
        controller_factory: Optional[ControllerFactory] = None,
        remote_factory: Optional[RemoteFactory] = None,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        vm_exit_grace: float = DEFAULT_VM_EXIT_GRACE,
        event_callback: Optional[EventCallback] = None,
    ) -> None:
        self.slot = slot
        self.config = config
        self.token_provider = token_provider
        self.image_initializer = image_initializer
        self.stop_event = stop_event
        self.log: ContextAdapter = bind_logger(
            logger or logging.getLogger(__name__), slot=slot
        )
        self._controller_factory = controller_factory or self._default_controller
        self._remote_factory = remote_factory or self._default_remote
        self.backoff_seconds = backoff_seconds
        self.vm_exit_grace = vm_exit_grace
        self.event_callback = event_callback

        self.instance_name: Optional[str] = None
        self.controller: Optional[VMController] = None
        self.ip_address: Optional[str] = None
        self.runner_exit_code: Optional[int] = None
        self.cleanup_count = 0
        self.started_at = datetime.now(timezone.utc).isoformat()
        self.start_time = time.monotonic()

    def _default_controller(self, image: ImageRef, logger: Logger) -> VMController:
        return VMController(image, logger=logger, stop_event=self.stop_event)

    def _default_remote(self, logger: Logger) -> RemoteExecutor:
        return RemoteExecutor(
            self.config.vm,
            self.config.github,
            logger=logger,
            stop_event=self.stop_event,
        )

    async def run(self) -> IterationResult:
        self.log.info("Starting new run")
        self._emit_event("iteration.started", {})
        try:
            await self._iterate()
        except ShutdownRequested as exc:
            return self._handle_shutdown(exc)
        except Exception as exc:
            return await self._handle_failure(exc)

        self.log.info("Run completed successfully")
        self._emit_event("iteration.completed", {"exit_code": self.runner_exit_code})
        return self._result(success=True, status="completed")

    async def _iterate(self) -> None:
        token = await self.token_provider.get_registration_token()
        image = await self.image_initializer.ensure_image()

        name = instance_name_for(
            self.config.github.runner_name, self.slot, self.config.concurrency
        )
        self.instance_name = name
        self.log = self.log.bind(instance=name)
        controller = self._controller_factory(image, self.log)
        self.controller = controller

        vm: Optional[VMProcess] = None
        try:
            await controller.clone(name)
            self._emit_event("vm.cloned", {"image": image.resolved})

            vm = await controller.start(name)
            self._emit_event("vm.started", {})

            ip = await controller.wait_for_address(name)
            self.ip_address = ip
            self._emit_event("vm.address", {"ip": ip})

            remote = self._remote_factory(self.log)
            await remote.wait_for_ready(ip)
            self._emit_event("runner.ready", {"ip": ip})

            await remote.configure(ip, token.token, name)
            controller.transition(LifecycleState.CONFIGURED)
            self._emit_event("runner.configured", {})

            controller.transition(LifecycleState.JOB_RUNNING)
            await self._run_job(remote, ip)

            controller.transition(LifecycleState.STOPPING)
            await self._stop_gracefully(controller, vm, name)
        except BaseException:
            controller.fail()
            raise
        finally:
            if vm is not None:
                vm.detach()
            await self._cleanup(controller, name)

    async def _run_job(self, remote: RemoteExecutor, ip: str) -> None:
        self.log.info("Runner started, waiting for job")
        try:
            await remote.run_job(ip)
            self.runner_exit_code = 0
        except RemoteCommandError as exc:
            # The ephemeral runner exits after its job, successful or not.
            self.runner_exit_code = exc.exit_code
            self.log.info("Runner exited with code %s", exc.exit_code)
        self._emit_event("runner.exited", {"exit_code": self.runner_exit_code})

    async def _stop_gracefully(
        self, controller: VMController, vm: VMProcess, name: str
    ) -> None:
        try:
            await controller.stop(name)
        except EkidenError as exc:
            self.log.warning("Failed to stop VM gracefully: %s", exc)
        code = await vm.wait_exit(self.vm_exit_grace)
        if code is None:
            self.log.warning("VM process did not exit in time")
        self._emit_event("vm.stopped", {"exit_code": code})

    async def _cleanup(self, controller: VMController, name: str) -> None:
        task = asyncio.ensure_future(controller.cleanup(name))
        try:
            deleted = await asyncio.shield(task)
        except asyncio.CancelledError:
            # Forced shutdown: let teardown finish before giving up the slot.
            await asyncio.wait([task])
            raise
        finally:
            self.cleanup_count += 1
        self._emit_event("vm.cleaned_up", {"deleted": deleted})

    def _handle_shutdown(self, exc: ShutdownRequested) -> IterationResult:
        self.log.info("Run interrupted by shutdown: %s", exc)
        self._emit_event("iteration.canceled", {"reason": str(exc)})
        return self._result(
            success=False, status="canceled", error=str(exc), error_type="canceled"
        )

    async def _handle_failure(self, exc: Exception) -> IterationResult:
        error_type = type(exc).__name__
        self.log.error(
            "Run iteration failed: %s",
            exc,
            exc_info=not isinstance(exc, EkidenError),
            extra={"error_type": error_type},
        )
        self._emit_event(
            "iteration.failed", {"error": str(exc), "error_type": error_type}
        )
        result = self._result(
            success=False, status="failed", error=str(exc), error_type=error_type
        )
        if not self.stop_event.is_set():
            self.log.info("Backing off for %.0fs before releasing slot", self.backoff_seconds)
            await sleep_unless_stopped(self.backoff_seconds, self.stop_event)
        return result

    def _result(
        self,
        *,
        success: bool,
        status: str,
        error: Optional[str] = None,
        error_type: Optional[str] = None,
    ) -> IterationResult:
        return IterationResult(
            slot=self.slot,
            success=success,
            instance_name=self.instance_name,
            ip_address=self.ip_address,
            error=error,
            error_type=error_type,
            started_at=self.started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
            duration_seconds=time.monotonic() - self.start_time,
            runner_exit_code=self.runner_exit_code,
            status=status,
        )

    def _emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        if not self.event_callback:
            return
        event = {
            "type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "slot": self.slot,
            "instance": self.instance_name,
            "data": data,
        }
        try:
            self.event_callback(event)
        except Exception as exc:
            self.log.warning("Event callback failed for %s: %s", event_type, exc)


__all__ = [
    "DEFAULT_BACKOFF_SECONDS",
    "DEFAULT_VM_EXIT_GRACE",
    "Worker",
    "instance_name_for",
    "new_run_id",
]
