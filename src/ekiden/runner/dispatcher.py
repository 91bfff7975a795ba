"""Slot-bounded dispatch of runner iterations and the process entry point."""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from ekiden.config.models import Config
from ekiden.runner.token_provider import TokenProvider
from ekiden.runner.vm.image_initializer import ImageInitializer
from ekiden.runner.worker import Worker
from ekiden.shared import IterationResult
from ekiden.utils.platform_utils import require_dependencies

Logger = Union[logging.Logger, logging.LoggerAdapter]

DEFAULT_FLAG_POLL_INTERVAL = 1.0


class SupportsRun(Protocol):
    def run(self) -> Awaitable[IterationResult]: ...


WorkerFactory = Callable[[int], SupportsRun]


def shutdown_flag_path(config: Config) -> Optional[Path]:
    """Resolve the shutdown flag file, or None when none is configured."""
    if not config.options.shutdown_flag_file.strip():
        return None
    flag = Path(config.options.shutdown_flag_file).expanduser()
    if not flag.is_absolute() and config.options.working_directory:
        flag = Path(config.options.working_directory).expanduser() / flag
    return flag


class Dispatcher:
    """Keep up to N runner iterations in flight until shutdown is requested.

    Slots are ids in an ``asyncio.Queue``; a worker task holds its slot for
    its whole iteration and always puts it back when it finishes.
    """

    def __init__(
        self,
        config: Config,
        *,
        image_initializer: ImageInitializer,
        worker_factory: WorkerFactory,
        logger: Optional[Logger] = None,
        stop_event: Optional[asyncio.Event] = None,
        flag_poll_interval: float = DEFAULT_FLAG_POLL_INTERVAL,
    ) -> None:
        self.config = config
        self.logger: Logger = logger or logging.getLogger(__name__)
        self.image_initializer = image_initializer
        self.worker_factory = worker_factory
        self.stop_event = stop_event or asyncio.Event()
        self.flag_poll_interval = flag_poll_interval
        self.flag_path = shutdown_flag_path(config)

        self._slots: asyncio.Queue[int] = asyncio.Queue()
        self._tasks: Set[asyncio.Task] = set()
        self._forced = False
        self.stats: Dict[str, int] = {
            "iterations": 0,
            "completed": 0,
            "failed": 0,
            "canceled": 0,
            "crashed": 0,
        }

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def request_stop(self, *, force: bool = False) -> None:
        """Ask for a graceful drain; ``force`` also cancels in-flight workers."""
        if not self.stop_event.is_set():
            self.logger.info("Shutdown requested, waiting for running workers")
            self.stop_event.set()
        if force and not self._forced:
            self._forced = True
            self.logger.warning(
                "Forced shutdown, cancelling %d worker(s)", len(self._tasks)
            )
            for task in list(self._tasks):
                task.cancel()

    def _flag_present(self) -> bool:
        return self.flag_path is not None and self.flag_path.exists()

    def _should_stop(self) -> bool:
        if self.stop_event.is_set():
            return True
        if self._flag_present():
            self.logger.info("Shutdown flag file detected: %s", self.flag_path)
            self.stop_event.set()
            return True
        return False

    async def run(self) -> None:
        """Initialize the image, then dispatch workers until told to stop."""
        image = await self.image_initializer.ensure_image()
        self.logger.info(
            "Image ready: %s, dispatching up to %d runner(s)",
            image.resolved,
            self.config.concurrency,
        )
        for slot in range(self.config.concurrency):
            self._slots.put_nowait(slot)

        try:
            while not self._should_stop():
                slot = await self._acquire_slot()
                if slot is None:
                    break
                if self._should_stop():
                    self._slots.put_nowait(slot)
                    break
                self._spawn(slot)
        finally:
            await self._drain()
        self.logger.info(
            "Dispatcher stopped",
            extra={f"stats_{key}": value for key, value in self.stats.items()},
        )

    async def _acquire_slot(self) -> Optional[int]:
        """Wait for a free slot, returning None once shutdown is requested."""
        while True:
            try:
                return self._slots.get_nowait()
            except asyncio.QueueEmpty:
                pass
            get = asyncio.ensure_future(self._slots.get())
            stop = asyncio.ensure_future(self.stop_event.wait())
            try:
                await asyncio.wait(
                    {get, stop},
                    timeout=self.flag_poll_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                stop.cancel()
                if not get.done():
                    get.cancel()
            if get.done() and not get.cancelled():
                return get.result()
            if self._should_stop():
                return None

    def _spawn(self, slot: int) -> None:
        self.stats["iterations"] += 1
        task = asyncio.create_task(self._run_worker(slot), name=f"worker-slot-{slot}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.logger.debug("Slot %d acquired, worker spawned", slot)

    async def _run_worker(self, slot: int) -> None:
        try:
            worker = self.worker_factory(slot)
            result = await worker.run()
            self._record(result)
        except asyncio.CancelledError:
            self.stats["canceled"] += 1
            self.logger.info("Worker in slot %d cancelled", slot)
        except Exception:
            self.stats["crashed"] += 1
            self.logger.exception("Unexpected error in worker for slot %d", slot)
        finally:
            self._slots.put_nowait(slot)

    def _record(self, result: IterationResult) -> None:
        if result.success:
            self.stats["completed"] += 1
        elif result.canceled:
            self.stats["canceled"] += 1
        else:
            self.stats["failed"] += 1

    async def _drain(self) -> None:
        if not self._tasks:
            return
        self.logger.info("Waiting for %d running worker(s) to finish", len(self._tasks))
        await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def install_signal_handlers(self) -> Callable[[], None]:
        """Route SIGINT/SIGTERM to ``request_stop``; returns an uninstaller."""
        loop = asyncio.get_running_loop()
        installed = []

        def _on_signal(signum: int) -> None:
            name = signal.Signals(signum).name
            if self.stop_event.is_set():
                self.logger.warning("Received %s again, forcing shutdown", name)
                self.request_stop(force=True)
            else:
                self.logger.info("Received %s, finishing running jobs", name)
                self.request_stop()

        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, _on_signal, signum)
                installed.append(signum)
            except (NotImplementedError, RuntimeError):
                self.logger.debug("Signal handler for %s unavailable", signum)

        def _uninstall() -> None:
            for signum in installed:
                loop.remove_signal_handler(signum)

        return _uninstall


async def run(
    config: Config,
    logger: Optional[Logger] = None,
    *,
    stop_event: Optional[asyncio.Event] = None,
    event_callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    install_signals: bool = True,
) -> Dict[str, int]:
    """Run ephemeral runners until a shutdown is requested.

    Checks host tools, wires the collaborators together and drives the
    dispatcher. Returns the dispatcher's iteration counters.
    """
    log: Logger = logger or logging.getLogger("ekiden")
    require_dependencies()
    stop_event = stop_event or asyncio.Event()

    async with TokenProvider(config.github) as token_provider:
        initializer = ImageInitializer(config, logger=log, stop_event=stop_event)

        def _make_worker(slot: int) -> Worker:
            return Worker(
                slot,
                config,
                token_provider=token_provider,
                image_initializer=initializer,
                stop_event=stop_event,
                logger=log,
                event_callback=event_callback,
            )

        dispatcher = Dispatcher(
            config,
            image_initializer=initializer,
            worker_factory=_make_worker,
            logger=log,
            stop_event=stop_event,
        )
        uninstall = dispatcher.install_signal_handlers() if install_signals else None
        try:
            await dispatcher.run()
        finally:
            if uninstall is not None:
                uninstall()
    return dict(dispatcher.stats)


__all__ = [
    "DEFAULT_FLAG_POLL_INTERVAL",
    "Dispatcher",
    "WorkerFactory",
    "run",
    "shutdown_flag_path",
]
