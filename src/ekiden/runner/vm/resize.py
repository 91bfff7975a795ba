"""Grow the cached base image's disk using a disposable probe VM."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from ekiden.exceptions import EkidenError, RemoteCommandError, VMError
from ekiden.runner.commands import CommandRunner, run_command
from ekiden.runner.remote import RemoteExecutor
from ekiden.runner.vm.controller import VMController, VMProcess
from ekiden.runner.vm.images import ImageRef, cache_path, vm_dir

Logger = Union[logging.Logger, logging.LoggerAdapter]

PROBE_INSTANCE = "truncate_instance"
RESIZE_COMMANDS = (
    "echo y | diskutil repairDisk disk0",
    "diskutil apfs resizeContainer disk0s2 0",
)
PROBE_EXIT_GRACE = 30.0


async def resize_cached_image(
    image: ImageRef,
    size: str,
    *,
    controller: VMController,
    remote: RemoteExecutor,
    runner: CommandRunner = run_command,
    home: Optional[Path] = None,
    logger: Optional[Logger] = None,
) -> None:
    """Truncate the cached disk to ``size`` and grow the guest filesystem.

    The probe VM is torn down on every exit path.
    """
    log = logger or logging.getLogger(__name__)
    disk = cache_path(image.registry_path, home) / "disk.img"
    log.info("Resizing cached image disk to %s", size, extra={"disk": str(disk)})

    result = await runner(["truncate", "-s", size, str(disk)])
    if not result.ok:
        raise VMError(f"truncate failed (exit {result.code}): {result.output.strip()}")

    vm: Optional[VMProcess] = None
    try:
        await controller.clone(PROBE_INSTANCE)
        vm = await controller.start(PROBE_INSTANCE)
        ip = await controller.wait_for_address(PROBE_INSTANCE)
        await remote.wait_for_ready(ip)
        for command in RESIZE_COMMANDS:
            try:
                await remote.execute(ip, command)
            except RemoteCommandError as exc:
                log.warning("Resize step %r exited %s", command, exc.exit_code)

        try:
            await controller.stop(PROBE_INSTANCE)
        except EkidenError as exc:
            log.warning("Failed to stop probe VM: %s", exc)
        await vm.wait_exit(PROBE_EXIT_GRACE)

        probe_disk = vm_dir(PROBE_INSTANCE, home) / "disk.img"
        disk.unlink(missing_ok=True)
        result = await runner(["cp", "-c", str(probe_disk), str(disk)])
        if not result.ok:
            raise VMError(
                f"failed to copy resized disk (exit {result.code}): "
                f"{result.output.strip()}"
            )
    except EkidenError:
        controller.fail()
        raise
    finally:
        if vm is not None:
            vm.detach()
        await controller.cleanup(PROBE_INSTANCE)

    log.info("Disk resized successfully")


__all__ = ["PROBE_INSTANCE", "RESIZE_COMMANDS", "resize_cached_image"]
