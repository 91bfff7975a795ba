"""Run-once population of the local tart image cache."""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from ekiden.config.models import Config
from ekiden.exceptions import ConfigurationError, VMError
from ekiden.runner.commands import CommandRunner, run_command
from ekiden.runner.once import RunOnce
from ekiden.runner.remote import RemoteExecutor
from ekiden.runner.vm.controller import VMController
from ekiden.runner.vm.images import ImageRef, repository_cache_dir
from ekiden.runner.vm.resize import resize_cached_image

Logger = Union[logging.Logger, logging.LoggerAdapter]


class ImageInitializer:
    """Make sure a usable base image is cached before any worker starts.

    ``ensure_image`` may be awaited from any number of places; the work runs
    once per initializer and every caller shares its result or error.
    """

    def __init__(
        self,
        config: Config,
        *,
        logger: Optional[Logger] = None,
        runner: CommandRunner = run_command,
        controller_factory: Optional[Callable[[ImageRef], VMController]] = None,
        remote_factory: Optional[Callable[[], RemoteExecutor]] = None,
        stop_event: Optional[asyncio.Event] = None,
        home: Optional[Path] = None,
        tart_binary: str = "tart",
    ) -> None:
        self.config = config
        self.logger: Logger = logger or logging.getLogger(__name__)
        self._runner = runner
        self._stop_event = stop_event
        self._home = home
        self._tart = tart_binary
        self._controller_factory = controller_factory or self._default_controller
        self._remote_factory = remote_factory or self._default_remote
        self._once: RunOnce[ImageRef] = RunOnce(self._initialize)

    async def ensure_image(self) -> ImageRef:
        return await self._once()

    def _default_controller(self, image: ImageRef) -> VMController:
        return VMController(
            image,
            logger=self.logger,
            runner=self._runner,
            stop_event=self._stop_event,
            tart_binary=self._tart,
        )

    def _default_remote(self) -> RemoteExecutor:
        return RemoteExecutor(
            self.config.vm,
            self.config.github,
            logger=self.logger,
            runner=self._runner,
            stop_event=self._stop_event,
        )

    def _registry_env(self) -> Dict[str, str]:
        registry = self.config.registry
        if not registry.username:
            return {}
        return {
            "TART_REGISTRY_USERNAME": registry.username,
            "TART_REGISTRY_PASSWORD": registry.password,
        }

    async def _initialize(self) -> ImageRef:
        image = ImageRef.from_registry(self.config.registry)
        await self.login()

        found = await self.find_cached(image)
        if found is not None:
            self.logger.info("Using cached image %s", found)
            return image.resolve(found)

        self.logger.info("Image not found locally, pulling from registry")
        if not self.config.registry.url:
            raise ConfigurationError(
                "image not found and no registry URL configured"
            )
        await self.pull(image)
        image = image.resolve(image.registry_path)

        if self.config.options.truncate_size:
            await resize_cached_image(
                image,
                self.config.options.truncate_size,
                controller=self._controller_factory(image),
                remote=self._remote_factory(),
                runner=self._runner,
                home=self._home,
                logger=self.logger,
            )
        return image

    async def login(self) -> None:
        """Authenticate with the registry when credentials are configured."""
        registry = self.config.registry
        if not registry.has_credentials:
            return
        self.logger.info("Logging in to registry %s", registry.url)
        result = await self._runner(
            [self._tart, "login", registry.url], env=self._registry_env()
        )
        if not result.ok:
            raise VMError(
                f"registry login failed (exit {result.code}): {result.output.strip()}"
            )

    async def find_cached(self, image: ImageRef) -> Optional[str]:
        """Return the cached reference matching ``image``, if any."""
        result = await self._runner([self._tart, "list"])
        if not result.ok:
            raise VMError(f"tart list failed (exit {result.code}): {result.output.strip()}")
        return image.match_listing(result.output)

    async def pull(self, image: ImageRef) -> None:
        self._prune_stale_cache(image)
        self.logger.info("Pulling VM image %s", image.registry_path)
        result = await self._runner(
            [self._tart, "pull", image.registry_path, "--concurrency", "1"],
            env=self._registry_env(),
            on_line=lambda line: self.logger.info("%s", line, extra={"stream": "tart"}),
        )
        if not result.ok:
            raise VMError(f"tart pull failed (exit {result.code})")

    def _prune_stale_cache(self, image: ImageRef) -> None:
        # Drops every cached tag of this image so a partial pull cannot linger.
        stale = repository_cache_dir(image.registry_path, self._home)
        if not stale.exists():
            return
        self.logger.info("Removing old cached images under %s", stale)
        try:
            shutil.rmtree(stale)
        except OSError as exc:
            self.logger.warning("Failed to remove old cached images: %s", exc)


__all__ = ["ImageInitializer"]
