"""Runner core: dispatching, per-slot workers and their collaborators."""

from ekiden.runner.commands import CommandResult, run_command
from ekiden.runner.dispatcher import Dispatcher, run
from ekiden.runner.remote import RemoteExecutor
from ekiden.runner.token_provider import RegistrationToken, TokenProvider
from ekiden.runner.vm import ImageInitializer, ImageRef, VMController
from ekiden.runner.worker import Worker, instance_name_for

__all__ = [
    "CommandResult",
    "Dispatcher",
    "ImageInitializer",
    "ImageRef",
    "RegistrationToken",
    "RemoteExecutor",
    "TokenProvider",
    "VMController",
    "Worker",
    "instance_name_for",
    "run",
    "run_command",
]
