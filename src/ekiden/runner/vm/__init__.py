"""Tart VM lifecycle, image references and image cache initialization."""

from ekiden.runner.vm.controller import VMController, VMProcess
from ekiden.runner.vm.image_initializer import ImageInitializer
from ekiden.runner.vm.images import ImageRef, is_valid_ipv4, registry_path

__all__ = [
    "ImageInitializer",
    "ImageRef",
    "VMController",
    "VMProcess",
    "is_valid_ipv4",
    "registry_path",
]
