"""Image reference resolution and address checks for tart VMs."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from ekiden.config.models import RegistryConfig

_IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")


def registry_path(registry_url: str, image_name: str) -> str:
    """Return the full registry reference for ``image_name``.

    An empty registry URL leaves the name untouched, and a name that already
    carries the registry prefix is not prefixed twice.
    """
    if not registry_url:
        return image_name
    prefix = registry_url.rstrip("/") + "/"
    if image_name.startswith(prefix):
        return image_name
    return f"{prefix}{image_name}"


def tart_home(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Return tart's data directory (``$TART_HOME`` or ``~/.tart``)."""
    env = os.environ if environ is None else environ
    override = env.get("TART_HOME")
    return Path(override) if override else Path.home() / ".tart"


def oci_cache_dir(home: Optional[Path] = None) -> Path:
    return (home or tart_home()) / "cache" / "OCIs"


def cache_path(reference: str, home: Optional[Path] = None) -> Path:
    """Return the local OCI cache directory for a registry ``reference``."""
    return oci_cache_dir(home).joinpath(*reference.replace(":", "/").split("/"))


def split_tag(reference: str) -> Tuple[str, str]:
    """Split ``name:tag``; a colon inside a host:port prefix is not a tag."""
    name, sep, tag = reference.rpartition(":")
    if sep and name and "/" not in tag:
        return name, tag
    return reference, ""


def repository_cache_dir(reference: str, home: Optional[Path] = None) -> Path:
    """Return the cache directory holding every tag of ``reference``."""
    return cache_path(split_tag(reference)[0], home)


def vm_dir(instance_name: str, home: Optional[Path] = None) -> Path:
    return (home or tart_home()) / "vms" / instance_name


def is_valid_ipv4(text: str) -> bool:
    """Return True for a dotted-quad IPv4 address with octets in 0-255."""
    match = _IPV4_RE.match(text or "")
    if not match:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


@dataclass(frozen=True, slots=True)
class ImageRef:
    """A base image as configured and as resolved against the local cache."""

    image_name: str
    registry_path: str
    resolved: str

    @classmethod
    def from_registry(cls, registry: RegistryConfig) -> "ImageRef":
        path = registry_path(registry.url, registry.image_name)
        return cls(image_name=registry.image_name, registry_path=path, resolved=path)

    @property
    def local_name(self) -> str:
        """The configured image name without its tag."""
        return split_tag(self.image_name)[0]

    def resolve(self, reference: str) -> "ImageRef":
        return ImageRef(
            image_name=self.image_name,
            registry_path=self.registry_path,
            resolved=reference,
        )

    def match_listing(self, listing: str) -> Optional[str]:
        """Return the first reference found in ``tart list`` output, if any."""
        candidates = [self.image_name]
        if self.local_name != self.image_name:
            candidates.append(self.local_name)
        if self.registry_path != self.image_name:
            candidates.append(self.registry_path)
        for candidate in candidates:
            if candidate and candidate in listing:
                return candidate
        return None


__all__ = [
    "ImageRef",
    "cache_path",
    "is_valid_ipv4",
    "oci_cache_dir",
    "registry_path",
    "repository_cache_dir",
    "split_tag",
    "tart_home",
    "vm_dir",
]
