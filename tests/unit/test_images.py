from pathlib import Path

import pytest

from ekiden.config.models import RegistryConfig
from ekiden.runner.vm.images import (
    ImageRef,
    cache_path,
    is_valid_ipv4,
    registry_path,
    repository_cache_dir,
    split_tag,
    tart_home,
)


def test_registry_path_prefixes_image_name() -> None:
    assert registry_path("ghcr.io/acme", "macos:14") == "ghcr.io/acme/macos:14"


def test_registry_path_never_double_prefixes() -> None:
    assert registry_path("ghcr.io/acme", "ghcr.io/acme/macos:14") == "ghcr.io/acme/macos:14"
    assert registry_path("ghcr.io/acme/", "ghcr.io/acme/macos:14") == "ghcr.io/acme/macos:14"


def test_registry_path_without_url_is_verbatim() -> None:
    assert registry_path("", "macos:14") == "macos:14"


@pytest.mark.parametrize("text", ["192.168.64.10", "0.0.0.0", "255.255.255.255"])
def test_valid_ipv4(text: str) -> None:
    assert is_valid_ipv4(text)


@pytest.mark.parametrize(
    "text", ["", "not-an-ip", "1.2.3", "256.1.1.1", "1.2.3.4.5", " 1.2.3.4"]
)
def test_invalid_ipv4(text: str) -> None:
    assert not is_valid_ipv4(text)


def test_split_tag_ignores_registry_port() -> None:
    assert split_tag("ghcr.io/acme/macos:14") == ("ghcr.io/acme/macos", "14")
    assert split_tag("localhost:5000/macos") == ("localhost:5000/macos", "")


def test_cache_path_replaces_colons(tmp_path: Path) -> None:
    path = cache_path("ghcr.io/acme/macos:14", tmp_path)
    assert path == tmp_path / "cache" / "OCIs" / "ghcr.io" / "acme" / "macos" / "14"


def test_repository_cache_dir_is_per_image(tmp_path: Path) -> None:
    path = repository_cache_dir("ghcr.io/acme/macos:14", tmp_path)
    assert path == tmp_path / "cache" / "OCIs" / "ghcr.io" / "acme" / "macos"


def test_tart_home_honours_env(tmp_path: Path) -> None:
    assert tart_home({"TART_HOME": str(tmp_path)}) == tmp_path
    assert tart_home({}) == Path.home() / ".tart"


def test_match_listing_prefers_configured_name() -> None:
    image = ImageRef.from_registry(RegistryConfig(image_name="macos:14", url="ghcr.io/acme"))
    listing = "Source Name\nlocal macos:14\noci ghcr.io/acme/macos:14\n"
    assert image.match_listing(listing) == "macos:14"


def test_match_listing_falls_back_to_untagged_and_registry_path() -> None:
    image = ImageRef.from_registry(RegistryConfig(image_name="macos:15", url="ghcr.io/acme"))
    assert image.match_listing("local macos\n") == "macos"

    image = ImageRef.from_registry(
        RegistryConfig(image_name="ghcr.io/acme/macos:15", url="ghcr.io/acme")
    )
    assert image.match_listing("oci ghcr.io/acme/macos:15 50 GB") == "ghcr.io/acme/macos:15"


def test_match_listing_returns_none_when_absent() -> None:
    image = ImageRef.from_registry(RegistryConfig(image_name="macos:14", url="ghcr.io/acme"))
    assert image.match_listing("local ubuntu:22.04\n") is None
    assert image.resolve("x").registry_path == "ghcr.io/acme/macos:14"
