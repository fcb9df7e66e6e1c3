"""Tests for the preflight checks."""

from pathlib import Path

import pytest

from flux_distro.exceptions import InputException, VersionException
from flux_distro.preflight import (
    check_os_minimum_version,
    parse_os_release,
    preflight_checks,
)

OS_RELEASE = """
NAME="Alpine Linux"
ID=alpine
VERSION_ID=3.21.3
PRETTY_NAME="Alpine Linux v3.21"
# comment
HOME_URL="https://alpinelinux.org/"
"""

CONTAINER_OS = {"alpine": 3, "distroless": 12}


@pytest.fixture(name="storage_path")
def storage_path_fixture(tmp_path: Path) -> Path:
    """Fixture with local storage holding a distribution version."""
    storage = tmp_path / "storage"
    (storage / "flux-images").mkdir(parents=True)
    (storage / "flux-images" / "VERSION").write_text("v2.6.0\n")
    return storage


@pytest.fixture(name="os_release")
def os_release_fixture(tmp_path: Path) -> Path:
    """Fixture with an os-release file."""
    path = tmp_path / "os-release"
    path.write_text(OS_RELEASE)
    return path


@pytest.fixture(name="in_cluster")
def in_cluster_fixture(monkeypatch: pytest.MonkeyPatch) -> None:
    """Fixture to run as if in-cluster."""
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.0.0.1")


def test_parse_os_release() -> None:
    """Test parsing os-release files."""
    info = parse_os_release(OS_RELEASE)
    assert info["ID"] == "alpine"
    assert info["VERSION_ID"] == "3.21.3"
    assert info["PRETTY_NAME"] == "Alpine Linux v3.21"
    assert info["HOME_URL"] == "https://alpinelinux.org/"


def test_parse_os_release_missing_version() -> None:
    """Test the version is required."""
    with pytest.raises(InputException, match="missing VERSION_ID"):
        parse_os_release('ID=alpine\nPRETTY_NAME="Alpine"\n')


@pytest.mark.parametrize(
    ("os_info", "expected"),
    [
        ({"ID": "alpine", "VERSION_ID": "3.21.3"}, True),
        ({"ID": "alpine", "VERSION_ID": "2.9"}, False),
        ({"ID": "debian", "PRETTY_NAME": "Distroless", "VERSION_ID": "12"}, True),
        ({"ID": "ubuntu", "VERSION_ID": "24.04"}, False),
        ({"ID": "alpine", "VERSION_ID": "edge"}, False),
    ],
)
def test_check_os_minimum_version(os_info: dict[str, str], expected: bool) -> None:
    """Test the supported operating systems."""
    assert check_os_minimum_version(CONTAINER_OS, os_info) == expected


def test_not_in_cluster(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Test nothing is checked outside a cluster."""
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    preflight_checks(tmp_path / "missing")


@pytest.mark.usefixtures("in_cluster")
def test_preflight_checks(storage_path: Path, os_release: Path) -> None:
    """Test a supported environment."""
    preflight_checks(storage_path, container_os=CONTAINER_OS, os_release=os_release)


@pytest.mark.usefixtures("in_cluster")
def test_missing_storage(tmp_path: Path, os_release: Path) -> None:
    """Test the storage must exist."""
    with pytest.raises(InputException, match="does not exist"):
        preflight_checks(
            tmp_path / "missing", container_os=CONTAINER_OS, os_release=os_release
        )


@pytest.mark.usefixtures("in_cluster")
def test_missing_version_file(tmp_path: Path, os_release: Path) -> None:
    """Test the storage must hold the version info."""
    with pytest.raises(InputException, match="failed to read Flux version info"):
        preflight_checks(tmp_path, container_os=CONTAINER_OS, os_release=os_release)


@pytest.mark.usefixtures("in_cluster")
def test_version_too_old(storage_path: Path, os_release: Path) -> None:
    """Test the version in storage must be supported."""
    (storage_path / "flux-images" / "VERSION").write_text("v2.1.0")
    with pytest.raises(VersionException, match="version compatibility check failed"):
        preflight_checks(
            storage_path, container_os=CONTAINER_OS, os_release=os_release
        )


@pytest.mark.usefixtures("in_cluster")
def test_unsupported_os(storage_path: Path, os_release: Path) -> None:
    """Test the container operating system must be supported."""
    with pytest.raises(InputException, match="unsupported container OS version"):
        preflight_checks(
            storage_path, container_os={"distroless": 12}, os_release=os_release
        )


@pytest.mark.usefixtures("in_cluster")
def test_default_container_os(storage_path: Path, tmp_path: Path) -> None:
    """Test the operating systems of the published images are supported."""
    os_release = tmp_path / "distroless-release"
    os_release.write_text(
        'PRETTY_NAME="Distroless"\nID=debian\nVERSION_ID="12"\nVERSION="Debian 12"\n'
    )
    preflight_checks(storage_path, os_release=os_release)
