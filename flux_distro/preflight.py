"""Checks that the build environment can produce distributions in-cluster.

When running inside a cluster the distribution manifests are read from
local storage, which must hold a supported Flux version, and the container
must run one of the supported operating systems.
"""

import logging
import os
from pathlib import Path

from .exceptions import InputException, VersionException
from .version import check_minimum_version

__all__ = [
    "parse_os_release",
    "check_os_minimum_version",
    "preflight_checks",
]

_LOGGER = logging.getLogger(__name__)

MIN_VERSION = "2.2.0"
OS_RELEASE = Path("/etc/os-release")
VERSION_FILE = Path("flux-images") / "VERSION"

# Operating systems of the published images, with their minimum major version
CONTAINER_OS = {"distroless": 12, "rhel": 8}


def parse_os_release(content: str) -> dict[str, str]:
    """Parse the contents of an os-release file into key value pairs."""
    result = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        result[key.strip()] = value
    if "VERSION_ID" not in result:
        raise InputException("missing VERSION_ID in OS release information")
    return result


def check_os_minimum_version(
    os_versions: dict[str, int], os_info: dict[str, str]
) -> bool:
    """Return true if the OS is one of the supported names at the minimum version."""
    pretty_name = os_info.get("PRETTY_NAME", "").lower()
    os_id = os_info.get("ID", "").lower()
    minimum = next(
        (
            version
            for name, version in os_versions.items()
            if name.lower() in (pretty_name, os_id)
        ),
        None,
    )
    if minimum is None:
        return False
    major = os_info.get("VERSION_ID", "").split(".")[0]
    if not major.isdigit():
        return False
    return int(major) >= minimum


def preflight_checks(
    storage_path: Path,
    min_version: str = MIN_VERSION,
    container_os: dict[str, int] | None = None,
    os_release: Path = OS_RELEASE,
) -> None:
    """Verify the environment when running in-cluster, raising on failure.

    Outside a cluster there is nothing to check.
    """
    if not os.environ.get("KUBERNETES_SERVICE_HOST"):
        _LOGGER.debug("Not running in-cluster, skipping preflight checks")
        return

    if not storage_path.exists():
        raise InputException(f"storage path {storage_path} does not exist")

    version_path = storage_path / VERSION_FILE
    try:
        version = version_path.read_text().strip()
    except OSError as err:
        raise InputException(
            f"failed to read Flux version info from {version_path}: {err}"
        ) from err
    try:
        check_minimum_version(version, min_version)
    except VersionException as err:
        raise VersionException(f"version compatibility check failed: {err}") from err

    try:
        content = os_release.read_text()
    except OSError as err:
        raise InputException(f"failed to read {os_release}: {err}") from err
    os_info = parse_os_release(content)
    if not check_os_minimum_version(container_os or CONTAINER_OS, os_info):
        raise InputException(
            f"unsupported container OS version: {os_info.get('VERSION', '')}"
        )
