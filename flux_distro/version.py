"""Library for parsing distribution versions and semver constraints.

Distribution trees store one directory per released version (e.g. `v2.6.1`).
A distribution may be requested with an exact version or a constraint:

```python
from flux_distro import version

ver = version.match_version(Path("/tmp/flux"), "2.x")
```

Supported constraint forms are exact versions, wildcards (`2.x`, `2.3.*`,
`*`), tilde (`~2.3`) and caret (`^2.3`) ranges, comparisons (`>=2.3.0`),
space or comma separated conjunctions and `||` separated alternatives.
"""

from collections.abc import Callable
import logging
from pathlib import Path
import re

import semver

from .exceptions import VersionException

__all__ = [
    "parse_version",
    "Constraint",
    "match_version",
    "check_minimum_version",
]

_LOGGER = logging.getLogger(__name__)

_WILDCARDS = {"x", "X", "*"}
_OPERATOR_SPACE_RE = re.compile(r"(>=|<=|!=|=|>|<|~|\^)\s+")
_COMPARATOR_RE = re.compile(r"^(>=|<=|!=|=|>|<|~|\^)?v?([0-9xX*][0-9A-Za-z.*+-]*)$")

Predicate = Callable[[semver.Version], bool]


def parse_version(value: str) -> semver.Version:
    """Parse a version string with an optional `v` prefix."""
    try:
        return semver.Version.parse(value.strip().removeprefix("v"))
    except (ValueError, TypeError) as err:
        raise VersionException(f"failed to parse Flux version '{value}': {err}") from err


def _partial(value: str, raw: str) -> tuple[list[int], semver.Version]:
    """Parse a possibly partial version into its fixed parts and lower bound."""
    core = value.partition("+")[0]
    core, sep, rest = core.partition("-")
    parts: list[int] = []
    for item in core.split("."):
        if item in _WILDCARDS:
            break
        if not item.isdigit():
            raise VersionException(f"invalid version constraint '{raw}'")
        parts.append(int(item))
    if len(parts) > 3:
        raise VersionException(f"invalid version constraint '{raw}'")
    padded = parts + [0] * (3 - len(parts))
    prerelease = rest if sep and len(parts) == 3 else None
    return parts, semver.Version(*padded, prerelease=prerelease)


def _bump(parts: list[int], index: int) -> semver.Version:
    """Return the exclusive upper bound when bumping the part at index."""
    bumped = parts[: index + 1]
    bumped[index] += 1
    return semver.Version(*(bumped + [0] * (3 - len(bumped))))


def _comparator(token: str, raw: str) -> Predicate:
    if not (match := _COMPARATOR_RE.match(token)):
        raise VersionException(f"invalid version constraint '{raw}'")
    op, value = match.group(1) or "", match.group(2)
    parts, low = _partial(value, raw)

    if op in ("", "="):
        if not parts:
            return lambda v: True
        if len(parts) == 3:
            return lambda v: v == low
        high = _bump(parts, len(parts) - 1)
        return lambda v: low <= v < high
    if op == "!=":
        return lambda v: v != low
    if op == ">":
        if len(parts) < 3 and parts:
            high = _bump(parts, len(parts) - 1)
            return lambda v: v >= high
        return lambda v: v > low
    if op == ">=":
        return lambda v: v >= low
    if op == "<":
        return lambda v: v < low
    if op == "<=":
        if len(parts) < 3 and parts:
            high = _bump(parts, len(parts) - 1)
            return lambda v: v < high
        return lambda v: v <= low
    if op == "~":
        high = _bump(parts, min(len(parts), 2) - 1) if parts else None
        return lambda v: v >= low and (high is None or v < high)
    # Caret allows changes that do not modify the left-most non-zero part.
    index = next((i for i, part in enumerate(parts) if part != 0), len(parts) - 1)
    high = _bump(parts, index) if parts else None
    return lambda v: v >= low and (high is None or v < high)


class Constraint:
    """A parsed semver constraint expression."""

    def __init__(self, expr: str) -> None:
        """Initialize Constraint, raising VersionException on invalid syntax."""
        self._expr = expr
        if not expr.strip():
            raise VersionException("invalid version constraint ''")
        self._groups: list[tuple[list[Predicate], bool]] = []
        for group in expr.split("||"):
            normalized = _OPERATOR_SPACE_RE.sub(r"\1", group.replace(",", " "))
            tokens = normalized.split()
            if not tokens:
                raise VersionException(f"invalid version constraint '{expr}'")
            allows_prerelease = any("-" in token for token in tokens)
            self._groups.append(
                ([_comparator(token, expr) for token in tokens], allows_prerelease)
            )

    def check(self, version: semver.Version) -> bool:
        """Return true if the version satisfies the constraint."""
        for predicates, allows_prerelease in self._groups:
            if version.prerelease and not allows_prerelease:
                continue
            if all(predicate(version) for predicate in predicates):
                return True
        return False

    def __str__(self) -> str:
        """Return the original expression."""
        return self._expr


def match_version(manifests_dir: Path, expr: str) -> str:
    """Return the highest version directory in the tree matching the constraint."""
    if not manifests_dir.is_dir():
        raise VersionException(f"distribution directory not found: {manifests_dir}")
    constraint = Constraint(expr)
    candidates: list[tuple[semver.Version, str]] = []
    for entry in manifests_dir.iterdir():
        if not entry.is_dir():
            continue
        try:
            ver = parse_version(entry.name)
        except VersionException:
            _LOGGER.debug("Skipping non-version directory %s", entry.name)
            continue
        if constraint.check(ver):
            candidates.append((ver, entry.name))
    if not candidates:
        raise VersionException(
            f"no match found for version '{expr}' in {manifests_dir}"
        )
    return max(candidates)[1]


def check_minimum_version(value: str, minimum: str) -> None:
    """Raise VersionException if the version is lower than the minimum."""
    if parse_version(value) < parse_version(minimum):
        raise VersionException(
            f"version {value} is less than the minimum supported version {minimum}"
        )
