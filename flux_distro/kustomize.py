"""Library for running kustomize to build the distribution overlays.

The distribution tree is assembled on disk with a root `kustomization.yaml`
and `kustomize build` flattens it into a single multi-document stream:

```python
from flux_distro import kustomize

objects = await kustomize.build(Path('/tmp/flux-build')).objects()
for object in objects:
    print(f"Found object {object['apiVersion']} {object['kind']}")
```
"""

from aiofiles.ospath import isdir
import logging
from pathlib import Path
from typing import Any

import yaml

from .command import Command, Task, run
from .exceptions import KustomizeException

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "build",
    "Kustomize",
]

KUSTOMIZE_BIN = "kustomize"


class Kustomize:
    """Library for issuing a kustomize command."""

    def __init__(self, task: Task) -> None:
        """Initialize Kustomize."""
        self._task = task

    async def run(self) -> str:
        """Run the kustomize command and return the output as a string."""
        return await run(self._task)

    async def objects(self) -> list[dict[str, Any]]:
        """Run the kustomize command and return the result cluster objects as a list."""
        out = await self.run()
        try:
            return [doc for doc in yaml.safe_load_all(out) if doc is not None]
        except yaml.YAMLError as err:
            raise KustomizeException(
                f"Unable to parse command output: {self._task}: {err}"
            ) from err


class KustomizeBuild(Task):
    """A task that issues a kustomize build command for a directory."""

    def __init__(self, path: Path) -> None:
        """Initialize KustomizeBuild."""
        self._path = path

    async def run(self) -> bytes:
        """Run the task."""
        if not await isdir(self._path):
            raise KustomizeException(f"Kustomize path is not a directory: {self._path}")
        task = Command([KUSTOMIZE_BIN, "build", "."], cwd=self._path, exc=KustomizeException)
        return await task.run()

    def __str__(self) -> str:
        """Render as a debug string."""
        return f"kustomize build {self._path}"


def build(path: Path) -> Kustomize:
    """Build cluster artifacts from the specified path."""
    return Kustomize(KustomizeBuild(path))
