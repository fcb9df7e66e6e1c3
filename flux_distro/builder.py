"""Library for building a distribution into a set of Kubernetes objects.

The versioned distribution tree is copied into a work directory, the support
files (namespace, transformers, patches, overlays) are generated next to the
component manifests and `kustomize` flattens the result:

```python
from flux_distro import builder, options

opts = options.default_options()
opts.version = "v2.6.0"
result = await builder.build(Path("/distribution/v2.6.0"), Path("/tmp/build"), opts)
print(result.revision)
for obj in result.objects:
    print(f"Found object {obj['kind']} {obj['metadata']['name']}")
```

The build either returns a complete result or raises, a partial set of
objects is never returned.
"""

import asyncio
from collections.abc import Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
import logging
from pathlib import Path
import shutil
from typing import Any

import aiofiles
from aiofiles.os import makedirs
from aiofiles.ospath import exists, isdir
import jinja2
import yaml

from . import context, kustomize, manifest, templates
from .exceptions import (
    BuildException,
    FluxDistroException,
    KustomizeException,
)
from .images import extract_component_images
from .options import (
    NOTIFICATION_CONTROLLER,
    ComponentImage,
    Options,
)

__all__ = [
    "build",
    "Result",
]

_LOGGER = logging.getLogger(__name__)

RBAC_FILE = "rbac.yaml"
ROLES_DIR = "roles"
TOKEN_RESOURCE = "serviceaccounts/token"

# Controllers that are replicated for each shard
SHARDED_CONTROLLERS = [
    "source-controller",
    "kustomize-controller",
    "helm-controller",
]

Overlay = Callable[[Path], kustomize.Kustomize]


@dataclass(frozen=True)
class Result:
    """The outcome of a distribution build."""

    version: str
    """The distribution version that was built."""

    digest: str
    """Algorithm prefixed digest of the flattened manifests."""

    revision: str
    """The version and digest as `version@digest`."""

    objects: list[dict[str, Any]] = field(default_factory=list)
    """The objects in the order they are applied to a cluster."""

    component_images: list[ComponentImage] = field(default_factory=list)
    """The images of the distribution components."""


@contextmanager
def _stage(name: str) -> Generator[None, None, None]:
    with context.stage(name):
        try:
            yield
        except (BuildException, KustomizeException):
            raise
        except (
            FluxDistroException,
            OSError,
            jinja2.TemplateError,
            yaml.YAMLError,
        ) as err:
            raise BuildException(name, str(err)) from err


async def _write(path: Path, content: str) -> None:
    await makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(path, mode="w") as f:
        await f.write(content)


async def _read(path: Path) -> str:
    async with aiofiles.open(path) as f:
        return await f.read()


async def _generate(name: str, path: Path, template: str, **kwargs: Any) -> None:
    with _stage(f"generate {name}"):
        await _write(path, templates.render(template, **kwargs))


def remove_token_permission(content: str) -> str:
    """Drop the permission to create service account tokens from the ClusterRoles."""
    objects = manifest.parse_objects(content)
    for obj in objects:
        if obj["kind"] != "ClusterRole":
            continue
        rules = []
        for rule in obj.get("rules") or []:
            if TOKEN_RESOURCE in (resources := rule.get("resources") or []):
                resources = [r for r in resources if r != TOKEN_RESOURCE]
                if not resources:
                    continue
                rule = {**rule, "resources": resources}
            rules.append(rule)
        obj["rules"] = rules
    return manifest.dump_objects(objects)


async def _generate_roles(base: Path, options: Options) -> None:
    rbac_file = base / ROLES_DIR / RBAC_FILE
    with _stage("generate rbac"):
        await makedirs(rbac_file.parent, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, base / RBAC_FILE, rbac_file)
    await _generate(
        "roles kustomization",
        base / templates.ROLES_KUSTOMIZATION,
        templates.ROLES_KUSTOMIZATION,
        o=options,
    )

    # kustomize cannot patch the ServiceAccount subjects of ClusterRoleBindings
    if options.namespace != manifest.DEFAULT_NAMESPACE:
        with _stage("replace rbac namespace"):
            rbac = await _read(rbac_file)
            await _write(
                rbac_file, rbac.replace(manifest.DEFAULT_NAMESPACE, options.namespace)
            )

    if options.remove_token_permission:
        with _stage("remove token permission"):
            await _write(rbac_file, remove_token_permission(await _read(rbac_file)))


async def _generate_shards(base: Path, options: Options) -> None:
    components = [c for c in SHARDED_CONTROLLERS if options.has_component(c)]
    for shard in options.shards:
        shard_dir = base / shard
        with _stage(f"generate shard {shard}"):
            if await exists(shard_dir):
                raise BuildException(
                    f"generate shard {shard}", f"path {shard_dir} already exists"
                )
            await makedirs(shard_dir)
            for component in components:
                filename = f"{component}.yaml"
                await asyncio.to_thread(
                    shutil.copyfile, base / filename, shard_dir / filename
                )
        storage = options.sharding_storage
        if storage:
            if options.artifact_storage is None:
                raise BuildException(
                    f"generate shard {shard}",
                    "sharding storage requires artifact storage",
                )
            await _generate(
                f"shard {shard} pvc",
                shard_dir / templates.PVC,
                templates.PVC,
                o=options,
                storage=options.artifact_storage,
            )
        await _generate(
            f"shard {shard} kustomization",
            shard_dir / "kustomization.yaml",
            templates.SHARD_KUSTOMIZATION,
            o=options,
            shard=shard,
            components=components,
            storage=storage,
        )


async def generate(base: Path, options: Options) -> None:
    """Generate the support files of the distribution into the base directory."""
    for name, template in (
        ("namespace", templates.NAMESPACE),
        ("annotations", templates.ANNOTATIONS),
        ("labels", templates.LABELS),
        ("node selector", templates.NODE_SELECTOR),
    ):
        await _generate(name, base / template, template, o=options)
    if (storage := options.artifact_storage) is not None:
        await _generate(
            "pvc", base / templates.PVC, templates.PVC, o=options, storage=storage
        )
    if (sync := options.sync) is not None:
        await _generate(
            "sync", base / templates.SYNC, templates.SYNC, o=options, sync=sync
        )
    await _generate(
        "kustomization",
        base / templates.KUSTOMIZATION,
        templates.KUSTOMIZATION,
        o=options,
    )
    await _generate_roles(base, options)
    await _generate_shards(base, options)


async def build(
    src_dir: Path,
    work_dir: Path,
    options: Options,
    overlay: Overlay = kustomize.build,
) -> Result:
    """Build the distribution in src_dir using work_dir as scratch space.

    The options are not modified.
    """
    with _stage("copy"):
        if not await isdir(src_dir):
            raise BuildException("copy", f"source directory not found: {src_dir}")
        await asyncio.to_thread(
            shutil.copytree, src_dir, work_dir, dirs_exist_ok=True
        )

    options = replace(options, components=list(options.components))
    if options.has_component(NOTIFICATION_CONTROLLER):
        options.events_addr = (
            f"http://{NOTIFICATION_CONTROLLER}.{options.namespace}"
            f".svc.{options.cluster_domain}./"
        )
    if not options.component_images:
        with _stage("extract images"):
            options.component_images = await extract_component_images(
                src_dir, options
            )

    await generate(work_dir, options)

    with context.stage("kustomize"):
        try:
            out = await overlay(work_dir).run()
        except (KustomizeException, OSError) as err:
            raise KustomizeException(f"kustomize build failed: {err}") from err

    with _stage("parse"):
        data = out.encode("utf-8")
        objects = manifest.sort_objects(manifest.parse_objects(out))
        digest = manifest.content_digest(data)

    _LOGGER.debug("Built %d objects for %s (%s)", len(objects), options.version, digest)
    return Result(
        version=options.version,
        digest=digest,
        revision=f"{options.version}@{digest}",
        objects=objects,
        component_images=list(options.component_images),
    )
