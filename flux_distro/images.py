"""Library for resolving the container images of the distribution components.

Images are either read from the component manifests of the distribution
tree, or from the image payload published for each version and registry
variant, which also pins the image digests:

```yaml
images:
- name: ghcr.io/fluxcd/source-controller
  newTag: v1.6.0
  digest: sha256:...
```
"""

import logging
from pathlib import Path
from typing import Any

import aiofiles
import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)
import yaml

from .exceptions import InputException, RegistryException
from .manifest import parse_objects
from .options import ComponentImage, Options

__all__ = [
    "registry_variant",
    "extract_component_images",
    "extract_component_images_with_digest",
    "fetch_component_images",
]

_LOGGER = logging.getLogger(__name__)

IMAGES_URL = "https://raw.githubusercontent.com/controlplaneio-fluxcd/distribution/main/images"
IMAGES_DIR = "flux-images"
DEFAULT_TAG = "latest"
FETCH_TIMEOUT = 5.0
FETCH_ATTEMPTS = 3

UPSTREAM_ALPINE = "upstream-alpine"
ENTERPRISE_ALPINE = "enterprise-alpine"
ENTERPRISE_DISTROLESS = "enterprise-distroless"

REGISTRY_VARIANTS = {
    "fluxcd": UPSTREAM_ALPINE,
    "ghcr.io/fluxcd": UPSTREAM_ALPINE,
    "ghcr.io/controlplaneio-fluxcd/alpine": ENTERPRISE_ALPINE,
    "ghcr.io/controlplaneio-fluxcd/distroless": ENTERPRISE_DISTROLESS,
}


def registry_variant(options: Options) -> str:
    """Return the image payload variant for the registry of the options."""
    if options.registry_variant:
        return options.registry_variant
    registry = options.registry.removesuffix("/")
    if not (variant := REGISTRY_VARIANTS.get(registry)):
        raise RegistryException(f"unsupported registry: {registry}")
    return variant


def image_tag(image: str) -> str:
    """Return the tag of an image reference, defaulting to `latest`."""
    name = image.partition("@")[0]
    _, sep, tag = name.rpartition(":")
    if not sep or "/" in tag:
        return DEFAULT_TAG
    return tag


def _deployment_image(doc: dict[str, Any], component: str) -> str:
    containers = (
        ((doc.get("spec") or {}).get("template") or {}).get("spec") or {}
    ).get("containers")
    if not containers:
        raise InputException(f"containers not found in {doc['metadata']['name']}")
    if not (image := containers[0].get("image")):
        raise InputException(f"container image not found in {component}")
    return image


async def extract_component_images(
    src_dir: Path, options: Options
) -> list[ComponentImage]:
    """Read the images of the selected components from their manifests."""
    registry = options.registry.removesuffix("/")
    images = []
    for component in options.components:
        path = src_dir / f"{component}.yaml"
        try:
            async with aiofiles.open(path) as f:
                content = await f.read()
        except OSError as err:
            raise InputException(f"Unable to read component manifest {path}: {err}") from err
        deployments = [
            doc for doc in parse_objects(content) if doc["kind"] == "Deployment"
        ]
        if not deployments:
            raise InputException(f"Deployment not found in {path}")
        images.append(
            ComponentImage(
                name=component,
                repository=f"{registry}/{component}",
                tag=image_tag(_deployment_image(deployments[-1], component)),
            )
        )
    return images


def parse_images(content: str, options: Options) -> list[ComponentImage]:
    """Parse an image payload into the images of the selected components."""
    try:
        payload = yaml.safe_load(content) or {}
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse images: {err}") from err
    if not isinstance(payload, dict):
        raise InputException(f"Unable to parse images: expected a mapping: {payload}")

    registry = options.registry.removesuffix("/")
    images = []
    for entry in payload.get("images") or []:
        component = entry.get("name", "").removeprefix(f"{registry}/")
        if not options.has_component(component):
            continue
        images.append(
            ComponentImage(
                name=component,
                repository=f"{registry}/{component}",
                tag=entry.get("newTag", ""),
                digest=entry.get("digest") or "",
            )
        )
    if len(images) != len(options.components):
        raise InputException(f"missing images for components: {options.components}")
    return images


async def extract_component_images_with_digest(
    storage_dir: Path, options: Options
) -> list[ComponentImage]:
    """Read the pinned images of the selected components from local storage."""
    path = storage_dir / IMAGES_DIR / options.version / f"{registry_variant(options)}.yaml"
    try:
        async with aiofiles.open(path) as f:
            content = await f.read()
    except OSError as err:
        raise InputException(f"Unable to read images from {path}: {err}") from err
    return parse_images(content, options)


def _images_url(options: Options) -> str:
    return f"{IMAGES_URL}/{options.version}/{registry_variant(options)}.yaml"


@retry(
    stop=stop_after_attempt(FETCH_ATTEMPTS),
    wait=wait_fixed(1),
    retry=retry_if_exception_type(httpx.TransportError),
    reraise=True,
)
async def _fetch(client: httpx.AsyncClient, url: str) -> str:
    _LOGGER.debug("Fetching images from %s", url)
    response = await client.get(url)
    response.raise_for_status()
    return response.text


async def fetch_component_images(
    options: Options,
    timeout: float = FETCH_TIMEOUT,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[ComponentImage]:
    """Download the pinned images of the selected components.

    Transport errors are retried a few times. HTTP errors are not retried.
    """
    url = _images_url(options)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            content = await _fetch(client, url)
        except httpx.HTTPError as err:
            raise InputException(f"Unable to fetch images from {url}: {err}") from err
    return parse_images(content, options)
