"""Options controlling how a distribution is built.

Options are created with `default_options()`, adjusted for an instance and
then validated. Resolving features appends kustomize patches to
`Options.patches`, which is only ever appended to and is consumed once by
the build.
"""

from dataclasses import dataclass, field
import logging

import semver
import yaml

from . import profiles
from .exceptions import InputException
from .features import arg_patch, resolve_workload_identity
from .instance import SHARDING_STORAGE_PERSISTENT, ClusterConfig, FluxInstance
from .manifest import DEFAULT_NAMESPACE
from .version import parse_version

__all__ = [
    "Options",
    "ArtifactStorage",
    "SyncSource",
    "ComponentImage",
    "default_options",
    "options_for_instance",
]

_LOGGER = logging.getLogger(__name__)

SOURCE_CONTROLLER = "source-controller"
NOTIFICATION_CONTROLLER = "notification-controller"
SOURCE_WATCHER = "source-watcher"

DEFAULT_COMPONENTS = [
    "source-controller",
    "kustomize-controller",
    "helm-controller",
    "notification-controller",
    "image-reflector-controller",
    "image-automation-controller",
]

# Components known to the operator, with the first version shipping them.
COMPONENT_CATALOG: dict[str, semver.Version | None] = {
    **{component: None for component in DEFAULT_COMPONENTS},
    SOURCE_WATCHER: semver.Version(2, 7, 0),
}


@dataclass(frozen=True)
class ComponentImage:
    """A container image used by a component."""

    name: str
    """The component name e.g. source-controller."""

    repository: str
    """The image repository including the registry."""

    tag: str
    """The image tag."""

    digest: str = ""
    """The image digest, if pinned."""


@dataclass
class ArtifactStorage:
    """Persistent volume claim for the source-controller artifacts."""

    storage_class: str
    size: str


@dataclass
class SyncSource:
    """The source the distribution syncs the cluster state from."""

    name: str
    kind: str
    url: str
    ref: str
    path: str
    interval: str = "1m0s"
    pull_secret: str | None = None
    provider: str | None = None


@dataclass
class Options:
    """Options for building a distribution from its manifests."""

    version: str = ""
    namespace: str = DEFAULT_NAMESPACE
    cluster_domain: str = "cluster.local"
    registry: str = "ghcr.io/fluxcd"
    registry_variant: str | None = None
    image_pull_secret: str | None = None
    components: list[str] = field(default_factory=lambda: list(DEFAULT_COMPONENTS))
    component_images: list[ComponentImage] = field(default_factory=list)
    events_addr: str = ""
    watch_all_namespaces: bool = True
    network_policy: bool = True
    log_level: str = "info"
    toleration_keys: list[str] = field(default_factory=list)
    patches: str = ""
    artifact_storage: ArtifactStorage | None = None
    sync: SyncSource | None = None
    sharding_key: str = "sharding.fluxcd.io/key"
    shards: list[str] = field(default_factory=list)
    sharding_storage: bool = False
    remove_token_permission: bool = False

    def add_patches(self, patches: str) -> None:
        """Append kustomize patch fragments to the accumulated patches."""
        if not patches:
            return
        if self.patches and not self.patches.endswith("\n"):
            self.patches += "\n"
        self.patches += patches

    def has_component(self, name: str) -> bool:
        """Return true if the component is selected."""
        return name in self.components

    def validate_components(self) -> None:
        """Verify the selected components are known and supported by the version.

        Components that need extra configuration get their patches appended.
        """
        if not self.components:
            raise InputException("at least one component must be selected")
        if unknown := [c for c in self.components if c not in COMPONENT_CATALOG]:
            raise InputException(f"unknown components: {', '.join(unknown)}")
        if len(set(self.components)) != len(self.components):
            raise InputException(f"duplicate components: {self.components}")
        version = parse_version(self.version)
        for component in self.components:
            minimum = COMPONENT_CATALOG[component]
            if minimum is not None and version < minimum:
                raise InputException(
                    f"component {component} is not supported in Flux versions "
                    f"< {minimum}"
                )
        if self.has_component(SOURCE_WATCHER):
            self.add_patches(
                arg_patch(
                    [SOURCE_WATCHER],
                    f"--storage-adv-addr={SOURCE_WATCHER}.$(RUNTIME_NAMESPACE).svc"
                    f".{self.cluster_domain}.",
                )
            )

    def apply_workload_identity(self, cluster: ClusterConfig) -> None:
        """Validate the workload identity settings and apply their patches."""
        resolved = resolve_workload_identity(self.version, cluster)
        self.add_patches(resolved.patches)
        self.remove_token_permission = resolved.remove_token_permission


def default_options() -> Options:
    """Return the options of the upstream distribution."""
    return Options()


def options_for_instance(instance: FluxInstance, version: str) -> Options:
    """Translate a defaulted and validated FluxInstance into build options.

    The version is the exact version resolved from the instance constraint.
    """
    spec = instance.spec
    cluster = instance.cluster
    options = default_options()
    options.version = version
    options.namespace = instance.namespace
    options.registry = spec.distribution.registry
    options.registry_variant = spec.distribution.variant
    options.image_pull_secret = spec.distribution.image_pull_secret
    if spec.components:
        options.components = list(spec.components)
    options.network_policy = cluster.network_policy
    if cluster.domain:
        options.cluster_domain = cluster.domain

    options.add_patches(profiles.cluster_type_profile(cluster.type))
    options.add_patches(profiles.cluster_size_profile(cluster.size))
    if cluster.multitenant:
        options.add_patches(
            profiles.multitenant_profile(cluster.tenant_default_service_account)
        )
    if options.has_component(NOTIFICATION_CONTROLLER):
        options.add_patches(profiles.notification_profile(options.namespace))
    options.validate_components()
    options.apply_workload_identity(cluster)

    if (sharding := spec.sharding) is not None:
        if sharding.key:
            options.sharding_key = sharding.key
        options.shards = list(sharding.shards)
        options.sharding_storage = sharding.storage == SHARDING_STORAGE_PERSISTENT
    if (storage := spec.storage) is not None:
        options.artifact_storage = ArtifactStorage(
            storage_class=storage.storage_class, size=storage.size
        )
    if (sync := spec.sync) is not None:
        options.sync = SyncSource(
            name=sync.name or instance.namespace,
            kind=sync.kind,
            url=sync.url,
            ref=sync.ref,
            path=sync.path,
            interval=sync.interval or "1m0s",
            pull_secret=sync.pull_secret,
            provider=sync.provider,
        )
    if spec.kustomize is not None and spec.kustomize.patches:
        options.add_patches(yaml.safe_dump(spec.kustomize.patches, sort_keys=False))
    return options
