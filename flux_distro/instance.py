"""Declarative input documents for a distribution build.

A FluxInstance document describes the distribution to install and a
ResourceSet document describes a set of templated resources with their
inputs. Both are decoded from YAML into dataclasses:

```python
from flux_distro.instance import FluxInstance

instance = FluxInstance.parse_doc(yaml.safe_load(content))
instance.set_defaults()
instance.validate()
```
"""

from dataclasses import dataclass, field
import logging
from typing import Any

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import InputException
from .manifest import DEFAULT_NAMESPACE, OPERATOR_GROUP

__all__ = [
    "FluxInstance",
    "ResourceSet",
    "ClusterConfig",
    "CommonMetadata",
]

_LOGGER = logging.getLogger(__name__)

FLUX_INSTANCE_KIND = "FluxInstance"
RESOURCE_SET_KIND = "ResourceSet"
RESOURCE_SET_GROUP = f"resourceset.{OPERATOR_GROUP}"
DEFAULT_ARTIFACT = "oci://ghcr.io/controlplaneio-fluxcd/flux-operator-manifests:latest"
DEFAULT_CLUSTER_DOMAIN = "cluster.local"
DEFAULT_CLUSTER_TYPE = "kubernetes"
DEFAULT_SHARDING_KEY = "sharding.fluxcd.io/key"
DEFAULT_SYNC_INTERVAL = "1m0s"
INPUT_STRATEGY_FLATTEN = "Flatten"
INPUT_STRATEGY_PERMUTE = "Permute"
SHARDING_STORAGE_PERSISTENT = "persistent"


class _Spec(DataClassDictMixin):
    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


def _check_kind(doc: dict[str, Any], kind: str) -> None:
    if not (api_version := doc.get("apiVersion")):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not api_version.startswith(OPERATOR_GROUP):
        raise InputException(f"Invalid object expected '{OPERATOR_GROUP}': {doc}")
    if doc.get("kind") != kind:
        raise InputException(f"Invalid object expected kind '{kind}': {doc}")


def _decode(cls: type[_Spec], data: dict[str, Any], path: str) -> Any:
    try:
        return cls.from_dict(data)
    except (MissingField, InvalidFieldValue, ValueError, TypeError) as err:
        raise InputException(f"Invalid {path}: {err}") from err


@dataclass
class Distribution(_Spec):
    """Selects the distribution version and the container registry."""

    version: str = ""
    """A semver version or constraint e.g. `2.x`."""

    registry: str = ""
    """The container registry hosting the controller images."""

    artifact: str | None = None
    """The OCI artifact containing the distribution manifests."""

    image_pull_secret: str | None = field(
        metadata=field_options(alias="imagePullSecret"), default=None
    )
    """Name of the secret used to pull the controller images."""

    variant: str | None = None
    """Explicit distribution variant for registries that are not well known."""


@dataclass
class ClusterConfig(_Spec):
    """Cluster specific policies applied to the distribution."""

    type: str | None = None
    """The Kubernetes distribution e.g. `kubernetes` or `openshift`."""

    size: str | None = None
    """The cluster size profile: `small`, `medium` or `large`."""

    domain: str | None = None
    """The cluster domain used for service FQDNs."""

    multitenant: bool = False
    """Enable the multi-tenancy lockdown."""

    network_policy: bool = field(
        metadata=field_options(alias="networkPolicy"), default=True
    )
    """Restrict network access to the distribution namespace."""

    tenant_default_service_account: str | None = field(
        metadata=field_options(alias="tenantDefaultServiceAccount"), default=None
    )

    object_level_workload_identity: bool = field(
        metadata=field_options(alias="objectLevelWorkloadIdentity"), default=False
    )

    multitenant_workload_identity: bool = field(
        metadata=field_options(alias="multitenantWorkloadIdentity"), default=False
    )

    tenant_default_decryption_service_account: str | None = field(
        metadata=field_options(alias="tenantDefaultDecryptionServiceAccount"),
        default=None,
    )

    tenant_default_kube_config_service_account: str | None = field(
        metadata=field_options(alias="tenantDefaultKubeConfigServiceAccount"),
        default=None,
    )


@dataclass
class Sharding(_Spec):
    """Horizontal sharding of the source, kustomize and helm controllers."""

    key: str | None = None
    """The label key used to assign resources to shards."""

    shards: list[str] = field(default_factory=list)
    """The names of the shards."""

    storage: str | None = None
    """Set to `persistent` to give each shard its own artifact storage."""


@dataclass
class Storage(_Spec):
    """Persistent storage for the source-controller artifacts."""

    storage_class: str = field(metadata=field_options(alias="class"), default="")
    size: str = ""


@dataclass
class Sync(_Spec):
    """The source and Kustomization the distribution syncs the cluster from."""

    kind: str = ""
    url: str = ""
    ref: str = ""
    path: str = ""
    name: str | None = None
    interval: str | None = None
    pull_secret: str | None = field(
        metadata=field_options(alias="pullSecret"), default=None
    )
    provider: str | None = None


@dataclass
class Kustomize(_Spec):
    """User supplied kustomize patches."""

    patches: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class CommonMetadata(_Spec):
    """Labels and annotations added to every generated object."""

    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass
class FluxInstanceSpec(_Spec):
    """The desired state of a distribution."""

    distribution: Distribution
    components: list[str] = field(default_factory=list)
    cluster: ClusterConfig | None = None
    sharding: Sharding | None = None
    storage: Storage | None = None
    sync: Sync | None = None
    kustomize: Kustomize | None = None
    common_metadata: CommonMetadata | None = field(
        metadata=field_options(alias="commonMetadata"), default=None
    )


@dataclass
class FluxInstance:
    """A FluxInstance document."""

    name: str
    namespace: str
    spec: FluxInstanceSpec

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "FluxInstance":
        """Parse a FluxInstance from a kubernetes resource object."""
        _check_kind(doc, FLUX_INSTANCE_KIND)
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls.__name__} missing metadata.name: {doc}")
        if not (spec := doc.get("spec")):
            raise InputException(f"Invalid {cls.__name__} missing spec: {doc}")
        return cls(
            name=name,
            namespace=metadata.get("namespace") or "",
            spec=_decode(FluxInstanceSpec, spec, f"{cls.__name__} spec"),
        )

    @property
    def cluster(self) -> ClusterConfig:
        """Return the cluster config, which may be omitted from the document."""
        if self.spec.cluster is None:
            self.spec.cluster = ClusterConfig()
        return self.spec.cluster

    @property
    def owner_labels(self) -> dict[str, str]:
        """Return the labels identifying the objects built for this instance."""
        return {
            f"{OPERATOR_GROUP}/name": self.name,
            f"{OPERATOR_GROUP}/namespace": self.namespace,
        }

    def set_defaults(self) -> None:
        """Fill in the values the API server would default on admission."""
        if not self.namespace:
            self.namespace = DEFAULT_NAMESPACE
        if not self.spec.distribution.artifact:
            self.spec.distribution.artifact = DEFAULT_ARTIFACT
        if not self.cluster.type:
            self.cluster.type = DEFAULT_CLUSTER_TYPE
        if not self.cluster.domain:
            self.cluster.domain = DEFAULT_CLUSTER_DOMAIN
        if self.spec.sharding is not None and not self.spec.sharding.key:
            self.spec.sharding.key = DEFAULT_SHARDING_KEY
        if self.spec.sync is not None and not self.spec.sync.interval:
            self.spec.sync.interval = DEFAULT_SYNC_INTERVAL

    def validate(self) -> None:
        """Verify the required fields are present."""
        if not self.spec.distribution.version:
            raise InputException(".spec.distribution.version is required")
        if not self.spec.distribution.registry:
            raise InputException(".spec.distribution.registry is required")
        if (sharding := self.spec.sharding) is not None:
            if not sharding.shards:
                raise InputException(".spec.sharding.shards is required")
            persistent = sharding.storage == SHARDING_STORAGE_PERSISTENT
            if persistent and self.spec.storage is None:
                raise InputException(
                    ".spec.storage is required when .spec.sharding.storage is persistent"
                )
        if (storage := self.spec.storage) is not None:
            if not storage.storage_class:
                raise InputException(".spec.storage.class is required")
            if not storage.size:
                raise InputException(".spec.storage.size is required")
        if (sync := self.spec.sync) is not None:
            for key in ("kind", "url", "ref", "path"):
                if not getattr(sync, key):
                    raise InputException(f".spec.sync.{key} is required")


@dataclass
class InputStrategy(_Spec):
    """Selects how inputs from multiple providers are combined."""

    name: str = INPUT_STRATEGY_FLATTEN


@dataclass
class ResourceSetSpec(_Spec):
    """The templates and inputs of a ResourceSet."""

    inputs: list[dict[str, Any]] = field(default_factory=list)
    input_strategy: InputStrategy | None = field(
        metadata=field_options(alias="inputStrategy"), default=None
    )
    resources: list[dict[str, Any]] = field(default_factory=list)
    resources_template: str | None = field(
        metadata=field_options(alias="resourcesTemplate"), default=None
    )
    common_metadata: CommonMetadata | None = field(
        metadata=field_options(alias="commonMetadata"), default=None
    )


@dataclass
class ResourceSet:
    """A ResourceSet document."""

    name: str
    namespace: str
    spec: ResourceSetSpec

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "ResourceSet":
        """Parse a ResourceSet from a kubernetes resource object."""
        _check_kind(doc, RESOURCE_SET_KIND)
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid {cls.__name__} missing metadata.name: {doc}")
        return cls(
            name=name,
            namespace=metadata.get("namespace") or DEFAULT_NAMESPACE,
            spec=_decode(ResourceSetSpec, doc.get("spec") or {}, f"{cls.__name__} spec"),
        )

    @property
    def owner_labels(self) -> dict[str, str]:
        """Return the labels identifying the objects rendered for this ResourceSet."""
        return {
            f"{RESOURCE_SET_GROUP}/name": self.name,
            f"{RESOURCE_SET_GROUP}/namespace": self.namespace,
        }

    @property
    def input_strategy(self) -> str:
        """Return the configured input strategy name."""
        if self.spec.input_strategy is None:
            return INPUT_STRATEGY_FLATTEN
        return self.spec.input_strategy.name
