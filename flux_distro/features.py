"""Resolve optional distribution features against the distribution version.

Workload identity support in the Flux controllers changed across releases,
so the same desired configuration produces different patches (or is
rejected) depending on the version being installed:

| Version       | Object-level     | Multi-tenant          |
|---------------|------------------|-----------------------|
| `< 2.6.0`     | rejected         | rejected              |
| `2.6.x`       | opt-in gate      | rejected              |
| `>= 2.7.0`    | explicit gate    | requires object-level |
"""

from dataclasses import dataclass
import enum
import logging

import semver

from .exceptions import PolicyException
from .instance import ClusterConfig
from .version import parse_version

__all__ = [
    "WorkloadIdentitySupport",
    "FeaturePatches",
    "resolve_workload_identity",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_SERVICE_ACCOUNT = "default"
FEATURE_GATE = "ObjectLevelWorkloadIdentity"

_OBJECT_LEVEL_VERSION = semver.Version(2, 6, 0)
_MULTITENANT_VERSION = semver.Version(2, 7, 0)

# Controllers accepting the workload identity feature gate in 2.6.x
GATE_CONTROLLERS_2_6 = [
    "source-controller",
    "kustomize-controller",
    "notification-controller",
    "image-reflector-controller",
    "image-automation-controller",
]

# helm-controller gained support in 2.7.0
GATE_CONTROLLERS_2_7 = [
    "source-controller",
    "kustomize-controller",
    "helm-controller",
    "notification-controller",
    "image-reflector-controller",
    "image-automation-controller",
]

DEFAULT_SA_CONTROLLERS = [
    "source-controller",
    "notification-controller",
    "image-reflector-controller",
    "image-automation-controller",
]
DECRYPTION_SA_CONTROLLERS = ["kustomize-controller"]
KUBECONFIG_SA_CONTROLLERS = ["kustomize-controller", "helm-controller"]

_ARG_PATCH = """- target:
    kind: Deployment
    name: "({names})"
  patch: |-
    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: {arg}
"""


class WorkloadIdentitySupport(enum.Enum):
    """Level of workload identity support in a distribution version."""

    UNSUPPORTED = "unsupported"
    """Versions before 2.6.0."""

    OBJECT_LEVEL = "object-level"
    """Versions 2.6.x, gate is implicitly false."""

    MULTITENANT = "multitenant"
    """Versions 2.7.0 and later, gate must always be stated."""

    @classmethod
    def for_version(cls, version: semver.Version) -> "WorkloadIdentitySupport":
        """Classify a version, checking the lowest range first."""
        if version < _OBJECT_LEVEL_VERSION:
            return cls.UNSUPPORTED
        if version < _MULTITENANT_VERSION:
            return cls.OBJECT_LEVEL
        return cls.MULTITENANT


@dataclass(frozen=True)
class FeaturePatches:
    """Configuration delta produced by resolving the requested features."""

    patches: str = ""
    """Kustomize patch fragments to append to the distribution patches."""

    remove_token_permission: bool = False
    """Remove the permission to create service account tokens from the controllers."""


def arg_patch(controllers: list[str], arg: str) -> str:
    """Return a patch appending a container argument to the named Deployments."""
    return _ARG_PATCH.format(names="|".join(controllers), arg=arg)


def _feature_gate(controllers: list[str], enabled: bool) -> str:
    value = "true" if enabled else "false"
    return arg_patch(controllers, f"--feature-gates={FEATURE_GATE}={value}")


def _tenant_service_accounts(cluster: ClusterConfig) -> str:
    default_sa = cluster.tenant_default_service_account or DEFAULT_SERVICE_ACCOUNT
    decryption_sa = (
        cluster.tenant_default_decryption_service_account or DEFAULT_SERVICE_ACCOUNT
    )
    kubeconfig_sa = (
        cluster.tenant_default_kube_config_service_account or DEFAULT_SERVICE_ACCOUNT
    )
    return "".join(
        [
            arg_patch(DEFAULT_SA_CONTROLLERS, f"--default-service-account={default_sa}"),
            arg_patch(
                DECRYPTION_SA_CONTROLLERS,
                f"--default-decryption-service-account={decryption_sa}",
            ),
            arg_patch(
                KUBECONFIG_SA_CONTROLLERS,
                f"--default-kubeconfig-service-account={kubeconfig_sa}",
            ),
        ]
    )


def resolve_workload_identity(version: str, cluster: ClusterConfig) -> FeaturePatches:
    """Validate the workload identity settings and return the required patches.

    Raises VersionException for an unparsable version and PolicyException
    when the settings are not supported by the version.
    """
    object_level = cluster.object_level_workload_identity
    multitenant = cluster.multitenant_workload_identity
    support = WorkloadIdentitySupport.for_version(parse_version(version))
    _LOGGER.debug("Workload identity support for %s: %s", version, support.value)

    match support:
        case WorkloadIdentitySupport.UNSUPPORTED:
            if object_level or multitenant:
                raise PolicyException(
                    ".objectLevelWorkloadIdentity and .multitenantWorkloadIdentity "
                    "are not supported in Flux versions < 2.6.0"
                )
            return FeaturePatches()
        case WorkloadIdentitySupport.OBJECT_LEVEL:
            if multitenant:
                raise PolicyException(
                    ".multitenantWorkloadIdentity is not supported in Flux versions 2.6.x"
                )
            if not object_level:
                return FeaturePatches(remove_token_permission=True)
            return FeaturePatches(patches=_feature_gate(GATE_CONTROLLERS_2_6, True))
        case WorkloadIdentitySupport.MULTITENANT:
            if multitenant and not object_level:
                raise PolicyException(
                    ".objectLevelWorkloadIdentity must be set to true when "
                    ".multitenantWorkloadIdentity is set to true"
                )
            patches = _feature_gate(GATE_CONTROLLERS_2_7, object_level)
            if multitenant:
                patches += _tenant_service_accounts(cluster)
            return FeaturePatches(
                patches=patches, remove_token_permission=not object_level
            )
