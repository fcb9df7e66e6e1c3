"""Representation of the Kubernetes objects produced by a distribution build.

Objects are kept as plain dictionaries decoded from YAML. This module holds
the helpers for identifying, ordering, serializing and digesting them.
"""

from dataclasses import dataclass
import hashlib
import logging
from typing import Any

import yaml

from .exceptions import InputException

__all__ = [
    "ObjectKey",
    "parse_objects",
    "dump_objects",
    "sort_objects",
    "content_digest",
    "is_reconcile_disabled",
    "set_common_metadata",
]

_LOGGER = logging.getLogger(__name__)


DEFAULT_NAMESPACE = "flux-system"
OPERATOR_GROUP = "fluxcd.controlplane.io"
RECONCILE_ANNOTATION = f"{OPERATOR_GROUP}/reconcile"
DISABLED_VALUE = "disabled"
DIGEST_ALGORITHM = "sha256"

# Kinds applied before the rest, in this order. Anything else comes after
# and is ordered by kind name.
APPLY_ORDER = [
    "CustomResourceDefinition",
    "Namespace",
    "ResourceQuota",
    "StorageClass",
    "ServiceAccount",
    "PodSecurityPolicy",
    "Role",
    "ClusterRole",
    "RoleBinding",
    "ClusterRoleBinding",
    "ConfigMap",
    "Secret",
    "Service",
    "LimitRange",
    "PriorityClass",
    "Deployment",
    "StatefulSet",
    "CronJob",
    "PodDisruptionBudget",
    "MutatingWebhookConfiguration",
    "ValidatingWebhookConfiguration",
]
_APPLY_RANK = {kind: rank for rank, kind in enumerate(APPLY_ORDER)}


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Identity of a Kubernetes object used for deduplication."""

    api_version: str
    kind: str
    namespace: str
    name: str

    @classmethod
    def from_doc(cls, doc: dict[str, Any]) -> "ObjectKey":
        """Return the identity of a raw object."""
        metadata = doc.get("metadata") or {}
        return cls(
            api_version=doc.get("apiVersion", ""),
            kind=doc.get("kind", ""),
            namespace=metadata.get("namespace") or "",
            name=metadata.get("name", ""),
        )

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        if self.namespace:
            return f"{self.kind}/{self.namespace}/{self.name}"
        return f"{self.kind}/{self.name}"


def check_object(doc: Any) -> dict[str, Any]:
    """Assert the document looks like a Kubernetes object."""
    if not isinstance(doc, dict):
        raise InputException(f"Invalid object expected a mapping: {doc}")
    if not doc.get("apiVersion"):
        raise InputException(f"Invalid object missing apiVersion: {doc}")
    if not doc.get("kind"):
        raise InputException(f"Invalid object missing kind: {doc}")
    if not (metadata := doc.get("metadata")) or not metadata.get("name"):
        raise InputException(f"Invalid object missing metadata.name: {doc}")
    return doc


def parse_objects(content: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML stream into a list of objects.

    Empty documents are skipped.
    """
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse objects: {err}") from err
    return [check_object(doc) for doc in docs if doc is not None]


def dump_objects(objects: list[dict[str, Any]]) -> str:
    """Serialize objects as a multi-document YAML stream."""
    return yaml.safe_dump_all(objects, sort_keys=False, explicit_start=True)


def _apply_rank(doc: dict[str, Any]) -> tuple[int, str, str, str]:
    kind = doc.get("kind", "")
    metadata = doc.get("metadata") or {}
    return (
        _APPLY_RANK.get(kind, len(APPLY_ORDER)),
        kind if kind not in _APPLY_RANK else "",
        metadata.get("namespace") or "",
        metadata.get("name", ""),
    )


def sort_objects(objects: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return objects in the order they should be applied to a cluster.

    Cluster-wide prerequisites (CRDs, namespaces, RBAC) come first, then
    config, then workloads. Ties are broken by namespace and name.
    """
    return sorted(objects, key=_apply_rank)


def content_digest(data: bytes) -> str:
    """Return the algorithm-prefixed hex digest of a byte stream."""
    return f"{DIGEST_ALGORITHM}:{hashlib.sha256(data).hexdigest()}"


def is_reconcile_disabled(doc: dict[str, Any]) -> bool:
    """Return true if the object opts out of reconciliation."""
    annotations = (doc.get("metadata") or {}).get("annotations") or {}
    return annotations.get(RECONCILE_ANNOTATION) == DISABLED_VALUE


def set_common_metadata(
    objects: list[dict[str, Any]],
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> None:
    """Add the labels and annotations to every object, replacing existing keys."""
    for obj in objects:
        metadata = obj.setdefault("metadata", {})
        if labels:
            metadata["labels"] = {**(metadata.get("labels") or {}), **labels}
        if annotations:
            metadata["annotations"] = {
                **(metadata.get("annotations") or {}),
                **annotations,
            }
