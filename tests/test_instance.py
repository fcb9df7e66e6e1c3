"""Tests for the instance library."""

from typing import Any

import pytest
import yaml

from flux_distro.exceptions import InputException
from flux_distro.instance import FluxInstance, ResourceSet

INSTANCE = """
apiVersion: fluxcd.controlplane.io/v1
kind: FluxInstance
metadata:
  name: flux
  namespace: flux-system
spec:
  distribution:
    version: "2.x"
    registry: ghcr.io/fluxcd
    imagePullSecret: regcred
  components:
    - source-controller
    - kustomize-controller
  cluster:
    type: kubernetes
    size: medium
    multitenant: true
    networkPolicy: false
    tenantDefaultServiceAccount: flux
    objectLevelWorkloadIdentity: true
  sharding:
    shards: ["shard1", "shard2"]
    storage: persistent
  storage:
    class: standard
    size: 10Gi
  sync:
    kind: GitRepository
    url: https://github.com/example/fleet.git
    ref: refs/heads/main
    path: clusters/production
    pullSecret: git-auth
  kustomize:
    patches:
      - target:
          kind: Deployment
        patch: |
          - op: add
            path: /spec/template/spec/containers/0/args/-
            value: --requeue-dependency=5s
"""


def _doc(content: str = INSTANCE) -> dict[str, Any]:
    return yaml.safe_load(content)


def test_parse_instance() -> None:
    """Test parsing a FluxInstance document."""
    instance = FluxInstance.parse_doc(_doc())
    assert instance.name == "flux"
    assert instance.namespace == "flux-system"
    spec = instance.spec
    assert spec.distribution.version == "2.x"
    assert spec.distribution.image_pull_secret == "regcred"
    assert spec.components == ["source-controller", "kustomize-controller"]
    assert instance.cluster.size == "medium"
    assert instance.cluster.multitenant
    assert not instance.cluster.network_policy
    assert instance.cluster.tenant_default_service_account == "flux"
    assert instance.cluster.object_level_workload_identity
    assert not instance.cluster.multitenant_workload_identity
    assert spec.sharding is not None
    assert spec.sharding.shards == ["shard1", "shard2"]
    assert spec.storage is not None
    assert spec.storage.storage_class == "standard"
    assert spec.sync is not None
    assert spec.sync.pull_secret == "git-auth"
    assert spec.kustomize is not None
    assert len(spec.kustomize.patches) == 1
    instance.validate()


def test_serialize_by_alias() -> None:
    """Test the spec is serialized with the document field names."""
    instance = FluxInstance.parse_doc(_doc())
    data = instance.spec.to_dict()
    assert data["distribution"]["imagePullSecret"] == "regcred"
    assert data["storage"]["class"] == "standard"
    assert "artifact" not in data["distribution"]


def test_set_defaults() -> None:
    """Test defaults for omitted fields."""
    instance = FluxInstance.parse_doc(
        _doc(
            """
apiVersion: fluxcd.controlplane.io/v1
kind: FluxInstance
metadata:
  name: flux
spec:
  distribution:
    version: "2.6.x"
    registry: ghcr.io/fluxcd
  sharding:
    shards: ["a"]
  sync:
    kind: OCIRepository
    url: oci://ghcr.io/example/fleet
    ref: latest
    path: ./
"""
        )
    )
    assert instance.spec.cluster is None
    instance.set_defaults()
    instance.validate()
    assert instance.namespace == "flux-system"
    assert instance.cluster.type == "kubernetes"
    assert instance.cluster.domain == "cluster.local"
    assert instance.cluster.network_policy
    assert instance.spec.distribution.artifact
    assert instance.spec.sharding is not None
    assert instance.spec.sharding.key == "sharding.fluxcd.io/key"
    assert instance.spec.sync is not None
    assert instance.spec.sync.interval == "1m0s"


@pytest.mark.parametrize(
    ("path", "value", "message"),
    [
        (["distribution", "version"], "", ".spec.distribution.version is required"),
        (["distribution", "registry"], "", ".spec.distribution.registry is required"),
        (["sharding", "shards"], [], ".spec.sharding.shards is required"),
        (["storage"], None, ".spec.storage is required when"),
        (["storage", "size"], "", ".spec.storage.size is required"),
        (["sync", "url"], "", ".spec.sync.url is required"),
    ],
)
def test_validate(path: list[str], value: Any, message: str) -> None:
    """Test validation of required fields."""
    doc = _doc()
    parent = doc["spec"]
    for key in path[:-1]:
        parent = parent[key]
    if value is None:
        del parent[path[-1]]
    else:
        parent[path[-1]] = value
    instance = FluxInstance.parse_doc(doc)
    with pytest.raises(InputException, match=message):
        instance.validate()


@pytest.mark.parametrize(
    ("doc", "message"),
    [
        ({"kind": "FluxInstance"}, "missing apiVersion"),
        ({"apiVersion": "v1", "kind": "FluxInstance"}, "expected 'fluxcd.controlplane.io'"),
        (
            {"apiVersion": "fluxcd.controlplane.io/v1", "kind": "ResourceSet"},
            "expected kind 'FluxInstance'",
        ),
        (
            {"apiVersion": "fluxcd.controlplane.io/v1", "kind": "FluxInstance"},
            "missing metadata",
        ),
        (
            {
                "apiVersion": "fluxcd.controlplane.io/v1",
                "kind": "FluxInstance",
                "metadata": {"name": "flux"},
            },
            "missing spec",
        ),
        (
            {
                "apiVersion": "fluxcd.controlplane.io/v1",
                "kind": "FluxInstance",
                "metadata": {"name": "flux"},
                "spec": {"components": ["source-controller"]},
            },
            "Invalid FluxInstance spec",
        ),
    ],
)
def test_parse_invalid_instance(doc: dict[str, Any], message: str) -> None:
    """Test parsing invalid FluxInstance documents."""
    with pytest.raises(InputException, match=message):
        FluxInstance.parse_doc(doc)


def test_parse_resource_set() -> None:
    """Test parsing a ResourceSet document."""
    rset = ResourceSet.parse_doc(
        _doc(
            """
apiVersion: fluxcd.controlplane.io/v1
kind: ResourceSet
metadata:
  name: apps
spec:
  inputStrategy:
    name: Permute
  inputs:
    - tenant: team1
  resources:
    - apiVersion: v1
      kind: Namespace
      metadata:
        name: << inputs.tenant >>
  resourcesTemplate: |
    apiVersion: v1
    kind: ServiceAccount
    metadata:
      name: << inputs.tenant >>
"""
        )
    )
    assert rset.name == "apps"
    assert rset.namespace == "flux-system"
    assert rset.input_strategy == "Permute"
    assert rset.spec.inputs == [{"tenant": "team1"}]
    assert rset.spec.resources[0]["metadata"]["name"] == "<< inputs.tenant >>"
    assert rset.spec.resources_template is not None
    assert "ServiceAccount" in rset.spec.resources_template


def test_resource_set_default_strategy() -> None:
    """Test the input strategy defaults to flattening."""
    rset = ResourceSet.parse_doc(
        {
            "apiVersion": "fluxcd.controlplane.io/v1",
            "kind": "ResourceSet",
            "metadata": {"name": "apps", "namespace": "apps"},
        }
    )
    assert rset.namespace == "apps"
    assert rset.input_strategy == "Flatten"
    assert rset.spec.resources == []


def test_common_metadata() -> None:
    """Test the common metadata and owner labels of an instance."""
    doc = _doc()
    doc["spec"]["commonMetadata"] = {
        "labels": {"team": "platform"},
        "annotations": {"owner": "ops"},
    }
    instance = FluxInstance.parse_doc(doc)
    assert instance.spec.common_metadata is not None
    assert instance.spec.common_metadata.labels == {"team": "platform"}
    assert instance.spec.common_metadata.annotations == {"owner": "ops"}
    assert instance.owner_labels == {
        "fluxcd.controlplane.io/name": "flux",
        "fluxcd.controlplane.io/namespace": "flux-system",
    }


def test_resource_set_common_metadata() -> None:
    """Test the common metadata and owner labels of a ResourceSet."""
    rset = ResourceSet.parse_doc(
        {
            "apiVersion": "fluxcd.controlplane.io/v1",
            "kind": "ResourceSet",
            "metadata": {"name": "apps", "namespace": "apps"},
            "spec": {"commonMetadata": {"labels": {"team": "dev"}}},
        }
    )
    assert rset.spec.common_metadata is not None
    assert rset.spec.common_metadata.labels == {"team": "dev"}
    assert rset.spec.common_metadata.annotations == {}
    assert rset.owner_labels == {
        "resourceset.fluxcd.controlplane.io/name": "apps",
        "resourceset.fluxcd.controlplane.io/namespace": "apps",
    }
