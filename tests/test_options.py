"""Tests for the build options."""

import pytest
import yaml

from flux_distro.exceptions import InputException, PolicyException
from flux_distro.instance import FluxInstance
from flux_distro.options import (
    DEFAULT_COMPONENTS,
    ArtifactStorage,
    default_options,
    options_for_instance,
)


def _instance(spec: str) -> FluxInstance:
    doc = yaml.safe_load(
        f"""
apiVersion: fluxcd.controlplane.io/v1
kind: FluxInstance
metadata:
  name: flux
  namespace: flux-system
spec:
{spec}
"""
    )
    instance = FluxInstance.parse_doc(doc)
    instance.set_defaults()
    instance.validate()
    return instance


DISTRIBUTION = """
  distribution:
    version: "2.x"
    registry: ghcr.io/fluxcd
"""


def test_default_options() -> None:
    """Test the upstream defaults."""
    options = default_options()
    assert options.namespace == "flux-system"
    assert options.cluster_domain == "cluster.local"
    assert options.registry == "ghcr.io/fluxcd"
    assert options.components == DEFAULT_COMPONENTS
    assert options.patches == ""
    assert options.components is not default_options().components


def test_add_patches() -> None:
    """Test patches are only appended, one fragment per line."""
    options = default_options()
    options.add_patches("- a: 1")
    options.add_patches("")
    options.add_patches("- b: 2\n")
    assert options.patches == "- a: 1\n- b: 2\n"


@pytest.mark.parametrize(
    ("components", "message"),
    [
        ([], "at least one component must be selected"),
        (
            ["source-controller", "unknown-controller"],
            "unknown components: unknown-controller",
        ),
        (["source-controller", "source-controller"], "duplicate components"),
        (["source-controller", "source-watcher"], "source-watcher is not supported"),
    ],
)
def test_validate_components_invalid(components: list[str], message: str) -> None:
    """Test invalid component selections."""
    options = default_options()
    options.version = "v2.6.0"
    options.components = components
    with pytest.raises(InputException, match=message):
        options.validate_components()


def test_validate_source_watcher() -> None:
    """Test source-watcher gets its storage address."""
    options = default_options()
    options.version = "v2.7.0"
    options.components = ["source-controller", "source-watcher"]
    options.validate_components()
    patches = yaml.safe_load(options.patches)
    assert patches[0]["target"]["name"] == "(source-watcher)"
    assert (
        "--storage-adv-addr=source-watcher.$(RUNTIME_NAMESPACE).svc.cluster.local."
        in patches[0]["patch"]
    )


def test_options_for_instance_defaults() -> None:
    """Test options for an instance with the default settings."""
    options = options_for_instance(_instance(DISTRIBUTION), "v2.6.0")
    assert options.version == "v2.6.0"
    assert options.components == DEFAULT_COMPONENTS
    assert options.network_policy
    assert options.remove_token_permission
    assert options.artifact_storage is None
    assert options.sync is None
    assert options.shards == []
    # Size and notification profiles
    patches = yaml.safe_load(options.patches)
    assert patches


def test_options_for_instance() -> None:
    """Test all instance settings are turned into options."""
    instance = _instance(
        DISTRIBUTION
        + """
  components:
    - source-controller
    - kustomize-controller
    - helm-controller
  cluster:
    domain: example.internal
    size: large
    type: openshift
    multitenant: true
    networkPolicy: false
    objectLevelWorkloadIdentity: true
  sharding:
    key: example.com/shard
    shards: ["a", "b"]
    storage: persistent
  storage:
    class: standard
    size: 10Gi
  sync:
    kind: GitRepository
    url: https://github.com/example/fleet.git
    ref: main
    path: clusters/production
  kustomize:
    patches:
      - target:
          kind: Deployment
        patch: |
          - op: add
            path: /spec/template/spec/containers/0/args/-
            value: --requeue-dependency=30s
"""
    )
    options = options_for_instance(instance, "v2.7.0")
    assert options.cluster_domain == "example.internal"
    assert not options.network_policy
    assert not options.remove_token_permission
    assert options.shards == ["a", "b"]
    assert options.sharding_key == "example.com/shard"
    assert options.sharding_storage
    assert options.artifact_storage == ArtifactStorage("standard", "10Gi")
    assert options.sync is not None
    assert options.sync.name == "flux-system"
    assert options.sync.interval == "1m0s"

    patches = yaml.safe_load(options.patches)
    values = "\n".join(patch.get("patch", "") for patch in patches)
    assert "--requeue-dependency=30s" in values
    assert "--no-cross-namespace-refs=true" in values
    assert "--feature-gates=ObjectLevelWorkloadIdentity=true" in values
    assert "/spec/template/spec/securityContext" in values
    # The user patches come last
    assert "--requeue-dependency=30s" in patches[-1]["patch"]


def test_options_for_instance_policy_violation() -> None:
    """Test policy violations are raised while building options."""
    instance = _instance(
        DISTRIBUTION
        + """
  cluster:
    objectLevelWorkloadIdentity: true
"""
    )
    with pytest.raises(PolicyException, match="< 2.6.0"):
        options_for_instance(instance, "v2.5.0")
