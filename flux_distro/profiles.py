"""Kustomize patches for well known cluster profiles.

Each function returns a fragment of a kustomize `patches` list that is
appended to the distribution patches before the build.
"""

__all__ = [
    "cluster_size_profile",
    "cluster_type_profile",
    "multitenant_profile",
    "notification_profile",
]

_SIZE_METADATA = """- target:
    kind: Deployment
  patch: |
    apiVersion: apps/v1
    kind: Deployment
    metadata:
      name: all
{annotations}    spec:
      template:
        metadata:
          labels:
            app.kubernetes.io/part-of: flux
          annotations:
            cluster-autoscaler.kubernetes.io/safe-to-evict: "true"
"""

_PROFILE_ANNOTATION = """      annotations:
        fluxcd.controlplane.io/profile: "{size}"
"""

_RESOURCES = """- target:
    kind: Deployment
{name}  patch: |
    - op: replace
      path: /spec/template/spec/containers/0/resources
      value:
        requests:
          cpu: 100m
          memory: {request}
        limits:
          cpu: {cpu}
          memory: {memory}
"""

_ARGS = """- target:
    kind: Deployment
    name: "({names})"
  patch: |
{ops}"""

_ADD_ARG = """    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: {arg}
"""

_RECONCILERS = "kustomize-controller|helm-controller"


def _args(names: str, args: list[str]) -> str:
    return _ARGS.format(names=names, ops="".join(_ADD_ARG.format(arg=arg) for arg in args))


def _helm_cache(max_size: int) -> list[str]:
    return [
        f"--helm-cache-max-size={max_size}",
        "--helm-cache-ttl=720m",
        "--helm-cache-purge-interval=60m",
    ]


def _size_metadata(size: str | None) -> str:
    annotations = _PROFILE_ANNOTATION.format(size=size) if size else ""
    return _SIZE_METADATA.format(annotations=annotations)


def cluster_size_profile(size: str | None) -> str:
    """Return patches tuning concurrency and limits for a cluster size."""
    match size:
        case "small":
            return "".join(
                [
                    _size_metadata(size),
                    _RESOURCES.format(
                        name="", request="64Mi", cpu="1000m", memory="512Mi"
                    ),
                    _args(_RECONCILERS, ["--concurrent=5", "--requeue-dependency=10s"]),
                    _args("source-controller", _helm_cache(10)),
                ]
            )
        case "medium":
            return "".join(
                [
                    _size_metadata(size),
                    _RESOURCES.format(
                        name=f'    name: "({_RECONCILERS}|source-controller)"\n',
                        request="128Mi",
                        cpu="2000m",
                        memory="1Gi",
                    ),
                    _args(_RECONCILERS, ["--concurrent=10", "--requeue-dependency=5s"]),
                    _args("source-controller", _helm_cache(50) + ["--concurrent=5"]),
                ]
            )
        case "large":
            return "".join(
                [
                    _size_metadata(size),
                    _args(_RECONCILERS, ["--concurrent=20", "--requeue-dependency=5s"]),
                    _RESOURCES.format(
                        name=f'    name: "({_RECONCILERS})"\n',
                        request="256Mi",
                        cpu="3000m",
                        memory="3Gi",
                    ),
                    _args("source-controller", _helm_cache(100) + ["--concurrent=10"]),
                    _RESOURCES.format(
                        name='    name: "(source-controller)"\n',
                        request="256Mi",
                        cpu="2000m",
                        memory="2Gi",
                    ),
                ]
            )
        case _:
            return _size_metadata(None)


_OPENSHIFT = """- target:
    kind: Deployment
  patch: |-
    - op: remove
      path: /spec/template/spec/securityContext
    - op: remove
      path: /spec/template/spec/containers/0/securityContext/seccompProfile
    - op: remove
      path: /spec/template/spec/containers/0/securityContext/runAsNonRoot
- target:
    kind: Namespace
  patch: |-
    - op: remove
      path: /metadata/labels/pod-security.kubernetes.io~1warn
    - op: remove
      path: /metadata/labels/pod-security.kubernetes.io~1warn-version
"""


def cluster_type_profile(cluster_type: str | None) -> str:
    """Return patches adapting the distribution to a Kubernetes flavor."""
    if cluster_type == "openshift":
        return _OPENSHIFT
    return ""


_MULTITENANT = """- target:
    kind: Deployment
    name: "(kustomize-controller|helm-controller|notification-controller|image-reflector-controller|image-automation-controller)"
  patch: |-
    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: --no-cross-namespace-refs=true
- target:
    kind: Deployment
    name: "(kustomize-controller)"
  patch: |-
    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: --no-remote-bases=true
- target:
    kind: Deployment
    name: "(kustomize-controller|helm-controller)"
  patch: |-
    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: --default-service-account={service_account}
- target:
    kind: Kustomization
  patch: |-
    - op: add
      path: /spec/serviceAccountName
      value: kustomize-controller
"""


def multitenant_profile(default_service_account: str | None) -> str:
    """Return the multi-tenancy lockdown patches."""
    return _MULTITENANT.format(service_account=default_service_account or "default")


_OPERATOR_KINDS = ["FluxInstance", "ResourceSet", "ResourceSetInputProvider"]
_CRD_VERSIONS = 3

_ENUM_OP = """    - op: add
      path: /spec/versions/{index}/schema/openAPIV3Schema/properties/spec/properties/{field}/items/properties/kind/enum/-
      value: {kind}
"""

_CRD_PATCH = """- target:
    kind: CustomResourceDefinition
    name: {crd}
  patch: |-
{ops}"""

_CRD_CONTROLLER_ROLE = """- target:
    kind: ClusterRole
    name: crd-controller-{namespace}
  patch: |-
    - op: add
      path: /rules/-
      value:
       apiGroups: [ 'fluxcd.controlplane.io' ]
       resources: [ '*' ]
       verbs: [ '*' ]
"""


def _enum_ops(field: str) -> str:
    return "".join(
        _ENUM_OP.format(index=index, field=field, kind=kind)
        for kind in _OPERATOR_KINDS
        for index in range(_CRD_VERSIONS)
    )


def notification_profile(namespace: str | None) -> str:
    """Return patches letting alerts and receivers reference operator kinds."""
    return "".join(
        [
            _CRD_PATCH.format(
                crd="alerts.notification.toolkit.fluxcd.io", ops=_enum_ops("eventSources")
            ),
            _CRD_PATCH.format(
                crd="receivers.notification.toolkit.fluxcd.io", ops=_enum_ops("resources")
            ),
            _CRD_CONTROLLER_ROLE.format(namespace=namespace or "flux-system"),
        ]
    )
