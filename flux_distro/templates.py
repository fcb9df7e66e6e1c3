"""Templates for the support files generated into a distribution tree.

The templates use the standard Jinja2 syntax and are rendered with the
build options, see `render`.
"""

import logging
from typing import Any

import jinja2

__all__ = [
    "render",
]

_LOGGER = logging.getLogger(__name__)

KUSTOMIZATION = "kustomization.yaml"
ROLES_KUSTOMIZATION = "roles/kustomization.yaml"
SHARD_KUSTOMIZATION = "shard/kustomization.yaml"
NODE_SELECTOR = "node-selector.yaml"
LABELS = "labels.yaml"
ANNOTATIONS = "annotations.yaml"
NAMESPACE = "namespace.yaml"
PVC = "pvc.yaml"
SYNC = "sync.yaml"

_SHARD_ROLE = "sharding.fluxcd.io/role"

_TEMPLATES = {
    KUSTOMIZATION: """---
apiVersion: kustomize.config.k8s.io/v1beta1
kind: Kustomization
namespace: {{ o.namespace }}
transformers:
  - annotations.yaml
  - labels.yaml
resources:
  - namespace.yaml
{% if o.network_policy %}
  - policies.yaml
{% endif %}
  - roles
{% for component in o.components %}
  - {{ component }}.yaml
{% endfor %}
{% for shard in o.shards %}
  - {{ shard }}
{% endfor %}
{% if o.artifact_storage %}
  - pvc.yaml
{% endif %}
{% if o.sync %}
  - sync.yaml
{% endif %}
{% if o.registry and o.component_images %}
images:
{% for image in o.component_images %}
  - name: fluxcd/{{ image.name }}
    newName: {{ image.repository }}
    newTag: {{ image.tag }}
{% if image.digest %}
    digest: {{ image.digest }}
{% endif %}
{% endfor %}
{% endif %}
patches:
- path: node-selector.yaml
  target:
    kind: Deployment
{% for component in o.components %}
- target:
    group: apps
    version: v1
    kind: Deployment
    name: {{ component }}
  patch: |-
{% if component == "notification-controller" %}
    - op: replace
      path: /spec/template/spec/containers/0/args/0
      value: --watch-all-namespaces={{ o.watch_all_namespaces | lower }}
    - op: replace
      path: /spec/template/spec/containers/0/args/1
      value: --log-level={{ o.log_level }}
{% else %}
    - op: replace
      path: /spec/template/spec/containers/0/args/0
      value: --events-addr={{ o.events_addr }}
    - op: replace
      path: /spec/template/spec/containers/0/args/1
      value: --watch-all-namespaces={{ o.watch_all_namespaces | lower }}
    - op: replace
      path: /spec/template/spec/containers/0/args/2
      value: --log-level={{ o.log_level }}
{% endif %}
{% if component == "source-controller" %}
    - op: replace
      path: /spec/template/spec/containers/0/args/6
{% if o.cluster_domain %}
      value: --storage-adv-addr=source-controller.$(RUNTIME_NAMESPACE).svc.{{ o.cluster_domain }}.
{% else %}
      value: --storage-adv-addr=source-controller.$(RUNTIME_NAMESPACE).svc
{% endif %}
{% if o.artifact_storage %}
- target:
    group: apps
    version: v1
    kind: Deployment
    name: source-controller
    annotationSelector: "!{{ shard_role }}"
  patch: |-
    - op: add
      path: '/spec/template/spec/volumes/-'
      value:
        name: persistent-data
        persistentVolumeClaim:
          claimName: source-controller
    - op: replace
      path: '/spec/template/spec/containers/0/volumeMounts/0'
      value:
        name: persistent-data
        mountPath: /data
{% endif %}
{% endif %}
{% endfor %}
{% if o.shards %}
- target:
    kind: Deployment
    name: "(source-controller|kustomize-controller|helm-controller)"
    annotationSelector: "!{{ shard_role }}"
  patch: |
    - op: add
      path: /spec/template/spec/containers/0/args/-
      value: --watch-label-selector=!{{ o.sharding_key }}
{% endif %}
{{ o.patches }}
""",
    ROLES_KUSTOMIZATION: """---
apiVersion: kustomize.config.k8s.io/v1beta1
kind: Kustomization
namespace: {{ o.namespace }}
resources:
  - rbac.yaml
nameSuffix: -{{ o.namespace }}
""",
    SHARD_KUSTOMIZATION: """---
apiVersion: kustomize.config.k8s.io/v1beta1
kind: Kustomization
resources:
{% for component in components %}
  - {{ component }}.yaml
{% endfor %}
{% if storage %}
  - pvc.yaml
{% endif %}
nameSuffix: "-{{ shard }}"
commonAnnotations:
  {{ shard_role }}: "shard"
patches:
  - target:
      kind: (Namespace|CustomResourceDefinition|ClusterRole|ClusterRoleBinding|ServiceAccount|NetworkPolicy|ResourceQuota)
    patch: |
      apiVersion: v1
      kind: all
      metadata:
        name: all
      $patch: delete
  - target:
      kind: Deployment
      name: "({{ components | join('|') }})"
    patch: |
      - op: add
        path: /spec/template/spec/containers/0/args/-
        value: --watch-label-selector={{ o.sharding_key }} in ({{ shard }})
{% for component in components %}
  - target:
      kind: Deployment
      name: {{ component }}
    patch: |
      - op: replace
        path: /spec/selector/matchLabels/app
        value: {{ component }}-{{ shard }}
      - op: replace
        path: /spec/template/metadata/labels/app
        value: {{ component }}-{{ shard }}
{% endfor %}
{% if "source-controller" in components %}
  - target:
      kind: Service
      name: source-controller
    patch: |
      - op: replace
        path: /spec/selector/app
        value: source-controller-{{ shard }}
  - target:
      kind: Deployment
      name: source-controller
    patch: |
      - op: add
        path: /spec/template/spec/containers/0/args/-
        value: --storage-adv-addr=source-controller-{{ shard }}.$(RUNTIME_NAMESPACE).svc.{{ o.cluster_domain }}.
{% if storage %}
      - op: add
        path: '/spec/template/spec/volumes/-'
        value:
          name: persistent-data-{{ shard }}
          persistentVolumeClaim:
            claimName: source-controller
      - op: replace
        path: '/spec/template/spec/containers/0/volumeMounts/0'
        value:
          name: persistent-data-{{ shard }}
          mountPath: /data
{% endif %}
{% endif %}
""",
    NODE_SELECTOR: """---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: all
spec:
  template:
    spec:
      nodeSelector:
        kubernetes.io/os: linux
{% if o.image_pull_secret %}
      imagePullSecrets:
       - name: {{ o.image_pull_secret }}
{% endif %}
{% if o.toleration_keys %}
      tolerations:
{% for key in o.toleration_keys %}
       - key: "{{ key }}"
         operator: "Exists"
{% endfor %}
{% endif %}
""",
    LABELS: """---
apiVersion: builtin
kind: LabelTransformer
metadata:
  name: labels
labels:
  app.kubernetes.io/managed-by: flux-operator
  app.kubernetes.io/instance: {{ o.namespace }}
  app.kubernetes.io/version: "{{ o.version }}"
  app.kubernetes.io/part-of: flux
fieldSpecs:
  - path: metadata/labels
    create: true
""",
    ANNOTATIONS: """---
apiVersion: builtin
kind: AnnotationsTransformer
metadata:
  name: annotations
annotations:
  kustomize.toolkit.fluxcd.io/ssa: Ignore
fieldSpecs:
  - path: metadata/annotations
    create: true
""",
    NAMESPACE: """---
apiVersion: v1
kind: Namespace
metadata:
  name: {{ o.namespace }}
  labels:
    pod-security.kubernetes.io/warn: restricted
    pod-security.kubernetes.io/warn-version: latest
  annotations:
    fluxcd.controlplane.io/prune: disabled
""",
    PVC: """---
apiVersion: v1
kind: PersistentVolumeClaim
metadata:
  name: source-controller
spec:
  accessModes:
    - ReadWriteOnce
  storageClassName: {{ storage.storage_class }}
  resources:
    requests:
      storage: {{ storage.size }}
""",
    SYNC: """---
{% if sync.kind == "GitRepository" %}
apiVersion: source.toolkit.fluxcd.io/v1
{% else %}
apiVersion: source.toolkit.fluxcd.io/v1beta2
{% endif %}
kind: {{ sync.kind }}
metadata:
  name: {{ sync.name }}
  namespace: {{ o.namespace }}
spec:
  interval: {{ sync.interval }}
{% if sync.kind == "GitRepository" %}
  ref:
    name: {{ sync.ref }}
{% elif sync.kind == "OCIRepository" %}
  ref:
    tag: {{ sync.ref }}
{% elif sync.kind == "Bucket" %}
  bucketName: {{ sync.ref }}
{% endif %}
{% if sync.pull_secret %}
  secretRef:
    name: {{ sync.pull_secret }}
{% endif %}
{% if sync.provider %}
  provider: {{ sync.provider }}
{% endif %}
  url: {{ sync.url }}
---
apiVersion: kustomize.toolkit.fluxcd.io/v1
kind: Kustomization
metadata:
  name: {{ sync.name }}
  namespace: {{ o.namespace }}
spec:
  interval: 10m0s
  path: {{ sync.path }}
  prune: true
  sourceRef:
    kind: {{ sync.kind }}
    name: {{ sync.name }}
""",
}

_ENV = jinja2.Environment(
    loader=jinja2.DictLoader(_TEMPLATES),
    undefined=jinja2.StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
    autoescape=False,
)


def render(name: str, **context: Any) -> str:
    """Render the named support file template."""
    _LOGGER.debug("Rendering %s", name)
    return _ENV.get_template(name).render(shard_role=_SHARD_ROLE, **context)
