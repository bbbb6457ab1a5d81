"""Declarative resource data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class ResourceKind(StrEnum):
    """Kubernetes kinds KubeStage knows how to apply and watch."""

    NAMESPACE = "Namespace"
    PERSISTENT_VOLUME = "PersistentVolume"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    SECRET = "Secret"
    CONFIG_MAP = "ConfigMap"
    SERVICE = "Service"
    DEPLOYMENT = "Deployment"
    STATEFUL_SET = "StatefulSet"


CLUSTER_SCOPED_KINDS = frozenset({ResourceKind.NAMESPACE, ResourceKind.PERSISTENT_VOLUME})
WORKLOAD_KINDS = frozenset({ResourceKind.DEPLOYMENT, ResourceKind.STATEFUL_SET})
STORAGE_KINDS = frozenset({ResourceKind.PERSISTENT_VOLUME, ResourceKind.PERSISTENT_VOLUME_CLAIM})

# Short names accepted in dependency annotations.
KIND_ALIASES: dict[str, ResourceKind] = {
    "ns": ResourceKind.NAMESPACE,
    "pv": ResourceKind.PERSISTENT_VOLUME,
    "pvc": ResourceKind.PERSISTENT_VOLUME_CLAIM,
    "secret": ResourceKind.SECRET,
    "cm": ResourceKind.CONFIG_MAP,
    "configmap": ResourceKind.CONFIG_MAP,
    "svc": ResourceKind.SERVICE,
    "service": ResourceKind.SERVICE,
    "deploy": ResourceKind.DEPLOYMENT,
    "deployment": ResourceKind.DEPLOYMENT,
    "sts": ResourceKind.STATEFUL_SET,
    "statefulset": ResourceKind.STATEFUL_SET,
}


def resolve_kind(value: str) -> ResourceKind | None:
    """Map a kind name or alias to a ResourceKind, or None if unknown."""
    try:
        return ResourceKind(value)
    except ValueError:
        return KIND_ALIASES.get(value.lower())


@dataclass(frozen=True, order=True)
class ResourceKey:
    """Unique identity of a resource: (kind, namespace, name)."""

    kind: str
    namespace: str
    name: str

    @property
    def cluster_scoped(self) -> bool:
        return self.kind in CLUSTER_SCOPED_KINDS

    def __str__(self) -> str:
        if not self.namespace:
            return f"{self.kind}/{self.name}"
        return f"{self.kind}/{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceSpec:
    """A validated resource declaration.

    Immutable once produced by the manifest store. ``payload`` is the raw
    document with the namespace defaulted; nothing downstream mutates it.
    """

    key: ResourceKey
    payload: dict[str, Any] = field(compare=False, hash=False)
    source: str = ""
    depends_on: frozenset[ResourceKey] = frozenset()

    @property
    def kind(self) -> str:
        return self.key.kind

    @property
    def namespace(self) -> str:
        return self.key.namespace

    @property
    def name(self) -> str:
        return self.key.name

    @property
    def metadata(self) -> dict[str, Any]:
        return self.payload.get("metadata") or {}

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.get("annotations") or {}

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def spec(self) -> dict[str, Any]:
        return self.payload.get("spec") or {}

    @property
    def is_workload(self) -> bool:
        return self.kind in WORKLOAD_KINDS

    @property
    def pod_spec(self) -> dict[str, Any]:
        """Pod template spec for workloads, empty dict otherwise."""
        if not self.is_workload:
            return {}
        return (self.spec.get("template") or {}).get("spec") or {}

    @property
    def pod_labels(self) -> dict[str, str]:
        if not self.is_workload:
            return {}
        return ((self.spec.get("template") or {}).get("metadata") or {}).get("labels") or {}

    def containers(self) -> list[dict[str, Any]]:
        """All containers of the pod template, init containers included."""
        pod = self.pod_spec
        return [*(pod.get("initContainers") or []), *(pod.get("containers") or [])]
