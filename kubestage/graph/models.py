"""Data structures for the deployment dependency graph."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from kubestage.models.resources import ResourceKey, ResourceSpec


class EdgeType(StrEnum):
    """Why one resource must wait for another."""

    EXPLICIT = "explicit"
    NAMESPACE = "namespace"
    VOLUME_BINDING = "volume_binding"
    CLAIM_MOUNT = "claim_mount"
    SECRET_REFERENCE = "secret_reference"
    CONFIG_REFERENCE = "config_reference"
    UPSTREAM_SERVICE = "upstream_service"
    PROXY_BACKEND = "proxy_backend"
    SERVICE_SELECTOR = "service_selector"


@dataclass(frozen=True, order=True)
class GraphEdge:
    """``source`` requires ``target`` to be ready first."""

    source: ResourceKey
    target: ResourceKey
    edge_type: EdgeType
    source_field: str  # path of the field that creates this relationship
    rule_id: str = ""


@dataclass(frozen=True)
class Stage:
    """A batch of resources with no dependencies on each other."""

    index: int
    resources: tuple[ResourceSpec, ...]

    @property
    def keys(self) -> tuple[ResourceKey, ...]:
        return tuple(spec.key for spec in self.resources)

    def __len__(self) -> int:
        return len(self.resources)
