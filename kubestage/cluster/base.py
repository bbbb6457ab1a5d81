"""The narrow request/response surface KubeStage uses to talk to a cluster."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from kubestage.models.resources import ResourceKey, ResourceSpec


class ClusterClient(ABC):
    """Abstract cluster API.

    Objects cross this boundary as plain dicts in API (camelCase) form.
    Implementations translate transport failures into the KubeStage error
    taxonomy:

    * ``FatalClusterError``        -- unauthorized / forbidden.
    * ``TransientQueryError``      -- throttling, server errors, timeouts.
    * ``ClusterUnreachableError``  -- the API server cannot be contacted.
    * ``AlreadyExistsError``       -- ``create`` on an existing object.
    * ``ResourceRejectedError``    -- invalid object or forbidden change.
    * ``ConflictError``            -- ``patch`` lost an optimistic-lock race.
    """

    @abstractmethod
    async def get(self, key: ResourceKey) -> dict[str, Any] | None:
        """Return the live object, or None if it does not exist."""

    @abstractmethod
    async def create(self, spec: ResourceSpec) -> dict[str, Any]:
        """Create the object and return it as stored by the API server."""

    @abstractmethod
    async def patch(self, spec: ResourceSpec) -> dict[str, Any]:
        """Merge-patch the live object towards *spec* and return the result."""

    @abstractmethod
    async def get_endpoints(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Return the Endpoints object backing a Service, or None."""

    @abstractmethod
    async def list_pods(self, namespace: str, selector: dict[str, str]) -> list[dict[str, Any]]:
        """Return the pods matching an equality label selector."""

    @abstractmethod
    async def get_storage_class(self, name: str) -> dict[str, Any] | None:
        """Return a StorageClass, or None if it does not exist."""

    async def close(self) -> None:  # noqa: B027
        """Release connections. Safe to call more than once."""
