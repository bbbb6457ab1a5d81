"""Error taxonomy for KubeStage.

Validation and cycle errors are raised before the cluster is contacted.
FatalClusterError aborts a run. Everything else is captured per resource
and surfaced through the DeploymentReport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from kubestage.models.resources import ResourceKey


class KubeStageError(Exception):
    """Base class for all KubeStage errors."""


# ---------------------------------------------------------------------------
# Input errors (manifests and graph)
# ---------------------------------------------------------------------------


class ValidationError(KubeStageError):
    """A manifest document is malformed or violates a deployment rule."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(f"{source}: {message}" if source else message)
        self.source = source
        self.detail = message


class SchemaError(ValidationError):
    """A required field is missing or has an unusable value."""


class DuplicateResourceError(ValidationError):
    """Two documents declare the same (kind, namespace, name)."""

    def __init__(self, key: ResourceKey, first_source: str, second_source: str) -> None:
        super().__init__(
            f"duplicate resource {key} (first declared in {first_source})",
            source=second_source,
        )
        self.key = key
        self.first_source = first_source


class ReadWriteOnceConflictError(ValidationError):
    """Two resources in the same stage claim the same single-writer volume."""


class CycleError(KubeStageError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[ResourceKey]) -> None:
        path = " -> ".join(str(key) for key in [*cycle, cycle[0]])
        super().__init__(f"dependency cycle detected: {path}")
        self.cycle = cycle


# ---------------------------------------------------------------------------
# Cluster errors
# ---------------------------------------------------------------------------


class FatalClusterError(KubeStageError):
    """The cluster API is unreachable or refused our credentials."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransientQueryError(KubeStageError):
    """A cluster request failed in a way that is worth retrying."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ClusterUnreachableError(TransientQueryError):
    """The API server could not be contacted at all."""


class ConflictError(KubeStageError):
    """The live object differs from the desired spec and patching is disabled."""

    def __init__(self, key: ResourceKey, message: str) -> None:
        super().__init__(f"{key}: {message}")
        self.key = key


class AlreadyExistsError(KubeStageError):
    """Create was refused because the object already exists."""


class ResourceRejectedError(KubeStageError):
    """The API server rejected the object (invalid or forbidden change)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


# ---------------------------------------------------------------------------
# Terminal per-resource outcomes
# ---------------------------------------------------------------------------


class ResourceFailedError(KubeStageError):
    """A resource reached a terminal failure condition."""

    def __init__(self, key: ResourceKey, message: str) -> None:
        super().__init__(f"{key} failed: {message}")
        self.key = key
        self.message = message


class ResourceTimedOutError(KubeStageError):
    """A resource did not become ready within its timeout."""

    def __init__(self, key: ResourceKey, timeout: float, message: str) -> None:
        super().__init__(f"{key} not ready after {timeout:g}s: {message}")
        self.key = key
        self.timeout = timeout
        self.message = message
