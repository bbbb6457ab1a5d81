"""Core data structures for KubeStage."""

from kubestage.models.config import KubeStageConfig
from kubestage.models.outcomes import (
    ApplyAction,
    ApplyOutcome,
    ApplyResult,
    ReadinessState,
    ReadinessStatus,
)
from kubestage.models.report import DeploymentReport, ResourceReport, Verdict
from kubestage.models.resources import ResourceKey, ResourceKind, ResourceSpec

__all__ = [
    "ApplyAction",
    "ApplyOutcome",
    "ApplyResult",
    "DeploymentReport",
    "KubeStageConfig",
    "ReadinessState",
    "ReadinessStatus",
    "ResourceKey",
    "ResourceKind",
    "ResourceReport",
    "ResourceSpec",
    "Verdict",
]
