"""Deployment report data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class Verdict(StrEnum):
    """Overall outcome of a deployment run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ResourceReport:
    """Terminal status of a single resource."""

    resource: str
    kind: str
    namespace: str
    name: str
    stage: int
    state: str  # ReadinessState value
    apply_outcome: str = ""  # ApplyOutcome value, empty when never submitted
    apply_action: str = ""
    attempted: bool = False
    message: str = ""  # verbatim last observed condition
    error: str = ""  # exception class name for failed / timed-out entries
    elapsed_seconds: float = 0.0
    uid: str = ""


@dataclass(frozen=True)
class DeploymentReport:
    """Aggregate outcome of a run. The only thing the CLI and notifiers see."""

    verdict: Verdict
    resources: tuple[ResourceReport, ...]
    stages: tuple[tuple[str, ...], ...] = ()
    started_at: str = ""  # ISO-8601 UTC
    finished_at: str = ""
    duration_seconds: float = 0.0
    fatal_error: str = ""
    cancelled: bool = False
    dry_run: bool = False
    kubestage_version: str = ""
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def ready_count(self) -> int:
        return self.counts.get("ready", 0)

    def problems(self) -> list[ResourceReport]:
        """Resources that did not become ready."""
        return [r for r in self.resources if r.state != "ready"]
