"""Apply, readiness and orchestration for KubeStage.

Submodules:
    compare       -- desired-vs-live comparison for idempotent apply.
    apply         -- ApplyEngine: create-or-update with conflict handling.
    readiness     -- kind-specific readiness predicates.
    watcher       -- ReadinessWatcher: polling with backoff and deadlines.
    orchestrator  -- Orchestrator: the stage-by-stage control loop.
"""

from kubestage.engine.apply import ApplyEngine, SubmissionAborted
from kubestage.engine.orchestrator import Orchestrator
from kubestage.engine.watcher import ReadinessWatcher

__all__ = ["ApplyEngine", "Orchestrator", "ReadinessWatcher", "SubmissionAborted"]
