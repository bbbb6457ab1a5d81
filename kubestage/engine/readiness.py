"""Kind-specific readiness predicates.

Each predicate looks at objects already fetched from the cluster and
returns an Observation. A PENDING observation is not an error; the
watcher keeps polling until a terminal state or its deadline.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from kubestage.models.outcomes import ReadinessState

# Container waiting reasons that never resolve without a manifest change.
FATAL_WAITING_REASONS = frozenset({"ImagePullBackOff", "ErrImagePull", "InvalidImageName", "CreateContainerConfigError"})
CRASH_LOOP_REASON = "CrashLoopBackOff"

WAIT_FOR_FIRST_CONSUMER = "WaitForFirstConsumer"


@dataclass(frozen=True)
class Observation:
    """One look at a resource: its state and the message to report."""

    state: ReadinessState
    message: str = ""

    @property
    def pending(self) -> bool:
        return self.state == ReadinessState.PENDING


def ready(message: str) -> Observation:
    return Observation(ReadinessState.READY, message)


def pending(message: str) -> Observation:
    return Observation(ReadinessState.PENDING, message)


def failed(message: str) -> Observation:
    return Observation(ReadinessState.FAILED, message)


# ---------------------------------------------------------------------------
# Simple kinds
# ---------------------------------------------------------------------------


def namespace_ready(obj: dict[str, Any]) -> Observation:
    phase = _status(obj).get("phase") or "Unknown"
    if phase == "Active":
        return ready("namespace is Active")
    return pending(f"namespace phase is {phase}")


def volume_ready(obj: dict[str, Any]) -> Observation:
    status = _status(obj)
    phase = status.get("phase") or "Pending"
    if phase in ("Available", "Bound"):
        return ready(f"volume is {phase}")
    if phase == "Failed":
        return failed(status.get("message") or "volume phase is Failed")
    return pending(f"volume phase is {phase}")


def claim_ready(
    obj: dict[str, Any],
    storage_class: dict[str, Any] | None = None,
    accept_deferred_binding: bool = True,
) -> Observation:
    """A claim is ready once Bound.

    Claims on a WaitForFirstConsumer class stay Pending until a pod uses
    them, so they count as ready when deferred binding is accepted.
    """
    phase = _status(obj).get("phase") or "Pending"
    if phase == "Bound":
        volume = (obj.get("spec") or {}).get("volumeName") or ""
        return ready(f"claim is Bound to {volume}" if volume else "claim is Bound")
    if phase == "Lost":
        return failed("claim is Lost: its bound volume no longer exists")
    if storage_class and storage_class.get("volumeBindingMode") == WAIT_FOR_FIRST_CONSUMER:
        name = (storage_class.get("metadata") or {}).get("name", "")
        if accept_deferred_binding:
            return ready(f"claim is Pending; storage class {name} binds on first consumer")
        return pending(f"claim is Pending; storage class {name} binds on first consumer")
    return pending(f"claim phase is {phase}")


def claim_storage_class(obj: dict[str, Any]) -> str:
    spec = obj.get("spec") or {}
    annotations = (obj.get("metadata") or {}).get("annotations") or {}
    return spec.get("storageClassName") or annotations.get("volume.beta.kubernetes.io/storage-class") or ""


def exists(obj: dict[str, Any]) -> Observation:
    return ready("exists")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def service_needs_endpoints(obj: dict[str, Any]) -> bool:
    spec = obj.get("spec") or {}
    return bool(spec.get("selector")) and spec.get("type") != "ExternalName"


def service_ready(obj: dict[str, Any], endpoints: dict[str, Any] | None, require_endpoints: bool) -> Observation:
    if not require_endpoints or not service_needs_endpoints(obj):
        return ready("exists")
    if endpoints is None:
        return pending("no endpoints object yet")
    addresses = 0
    not_ready = 0
    for subset in endpoints.get("subsets") or []:
        addresses += len(subset.get("addresses") or [])
        not_ready += len(subset.get("notReadyAddresses") or [])
    if addresses:
        return ready(f"{addresses} ready endpoint address(es)")
    if not_ready:
        return pending(f"no ready endpoints ({not_ready} not ready)")
    return pending("no ready endpoints")


# ---------------------------------------------------------------------------
# Workloads
# ---------------------------------------------------------------------------


def deployment_ready(obj: dict[str, Any]) -> Observation:
    status = _status(obj)
    lagging = _generation_lag(obj)
    if lagging:
        return pending(lagging)

    conditions = _conditions(status)
    progressing = conditions.get("Progressing") or {}
    if progressing.get("status") == "False" and progressing.get("reason") == "ProgressDeadlineExceeded":
        return failed(progressing.get("message") or "ProgressDeadlineExceeded")

    desired = _desired_replicas(obj)
    if desired == 0:
        return ready("scaled to zero replicas")
    available = status.get("availableReplicas") or 0
    counts = f"{available}/{desired} replicas available"
    condition = conditions.get("Available") or {}
    if condition.get("status") == "True":
        return ready(counts)
    if condition.get("message"):
        return pending(f"{counts}: {condition['message']}")
    return pending(counts)


def statefulset_ready(obj: dict[str, Any]) -> Observation:
    lagging = _generation_lag(obj)
    if lagging:
        return pending(lagging)
    desired = _desired_replicas(obj)
    ready_replicas = _status(obj).get("readyReplicas") or 0
    counts = f"{ready_replicas}/{desired} replicas ready"
    if ready_replicas >= desired:
        return ready(counts)
    return pending(counts)


def pod_failure(pods: list[dict[str, Any]], crashloop_restarts: int) -> Observation | None:
    """First terminal failure signal among *pods*, or None."""
    for pod in sorted(pods, key=lambda p: (p.get("metadata") or {}).get("name", "")):
        pod_name = (pod.get("metadata") or {}).get("name", "?")
        status = pod.get("status") or {}
        for cs in [*(status.get("initContainerStatuses") or []), *(status.get("containerStatuses") or [])]:
            waiting = (cs.get("state") or {}).get("waiting") or {}
            reason = waiting.get("reason") or ""
            restarts = cs.get("restartCount") or 0
            if reason in FATAL_WAITING_REASONS or (reason == CRASH_LOOP_REASON and restarts >= crashloop_restarts):
                detail = waiting.get("message") or f"restarted {restarts} times"
                return failed(f"pod {pod_name} container {cs.get('name', '?')}: {reason}: {detail}")
    return None


def workload_selector(obj: dict[str, Any]) -> dict[str, str]:
    """Equality selector for the workload's pods."""
    spec = obj.get("spec") or {}
    match_labels = (spec.get("selector") or {}).get("matchLabels") or {}
    if match_labels:
        return dict(match_labels)
    return dict(((spec.get("template") or {}).get("metadata") or {}).get("labels") or {})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _status(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("status") or {}


def _conditions(status: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {c.get("type", ""): c for c in status.get("conditions") or []}


def _desired_replicas(obj: dict[str, Any]) -> int:
    replicas = (obj.get("spec") or {}).get("replicas")
    return 1 if replicas is None else int(replicas)


def _generation_lag(obj: dict[str, Any]) -> str:
    generation = (obj.get("metadata") or {}).get("generation")
    observed = _status(obj).get("observedGeneration")
    if observed is None:
        return "waiting for the controller to observe the workload"
    if generation is not None and observed < generation:
        return f"waiting for rollout: observed generation {observed} < {generation}"
    return ""
