"""Apply engine: submits resources to the cluster, one stage at a time."""

from __future__ import annotations

import asyncio
from typing import Any

from kubestage.cluster.base import ClusterClient
from kubestage.engine.compare import desired_state, diff_paths
from kubestage.errors import (
    AlreadyExistsError,
    ClusterUnreachableError,
    ConflictError,
    FatalClusterError,
    KubeStageError,
    ResourceRejectedError,
    TransientQueryError,
)
from kubestage.graph.models import Stage
from kubestage.models.config import ApplyConfig
from kubestage.models.outcomes import ApplyAction, ApplyOutcome, ApplyResult
from kubestage.models.resources import ResourceSpec
from kubestage.observability.logging import get_logger
from kubestage.observability.metrics import apply_total

_log = get_logger("engine.apply")


class SubmissionAborted(KubeStageError):
    """The run hit a fatal cluster error before this resource was submitted."""


class ApplyEngine:
    """Create-or-update with idempotence and conflict handling.

    * Identical live object      -> ``already-exists`` (no write).
    * Differing live object      -> merge patch (policy ``patch``) or
                                    ConflictError captured as ``failed``.
    * Transient errors           -> retried with exponential backoff; an
                                    attempt with no response after
                                    ``request_timeout`` counts as one.
    * FatalClusterError          -> recorded on the engine and re-raised;
                                    every later submission is refused.

    The engine never raises for per-resource problems; they come back as
    ``failed`` ApplyResults.
    """

    def __init__(
        self,
        client: ClusterClient,
        config: ApplyConfig | None = None,
        retries: int = 5,
        backoff: float = 1.0,
        max_backoff: float = 30.0,
    ) -> None:
        self._client = client
        self._config = config or ApplyConfig()
        self._retries = retries
        self._backoff = backoff
        self._max_backoff = max_backoff
        self._semaphore = asyncio.Semaphore(max(1, self._config.concurrency))
        self._first_lock = asyncio.Lock()
        self._first_done = False
        self.fatal_error: FatalClusterError | None = None

    async def apply(self, stage: Stage) -> list[ApplyResult]:
        """Submit every resource of *stage* concurrently."""
        results = await asyncio.gather(*(self.apply_one(spec) for spec in stage.resources))
        return list(results)

    async def apply_one(self, spec: ResourceSpec) -> ApplyResult:
        """Submit a single resource.

        Raises:
            FatalClusterError: the API refused our credentials or is unreachable.
            SubmissionAborted: an earlier submission already failed fatally.
        """
        # Nothing else is sent until the run's first submission has returned.
        if not self._first_done:
            async with self._first_lock:
                if not self._first_done:
                    try:
                        return await self._apply_one(spec)
                    finally:
                        self._first_done = True
        return await self._apply_one(spec)

    async def _apply_one(self, spec: ResourceSpec) -> ApplyResult:
        async with self._semaphore:
            if self.fatal_error is not None:
                raise SubmissionAborted(f"not submitted: run aborted ({self.fatal_error})")
            attempts = 0
            while True:
                attempts += 1
                try:
                    result = await self._submit_bounded(spec, attempts)
                except FatalClusterError as exc:
                    self._abort(exc)
                    apply_total.labels(kind=spec.kind, outcome=ApplyOutcome.FAILED.value).inc()
                    raise
                except TransientQueryError as exc:
                    if attempts > self._retries:
                        if isinstance(exc, ClusterUnreachableError):
                            fatal = FatalClusterError(
                                f"cluster API unreachable after {attempts} attempts: {exc}",
                                status=exc.status,
                            )
                            self._abort(fatal)
                            apply_total.labels(kind=spec.kind, outcome=ApplyOutcome.FAILED.value).inc()
                            raise fatal from exc
                        result = self._failed(spec, f"submission failed after {attempts} attempts: {exc}", exc, attempts)
                    else:
                        delay = min(self._backoff * 2 ** (attempts - 1), self._max_backoff)
                        _log.warning(
                            "apply_retry",
                            resource=str(spec.key),
                            attempt=attempts,
                            delay=delay,
                            error=str(exc),
                        )
                        await asyncio.sleep(delay)
                        continue
                except (ConflictError, ResourceRejectedError) as exc:
                    result = self._failed(spec, str(exc), exc, attempts)

                apply_total.labels(kind=spec.kind, outcome=result.outcome.value).inc()
                log = _log.warning if result.outcome == ApplyOutcome.FAILED else _log.info
                log(
                    "resource_applied",
                    resource=str(spec.key),
                    outcome=result.outcome.value,
                    action=result.action.value,
                    attempts=attempts,
                    message=result.message,
                )
                return result

    async def _submit_bounded(self, spec: ResourceSpec, attempts: int) -> ApplyResult:
        timeout = self._config.request_timeout
        try:
            return await asyncio.wait_for(self._submit(spec, attempts), timeout=timeout)
        except TimeoutError:
            raise TransientQueryError(f"submit {spec.key}: no response within {timeout:g}s") from None

    async def _submit(self, spec: ResourceSpec, attempts: int) -> ApplyResult:
        try:
            created = await self._client.create(spec)
            return _result(spec, ApplyOutcome.APPLIED, ApplyAction.CREATED, created, attempts, "created")
        except AlreadyExistsError:
            pass

        live = await self._client.get(spec.key)
        if live is None:
            raise TransientQueryError(f"{spec.key} reported as existing but could not be read")

        differences = diff_paths(desired_state(spec), live)
        if not differences:
            return _result(spec, ApplyOutcome.ALREADY_EXISTS, ApplyAction.UNCHANGED, live, attempts, "already exists, identical")

        detail = f"live object differs at {', '.join(differences)}"
        if self._config.conflict_policy != "patch":
            raise ConflictError(spec.key, detail)
        _log.info("resource_conflict_patching", resource=str(spec.key), differences=differences)
        patched = await self._client.patch(spec)
        return _result(spec, ApplyOutcome.APPLIED, ApplyAction.PATCHED, patched, attempts, f"patched ({detail})")

    def _abort(self, exc: FatalClusterError) -> None:
        if self.fatal_error is None:
            self.fatal_error = exc
            _log.error("fatal_cluster_error", error=str(exc), status=exc.status)

    @staticmethod
    def _failed(spec: ResourceSpec, message: str, exc: Exception, attempts: int) -> ApplyResult:
        return ApplyResult(
            key=spec.key,
            outcome=ApplyOutcome.FAILED,
            action=ApplyAction.NONE,
            message=message,
            error_type=type(exc).__name__,
            attempts=attempts,
        )


def _result(
    spec: ResourceSpec,
    outcome: ApplyOutcome,
    action: ApplyAction,
    obj: dict[str, Any],
    attempts: int,
    message: str,
) -> ApplyResult:
    metadata = obj.get("metadata") or {}
    return ApplyResult(
        key=spec.key,
        outcome=outcome,
        action=action,
        uid=str(metadata.get("uid") or ""),
        resource_version=str(metadata.get("resourceVersion") or ""),
        message=message,
        attempts=attempts,
    )
