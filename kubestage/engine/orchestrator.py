"""Stage-by-stage control loop.

One task per resource (apply, then watch) runs concurrently inside a
stage. Stages run strictly in order, and a stage only starts once every
resource of the previous stage is terminal and ready.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime

from kubestage.cluster.base import ClusterClient
from kubestage.engine.apply import ApplyEngine, SubmissionAborted
from kubestage.engine.watcher import ReadinessWatcher
from kubestage.errors import FatalClusterError
from kubestage.graph.dependency_graph import DependencyGraph
from kubestage.graph.models import Stage
from kubestage.models.config import KubeStageConfig
from kubestage.models.outcomes import ApplyResult, ReadinessState, ReadinessStatus
from kubestage.models.report import DeploymentReport
from kubestage.models.resources import ResourceKey, ResourceKind, ResourceSpec
from kubestage.observability.logging import get_logger
from kubestage.observability.metrics import stage_duration_seconds
from kubestage.report.reporter import summarize

_log = get_logger("engine.orchestrator")


class Orchestrator:
    """Runs a DependencyGraph against a cluster and produces the report.

    Args:
        graph: Validated, staged dependency graph.
        client: Cluster client shared by every resource task.
        config: Full configuration; apply, watcher and stage timeout are used.
        cancel_event: Setting it stops the run. In-flight tasks are
            cancelled and everything not yet terminal becomes ``skipped``.
    """

    def __init__(
        self,
        graph: DependencyGraph,
        client: ClusterClient,
        config: KubeStageConfig | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self._graph = graph
        self._config = config or KubeStageConfig()
        self._cancel = cancel_event or asyncio.Event()
        watcher_cfg = self._config.watcher
        self._engine = ApplyEngine(
            client,
            self._config.apply,
            retries=watcher_cfg.query_retries,
            backoff=watcher_cfg.poll_interval,
            max_backoff=watcher_cfg.max_backoff,
        )
        self._watcher = ReadinessWatcher(client, watcher_cfg)
        self._statuses: dict[ResourceKey, ReadinessStatus] = {}
        self._results: dict[ResourceKey, ApplyResult] = {}

    @property
    def statuses(self) -> dict[ResourceKey, ReadinessStatus]:
        return dict(self._statuses)

    async def run(self) -> DeploymentReport:
        started_at = datetime.now(UTC)
        self._statuses = {spec.key: ReadinessStatus(spec.key) for spec in self._graph.resources()}
        self._results = {}
        fatal: FatalClusterError | None = None
        cancelled = False
        skip_reason = ""

        _log.info(
            "deployment_started",
            resources=self._graph.node_count,
            stages=len(self._graph.stages),
        )
        for stage in self._graph.stages:
            if self._cancel.is_set():
                cancelled = True
                skip_reason = "not attempted: run cancelled"
                break
            fatal, cancelled = await self._run_stage(stage)
            if fatal is not None:
                skip_reason = f"not attempted: run aborted: {fatal}"
                break
            if cancelled:
                skip_reason = "not attempted: run cancelled"
                break
            blockers = [key for key in stage.keys if self._statuses[key].state != ReadinessState.READY]
            if blockers:
                names = ", ".join(str(key) for key in blockers)
                skip_reason = f"not attempted: stage {stage.index} did not become ready ({names})"
                _log.warning("stage_blocked", stage=stage.index, blockers=[str(k) for k in blockers])
                break

        for status in self._statuses.values():
            if not status.terminal:
                status.transition(ReadinessState.SKIPPED, skip_reason)

        report = summarize(
            self._results.values(),
            self._statuses.values(),
            self._graph,
            started_at=started_at,
            finished_at=datetime.now(UTC),
            fatal_error=str(fatal) if fatal else "",
            cancelled=cancelled,
        )
        _log.info("deployment_finished", verdict=report.verdict.value, counts=report.counts)
        return report

    async def _run_stage(self, stage: Stage) -> tuple[FatalClusterError | None, bool]:
        """Run one stage to completion. Returns (fatal error, cancelled)."""
        loop = asyncio.get_running_loop()
        stage_timeout = self._config.apply.stage_timeout
        deadline = loop.time() + stage_timeout if stage_timeout > 0 else None
        started = time.monotonic()
        _log.info("stage_started", stage=stage.index, resources=[str(k) for k in stage.keys])

        tasks = {
            asyncio.create_task(self._run_resource(spec), name=str(spec.key)): spec.key
            for spec in stage.resources
        }
        cancel_waiter = asyncio.create_task(self._cancel.wait())
        outstanding = set(tasks)
        fatal: FatalClusterError | None = None
        cancelled = False
        timed_out = False
        try:
            while outstanding:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    timed_out = True
                    break
                done, _ = await asyncio.wait(
                    outstanding | {cancel_waiter},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if cancel_waiter in done:
                    cancelled = True
                    break
                outstanding -= done
                for task in done:
                    exc = task.exception()
                    if isinstance(exc, FatalClusterError):
                        fatal = fatal or exc
                    elif exc is not None:
                        self._fail_unexpected(tasks[task], exc)
                if fatal is not None:
                    break
        finally:
            cancel_waiter.cancel()
            for task in outstanding:
                task.cancel()
            await asyncio.gather(*outstanding, cancel_waiter, return_exceptions=True)

        for task in outstanding:
            status = self._statuses[tasks[task]]
            if status.terminal:
                continue
            if timed_out:
                status.transition(
                    ReadinessState.TIMED_OUT,
                    f"stage timeout of {stage_timeout:g}s expired; last observed: {status.message or 'nothing'}",
                )
            elif fatal is not None:
                status.transition(ReadinessState.SKIPPED, f"interrupted: run aborted: {fatal}")
            else:
                status.transition(ReadinessState.SKIPPED, f"interrupted: run cancelled; last observed: {status.message or 'nothing'}")

        elapsed = time.monotonic() - started
        stage_duration_seconds.observe(elapsed)
        _log.info(
            "stage_finished",
            stage=stage.index,
            elapsed=round(elapsed, 3),
            states={str(k): self._statuses[k].state.value for k in stage.keys},
        )
        return fatal, cancelled

    async def _run_resource(self, spec: ResourceSpec) -> None:
        status = self._statuses[spec.key]
        status.start()
        try:
            result = await self._engine.apply_one(spec)
        except SubmissionAborted as exc:
            status.transition(ReadinessState.SKIPPED, str(exc))
            return
        except FatalClusterError as exc:
            status.attempted = True
            status.transition(ReadinessState.FAILED, str(exc))
            raise
        status.attempted = True
        self._results[spec.key] = result
        if not result.ok:
            status.transition(ReadinessState.FAILED, result.message)
            return
        try:
            await self._watcher.watch(spec, status, require_endpoints=self._require_endpoints(spec))
        except FatalClusterError as exc:
            if not status.terminal:
                status.transition(ReadinessState.FAILED, str(exc))
            raise

    def _fail_unexpected(self, key: ResourceKey, exc: BaseException) -> None:
        """Record an error no lower layer mapped to an outcome; the stage carries on."""
        _log.error("resource_task_crashed", resource=str(key), error_type=type(exc).__name__, error=str(exc))
        status = self._statuses[key]
        status.attempted = True
        if not status.terminal:
            status.transition(ReadinessState.FAILED, f"{type(exc).__name__}: {exc}")

    def _require_endpoints(self, spec: ResourceSpec) -> bool:
        return spec.kind == ResourceKind.SERVICE and bool(self._graph.dependents(spec.key))
