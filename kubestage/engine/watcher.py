"""Readiness watcher: polls a resource until it is terminal."""

from __future__ import annotations

import asyncio

from kubestage.cluster.base import ClusterClient
from kubestage.engine import readiness
from kubestage.engine.readiness import Observation
from kubestage.errors import TransientQueryError
from kubestage.models.config import WatcherConfig
from kubestage.models.outcomes import ReadinessState, ReadinessStatus
from kubestage.models.resources import ResourceKind, ResourceSpec
from kubestage.observability.logging import get_logger
from kubestage.observability.metrics import query_errors_total, readiness_total

_log = get_logger("engine.watcher")


class ReadinessWatcher:
    """Drives ReadinessStatus from pending to a terminal state.

    Not-ready observations are polled again after ``poll_interval``. Query
    errors back off exponentially (capped at ``max_backoff``) and escalate
    to ``failed`` after ``query_retries`` consecutive failures. The deadline
    is the per-kind timeout and also bounds each status query.
    FatalClusterError is not caught here.
    """

    def __init__(self, client: ClusterClient, config: WatcherConfig | None = None) -> None:
        self._client = client
        self._config = config or WatcherConfig()

    def timeout_for(self, kind: str) -> float:
        cfg = self._config
        if kind in (ResourceKind.DEPLOYMENT, ResourceKind.STATEFUL_SET):
            return cfg.workload_timeout
        if kind == ResourceKind.SERVICE:
            return cfg.service_timeout
        if kind in (ResourceKind.PERSISTENT_VOLUME_CLAIM, ResourceKind.PERSISTENT_VOLUME):
            return cfg.claim_timeout
        return cfg.default_timeout

    async def watch(
        self,
        spec: ResourceSpec,
        status: ReadinessStatus,
        require_endpoints: bool = False,
    ) -> ReadinessStatus:
        """Poll *spec* until *status* is terminal and return it."""
        cfg = self._config
        loop = asyncio.get_running_loop()
        status.timeout = self.timeout_for(spec.kind)
        deadline = loop.time() + status.timeout
        errors = 0

        while not status.terminal:
            try:
                # A stalled API call must not outlive the resource's deadline.
                observation = await asyncio.wait_for(
                    self.check(spec, require_endpoints),
                    timeout=max(deadline - loop.time(), 0),
                )
            except TimeoutError:
                status.transition(
                    ReadinessState.TIMED_OUT,
                    status.message or f"not ready after {status.timeout:g}s: status query did not return",
                )
                break
            except TransientQueryError as exc:
                errors += 1
                status.query_errors += 1
                query_errors_total.labels(kind=spec.kind).inc()
                if errors > cfg.query_retries:
                    status.transition(
                        ReadinessState.FAILED,
                        f"status query failed {errors} times in a row: {exc}",
                    )
                    break
                delay = min(cfg.poll_interval * 2 ** (errors - 1), cfg.max_backoff)
                _log.warning(
                    "status_query_retry",
                    resource=str(spec.key),
                    attempt=errors,
                    delay=delay,
                    error=str(exc),
                )
            else:
                errors = 0
                if not observation.pending:
                    status.transition(observation.state, observation.message)
                    break
                if observation.message != status.message:
                    _log.debug("resource_pending", resource=str(spec.key), message=observation.message)
                status.observe(observation.message)
                delay = cfg.poll_interval

            remaining = deadline - loop.time()
            if remaining <= 0:
                status.transition(
                    ReadinessState.TIMED_OUT,
                    status.message or f"not ready after {status.timeout:g}s",
                )
                break
            await asyncio.sleep(min(delay, remaining))

        readiness_total.labels(kind=spec.kind, state=status.state.value).inc()
        log = _log.info if status.state == ReadinessState.READY else _log.warning
        log(
            "resource_terminal",
            resource=str(spec.key),
            state=status.state.value,
            message=status.message,
            polls=status.polls,
            elapsed=round(status.elapsed, 3),
        )
        return status

    async def check(self, spec: ResourceSpec, require_endpoints: bool = False) -> Observation:
        """Take one observation of *spec*'s live object."""
        obj = await self._client.get(spec.key)
        if obj is None:
            return readiness.pending(f"{spec.key} not found")

        kind = spec.kind
        if kind == ResourceKind.NAMESPACE:
            return readiness.namespace_ready(obj)
        if kind == ResourceKind.PERSISTENT_VOLUME:
            return readiness.volume_ready(obj)
        if kind == ResourceKind.PERSISTENT_VOLUME_CLAIM:
            return await self._check_claim(obj)
        if kind == ResourceKind.SERVICE:
            endpoints = None
            if require_endpoints and readiness.service_needs_endpoints(obj):
                endpoints = await self._client.get_endpoints(spec.namespace, spec.name)
            return readiness.service_ready(obj, endpoints, require_endpoints)
        if kind == ResourceKind.DEPLOYMENT:
            return await self._check_workload(spec, obj, readiness.deployment_ready(obj))
        if kind == ResourceKind.STATEFUL_SET:
            return await self._check_workload(spec, obj, readiness.statefulset_ready(obj))
        return readiness.exists(obj)

    async def _check_claim(self, obj: dict) -> Observation:
        observation = readiness.claim_ready(obj)
        if not observation.pending:
            return observation
        class_name = readiness.claim_storage_class(obj)
        if not class_name:
            return observation
        storage_class = await self._client.get_storage_class(class_name)
        return readiness.claim_ready(obj, storage_class, self._config.accept_deferred_binding)

    async def _check_workload(self, spec: ResourceSpec, obj: dict, observation: Observation) -> Observation:
        if not observation.pending:
            return observation
        selector = readiness.workload_selector(obj)
        if not selector:
            return observation
        pods = await self._client.list_pods(spec.namespace, selector)
        failure = readiness.pod_failure(pods, self._config.crashloop_restarts)
        return failure or observation
