"""Application bootstrap for KubeStage.

Wires components in dependency order for one deployment run:
config → logging → manifests → graph → (dry run stops here)
       → cluster client → orchestrator → report → notifications → metrics

The cluster client is closed on every path out of ``deploy``.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path

from kubestage import __version__
from kubestage.cluster.base import ClusterClient
from kubestage.config import load_config
from kubestage.engine.orchestrator import Orchestrator
from kubestage.errors import FatalClusterError, ValidationError
from kubestage.graph.dependency_graph import DependencyGraph
from kubestage.graph.inference import default_rules
from kubestage.manifests.loader import ManifestStore
from kubestage.models.config import ClusterConfig, KubeStageConfig
from kubestage.models.outcomes import ReadinessState, ReadinessStatus
from kubestage.models.report import DeploymentReport
from kubestage.notifications import build_notifier
from kubestage.observability.logging import get_logger, setup_logging
from kubestage.observability.metrics import export_metrics, runs_total
from kubestage.report.reporter import plan_report, summarize

ClientFactory = Callable[[ClusterConfig], Awaitable[ClusterClient]]

_log = get_logger("app")


async def _connect_kubernetes(config: ClusterConfig) -> ClusterClient:
    # kubernetes-asyncio is only imported once a cluster is actually needed.
    from kubestage.cluster.kube import KubernetesClusterClient

    return await KubernetesClusterClient.connect(config)


class DeployApp:
    """Owns one deployment run from manifests to report.

    Args:
        config: Resolved configuration. ``from_env`` builds one from
            ``KUBESTAGE_*`` variables.
        client_factory: Coroutine returning a connected ClusterClient.
            Defaults to kubernetes-asyncio.
    """

    def __init__(self, config: KubeStageConfig | None = None, client_factory: ClientFactory | None = None) -> None:
        self.config = config or KubeStageConfig()
        self._client_factory = client_factory or _connect_kubernetes

    @classmethod
    def from_env(cls, client_factory: ClientFactory | None = None) -> DeployApp:
        """Load config from the environment and configure logging.

        Raises:
            ValueError: if an environment variable holds an invalid value.
        """
        config = load_config()
        setup_logging(config.log.level, config.log.format)
        return cls(config, client_factory)

    def plan(self, sources: Iterable[str | Path]) -> DependencyGraph:
        """Load manifests and build the staged graph. No cluster contact.

        Raises:
            ValidationError: bad documents, duplicates or single-writer conflicts.
            CycleError: the dependencies contain a cycle.
        """
        store = ManifestStore(self.config.cluster.default_namespace)
        specs = store.load(sources)
        if not specs:
            raise ValidationError("manifest sources declare no resources")
        try:
            rules = default_rules(self.config.graph.disabled_rules)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return DependencyGraph.build(specs, rules)

    async def deploy(
        self,
        sources: Iterable[str | Path],
        dry_run: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> DeploymentReport:
        """Run a deployment and return its report.

        Validation and cycle errors propagate before any cluster contact.
        Everything after that ends in a report.
        """
        graph = self.plan(sources)
        _log.info(
            "deployment_planned",
            version=__version__,
            resources=graph.node_count,
            stages=len(graph.stages),
            dry_run=dry_run,
        )
        if dry_run:
            return plan_report(graph)

        started_at = datetime.now(UTC)
        try:
            client = await self._client_factory(self.config.cluster)
        except FatalClusterError as exc:
            _log.error("cluster_connect_failed", error=str(exc))
            report = _aborted_report(graph, exc, started_at)
        else:
            try:
                orchestrator = Orchestrator(graph, client, self.config, cancel_event)
                report = await orchestrator.run()
            finally:
                await client.close()

        await self._publish(report)
        return report

    async def _publish(self, report: DeploymentReport) -> None:
        runs_total.labels(verdict=report.verdict.value).inc()
        notifier = build_notifier(self.config.notifications)
        await notifier.notify(report)
        export_metrics(self.config.metrics)


def _aborted_report(graph: DependencyGraph, exc: FatalClusterError, started_at: datetime) -> DeploymentReport:
    statuses = []
    for spec in graph.resources():
        status = ReadinessStatus(spec.key)
        status.transition(ReadinessState.SKIPPED, f"not attempted: run aborted: {exc}")
        statuses.append(status)
    return summarize([], statuses, graph, started_at=started_at, fatal_error=str(exc))


async def run_with_signals(
    app: DeployApp,
    sources: Iterable[str | Path],
    dry_run: bool = False,
) -> DeploymentReport:
    """``deploy`` with SIGINT/SIGTERM wired to the cancellation event."""
    loop = asyncio.get_running_loop()
    cancel_event = asyncio.Event()

    def _request_cancel() -> None:
        if not cancel_event.is_set():
            _log.warning("cancellation_requested")
            cancel_event.set()

    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _request_cancel)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not the main thread, or a platform without signal support.
            _log.debug("signal_handler_unavailable", signal=sig.name)
    try:
        return await app.deploy(sources, dry_run=dry_run, cancel_event=cancel_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
