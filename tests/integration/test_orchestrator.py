"""Full stage-by-stage runs against the in-memory cluster."""

from __future__ import annotations

import asyncio

import pytest

from kubestage.engine import Orchestrator
from kubestage.errors import FatalClusterError, ResourceRejectedError
from kubestage.graph import DependencyGraph
from kubestage.manifests import ManifestStore
from kubestage.models.config import KubeStageConfig
from kubestage.models.report import Verdict

from ..fakes import (
    FakeCluster,
    claim,
    deployment,
    key,
    secret,
    service,
    specs,
    unavailable_deployment_status,
    volume,
)

pytestmark = pytest.mark.integration


def _graph(*docs: dict) -> DependencyGraph:
    return DependencyGraph.build(specs(*docs))


def _storage_stack() -> DependencyGraph:
    return _graph(
        volume("data"),
        claim("data-claim", volume_name="data"),
        secret("db-pass"),
        deployment("db", claims=["data-claim"], secrets=["db-pass"]),
        service("db", selector={"app": "db"}, port=3306),
    )


def _states(report) -> dict[str, str]:
    return {r.resource: r.state for r in report.resources}


class TestSuccessfulRun:
    async def test_storage_stack(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _storage_stack()

        report = await Orchestrator(graph, cluster, fast_config).run()

        assert report.verdict == Verdict.SUCCESS
        assert report.counts["ready"] == 5
        assert [set(stage) for stage in report.stages] == [
            {"PersistentVolume/data", "Secret/default/db-pass"},
            {"PersistentVolumeClaim/default/data-claim"},
            {"Deployment/default/db"},
            {"Service/default/db"},
        ]
        assert all(r.attempted and r.apply_action == "created" for r in report.resources)

    async def test_dependencies_are_ready_before_dependents_are_submitted(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster(submit_delay=0.005)
        graph = _storage_stack()
        # The claim needs a few polls before it binds.
        cluster.statuses[key("PersistentVolumeClaim", "data-claim")] = [
            {"phase": "Pending"},
            {"phase": "Pending"},
            {"phase": "Bound"},
        ]
        orchestrator = Orchestrator(graph, cluster, fast_config)

        await orchestrator.run()

        statuses = orchestrator.statuses
        submitted_at = dict(cluster.submissions)
        for spec in graph.resources():
            for dep in graph.dependencies(spec.key):
                assert statuses[dep].finished_at is not None
                assert statuses[dep].finished_at <= submitted_at[spec.key], f"{spec.key} before {dep}"

    async def test_second_run_is_idempotent(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _storage_stack()

        await Orchestrator(graph, cluster, fast_config).run()
        report = await Orchestrator(graph, cluster, fast_config).run()

        assert report.verdict == Verdict.SUCCESS
        assert {r.apply_outcome for r in report.resources} == {"already-exists"}
        assert cluster.patches == []


class TestBlockedRuns:
    async def test_workload_never_ready_skips_later_stages(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _storage_stack()
        cluster.statuses[key("Deployment", "db")] = [unavailable_deployment_status("0/1 nodes are available")]

        report = await Orchestrator(graph, cluster, fast_config).run()

        assert report.verdict == Verdict.PARTIAL
        states = _states(report)
        assert states["Deployment/default/db"] == "timed-out"
        assert states["Service/default/db"] == "skipped"
        skipped = next(r for r in report.resources if r.resource == "Service/default/db")
        assert not skipped.attempted
        assert skipped.message == "not attempted: stage 2 did not become ready (Deployment/default/db)"
        assert key("Service", "db") not in cluster.submitted()

    async def test_lone_workload_never_ready_fails_the_run(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _graph(deployment("web"))
        cluster.statuses[key("Deployment", "web")] = [unavailable_deployment_status()]

        report = await Orchestrator(graph, cluster, fast_config).run()

        assert report.verdict == Verdict.FAILED
        assert report.counts["timed-out"] == 1

    async def test_rejected_submission_fails_and_blocks(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _storage_stack()
        cluster.create_errors[key("Secret", "db-pass")] = [ResourceRejectedError("create Secret/default/db-pass: 422 bad")]

        report = await Orchestrator(graph, cluster, fast_config).run()

        states = _states(report)
        assert states["Secret/default/db-pass"] == "failed"
        assert states["PersistentVolume/data"] == "ready"
        assert states["Deployment/default/db"] == "skipped"
        assert report.verdict == Verdict.PARTIAL

    async def test_unexpected_error_fails_only_that_resource(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _graph(secret("a"), secret("b"), deployment("web", secrets=["a"]))
        cluster.get_errors[key("Secret", "a")] = [RuntimeError("connection pool is closed")]

        report = await Orchestrator(graph, cluster, fast_config).run()

        states = _states(report)
        assert states == {
            "Secret/default/a": "failed",
            "Secret/default/b": "ready",
            "Deployment/default/web": "skipped",
        }
        crashed = next(r for r in report.resources if r.resource == "Secret/default/a")
        assert crashed.attempted
        assert crashed.message == "RuntimeError: connection pool is closed"
        assert report.verdict == Verdict.PARTIAL

    async def test_service_with_dependents_needs_endpoints(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        cluster.endpoints_ready_by_default = False
        graph = _graph(
            deployment("mysql"),
            service("mysql", selector={"app": "mysql"}, port=3306),
            deployment("app", env={"DB_HOST": "mysql:3306"}),
        )

        report = await Orchestrator(graph, cluster, fast_config).run()

        states = _states(report)
        assert states["Service/default/mysql"] == "timed-out"
        assert states["Deployment/default/app"] == "skipped"

    async def test_stage_timeout(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        fast_config.apply.stage_timeout = 0.05
        fast_config.watcher.workload_timeout = 5.0
        graph = _graph(secret("s"), deployment("web"))
        cluster.statuses[key("Deployment", "web")] = [unavailable_deployment_status("pulling image")]

        report = await Orchestrator(graph, cluster, fast_config).run()

        web = next(r for r in report.resources if r.name == "web")
        assert web.state == "timed-out"
        assert web.message == (
            "stage timeout of 0.05s expired; last observed: 0/1 replicas available: pulling image"
        )
        assert _states(report)["Secret/default/s"] == "ready"


class TestAbortedRuns:
    async def test_unauthorized_submits_once_and_aborts(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        graph = _storage_stack()
        cluster.fail_creates = FatalClusterError("create PersistentVolume/data: 401 Unauthorized", status=401)

        report = await Orchestrator(graph, cluster, fast_config).run()

        assert len(cluster.submissions) == 1
        assert report.verdict == Verdict.FAILED
        assert report.fatal_error == "create PersistentVolume/data: 401 Unauthorized"
        assert report.counts["failed"] == 1
        assert report.counts["skipped"] == 4
        assert sum(r.attempted for r in report.resources) == 1

    async def test_cancellation_marks_remaining_skipped(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        fast_config.watcher.workload_timeout = 5.0
        graph = _storage_stack()
        cluster.statuses[key("Deployment", "db")] = [unavailable_deployment_status()]
        cancel = asyncio.Event()

        async def cancel_once_workload_submitted() -> None:
            while key("Deployment", "db") not in cluster.submitted():
                await asyncio.sleep(0.005)
            await asyncio.sleep(0.02)
            cancel.set()

        report, _ = await asyncio.wait_for(
            asyncio.gather(Orchestrator(graph, cluster, fast_config, cancel).run(), cancel_once_workload_submitted()),
            timeout=3,
        )

        assert report.cancelled
        states = _states(report)
        assert states["Secret/default/db-pass"] == "ready"
        assert states["Deployment/default/db"] == "skipped"
        assert states["Service/default/db"] == "skipped"
        db = next(r for r in report.resources if r.resource == "Deployment/default/db")
        assert db.attempted
        assert db.message.startswith("interrupted: run cancelled; last observed: 0/1 replicas available")

    async def test_cancelled_before_start(self, fast_config: KubeStageConfig) -> None:
        cluster = FakeCluster()
        cancel = asyncio.Event()
        cancel.set()

        report = await Orchestrator(_storage_stack(), cluster, fast_config, cancel).run()

        assert report.cancelled
        assert report.verdict == Verdict.FAILED
        assert cluster.submissions == []
        assert {r.message for r in report.resources} == {"not attempted: run cancelled"}


async def test_default_namespace_is_applied_to_every_key(fast_config: KubeStageConfig) -> None:
    cluster = FakeCluster()
    graph = DependencyGraph.build(ManifestStore("blog").load_documents([secret("a"), deployment("b", secrets=["a"])]))

    await Orchestrator(graph, cluster, fast_config).run()

    assert cluster.submitted() == [key("Secret", "a", "blog"), key("Deployment", "b", "blog")]
