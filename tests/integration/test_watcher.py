"""ReadinessWatcher polling against the in-memory cluster."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from kubestage.engine import ReadinessWatcher
from kubestage.errors import TransientQueryError
from kubestage.models.config import WatcherConfig
from kubestage.models.outcomes import ReadinessState, ReadinessStatus
from kubestage.models.resources import ResourceKey, ResourceSpec

from ..fakes import FakeCluster, claim, deployment, pod, ready_status, service, specs, unavailable_deployment_status

pytestmark = pytest.mark.integration


async def _watch(
    cluster: FakeCluster,
    spec: ResourceSpec,
    config: WatcherConfig,
    require_endpoints: bool = False,
) -> ReadinessStatus:
    await cluster.create(spec)
    status = ReadinessStatus(spec.key)
    status.start()
    return await ReadinessWatcher(cluster, config).watch(spec, status, require_endpoints)


class _StallingCluster(FakeCluster):
    """Answers ``answered`` status reads, then never responds again."""

    def __init__(self, answered: int = 0) -> None:
        super().__init__()
        self.answered = answered

    async def get(self, key: ResourceKey) -> dict[str, Any] | None:
        if self.answered <= 0:
            await asyncio.sleep(3600)
        self.answered -= 1
        return await super().get(key)


class TestWorkloads:
    async def test_becomes_ready_after_pending_polls(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.statuses[spec.key] = [
            unavailable_deployment_status("0 pods scheduled"),
            unavailable_deployment_status("pulling image"),
            ready_status(spec.payload),
        ]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.READY
        assert status.message == "1/1 replicas available"
        assert status.polls == 2
        assert status.history[0] == "0/1 replicas available: 0 pods scheduled"

    async def test_timeout_keeps_last_observed_condition(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.statuses[spec.key] = [unavailable_deployment_status("0/3 nodes are available: insufficient memory")]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.TIMED_OUT
        assert status.message == "0/1 replicas available: 0/3 nodes are available: insufficient memory"
        assert status.timeout == fast_watcher_config.workload_timeout
        assert status.as_error() is not None

    async def test_image_pull_failure_is_terminal_before_timeout(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.statuses[spec.key] = [unavailable_deployment_status()]
        cluster.pods["default"] = [
            pod("web-abc", {"app": "web"}, "ErrImagePull", message='pull access denied for "example/web"'),
            pod("other", {"app": "other"}, "ImagePullBackOff"),
        ]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.FAILED
        assert status.message == 'pod web-abc container app: ErrImagePull: pull access denied for "example/web"'
        assert status.polls == 0

    async def test_crash_loop_below_threshold_keeps_waiting(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.statuses[spec.key] = [unavailable_deployment_status()]
        cluster.pods["default"] = [pod("web-abc", {"app": "web"}, "CrashLoopBackOff", restarts=1)]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.TIMED_OUT


class TestQueryErrors:
    async def test_transient_errors_are_absorbed(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.get_errors[spec.key] = [TransientQueryError("503"), TransientQueryError("503")]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.READY
        assert status.query_errors == 2

    async def test_persistent_errors_fail_the_resource(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(deployment("web"))
        cluster.get_errors[spec.key] = [TransientQueryError("get Deployment/default/web: 503 etcdserver: leader changed")] * 10

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.FAILED
        assert status.message == (
            "status query failed 4 times in a row: get Deployment/default/web: 503 etcdserver: leader changed"
        )

    async def test_stalled_query_times_out_at_the_deadline(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = _StallingCluster()
        (spec,) = specs(deployment("web"))

        status = await asyncio.wait_for(_watch(cluster, spec, fast_watcher_config), timeout=2)

        assert status.state == ReadinessState.TIMED_OUT
        assert status.message == "not ready after 0.3s: status query did not return"

    async def test_stall_after_a_pending_poll_keeps_its_message(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = _StallingCluster(answered=1)
        (spec,) = specs(deployment("web"))
        cluster.statuses[spec.key] = [unavailable_deployment_status("pulling image")]

        status = await asyncio.wait_for(_watch(cluster, spec, fast_watcher_config), timeout=2)

        assert status.state == ReadinessState.TIMED_OUT
        assert status.message == "0/1 replicas available: pulling image"


class TestStorageAndServices:
    async def test_claim_on_first_consumer_class_counts_as_ready(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(claim("data", storage_class="local-path"))
        cluster.statuses[spec.key] = [{"phase": "Pending"}]
        cluster.storage_classes["local-path"] = {
            "metadata": {"name": "local-path"},
            "volumeBindingMode": "WaitForFirstConsumer",
        }

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.READY
        assert "binds on first consumer" in status.message

    async def test_claim_without_volume_times_out(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(claim("data"))
        cluster.statuses[spec.key] = [{"phase": "Pending"}]

        status = await _watch(cluster, spec, fast_watcher_config)

        assert status.state == ReadinessState.TIMED_OUT
        assert status.message == "claim phase is Pending"
        assert status.timeout == fast_watcher_config.claim_timeout

    async def test_service_waits_for_endpoints_when_required(self, fast_watcher_config: WatcherConfig) -> None:
        cluster = FakeCluster()
        (spec,) = specs(service("db", selector={"app": "db"}))
        cluster.endpoints[("default", "db")] = {"subsets": [{"notReadyAddresses": [{"ip": "10.1.0.4"}]}]}

        without = await _watch(cluster, spec, fast_watcher_config, require_endpoints=False)
        cluster.objects.clear()
        required = await _watch(cluster, spec, fast_watcher_config, require_endpoints=True)

        assert without.state == ReadinessState.READY
        assert required.state == ReadinessState.TIMED_OUT
        assert required.message == "no ready endpoints (1 not ready)"
