"""ApplyEngine against the in-memory cluster."""

from __future__ import annotations

import pytest

from kubestage.engine import ApplyEngine, SubmissionAborted
from kubestage.errors import (
    ClusterUnreachableError,
    FatalClusterError,
    ResourceRejectedError,
    TransientQueryError,
)
from kubestage.graph import DependencyGraph
from kubestage.models.config import ApplyConfig
from kubestage.models.outcomes import ApplyAction, ApplyOutcome

from ..fakes import FakeCluster, config_map, deployment, secret, specs

pytestmark = pytest.mark.integration


def _engine(cluster: FakeCluster, policy: str = "patch", retries: int = 3, request_timeout: float = 30.0) -> ApplyEngine:
    config = ApplyConfig(conflict_policy=policy, request_timeout=request_timeout)
    return ApplyEngine(cluster, config, retries=retries, backoff=0.001, max_backoff=0.01)


class TestIdempotence:
    async def test_create_then_already_exists(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(secret("db-pass"))

        first = await _engine(cluster).apply_one(spec)
        second = await _engine(cluster).apply_one(spec)

        assert (first.outcome, first.action) == (ApplyOutcome.APPLIED, ApplyAction.CREATED)
        assert first.uid == "uid-1"
        assert (second.outcome, second.action) == (ApplyOutcome.ALREADY_EXISTS, ApplyAction.UNCHANGED)
        assert second.uid == first.uid
        assert cluster.patches == []

    async def test_whole_stage_twice_writes_nothing_new(self) -> None:
        cluster = FakeCluster()
        graph = DependencyGraph.build(specs(secret("a"), config_map("b", key="v"), deployment("c")))
        (stage,) = graph.stages

        await _engine(cluster).apply(stage)
        rerun = await _engine(cluster).apply(stage)

        assert {r.outcome for r in rerun} == {ApplyOutcome.ALREADY_EXISTS}
        assert len(cluster.objects) == 3


class TestConflicts:
    async def test_differing_object_is_patched(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(config_map("settings", mode="new"))
        cluster.seed(spec, data__mode="old")

        result = await _engine(cluster).apply_one(spec)

        assert (result.outcome, result.action) == (ApplyOutcome.APPLIED, ApplyAction.PATCHED)
        assert "data.mode" in result.message
        assert result.resource_version == "2"
        assert cluster.objects[spec.key]["data"] == {"mode": "new"}

    async def test_fail_policy_reports_conflict(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(config_map("settings", mode="new"))
        cluster.seed(spec, data__mode="old")

        result = await _engine(cluster, policy="fail").apply_one(spec)

        assert result.outcome == ApplyOutcome.FAILED
        assert result.error_type == "ConflictError"
        assert "live object differs at data.mode" in result.message
        assert cluster.patches == []


class TestErrors:
    async def test_rejected_resource_fails_without_retry(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(secret("s"))
        cluster.create_errors[spec.key] = [ResourceRejectedError("create Secret/default/s: 422 invalid")]

        result = await _engine(cluster).apply_one(spec)

        assert result.outcome == ApplyOutcome.FAILED
        assert result.message == "create Secret/default/s: 422 invalid"
        assert len(cluster.submissions) == 1

    async def test_transient_errors_are_retried(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(secret("s"))
        cluster.create_errors[spec.key] = [TransientQueryError("503"), TransientQueryError("429")]

        result = await _engine(cluster).apply_one(spec)

        assert result.outcome == ApplyOutcome.APPLIED
        assert result.attempts == 3

    async def test_exhausted_retries_fail_the_resource(self) -> None:
        cluster = FakeCluster()
        (spec,) = specs(secret("s"))
        cluster.create_errors[spec.key] = [TransientQueryError("503 unavailable")] * 5

        result = await _engine(cluster, retries=2).apply_one(spec)

        assert result.outcome == ApplyOutcome.FAILED
        assert result.message.startswith("submission failed after 3 attempts")

    async def test_persistent_unreachability_becomes_fatal(self) -> None:
        cluster = FakeCluster()
        (spec, other) = specs(secret("s"), secret("t"))
        cluster.fail_creates = ClusterUnreachableError("connection refused")
        engine = _engine(cluster, retries=1)

        with pytest.raises(FatalClusterError, match="unreachable after 2 attempts"):
            await engine.apply_one(spec)
        with pytest.raises(SubmissionAborted):
            await engine.apply_one(other)
        assert engine.fatal_error is not None

    async def test_unauthorized_stops_every_later_submission(self) -> None:
        cluster = FakeCluster()
        graph = DependencyGraph.build(specs(secret("a"), secret("b"), secret("c")))
        cluster.fail_creates = FatalClusterError("create Secret/default/a: 401 Unauthorized", status=401)
        engine = _engine(cluster)

        with pytest.raises(FatalClusterError):
            await engine.apply(graph.stages[0])

        assert len(cluster.submissions) == 1
        assert engine.fatal_error is not None
        assert engine.fatal_error.status == 401

    async def test_unanswered_submission_is_retried_then_fails(self) -> None:
        cluster = FakeCluster(submit_delay=3600)
        (spec,) = specs(secret("s"))

        result = await _engine(cluster, retries=1, request_timeout=0.05).apply_one(spec)

        assert result.outcome == ApplyOutcome.FAILED
        assert result.error_type == "TransientQueryError"
        assert result.message == (
            "submission failed after 2 attempts: submit Secret/default/s: no response within 0.05s"
        )
        assert len(cluster.submissions) == 2
