"""Shared fixtures for the KubeStage test suite."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog
from structlog.testing import capture_logs

from kubestage.models.config import KubeStageConfig, WatcherConfig

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture(autouse=True)
def captured_logs() -> Iterator[list[dict]]:
    """Keep log lines out of stdout/stderr and make them assertable."""
    with capture_logs() as logs:
        yield logs
    structlog.reset_defaults()


@pytest.fixture()
def fast_watcher_config() -> WatcherConfig:
    """Watcher timings scaled down so pipeline tests finish in milliseconds."""
    return WatcherConfig(
        poll_interval=0.01,
        max_backoff=0.05,
        query_retries=3,
        workload_timeout=0.3,
        service_timeout=0.3,
        claim_timeout=0.3,
        default_timeout=0.3,
        crashloop_restarts=3,
    )


@pytest.fixture()
def fast_config(fast_watcher_config: WatcherConfig) -> KubeStageConfig:
    config = KubeStageConfig()
    config.watcher = fast_watcher_config
    return config


@pytest.fixture()
def wordpress_manifest() -> Path:
    return FIXTURES / "wordpress-stack.yaml"
