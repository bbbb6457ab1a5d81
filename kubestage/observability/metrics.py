"""Prometheus metrics for deployment runs.

KubeStage is a short-lived process, so metrics are exported once at the end
of a run: pushed to a Pushgateway and/or written to a node-exporter
textfile collector path.
"""

from __future__ import annotations

from prometheus_client import REGISTRY, Counter, Histogram, push_to_gateway, write_to_textfile

from kubestage.models.config import MetricsConfig
from kubestage.observability.logging import get_logger

_log = get_logger("metrics")

apply_total = Counter(
    "kubestage_apply_total",
    "Resource submissions by kind and outcome",
    ["kind", "outcome"],
)
readiness_total = Counter(
    "kubestage_readiness_total",
    "Terminal readiness states by kind",
    ["kind", "state"],
)
query_errors_total = Counter(
    "kubestage_query_errors_total",
    "Retryable cluster query errors by kind",
    ["kind"],
)
stage_duration_seconds = Histogram(
    "kubestage_stage_duration_seconds",
    "Wall time from first submission to last terminal state in a stage",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600),
)
runs_total = Counter(
    "kubestage_runs_total",
    "Deployment runs by verdict",
    ["verdict"],
)
notifications_total = Counter(
    "kubestage_notifications_total",
    "Report deliveries by channel and success",
    ["channel", "success"],
)


def export_metrics(config: MetricsConfig) -> None:
    """Push and/or write the default registry. Failures are logged only."""
    if config.textfile:
        try:
            write_to_textfile(config.textfile, REGISTRY)
            _log.info("metrics_written", path=config.textfile)
        except OSError as exc:
            _log.warning("metrics_textfile_failed", path=config.textfile, error=str(exc))
    if config.pushgateway:
        try:
            push_to_gateway(config.pushgateway, job=config.job, registry=REGISTRY)
            _log.info("metrics_pushed", gateway=config.pushgateway, job=config.job)
        except OSError as exc:
            _log.warning("metrics_push_failed", gateway=config.pushgateway, error=str(exc))
