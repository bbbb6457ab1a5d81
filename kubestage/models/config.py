"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ClusterConfig:
    """How to reach the Kubernetes API."""

    kubeconfig: str = ""
    context: str = ""
    in_cluster: bool = False
    default_namespace: str = "default"


@dataclass
class ApplyConfig:
    """Apply engine configuration."""

    conflict_policy: str = "patch"  # "patch" or "fail"
    concurrency: int = 4
    stage_timeout: float = 0.0  # seconds, 0 disables
    request_timeout: float = 30.0  # seconds per submission attempt


@dataclass
class WatcherConfig:
    """Readiness watcher configuration."""

    poll_interval: float = 2.0
    max_backoff: float = 30.0
    query_retries: int = 5
    workload_timeout: float = 120.0
    service_timeout: float = 60.0
    claim_timeout: float = 30.0
    default_timeout: float = 30.0
    crashloop_restarts: int = 3
    accept_deferred_binding: bool = True


@dataclass
class GraphConfig:
    """Dependency inference policy."""

    disabled_rules: list[str] = field(default_factory=list)


@dataclass
class NotificationConfig:
    """Report delivery configuration."""

    webhook_secret_ref: str = ""


@dataclass
class MetricsConfig:
    """Where run metrics go once the report is produced."""

    pushgateway: str = ""
    textfile: str = ""
    job: str = "kubestage"


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class KubeStageConfig:
    """Top-level KubeStage configuration."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    apply: ApplyConfig = field(default_factory=ApplyConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
