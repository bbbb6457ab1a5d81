"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kubestage.models.config import (
    ApplyConfig,
    ClusterConfig,
    GraphConfig,
    KubeStageConfig,
    LogConfig,
    MetricsConfig,
    NotificationConfig,
    WatcherConfig,
)

_DURATION_RE = re.compile(r"^([0-9]+(?:\.[0-9]+)?)(s|m|h)?$")
_DURATION_UNITS = {None: 1.0, "s": 1.0, "m": 60.0, "h": 3600.0}


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KUBESTAGE_{key}", default)


def _env_bool(key: str, default: bool = False) -> bool:
    val = _env(key, str(default).lower())
    return val.lower() in ("true", "1", "yes")


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _env_duration(key: str, default: str, min_val: float | None = None) -> float:
    val = parse_duration(_env(key, default))
    if min_val is not None:
        val = max(val, min_val)
    return val


def _env_list(key: str) -> list[str]:
    return [item.strip() for item in _env(key, "").split(",") if item.strip()]


def parse_duration(value: str) -> float:
    """Parse ``90``, ``90s``, ``5m`` or ``1h`` into seconds."""
    match = _DURATION_RE.match(value.strip().lower())
    if not match:
        raise ValueError(f"Invalid duration: {value!r}. Use e.g. 90, 90s, 5m or 1h")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


def validate_conflict_policy(value: str) -> str:
    valid = {"patch", "fail"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid conflict policy: {value}. Must be one of {sorted(valid)}")
    return value.lower()


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    valid = {"json", "console"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log format: {value}. Must be one of {valid}")
    return value.lower()


def load_config() -> KubeStageConfig:
    """Load configuration from KUBESTAGE_* environment variables."""
    return KubeStageConfig(
        cluster=ClusterConfig(
            kubeconfig=_env("KUBECONFIG", ""),
            context=_env("CONTEXT", ""),
            in_cluster=_env_bool("IN_CLUSTER", False),
            default_namespace=_env("DEFAULT_NAMESPACE", "default") or "default",
        ),
        apply=ApplyConfig(
            conflict_policy=validate_conflict_policy(_env("CONFLICT_POLICY", "patch")),
            concurrency=_env_int("APPLY_CONCURRENCY", 4, min_val=1, max_val=32),
            stage_timeout=_env_duration("STAGE_TIMEOUT", "0", min_val=0.0),
            request_timeout=_env_duration("REQUEST_TIMEOUT", "30s", min_val=1.0),
        ),
        watcher=WatcherConfig(
            poll_interval=_env_duration("POLL_INTERVAL", "2s", min_val=0.1),
            max_backoff=_env_duration("MAX_BACKOFF", "30s", min_val=1.0),
            query_retries=_env_int("QUERY_RETRIES", 5, min_val=0, max_val=20),
            workload_timeout=_env_duration("WORKLOAD_TIMEOUT", "120s", min_val=1.0),
            service_timeout=_env_duration("SERVICE_TIMEOUT", "60s", min_val=1.0),
            claim_timeout=_env_duration("CLAIM_TIMEOUT", "30s", min_val=1.0),
            default_timeout=_env_duration("DEFAULT_TIMEOUT", "30s", min_val=1.0),
            crashloop_restarts=_env_int("CRASHLOOP_RESTARTS", 3, min_val=1, max_val=100),
            accept_deferred_binding=_env_bool("ACCEPT_DEFERRED_BINDING", True),
        ),
        graph=GraphConfig(
            disabled_rules=_env_list("DISABLED_RULES"),
        ),
        notifications=NotificationConfig(
            webhook_secret_ref=_env("NOTIFICATIONS_WEBHOOK_SECRET_REF", ""),
        ),
        metrics=MetricsConfig(
            pushgateway=_env("METRICS_PUSHGATEWAY", ""),
            textfile=_env("METRICS_TEXTFILE", ""),
            job=_env("METRICS_JOB", "kubestage") or "kubestage",
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
