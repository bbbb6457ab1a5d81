"""Tests for environment-driven configuration."""

from __future__ import annotations

import pytest

from kubestage.config import load_config, parse_duration, validate_conflict_policy


class TestParseDuration:
    @pytest.mark.parametrize(
        ("value", "seconds"),
        [("90", 90.0), ("90s", 90.0), ("2.5s", 2.5), ("5m", 300.0), ("1h", 3600.0), (" 10S ", 10.0)],
    )
    def test_valid(self, value: str, seconds: float) -> None:
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "ten", "-5s", "5d", "1m30s"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError, match="Invalid duration"):
            parse_duration(value)


class TestLoadConfig:
    def test_defaults(self) -> None:
        config = load_config()

        assert config.cluster.default_namespace == "default"
        assert config.apply.conflict_policy == "patch"
        assert config.apply.concurrency == 4
        assert config.apply.stage_timeout == 0.0
        assert config.apply.request_timeout == 30.0
        assert config.watcher.poll_interval == 2.0
        assert config.watcher.workload_timeout == 120.0
        assert config.watcher.accept_deferred_binding is True
        assert config.log.format == "json"

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBESTAGE_DEFAULT_NAMESPACE", "blog")
        monkeypatch.setenv("KUBESTAGE_CONFLICT_POLICY", "FAIL")
        monkeypatch.setenv("KUBESTAGE_STAGE_TIMEOUT", "5m")
        monkeypatch.setenv("KUBESTAGE_REQUEST_TIMEOUT", "10s")
        monkeypatch.setenv("KUBESTAGE_WORKLOAD_TIMEOUT", "300")
        monkeypatch.setenv("KUBESTAGE_ACCEPT_DEFERRED_BINDING", "no")
        monkeypatch.setenv("KUBESTAGE_DISABLED_RULES", "upstream-services, proxy-backends,")
        monkeypatch.setenv("KUBESTAGE_LOG_FORMAT", "console")

        config = load_config()

        assert config.cluster.default_namespace == "blog"
        assert config.apply.conflict_policy == "fail"
        assert config.apply.stage_timeout == 300.0
        assert config.apply.request_timeout == 10.0
        assert config.watcher.workload_timeout == 300.0
        assert config.watcher.accept_deferred_binding is False
        assert config.graph.disabled_rules == ["upstream-services", "proxy-backends"]
        assert config.log.format == "console"

    def test_values_are_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("KUBESTAGE_APPLY_CONCURRENCY", "500")
        monkeypatch.setenv("KUBESTAGE_POLL_INTERVAL", "0")
        monkeypatch.setenv("KUBESTAGE_QUERY_RETRIES", "-3")

        config = load_config()

        assert config.apply.concurrency == 32
        assert config.watcher.poll_interval == 0.1
        assert config.watcher.query_retries == 0

    @pytest.mark.parametrize(
        ("env", "value"),
        [
            ("KUBESTAGE_CONFLICT_POLICY", "overwrite"),
            ("KUBESTAGE_LOG_LEVEL", "verbose"),
            ("KUBESTAGE_LOG_FORMAT", "xml"),
            ("KUBESTAGE_CLAIM_TIMEOUT", "soon"),
        ],
    )
    def test_invalid_values_raise(self, monkeypatch: pytest.MonkeyPatch, env: str, value: str) -> None:
        monkeypatch.setenv(env, value)
        with pytest.raises(ValueError):
            load_config()


def test_validate_conflict_policy() -> None:
    assert validate_conflict_policy("Patch") == "patch"
    with pytest.raises(ValueError, match="Invalid conflict policy"):
        validate_conflict_policy("replace")
