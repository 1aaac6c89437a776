"""Tests for YAML/env configuration loading."""

import json
import textwrap

import pytest

from ecosystem_monitor.config import (
    ConfigLoadError,
    MonitorConfig,
    build_registry,
    get_config,
    load_config,
    parse_probe_definitions,
)
from ecosystem_monitor.probes import ProbeKind, ProbeRegistry, ScoringStyle


def write_config(tmp_path, body):
    path = tmp_path / "monitor.yaml"
    path.write_text(textwrap.dedent(body))
    return path


VALID_CONFIG = """
monitor:
  check_interval_seconds: 15
  history_capacity: 20
  webhook_urls: ${ALERT_WEBHOOK:-}
  port: "9005"

defaults:
  timeout_ms: 4000

probes:
  - id: memory-service
    kind: http
    target: ${MEMORY_URL}/health
    degradedLatencyMs: 1500
  - id: disk
    kind: shell-metric
    target: df -h / | tail -1
    parser: df
    scoring: resource
    metric: disk
    timeoutMs: 2000
"""


class TestLoadConfig:

    def test_valid_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "https://memory.example.com")
        config = load_config(write_config(tmp_path, VALID_CONFIG))

        assert config.check_interval_seconds == 15.0
        assert config.history_capacity == 20
        assert config.port == 9005
        assert config.webhook_urls == []
        assert config.alert_history_size == 50

        memory, disk = config.probes
        assert memory.target == "https://memory.example.com/health"
        assert memory.timeout_ms == 4000
        assert memory.degraded_latency_ms == 1500
        assert disk.kind == ProbeKind.SHELL_METRIC
        assert disk.scoring == ScoringStyle.RESOURCE
        assert disk.timeout_ms == 2000

    def test_config_is_cached(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        path = write_config(tmp_path, VALID_CONFIG)

        config = load_config(path)

        assert get_config() is config
        assert load_config() is config
        assert load_config(path, reload=True) is not config

    def test_path_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        monkeypatch.setenv("MONITOR_CONFIG", str(write_config(tmp_path, VALID_CONFIG)))

        assert len(load_config().probes) == 2

    def test_probes_from_environment_are_appended(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        monkeypatch.setenv("MONITOR_PROBES", json.dumps([
            {"id": "pm2", "kind": "process-list", "target": "pm2 jlist"},
        ]))

        config = load_config(write_config(tmp_path, VALID_CONFIG))

        assert [p.id for p in config.probes] == ["memory-service", "disk", "pm2"]
        assert config.probes[-1].timeout_ms == 4000

    def test_no_file_and_no_env(self):
        config = load_config()

        assert config.probes == []
        assert config.port == 8005

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="invalid YAML"):
            load_config(write_config(tmp_path, "probes: [unclosed\n"))

    def test_missing_required_env_var(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MEMORY_URL", raising=False)

        with pytest.raises(ConfigLoadError, match="MEMORY_URL"):
            load_config(write_config(tmp_path, VALID_CONFIG))

    def test_duplicate_ids_across_sources(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        monkeypatch.setenv("MONITOR_PROBES", json.dumps([
            {"id": "disk", "kind": "shell-metric", "target": "echo 1"},
        ]))

        with pytest.raises(ConfigLoadError, match="duplicate"):
            load_config(write_config(tmp_path, VALID_CONFIG))

    def test_empty_yaml_target_is_rejected(self, tmp_path):
        body = """
        probes:
          - id: api
            kind: http
            target:
        """

        with pytest.raises(ConfigLoadError, match="target"):
            load_config(write_config(tmp_path, body))

    def test_infinite_env_timeout(self, monkeypatch):
        monkeypatch.setenv(
            "MONITOR_PROBES",
            '[{"id": "a", "kind": "http", "target": "http://x", "timeoutMs": 1e400}]',
        )

        with pytest.raises(ConfigLoadError) as exc_info:
            load_config(reload=True)

        assert exc_info.value.source == "MONITOR_PROBES[0]"

    def test_infinite_yaml_timeout(self, tmp_path):
        body = """
        probes:
          - id: a
            kind: http
            target: http://x
            timeoutMs: .inf
        """

        with pytest.raises(ConfigLoadError, match="finite"):
            load_config(write_config(tmp_path, body))

    def test_malformed_env_probes(self, monkeypatch):
        monkeypatch.setenv("MONITOR_PROBES", "[{not json")

        with pytest.raises(ConfigLoadError, match="MONITOR_PROBES"):
            load_config()

    @pytest.mark.parametrize("section", [
        "monitor:\n  history_capacity: 0\n",
        "monitor:\n  port: 70000\n",
        "monitor:\n  check_interval_seconds: -1\n",
        "monitor:\n  history_capacity: lots\n",
        "monitor: [1, 2]\n",
        "- just\n- a list\n",
    ])
    def test_invalid_monitor_settings(self, tmp_path, section):
        with pytest.raises(ConfigLoadError):
            load_config(write_config(tmp_path, section))


class TestParseProbeDefinitions:

    def test_records_are_validated(self):
        with pytest.raises(ConfigLoadError) as exc_info:
            parse_probe_definitions([
                {"id": "ok", "kind": "http", "target": "http://a"},
                {"id": "bad", "kind": "http", "target": "http://b", "timeoutMs": 0},
            ])

        assert exc_info.value.source == "probes[1]"

    @pytest.mark.parametrize("records", [
        [{"id": "x", "kind": "carrier-pigeon", "target": "coop"}],
        [{"id": "x", "target": "http://a"}],
        [{"id": "x", "kind": "http", "target": "http://a", "colour": "red"}],
        [{"id": "x", "kind": "shell-metric", "target": "uptime", "parser": "awk"}],
        ["not a mapping"],
        {"id": "x"},
    ])
    def test_malformed_records(self, records):
        with pytest.raises(ConfigLoadError):
            parse_probe_definitions(records)

    @pytest.mark.parametrize("record", [
        {"id": "api", "kind": "http", "target": None},
        {"id": None, "kind": "http", "target": "http://a"},
        {"id": 7, "kind": "http", "target": "http://a"},
        {"id": "api", "kind": "http", "target": ["http://a"]},
    ])
    def test_null_or_non_string_id_and_target(self, record):
        with pytest.raises(ConfigLoadError) as exc_info:
            parse_probe_definitions([record])

        assert exc_info.value.source == "probes[0]"

    @pytest.mark.parametrize("field_name", ["timeoutMs", "intervalMs", "penalty", "degradedLatencyMs"])
    def test_non_finite_numbers(self, field_name):
        record = {"id": "api", "kind": "http", "target": "http://a", field_name: float("inf")}

        with pytest.raises(ConfigLoadError, match="finite"):
            parse_probe_definitions([record])

    @pytest.mark.parametrize("value", ["true", "null"])
    def test_non_numeric_timeout(self, value):
        record = json.loads(f'{{"id": "api", "kind": "http", "target": "http://a", "timeoutMs": {value}}}')

        with pytest.raises(ConfigLoadError):
            parse_probe_definitions([record])

    def test_duplicate_ids(self):
        record = {"id": "api", "kind": "http", "target": "http://a"}

        with pytest.raises(ConfigLoadError, match="duplicate probe id 'api'"):
            parse_probe_definitions([record, dict(record)])

    def test_none_is_empty(self):
        assert parse_probe_definitions(None) == []


class TestMonitorConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("MONITOR_HISTORY_CAPACITY", "25")
        monkeypatch.setenv("MONITOR_WEBHOOK_URLS", "http://hooks/a, http://hooks/b")

        config = MonitorConfig.from_env(prefix="MONITOR_")

        assert config.history_capacity == 25
        assert config.webhook_urls == ["http://hooks/a", "http://hooks/b"]

    def test_merge_coerces_types(self):
        config = MonitorConfig().merge({"port": "9100", "check_interval_seconds": "2.5"})

        assert config.port == 9100
        assert config.check_interval_seconds == 2.5

    def test_merge_keeps_probe_definitions(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        config = load_config(write_config(tmp_path, VALID_CONFIG))

        merged = config.merge({"port": 9200})

        assert merged.port == 9200
        assert [p.to_dict() for p in merged.probes] == [p.to_dict() for p in config.probes]
        assert merged.probes[0].kind == ProbeKind.HTTP

    def test_build_registry(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEMORY_URL", "http://localhost:8000")
        config = load_config(write_config(tmp_path, VALID_CONFIG))

        registry = build_registry(config, ProbeRegistry())

        assert [d.id for d in registry.list()] == ["memory-service", "disk"]
