"""Tests for the run_monitor entry point."""

import json
import logging
import sys

import pytest

import run_monitor
from ecosystem_monitor.health import Aggregator, HealthMonitor
from ecosystem_monitor.probes import ProbeOutcome, ProbeRegistry

from conftest import Step, make_definition


@pytest.fixture(autouse=True)
def keep_root_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.mark.asyncio
async def test_bad_config_exits_with_status_2(tmp_path, monkeypatch):
    config = tmp_path / "monitor.yaml"
    config.write_text("probes:\n  - id: api\n    kind: http\n    target: http://a\n    timeoutMs: 0\n")
    monkeypatch.setattr(sys, "argv", ["run_monitor.py", "--config", str(config), "--once"])

    assert await run_monitor.main() == 2


@pytest.mark.asyncio
async def test_once_prints_snapshot(monkeypatch, capsys):
    monkeypatch.setenv("MONITOR_PROBES", json.dumps([
        {"id": "load", "kind": "shell-metric", "target": "echo 0.42"},
    ]))
    monkeypatch.setattr(sys, "argv", ["run_monitor.py", "--once", "--log-level", "WARNING"])

    assert await run_monitor.main() == 0

    snapshot = json.loads(capsys.readouterr().out)
    assert snapshot["per_probe"]["load"]["raw_value"] == 0.42
    assert snapshot["overall_status"] == "healthy"


@pytest.mark.asyncio
async def test_once_exit_code_follows_status(scripted_factory, script):
    registry = ProbeRegistry([make_definition("a"), make_definition("b"), make_definition("c")])
    monitor = HealthMonitor(registry, aggregator=Aggregator(registry, probe_factory=scripted_factory))
    script["a"] = Step(outcome=ProbeOutcome.ERROR)

    assert await run_monitor.run_once(monitor) == 1

    script["b"] = Step(outcome=ProbeOutcome.ERROR)
    script["c"] = Step(outcome=ProbeOutcome.ERROR)
    assert await run_monitor.run_once(monitor) == 2
