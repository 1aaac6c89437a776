"""Tests for structured logging and log correlation."""

import json
import logging

import pytest

from ecosystem_monitor.probes import ProbeKind, ProbeOutcome
from ecosystem_monitor.utils.logging_config import (
    LogContext,
    LoggingConfig,
    RichConsoleFormatter,
    StructuredFormatter,
    log_duration,
    set_context,
    set_cycle_id,
    setup_logging,
)

from conftest import ScriptedProbe, Step, make_definition


def _record(message="[Monitor] Cycle complete", **extra):
    record = logging.LogRecord(
        name="ecosystem_monitor.health.monitor",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:

    def test_basic_fields(self):
        data = json.loads(StructuredFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "ecosystem_monitor.health.monitor"
        assert data["message"] == "[Monitor] Cycle complete"
        assert "cycle_id" not in data

    def test_cycle_id_and_context(self):
        set_cycle_id("3f2a9c1d")
        set_context(host="vps-1")

        with LogContext(probe_id="disk"):
            data = json.loads(StructuredFormatter().format(_record(duration_ms=12.5)))

        assert data["cycle_id"] == "3f2a9c1d"
        assert data["context"] == {"host": "vps-1", "probe_id": "disk"}
        assert data["extra"] == {"duration_ms": 12.5}

        outside = json.loads(StructuredFormatter().format(_record()))
        assert outside["context"] == {"host": "vps-1"}

    def test_console_formatter_shows_cycle(self):
        set_cycle_id("abcd1234")

        assert "[cycle=abcd1234]" in RichConsoleFormatter().format(_record())


class TestSetup:

    def test_setup_logging_json_and_file(self, tmp_path):
        log_file = tmp_path / "logs" / "monitor.log"
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(LoggingConfig(level="DEBUG", format="json", log_file=log_file))

            assert root.level == logging.DEBUG
            assert isinstance(root.handlers[0].formatter, StructuredFormatter)
            assert log_file.parent.exists()
            assert logging.getLogger("aiohttp.access").level == logging.WARNING
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestLogDuration:

    @pytest.mark.asyncio
    async def test_logs_success_and_failure(self, caplog):
        logger = logging.getLogger("ecosystem_monitor.tests")

        @log_duration(logger, level=logging.INFO, message="Collected")
        async def ok():
            return 7

        @log_duration(logger, message="Collected")
        async def broken():
            raise RuntimeError("boom")

        with caplog.at_level(logging.DEBUG, logger="ecosystem_monitor.tests"):
            assert await ok() == 7
            with pytest.raises(RuntimeError):
                await broken()

        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("Collected (") for m in messages)
        assert any(m.startswith("Collected failed") and "boom" in m for m in messages)


class _FormattingHandler(logging.Handler):
    """Formats records at emit time, while the context variables are live."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(StructuredFormatter().format(record)))


class TestProbeContext:

    @pytest.mark.asyncio
    async def test_probe_logs_carry_probe_id(self):
        handler = _FormattingHandler()
        probe_logger = logging.getLogger("ecosystem_monitor.probes.base")
        saved_level = probe_logger.level
        probe_logger.addHandler(handler)
        probe_logger.setLevel(logging.DEBUG)
        try:
            definition = make_definition("pm2", kind=ProbeKind.PROCESS_LIST, target="pm2 jlist")
            script = {"pm2": Step(error=RuntimeError("pm2 not installed"))}
            result = await ScriptedProbe(definition, script).run()
        finally:
            probe_logger.removeHandler(handler)
            probe_logger.setLevel(saved_level)

        assert result.outcome == ProbeOutcome.ERROR
        assert handler.lines
        context = handler.lines[0]["context"]
        assert context["probe_id"] == "pm2"
        assert context["probe_kind"] == "process-list"
