from __future__ import annotations

from pathlib import Path

import pytest

from lke_driver.logging import LogConfig, logging_enabled, setup_logging, teardown_logging
from lke_driver.spec import ClusterSpec
from lke_driver.state import PersistedState, store_state
from lke_driver.types import ClusterInfo

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def _log_something() -> None:
    store_state(ClusterInfo(), PersistedState(ClusterSpec("t", {"a": 1}), cluster_id=42))


class TestSetupLogging:
    def test_console_only(self):
        sinks = setup_logging(LogConfig(level="DEBUG"))
        try:
            assert len(sinks) == 1
        finally:
            teardown_logging(sinks)

    def test_no_sinks_requested(self):
        sinks = setup_logging(LogConfig(console=False))
        teardown_logging(sinks)
        assert sinks == []

    def test_file_sink_captures_driver_logs(self, tmp_path: Path):
        log_file = tmp_path / "driver.log"
        with logging_enabled(LogConfig(console=False, file=str(log_file))):
            _log_something()

        text = log_file.read_text()
        assert "Stored state for cluster 42" in text
        assert "| state |" in text

    def test_silent_after_teardown(self, tmp_path: Path):
        log_file = tmp_path / "driver.log"
        with logging_enabled(LogConfig(console=False, file=str(log_file))):
            pass
        _log_something()

        assert "Stored state" not in log_file.read_text()


class TestLogConfigFromEnv:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LKE_DRIVER_LOG_LEVEL", raising=False)
        monkeypatch.delenv("LKE_DRIVER_LOG_FILE", raising=False)

        assert LogConfig.from_env() == LogConfig()

    def test_reads_level_and_file(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LKE_DRIVER_LOG_LEVEL", "debug")
        monkeypatch.setenv("LKE_DRIVER_LOG_FILE", "/tmp/lke.log")

        config = LogConfig.from_env()

        assert config.level == "DEBUG"
        assert config.file == "/tmp/lke.log"

    def test_rejects_unknown_level(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LKE_DRIVER_LOG_LEVEL", "LOUD")
        with pytest.raises(ValueError, match="LKE_DRIVER_LOG_LEVEL"):
            LogConfig.from_env()
