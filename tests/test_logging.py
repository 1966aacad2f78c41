"""Tests for logging setup and RSS memory logging."""

import json
from unittest.mock import MagicMock, patch

import pytest
from loguru import logger

from polyremim.utils.logging import log_rss_memory, setup_logging

pytestmark = pytest.mark.tier0


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging(verbose=False)


class TestLogRssMemory:
    """Tests for log_rss_memory()."""

    def test_returns_rss_in_gb(self):
        with patch("polyremim.utils.logging.psutil.Process") as mock_process_class:
            mock_process = MagicMock()
            mock_process.memory_info.return_value.rss = 12_345_678_901
            mock_process_class.return_value = mock_process

            rss = log_rss_memory("remim", "start")

        assert abs(rss - 12.35) < 0.01

    def test_logs_phase_and_checkpoint(self, capsys):
        setup_logging(verbose=True)
        with patch("polyremim.utils.logging.psutil.Process") as mock_process_class:
            mock_process_class.return_value.memory_info.return_value.rss = 5e9
            log_rss_memory("remim", "end")

        out = capsys.readouterr().out
        assert "RSS memory: 5.00GB" in out
        assert "phase=remim" in out
        assert "checkpoint=end" in out

    def test_real_rss_measurement(self):
        assert 0 < log_rss_memory("test", "now") < 100


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_info_hides_debug(self, capsys):
        setup_logging(verbose=False)
        logger.debug("hidden detail")
        logger.info("visible message")
        out = capsys.readouterr().out
        assert "visible message" in out
        assert "hidden detail" not in out

    def test_file_sink_is_json(self, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(verbose=False, log_file=log_file)
        logger.debug("written to file")
        logger.remove()

        lines = log_file.read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["record"]["message"] == "written to file"
