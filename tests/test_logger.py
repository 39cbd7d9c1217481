# tests/test_logger.py
"""Unit tests for log file placement."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import settings
from app.utils import logger


class TestLogFilePath:
    def test_configured_directory_is_created(self, tmp_path, monkeypatch):
        target = tmp_path / "toll-logs"
        monkeypatch.setattr(settings, "LOG_DIR", str(target))
        monkeypatch.setattr(settings, "LOG_FILE", "checkpoint.log")
        assert logger.log_file_path() == os.path.join(str(target), "checkpoint.log")
        assert target.is_dir()

    def test_defaults_to_project_logs(self, monkeypatch):
        monkeypatch.setattr(settings, "LOG_DIR", "")
        monkeypatch.setattr(settings, "LOG_FILE", "toll.log")
        assert logger.log_file_path() == os.path.join(logger.DEFAULT_LOG_DIR, "toll.log")

    def test_get_logger_returns_named_logger(self):
        assert logger.get_logger("app.services.ingestion_service").name == "app.services.ingestion_service"
