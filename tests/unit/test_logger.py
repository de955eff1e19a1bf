#!/usr/bin/env python3
"""
Unit tests for logger.py module.
"""

import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler

from backupsync import logger as logger_mod
from backupsync.logger import STATUS_LEVEL, get_logger, setup_logger


class TestSetupLogger:
    """Tests for setup_logger."""

    def test_size_rotation_by_default(self, test_settings):
        log = setup_logger(test_settings)
        assert log.name == "backupsync"
        assert any(isinstance(h, RotatingFileHandler) for h in log.handlers)
        assert test_settings.log_path.parent.exists()

    def test_time_rotation(self, test_settings):
        test_settings.rotate_by_time = True
        log = setup_logger(test_settings)
        assert any(isinstance(h, TimedRotatingFileHandler) for h in log.handlers)

    def test_setup_is_idempotent(self, test_settings):
        first = setup_logger(test_settings)
        second = setup_logger(test_settings)
        assert first is second
        assert len(first.handlers) == 2

    def test_status_level_written_to_file(self, test_settings):
        setup_logger(test_settings)
        get_logger("backupsync.orchestrator").status("3 snapshots pending")
        for h in logger_mod._LOGGER.handlers:
            h.flush()
        content = test_settings.log_path.read_text(encoding="utf-8")
        assert "[STATUS]" in content
        assert "3 snapshots pending" in content


class TestGetLogger:
    """Tests for get_logger."""

    def test_before_setup_returns_temp_logger(self):
        log = get_logger("backupsync.codec")
        assert log.name == "backupsync.temp.codec"

    def test_after_setup_returns_child(self, test_settings):
        setup_logger(test_settings)
        assert get_logger("backupsync.remote").name == "backupsync.remote"
        assert get_logger().name == "backupsync"

    def test_status_level_registered(self):
        assert logging.getLevelName(STATUS_LEVEL) == "STATUS"
        assert hasattr(logging.Logger, "status")
