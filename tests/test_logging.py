# SPDX-License-Identifier: MIT
"""Tests for logging setup."""

from pathlib import Path

import pytest
from loguru import logger

from equipment_images.config import Settings
from equipment_images.utils.logging import setup_logging


@pytest.fixture(autouse=True)
def quiet_logger():
    """Drop the sinks installed by a test so files are closed."""
    yield
    logger.remove()


class TestSetupLogging:

    def test_file_sink_from_settings(self, tmp_path):
        log_file = tmp_path / "logs" / "equipment_images.log"

        setup_logging(config=Settings(log_level="debug", log_file=log_file))
        logger.debug("Downloaded carbonite.jpg")

        content = log_file.read_text()
        assert "Logging configured: level=DEBUG" in content
        assert "Downloaded carbonite.jpg" in content

    def test_level_filters_file_sink(self, tmp_path):
        log_file = tmp_path / "run.log"

        setup_logging(config=Settings(log_level="WARNING", log_file=log_file))
        logger.info("routine progress")
        logger.warning("Browser disconnected, relaunching")

        content = log_file.read_text()
        assert "routine progress" not in content
        assert "Browser disconnected" in content

    def test_explicit_arguments_win(self, tmp_path):
        configured = tmp_path / "configured.log"
        override = tmp_path / "override.log"

        setup_logging(level="INFO", log_file=override, config=Settings(log_file=configured))

        assert override.exists()
        assert not configured.exists()

    def test_no_file_sink_by_default(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        setup_logging(config=Settings(log_file=None))
        assert list(tmp_path.iterdir()) == []


class TestLoggingSettings:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FILE", "/var/log/kb/images.log")
        monkeypatch.setenv("LOG_ROTATION", "1 day")
        settings = Settings()
        assert settings.log_file == Path("/var/log/kb/images.log")
        assert settings.log_rotation == "1 day"
        assert settings.log_retention == "1 week"
