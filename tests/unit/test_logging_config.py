"""Tests for terrain_hydro.logging_config module."""

import logging

import pytest
import structlog

from terrain_hydro.config import get_settings
from terrain_hydro.logging_config import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger("terrain_hydro")
    level = logger.level
    yield
    logger.setLevel(level)
    structlog.reset_defaults()


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "warning"])
    def test_sets_package_level(self, level):
        configure_logging(level)
        assert logging.getLogger("terrain_hydro").level == getattr(
            logging, level.upper()
        )

    def test_module_loggers_inherit(self):
        configure_logging("ERROR")
        child = logging.getLogger("terrain_hydro.pipeline")
        assert child.getEffectiveLevel() == logging.ERROR

    def test_structlog_configured(self):
        configure_logging("INFO")
        assert structlog.is_configured()

    def test_unknown_level(self):
        with pytest.raises(AttributeError):
            configure_logging("LOUD")

    def test_level_from_settings(self, monkeypatch):
        monkeypatch.setenv("TERRAIN_HYDRO_LOG_LEVEL", "WARNING")
        get_settings.cache_clear()
        try:
            configure_logging()
        finally:
            get_settings.cache_clear()
        assert logging.getLogger("terrain_hydro").level == logging.WARNING
