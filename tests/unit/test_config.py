"""Tests for terrain_hydro.config module."""

import pytest
from pydantic import ValidationError

from terrain_hydro.config import (
    ConditioningMethod,
    RoutingModel,
    Settings,
    ThresholdMode,
    get_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Run each test away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    """Tests for Settings defaults and validation."""

    def test_defaults(self):
        settings = Settings()
        assert settings.routing_model == RoutingModel.D8
        assert settings.conditioning_method == ConditioningMethod.FILL
        assert settings.threshold_mode == ThresholdMode.RELATIVE
        assert settings.mfd_exponent == pytest.approx(1.1)
        assert settings.mfd_iterations == 20
        assert settings.hierarchical_thresholds == (0.05, 0.01)
        assert settings.max_polylines_per_level == 150

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TERRAIN_HYDRO_ROUTING_MODEL", "mfd")
        monkeypatch.setenv("TERRAIN_HYDRO_MFD_ITERATIONS", "50")
        settings = Settings()
        assert settings.routing_model == RoutingModel.MFD
        assert settings.mfd_iterations == 50

    def test_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("TERRAIN_HYDRO_CONDITIONING_METHOD=breach\n")
        assert Settings().conditioning_method == ConditioningMethod.BREACH

    @pytest.mark.parametrize(
        "field, value",
        [
            ("epsilon", 0.0),
            ("mfd_exponent", -1.0),
            ("mfd_iterations", 0),
            ("max_breach_length", 0),
            ("routing_model", "rho8"),
            ("log_level", "VERBOSE"),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            Settings(**{field: value})


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self):
        assert get_settings() is get_settings()

    def test_cache_clear_rereads_env(self, monkeypatch):
        assert get_settings().routing_model == RoutingModel.D8
        monkeypatch.setenv("TERRAIN_HYDRO_ROUTING_MODEL", "dinf")
        get_settings.cache_clear()
        assert get_settings().routing_model == RoutingModel.DINF
