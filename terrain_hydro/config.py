"""
Engine configuration module.

Loads pipeline settings from environment variables (prefix
``TERRAIN_HYDRO_``) or an optional ``.env`` file, with sensible defaults.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from terrain_hydro.constants import (
    DEFAULT_EPSILON,
    DEFAULT_MAX_BREACH_LENGTH,
    DEFAULT_STREAM_THRESHOLD,
    HIERARCHICAL_MAX_CELLS,
    HIERARCHICAL_THRESHOLDS,
    MAX_POLYLINES_PER_LEVEL,
    MERGE_RESOLUTION_TOLERANCE,
    MFD_EXPONENT,
    MFD_ITERATIONS,
)


class RoutingModel(str, Enum):
    """Flow routing model."""

    D8 = "d8"
    DINF = "dinf"
    MFD = "mfd"


class ConditioningMethod(str, Enum):
    """Method for removing depressions from the elevation grid."""

    NONE = "none"
    FILL = "fill"
    EPSILON = "epsilon"
    BREACH = "breach"
    COMBINED = "combined"


class ThresholdMode(str, Enum):
    """Interpretation of a stream accumulation threshold."""

    ABSOLUTE = "absolute"
    RELATIVE = "relative"


class Settings(BaseSettings):
    """
    Pipeline settings loaded from environment variables.

    Attributes
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR)
    routing_model : RoutingModel
        Flow routing model used for direction and accumulation
    conditioning_method : ConditioningMethod
        Depression removal method applied before routing
    epsilon : float
        Elevation increment for epsilon fill and breach paths
    max_breach_length : int
        Maximum breach path length [cells]
    stream_threshold : float
        Accumulation threshold for stream tracing
    threshold_mode : ThresholdMode
        Absolute cell count or fraction of the maximum accumulation
    smoothing_iterations : int
        Chaikin smoothing passes applied to traced streams
    hierarchical_thresholds : tuple[float, ...]
        Relative thresholds of the hierarchical levels, coarsest first
    max_polylines_per_level : int
        Cap on polylines kept per hierarchical level
    mfd_exponent : float
        Slope exponent of the multiple flow direction weights
    mfd_iterations : int
        Relaxation passes of the MFD accumulation solver
    """

    log_level: str = Field(
        default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$"
    )

    # Conditioning
    conditioning_method: ConditioningMethod = ConditioningMethod.FILL
    epsilon: float = Field(default=DEFAULT_EPSILON, gt=0)
    max_breach_length: int = Field(default=DEFAULT_MAX_BREACH_LENGTH, ge=1)

    # Routing and accumulation
    routing_model: RoutingModel = RoutingModel.D8
    mfd_exponent: float = Field(default=MFD_EXPONENT, gt=0)
    mfd_iterations: int = Field(default=MFD_ITERATIONS, ge=1)

    # Streams
    stream_threshold: float = Field(default=DEFAULT_STREAM_THRESHOLD, ge=0)
    threshold_mode: ThresholdMode = ThresholdMode.RELATIVE
    smoothing_iterations: int = Field(default=0, ge=0)
    compute_hierarchical: bool = True
    hierarchical_thresholds: tuple[float, ...] = HIERARCHICAL_THRESHOLDS
    max_polylines_per_level: int = Field(default=MAX_POLYLINES_PER_LEVEL, ge=1)
    hierarchical_max_cells: int = Field(default=HIERARCHICAL_MAX_CELLS, ge=1)

    # Merging source grids
    merge_resolution_tolerance: float = Field(
        default=MERGE_RESOLUTION_TOLERANCE, ge=0
    )

    model_config = SettingsConfigDict(
        env_prefix="TERRAIN_HYDRO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns
    -------
    Settings
        Engine settings
    """
    return Settings()
