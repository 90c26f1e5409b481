"""
Shared test fixtures for pytest.

Provides small synthetic elevation grids (ramp, pit, valley, random
terrain) used across the unit tests.
"""

import numpy as np
import pytest

from terrain_hydro.elevation_grid import ElevationGrid


def make_ramp(width: int = 5, height: int = 4) -> ElevationGrid:
    """Grid sloping down from west to east (1 m per cell)."""
    row = np.arange(width, 0, -1, dtype=np.float64)
    return ElevationGrid.from_array(np.tile(row, (height, 1)), resolution=1.0)


@pytest.fixture
def ramp_grid():
    """5x4 grid with elevation decreasing left to right."""
    return make_ramp()


@pytest.fixture
def pit_grid():
    """
    5x5 grid: boundary at 5, interior at 10, single pit at 0.

    The pit at (2, 1) touches the top boundary row, so its pour
    elevation is 5.
    """
    dem = np.array(
        [
            [5, 5, 5, 5, 5],
            [5, 10, 0, 10, 5],
            [5, 10, 10, 10, 5],
            [5, 10, 10, 10, 5],
            [5, 5, 5, 5, 5],
        ],
        dtype=np.float64,
    )
    return ElevationGrid.from_array(dem, resolution=1.0)


@pytest.fixture
def enclosed_pit_grid():
    """5x5 grid whose center pit is ringed by higher cells."""
    dem = np.array(
        [
            [9, 9, 9, 9, 9],
            [9, 6, 6, 6, 9],
            [9, 6, 1, 6, 9],
            [9, 6, 6, 6, 9],
            [9, 9, 0, 9, 9],
        ],
        dtype=np.float64,
    )
    return ElevationGrid.from_array(dem, resolution=1.0)


@pytest.fixture
def interior_nodata_pit_grid():
    """5x5 grid: boundary at 5, interior at 10, pit at (2, 2) beside a hole."""
    dem = np.array(
        [
            [5, 5, 5, 5, 5],
            [5, 10, 10, 10, 5],
            [5, 10, 0, -9999, 5],
            [5, 10, 10, 10, 5],
            [5, 5, 5, 5, 5],
        ],
        dtype=np.float64,
    )
    return ElevationGrid.from_array(dem, resolution=1.0)


@pytest.fixture
def valley_grid():
    """
    9x12 V-shaped valley draining south.

    Side slopes fall toward the central column, which itself falls
    toward the bottom row.
    """
    height, width = 12, 9
    ys, xs = np.mgrid[0:height, 0:width]
    dem = 2.0 * np.abs(xs - width // 2) + (height - ys) * 0.5 + 10.0
    return ElevationGrid.from_array(dem, resolution=10.0)


@pytest.fixture
def random_grid():
    """Rough random terrain with many depressions."""
    rng = np.random.default_rng(42)
    dem = rng.uniform(0.0, 100.0, size=(12, 15))
    return ElevationGrid.from_array(dem, resolution=5.0)


@pytest.fixture
def random_grid_with_nodata():
    """Random terrain with a few no-data cells and a NaN."""
    rng = np.random.default_rng(7)
    dem = rng.uniform(0.0, 50.0, size=(10, 10))
    dem[3, 4] = -9999.0
    dem[6, 6] = -9999.0
    dem[0, 9] = np.nan
    return ElevationGrid.from_array(dem, resolution=1.0)
