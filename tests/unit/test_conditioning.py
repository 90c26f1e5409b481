"""Tests for terrain_hydro.conditioning module."""

from collections import deque

import numpy as np
import pytest

from terrain_hydro.conditioning import (
    breach_depressions,
    condition_grid,
    fill_depressions,
    fill_depressions_epsilon,
    find_pits,
)
from terrain_hydro.config import ConditioningMethod
from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.flow_routing import compute_d8


def drains_to_edge(grid: ElevationGrid) -> bool:
    """True if every valid cell has a non-increasing path to the edge."""
    width, height = grid.width, grid.height
    reached = np.zeros(grid.size, dtype=bool)
    queue = deque()
    for idx in np.flatnonzero(grid.valid_mask):
        x, y = grid.coords(idx)
        if x in (0, width - 1) or y in (0, height - 1):
            reached[idx] = True
            queue.append(idx)
    # Walk uphill (or level) from the edge
    while queue:
        idx = queue.popleft()
        x, y = grid.coords(idx)
        for nx, ny in grid.neighbors(x, y):
            n_idx = grid.index(nx, ny)
            if not reached[n_idx] and grid.elevation[n_idx] >= grid.elevation[idx]:
                reached[n_idx] = True
                queue.append(n_idx)
    return bool(np.all(reached[grid.valid_mask]))


class TestFillDepressions:
    """Tests for priority-flood fill."""

    def test_pit_filled_to_pour_point(self, pit_grid):
        fill_depressions(pit_grid)
        assert pit_grid.sample(2, 1) == 5.0

    def test_interior_plateau_unchanged(self, pit_grid):
        fill_depressions(pit_grid)
        assert pit_grid.sample(1, 1) == 10.0
        assert pit_grid.sample(2, 2) == 10.0

    def test_returns_raised_count(self, pit_grid):
        assert fill_depressions(pit_grid) == 1

    def test_enclosed_pit(self, enclosed_pit_grid):
        fill_depressions(enclosed_pit_grid)
        assert enclosed_pit_grid.sample(2, 2) == 6.0

    def test_never_lowers(self, random_grid):
        before = random_grid.elevation.copy()
        fill_depressions(random_grid)
        assert np.all(random_grid.elevation >= before)

    def test_monotone_drainage(self, random_grid):
        assert not drains_to_edge(random_grid)
        fill_depressions(random_grid)
        assert drains_to_edge(random_grid)

    def test_idempotent(self, random_grid):
        fill_depressions(random_grid)
        once = random_grid.elevation.copy()
        assert fill_depressions(random_grid) == 0
        np.testing.assert_array_equal(random_grid.elevation, once)

    def test_nodata_untouched(self, random_grid_with_nodata):
        grid = random_grid_with_nodata
        fill_depressions(grid)
        assert grid.sample(4, 3) is None
        assert grid.sample(6, 6) is None
        assert grid.sample(9, 0) is None
        assert drains_to_edge(grid)

    def test_interior_nodata_is_not_an_outlet(self, interior_nodata_pit_grid):
        grid = interior_nodata_pit_grid
        assert fill_depressions(grid) == 1
        # Only the grid edge drains; the pit fills to its interior rim
        assert grid.sample(2, 2) == 10.0
        assert grid.sample(3, 2) is None

    def test_all_nodata_edge(self):
        dem = np.full((3, 3), -9999.0)
        dem[1, 1] = 1.0
        grid = ElevationGrid.from_array(dem, resolution=1.0)
        assert fill_depressions(grid) == 0
        assert grid.sample(1, 1) == 1.0

    def test_no_pits_after_fill(self, random_grid):
        fill_depressions(random_grid)
        # Plain fill leaves flats, never strict pits below all neighbors
        elev = random_grid.as_array()
        for idx in find_pits(random_grid):
            x, y = random_grid.coords(idx)
            neighbors = [
                random_grid.sample(nx, ny) for nx, ny in random_grid.neighbors(x, y)
            ]
            assert min(neighbors) == elev[y, x]


class TestEpsilonFill:
    """Tests for epsilon fill."""

    def test_pit_slightly_above_pour_point(self, pit_grid):
        fill_depressions_epsilon(pit_grid, epsilon=1e-3)
        assert pit_grid.sample(2, 1) == pytest.approx(5.0 + 1e-3)

    def test_pit_routes_to_boundary(self, pit_grid):
        fill_depressions_epsilon(pit_grid, epsilon=1e-3)
        routing = compute_d8(pit_grid)
        downstream = routing.downstream(pit_grid.index(2, 1))
        assert downstream is not None
        x, y = pit_grid.coords(downstream)
        assert y == 0

    def test_no_pits_remain(self, random_grid):
        fill_depressions_epsilon(random_grid, epsilon=1e-4)
        assert len(find_pits(random_grid)) == 0

    def test_every_cell_drains(self, random_grid):
        fill_depressions_epsilon(random_grid, epsilon=1e-4)
        routing = compute_d8(random_grid)
        no_flow = np.flatnonzero(routing.no_flow_mask() & random_grid.valid_mask)
        for idx in no_flow:
            x, y = random_grid.coords(idx)
            assert x in (0, random_grid.width - 1) or y in (0, random_grid.height - 1)

    def test_interior_nodata_is_not_an_outlet(self, interior_nodata_pit_grid):
        grid = interior_nodata_pit_grid
        fill_depressions_epsilon(grid, epsilon=1e-3)
        assert grid.sample(2, 2) > 10.0

    def test_at_or_above_plain_fill(self, random_grid):
        plain = random_grid.copy()
        fill_depressions(plain)
        fill_depressions_epsilon(random_grid, epsilon=1e-4)
        assert np.all(random_grid.elevation >= plain.elevation)

    def test_large_elevations_stay_strict(self):
        # Epsilon below float spacing at 1e9 still raises strictly
        dem = np.full((5, 5), 1.0e9)
        dem[2, 2] = 0.0
        grid = ElevationGrid.from_array(dem, resolution=1.0)
        fill_depressions_epsilon(grid, epsilon=1e-12)
        assert grid.sample(2, 2) > 1.0e9
        assert grid.sample(1, 1) > 1.0e9

    def test_never_lowers(self, random_grid):
        before = random_grid.elevation.copy()
        fill_depressions_epsilon(random_grid)
        assert np.all(random_grid.elevation >= before)

    def test_rejects_non_positive_epsilon(self, pit_grid):
        with pytest.raises(ValueError):
            fill_depressions_epsilon(pit_grid, epsilon=0.0)


class TestBreach:
    """Tests for depression breaching."""

    def test_find_pits(self, enclosed_pit_grid):
        pits = find_pits(enclosed_pit_grid)
        assert list(pits) == [enclosed_pit_grid.index(2, 2)]

    def test_edge_cells_are_not_pits(self):
        grid = ElevationGrid.from_array(np.zeros((3, 3)), resolution=1.0)
        grid.elevation[:] = 5.0
        grid.elevation[0] = 10.0
        assert list(find_pits(grid)) == [grid.index(1, 1)]

    def test_breach_carves_to_lower_cell(self, enclosed_pit_grid):
        grid = enclosed_pit_grid
        breached = breach_depressions(grid, max_breach_length=3, epsilon=1e-3)
        assert breached == 1
        assert grid.sample(2, 2) <= 1.0
        # After breaching, the pit drains without any filling
        assert fill_depressions(grid) == 0
        assert len(find_pits(grid)) == 0

    def test_breach_only_lowers(self, enclosed_pit_grid):
        before = enclosed_pit_grid.elevation.copy()
        breach_depressions(enclosed_pit_grid, max_breach_length=3)
        assert np.all(enclosed_pit_grid.elevation <= before)

    def test_breach_out_of_reach(self, enclosed_pit_grid):
        before = enclosed_pit_grid.elevation.copy()
        assert breach_depressions(enclosed_pit_grid, max_breach_length=1) == 0
        np.testing.assert_array_equal(enclosed_pit_grid.elevation, before)

    def test_rejects_zero_length(self, enclosed_pit_grid):
        with pytest.raises(ValueError):
            breach_depressions(enclosed_pit_grid, max_breach_length=0)


class TestConditionGrid:
    """Tests for condition_grid dispatch."""

    def test_none_leaves_grid(self, pit_grid):
        before = pit_grid.elevation.copy()
        result = condition_grid(pit_grid, ConditioningMethod.NONE)
        assert result == {"method": "none", "cells_raised": 0, "pits_breached": 0}
        np.testing.assert_array_equal(pit_grid.elevation, before)

    def test_fill_by_name(self, pit_grid):
        result = condition_grid(pit_grid, "fill")
        assert result["method"] == "fill"
        assert result["cells_raised"] == 1
        assert pit_grid.sample(2, 1) == 5.0

    @pytest.mark.parametrize("method", ["fill", "epsilon", "breach", "combined"])
    def test_all_methods_drain(self, random_grid, method):
        condition_grid(random_grid, method, epsilon=1e-4, max_breach_length=5)
        assert drains_to_edge(random_grid)

    def test_combined_breaches_then_fills(self, enclosed_pit_grid):
        result = condition_grid(
            enclosed_pit_grid, ConditioningMethod.COMBINED, epsilon=1e-3
        )
        assert result["method"] == "combined"
        assert result["pits_breached"] == 1
        assert len(find_pits(enclosed_pit_grid)) == 0

    def test_unknown_method(self, pit_grid):
        with pytest.raises(ValueError):
            condition_grid(pit_grid, "carve")
