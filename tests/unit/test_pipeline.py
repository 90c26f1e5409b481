"""Tests for terrain_hydro.pipeline module."""

import numpy as np
import pytest

from terrain_hydro import run_pipeline
from terrain_hydro.config import Settings
from terrain_hydro.flow_routing import D8Routing, DInfRouting, MFDRouting
from terrain_hydro.flow_visualization import FlowVisualizationData
from terrain_hydro.pipeline import HydrologyResult


class TestRunPipeline:
    """Tests for the end-to-end pipeline."""

    def test_epsilon_pit(self, pit_grid):
        before = pit_grid.elevation.copy()
        result = run_pipeline(pit_grid, Settings(conditioning_method="epsilon"))

        assert isinstance(result, HydrologyResult)
        assert result.conditioning["method"] == "epsilon"
        assert result.grid.sample(2, 1) == pytest.approx(5.0, abs=1e-3)
        assert result.grid.sample(2, 1) > 5.0
        # Input is conditioned on a copy
        np.testing.assert_array_equal(pit_grid.elevation, before)

    def test_in_place(self, pit_grid):
        result = run_pipeline(pit_grid, Settings(), copy_input=False)
        assert result.grid is pit_grid
        assert pit_grid.sample(2, 1) == 5.0

    def test_valley_outputs(self, valley_grid):
        result = run_pipeline(valley_grid, Settings())

        assert isinstance(result.routing, D8Routing)
        assert result.accumulation.max() == pytest.approx(108.0)
        assert result.streams
        assert result.outlets[0] == (4, 11, 108.0)
        assert isinstance(result.visualization, FlowVisualizationData)
        assert len(result.hierarchical) == 2

    @pytest.mark.parametrize(
        "model, routing_cls", [("dinf", DInfRouting), ("mfd", MFDRouting)]
    )
    def test_other_models(self, valley_grid, model, routing_cls):
        result = run_pipeline(valley_grid, Settings(routing_model=model))
        assert isinstance(result.routing, routing_cls)
        outlets = result.routing.no_flow_mask() & valley_grid.valid_mask
        assert result.accumulation[outlets].sum() == pytest.approx(
            valley_grid.valid_count, rel=1e-3
        )

    def test_smoothed_streams_are_float(self, valley_grid):
        result = run_pipeline(valley_grid, Settings(smoothing_iterations=2))
        assert all(isinstance(x, float) for p in result.streams for x, _ in p)

    def test_hierarchical_disabled(self, valley_grid):
        result = run_pipeline(valley_grid, Settings(compute_hierarchical=False))
        assert result.hierarchical is None
        assert "hierarchical" not in result.timings

    def test_hierarchical_skipped_for_large_grid(self, valley_grid):
        result = run_pipeline(valley_grid, Settings(hierarchical_max_cells=10))
        assert result.hierarchical is None

    def test_timings(self, ramp_grid):
        result = run_pipeline(ramp_grid, Settings())
        assert set(result.timings) == {
            "conditioning",
            "routing",
            "accumulation",
            "streams",
            "hierarchical",
            "visualization",
        }
        assert all(t >= 0.0 for t in result.timings.values())
