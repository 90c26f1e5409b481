"""
Terrain hydrology engine.

This package derives drainage structure from gridded elevation data:
- elevation_grid: ElevationGrid raster abstraction and merging
- conditioning: depression fill, epsilon fill and breaching
- flow_routing: D8, D-infinity and MFD routing
- accumulation: upstream contributing cell counts
- stream_extraction: stream tracing, hierarchical levels, smoothing
- flow_visualization: velocity field, spawn points and outlets
- pipeline: all stages in order from Settings
"""

from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.pipeline import HydrologyResult, run_pipeline

__all__ = ["ElevationGrid", "HydrologyResult", "run_pipeline"]
