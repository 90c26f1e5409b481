"""
Exception hierarchy for the terrain hydrology engine.

No-data cells and sinks are not errors: they are handled as normal
control flow (``None`` samples, no-flow cells). Exceptions are reserved
for invalid input and for broken flow graphs.
"""


class TerrainHydroError(Exception):
    """Base exception for all terrain_hydro errors."""


class InvalidGridError(TerrainHydroError, ValueError):
    """Invalid elevation grid input (size, buffer length, resolution)."""


class GridMergeError(InvalidGridError):
    """Source grids cannot be merged into a common grid."""


class CyclicFlowGraphError(TerrainHydroError):
    """The drainage graph induced by a routing assignment contains a cycle."""


class RasterIOError(TerrainHydroError):
    """Error reading or writing raster files."""
