"""
Elevation grid abstraction.

Holds the raster of elevation samples together with its geometry
(resolution, affine cell-to-world transform, bounds) and validity mask.
Grids are built from raw samples or merged from several source grids.

Cell addressing uses ``(x, y)`` grid coordinates where ``x`` is the column
and ``y`` the row (row 0 at the top). The flat elevation buffer is
row-major: ``index = y * width + x``.
"""

import logging
import math

import numpy as np
from affine import Affine

from terrain_hydro.constants import DEFAULT_NODATA, MERGE_RESOLUTION_TOLERANCE
from terrain_hydro.exceptions import GridMergeError, InvalidGridError

logger = logging.getLogger(__name__)

# Neighbor scan order shared by every algorithm: E, SE, S, SW, W, NW, N, NE.
# Offsets are (dx, dy) = (column, row) with rows growing southward.
NEIGHBOR_OFFSETS = (
    (1, 0),  # E
    (1, 1),  # SE
    (0, 1),  # S
    (-1, 1),  # SW
    (-1, 0),  # W
    (-1, -1),  # NW
    (0, -1),  # N
    (1, -1),  # NE
)


class ElevationGrid:
    """
    Raster of elevation samples with geometric metadata.

    Every valid elevation is finite. NaN, infinities and the ``nodata``
    sentinel mark no-data cells, which are stored as the sentinel and
    never take part in flow.

    Parameters
    ----------
    width : int
        Number of columns
    height : int
        Number of rows
    resolution : float
        Cell size in world units
    elevation : array_like
        Flat, row-major buffer of ``width * height`` samples
    geo_transform : Affine, optional
        Grid index to world coordinate transform (cell corners). Defaults
        to a north-up grid with its lower-left corner at the origin.
    nodata : float
        No-data sentinel value

    Raises
    ------
    InvalidGridError
        If the grid is empty, the buffer length does not match
        ``width * height`` or the resolution is not positive
    """

    def __init__(
        self,
        width: int,
        height: int,
        resolution: float,
        elevation,
        geo_transform: Affine | None = None,
        nodata: float = DEFAULT_NODATA,
    ):
        width = int(width)
        height = int(height)
        if width <= 0 or height <= 0:
            raise InvalidGridError(f"Grid must not be empty, got {width}x{height}")

        if not (math.isfinite(resolution) and resolution > 0):
            raise InvalidGridError(f"Resolution must be positive, got {resolution}")

        data = np.array(elevation, dtype=np.float64).ravel()
        if data.size != width * height:
            raise InvalidGridError(
                f"Elevation buffer has {data.size} samples, "
                f"expected {width * height} ({width}x{height})"
            )

        valid = np.isfinite(data)
        if math.isfinite(nodata):
            valid &= data != nodata
        data[~valid] = nodata

        if geo_transform is None:
            geo_transform = Affine(
                resolution, 0.0, 0.0, 0.0, -resolution, height * resolution
            )

        self.width = width
        self.height = height
        self.resolution = float(resolution)
        self.geo_transform = geo_transform
        self.nodata = float(nodata)
        self.elevation = data
        self._valid = valid

    def __repr__(self) -> str:
        return (
            f"ElevationGrid(width={self.width}, height={self.height}, "
            f"resolution={self.resolution}, valid={self.valid_count})"
        )

    @classmethod
    def from_array(
        cls,
        array,
        resolution: float,
        geo_transform: Affine | None = None,
        nodata: float = DEFAULT_NODATA,
    ) -> "ElevationGrid":
        """
        Build a grid from a 2-D ``(height, width)`` array.

        Raises
        ------
        InvalidGridError
            If the array is not two-dimensional or is empty
        """
        arr = np.asarray(array, dtype=np.float64)
        if arr.ndim != 2:
            raise InvalidGridError(f"Expected a 2-D array, got {arr.ndim} dimensions")
        height, width = arr.shape
        return cls(width, height, resolution, arr, geo_transform, nodata)

    @classmethod
    def merge(
        cls,
        grids: list["ElevationGrid"],
        tolerance: float = MERGE_RESOLUTION_TOLERANCE,
    ) -> "ElevationGrid":
        """
        Merge several north-up grids into one covering their union.

        Source cells are placed by their cell centers. Where sources
        overlap, the valid sample of the grid listed last wins; no-data
        samples never overwrite data.

        Parameters
        ----------
        grids : list[ElevationGrid]
            Source grids
        tolerance : float
            Maximum allowed resolution difference [world units]

        Returns
        -------
        ElevationGrid
            Merged grid at the resolution of the first source

        Raises
        ------
        GridMergeError
            If no grids are given or resolutions differ beyond tolerance
        """
        if not grids:
            raise GridMergeError("No grids provided to merge")

        resolution = grids[0].resolution
        for grid in grids[1:]:
            if abs(grid.resolution - resolution) > tolerance:
                raise GridMergeError(
                    f"Resolution mismatch: {grid.resolution} vs {resolution}"
                )

        if len(grids) == 1:
            return grids[0].copy()

        minx = min(g.bounds[0] for g in grids)
        miny = min(g.bounds[1] for g in grids)
        maxx = max(g.bounds[2] for g in grids)
        maxy = max(g.bounds[3] for g in grids)

        width = max(1, math.ceil((maxx - minx) / resolution - 1e-9))
        height = max(1, math.ceil((maxy - miny) / resolution - 1e-9))
        nodata = grids[0].nodata

        logger.info(
            f"Merging {len(grids)} grids into {width}x{height} cells "
            f"at resolution {resolution}"
        )

        merged = np.full(width * height, nodata, dtype=np.float64)
        for grid in grids:
            rows, cols = np.nonzero(grid.valid_mask.reshape(grid.height, grid.width))
            if rows.size == 0:
                continue
            wx, wy = grid.geo_transform * (cols + 0.5, rows + 0.5)
            mx = np.floor((np.asarray(wx) - minx) / resolution).astype(np.int64)
            my = np.floor((maxy - np.asarray(wy)) / resolution).astype(np.int64)
            inside = (mx >= 0) & (mx < width) & (my >= 0) & (my < height)
            values = grid.elevation[rows * grid.width + cols]
            # Later assignments overwrite earlier ones
            merged[my[inside] * width + mx[inside]] = values[inside]

        transform = Affine(resolution, 0.0, minx, 0.0, -resolution, maxy)
        return cls(width, height, resolution, merged, transform, nodata)

    # Geometry

    @property
    def size(self) -> int:
        return self.width * self.height

    @property
    def shape(self) -> tuple[int, int]:
        return (self.height, self.width)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """World-space rectangle ``(minx, miny, maxx, maxy)``."""
        corners = [
            self.geo_transform * (0, 0),
            self.geo_transform * (self.width, 0),
            self.geo_transform * (0, self.height),
            self.geo_transform * (self.width, self.height),
        ]
        xs = [c[0] for c in corners]
        ys = [c[1] for c in corners]
        return (min(xs), min(ys), max(xs), max(ys))

    def grid_to_world(self, x: float, y: float) -> tuple[float, float]:
        """Map grid coordinates (cell corner at integers) to world coordinates."""
        wx, wy = self.geo_transform * (x, y)
        return (float(wx), float(wy))

    def world_to_grid(self, wx: float, wy: float) -> tuple[int, int]:
        """Return the ``(x, y)`` cell containing a world point (may be out of range)."""
        col, row = ~self.geo_transform * (wx, wy)
        return (int(math.floor(col)), int(math.floor(row)))

    def intersects(self, other: "ElevationGrid") -> bool:
        """True if the bounds of both grids overlap or touch."""
        ax0, ay0, ax1, ay1 = self.bounds
        bx0, by0, bx1, by1 = other.bounds
        return ax0 <= bx1 and ax1 >= bx0 and ay0 <= by1 and ay1 >= by0

    # Cell access

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def index(self, x: int, y: int) -> int:
        """Flat index of cell ``(x, y)``."""
        return y * self.width + x

    def coords(self, index: int) -> tuple[int, int]:
        """Grid coordinates ``(x, y)`` of a flat index."""
        y, x = divmod(int(index), self.width)
        return (x, y)

    def is_valid(self, x: int, y: int) -> bool:
        return self.in_bounds(x, y) and bool(self._valid[y * self.width + x])

    def sample(self, x: int, y: int) -> float | None:
        """
        Elevation at cell ``(x, y)``.

        Returns
        -------
        float or None
            The elevation, or None when the cell is out of range or no-data
        """
        if not self.in_bounds(x, y):
            return None
        idx = y * self.width + x
        if not self._valid[idx]:
            return None
        return float(self.elevation[idx])

    def neighbors(self, x: int, y: int) -> list[tuple[int, int]]:
        """In-grid valid 8-neighbors of ``(x, y)`` in E, SE, S, ... NE order."""
        result = []
        for dx, dy in NEIGHBOR_OFFSETS:
            nx, ny = x + dx, y + dy
            if self.is_valid(nx, ny):
                result.append((nx, ny))
        return result

    # Bulk access

    @property
    def valid_mask(self) -> np.ndarray:
        """Flat boolean mask of valid cells (read-only view)."""
        view = self._valid.view()
        view.flags.writeable = False
        return view

    @property
    def valid_count(self) -> int:
        return int(np.count_nonzero(self._valid))

    def as_array(self) -> np.ndarray:
        """``(height, width)`` view of the elevation buffer."""
        return self.elevation.reshape(self.height, self.width)

    def elevation_range(self) -> tuple[float, float] | None:
        """Minimum and maximum valid elevation, or None for an all no-data grid."""
        if not self._valid.any():
            return None
        values = self.elevation[self._valid]
        return (float(values.min()), float(values.max()))

    def copy(self) -> "ElevationGrid":
        return ElevationGrid(
            self.width,
            self.height,
            self.resolution,
            self.elevation.copy(),
            self.geo_transform,
            self.nodata,
        )
