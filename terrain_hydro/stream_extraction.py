"""
Stream network extraction from flow accumulation.

Thresholds the accumulation field into channel cells, traces them
downstream into polylines, builds a coarse-to-fine hierarchical network
and applies Chaikin corner-cutting smoothing to the result.

Polylines are lists of ``(x, y)`` grid coordinates (column, row).
"""

import logging

import numpy as np

from terrain_hydro.config import ThresholdMode
from terrain_hydro.constants import (
    DEFAULT_STREAM_THRESHOLD,
    HIERARCHICAL_THRESHOLDS,
    IMPORTANCE_SAMPLES,
    MAX_POLYLINES_PER_LEVEL,
)
from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.flow_routing import RoutingAssignment

logger = logging.getLogger(__name__)

StreamPolyline = list[tuple[int, int]]
HierarchicalStreamNetwork = list[tuple[list[StreamPolyline], float]]


def chaikin_smooth(
    polylines: list[list[tuple[float, float]]], iterations: int
) -> list[list[tuple[float, float]]]:
    """
    Chaikin corner-cutting smoothing.

    Each pass replaces every segment ``(p0, p1)`` with the points at 1/4
    and 3/4 along it. The first and last points are kept fixed. Polylines
    with fewer than 3 points are returned unchanged.

    Parameters
    ----------
    polylines : list
        Polylines as sequences of ``(x, y)`` points
    iterations : int
        Number of smoothing passes

    Returns
    -------
    list
        New polylines of float ``(x, y)`` tuples
    """
    if iterations < 0:
        raise ValueError(f"iterations must be >= 0, got {iterations}")

    result = []
    for polyline in polylines:
        points = [(float(x), float(y)) for x, y in polyline]
        if len(points) >= 3:
            for _ in range(iterations):
                smoothed = [points[0]]
                for (x0, y0), (x1, y1) in zip(points[:-1], points[1:]):
                    smoothed.append((0.75 * x0 + 0.25 * x1, 0.75 * y0 + 0.25 * y1))
                    smoothed.append((0.25 * x0 + 0.75 * x1, 0.25 * y0 + 0.75 * y1))
                smoothed.append(points[-1])
                points = smoothed
        result.append(points)
    return result


class StreamExtractor:
    """
    Extracts stream polylines from a routing and its accumulation field.

    Parameters
    ----------
    grid : ElevationGrid
        Grid the routing was computed on (geometry and validity)
    routing : RoutingAssignment
        Routing used to follow channels downstream
    accumulation : np.ndarray
        Flat accumulation field, one value per cell
    """

    def __init__(
        self,
        grid: ElevationGrid,
        routing: RoutingAssignment,
        accumulation: np.ndarray,
    ):
        accumulation = np.asarray(accumulation, dtype=np.float64).ravel()
        if accumulation.size != grid.size:
            raise ValueError(
                f"Accumulation has {accumulation.size} cells, grid has {grid.size}"
            )
        self.grid = grid
        self.routing = routing
        self.accumulation = accumulation
        self._valid = np.asarray(grid.valid_mask)

    @property
    def max_accumulation(self) -> float:
        values = self.accumulation[self._valid]
        return float(values.max()) if values.size else 0.0

    def resolve_threshold(
        self, threshold: float, mode: ThresholdMode | str = ThresholdMode.RELATIVE
    ) -> float:
        """
        Absolute accumulation threshold.

        In relative mode the value is a fraction of the maximum
        accumulation; in absolute mode it is a cell count.
        """
        mode = ThresholdMode(mode)
        if threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {threshold}")
        if mode == ThresholdMode.RELATIVE:
            return self.max_accumulation * threshold
        return float(threshold)

    def _stream_cells(self, threshold: float) -> np.ndarray:
        return np.flatnonzero(self._valid & (self.accumulation >= threshold))

    def extract(
        self,
        threshold: float = DEFAULT_STREAM_THRESHOLD,
        mode: ThresholdMode | str = ThresholdMode.RELATIVE,
    ) -> list[tuple[int, int]]:
        """
        Cells whose accumulation reaches the threshold.

        Returns
        -------
        list[tuple[int, int]]
            ``(x, y)`` coordinates in row-major order
        """
        t = self.resolve_threshold(threshold, mode)
        cells = self._stream_cells(t)
        width = self.grid.width
        return [(int(i % width), int(i // width)) for i in cells]

    def trace(
        self,
        threshold: float = DEFAULT_STREAM_THRESHOLD,
        mode: ThresholdMode | str = ThresholdMode.RELATIVE,
    ) -> list[StreamPolyline]:
        """
        Trace stream cells downstream into polylines.

        Seeds are visited in descending accumulation order (ties by
        index). From each unvisited seed the dominant downstream chain is
        followed, marking cells visited, until:

        - the cell has no downstream target (outlet or grid edge),
        - the downstream cell is below the threshold (appended once),
        - the downstream cell was already visited (appended once as the
          junction point, so traces connect).

        Polylines with fewer than 2 points are dropped.

        Parameters
        ----------
        threshold : float
            Threshold value, interpreted according to ``mode``
        mode : ThresholdMode or str
            absolute or relative

        Returns
        -------
        list[StreamPolyline]
            Traced polylines
        """
        t = self.resolve_threshold(threshold, mode)
        acc = self.accumulation
        width = self.grid.width

        cells = self._stream_cells(t)
        order = cells[np.argsort(-acc[cells], kind="stable")]
        logger.debug(f"Tracing {len(order):,} stream cells at threshold {t:.2f}")

        visited = np.zeros(self.grid.size, dtype=bool)
        polylines = []

        for seed in order:
            seed = int(seed)
            if visited[seed]:
                continue

            polyline = []
            current = seed
            while True:
                visited[current] = True
                polyline.append((current % width, current // width))

                nxt = self.routing.downstream(current)
                if nxt is None or not self._valid[nxt]:
                    break
                if visited[nxt] or acc[nxt] < t:
                    polyline.append((nxt % width, nxt // width))
                    break
                current = nxt

            if len(polyline) >= 2:
                polylines.append(polyline)

        logger.info(f"Traced {len(polylines):,} stream polylines (threshold {t:.2f})")
        return polylines

    def polyline_importance(self, polyline: StreamPolyline) -> float:
        """Mean accumulation at up to 3 evenly spaced points of a polyline."""
        if not polyline:
            return 0.0
        n_samples = min(IMPORTANCE_SAMPLES, len(polyline))
        step = len(polyline) // n_samples
        total = 0.0
        for i in range(n_samples):
            x, y = polyline[i * step]
            total += float(self.accumulation[self.grid.index(x, y)])
        return total / n_samples

    def hierarchical(
        self,
        thresholds: tuple[float, ...] = HIERARCHICAL_THRESHOLDS,
        max_polylines: int = MAX_POLYLINES_PER_LEVEL,
    ) -> HierarchicalStreamNetwork:
        """
        Multi-level stream network, coarsest level first.

        Parameters
        ----------
        thresholds : tuple[float, ...]
            Relative thresholds (fractions of the maximum accumulation),
            coarse to fine
        max_polylines : int
            Cap on polylines kept per level, most important first

        Returns
        -------
        HierarchicalStreamNetwork
            ``(polylines, absolute_threshold)`` pairs
        """
        if max_polylines < 1:
            raise ValueError(f"max_polylines must be >= 1, got {max_polylines}")

        levels = []
        for fraction in thresholds:
            polylines = self.trace(fraction, ThresholdMode.RELATIVE)
            polylines.sort(key=self.polyline_importance, reverse=True)
            total = len(polylines)
            polylines = polylines[:max_polylines]
            absolute = self.resolve_threshold(fraction, ThresholdMode.RELATIVE)
            logger.info(
                f"  Level {fraction:g} (acc >= {absolute:.1f}): "
                f"kept {len(polylines)} of {total} polylines"
            )
            levels.append((polylines, absolute))
        return levels

    @staticmethod
    def smooth(polylines, iterations: int) -> list[list[tuple[float, float]]]:
        """Chaikin smoothing; see :func:`chaikin_smooth`."""
        return chaikin_smooth(polylines, iterations)

    def to_world(self, polylines) -> list[list[tuple[float, float]]]:
        """Convert grid polylines to world coordinates at cell centers."""
        return [
            [self.grid.grid_to_world(x + 0.5, y + 0.5) for x, y in polyline]
            for polyline in polylines
        ]

    def stream_network(
        self,
        threshold: float = DEFAULT_STREAM_THRESHOLD,
        mode: ThresholdMode | str = ThresholdMode.RELATIVE,
        smooth_iterations: int = 0,
    ) -> list:
        """
        Traced polylines, smoothed when ``smooth_iterations`` > 0.

        Returns
        -------
        list
            Integer grid polylines, or float polylines when smoothed
        """
        polylines = self.trace(threshold, mode)
        if smooth_iterations > 0:
            return chaikin_smooth(polylines, smooth_iterations)
        return polylines
