"""
Flow visualization data for particle-based water rendering.

Derives a coarse per-cell velocity field, particle spawn points along
significant channels and the major outlets from routing and
accumulation. Velocities are a visual heuristic, not a hydraulic model.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from terrain_hydro.constants import (
    MAIN_CHANNEL_INFLOW_RATIO,
    MAX_OUTLETS,
    MAX_SPAWN_POINTS,
    SPAWN_LATTICE_SPACING,
    SPAWN_THRESHOLD_FRACTION,
    VELOCITY_FLOW_EXPONENT,
    VELOCITY_SCALE,
)
from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.flow_routing import _DX, _DY, RoutingAssignment

logger = logging.getLogger(__name__)


@dataclass
class FlowVisualizationData:
    """
    Precomputed data for the water flow renderer.

    Attributes
    ----------
    width, height : int
        Grid dimensions
    accumulation : np.ndarray
        Flat flow accumulation
    slopes : np.ndarray
        Flat steepest downslope gradient
    velocities : np.ndarray
        ``(N, 2)`` velocity vectors ``(vx, vy)`` in grid axes (y down)
    spawn_points : list[tuple[int, int]]
        ``(x, y)`` cells where particles are emitted
    """

    width: int
    height: int
    accumulation: np.ndarray
    slopes: np.ndarray
    velocities: np.ndarray
    spawn_points: list[tuple[int, int]] = field(default_factory=list)


def compute_velocities(
    routing: RoutingAssignment, accumulation: np.ndarray
) -> np.ndarray:
    """
    Velocity vector per cell along its dominant flow direction.

    Magnitude is ``sqrt(slope) * (acc / max_acc) ** 0.4 * 10`` where the
    slope is positive and more than one cell drains through; 0 elsewhere.

    Returns
    -------
    np.ndarray
        ``(N, 2)`` float64 array of ``(vx, vy)``
    """
    acc = np.asarray(accumulation, dtype=np.float64)
    slopes = routing.slopes
    k = routing.primary.astype(np.int64)
    has_flow = k >= 0
    k_safe = np.where(has_flow, k, 0)

    dx = np.where(has_flow, _DX[k_safe], 0).astype(np.float64)
    dy = np.where(has_flow, _DY[k_safe], 0).astype(np.float64)
    length = np.hypot(dx, dy)
    length[length == 0] = 1.0

    max_acc = float(acc.max()) if acc.size else 0.0
    magnitude = np.zeros_like(acc)
    moving = has_flow & (slopes > 0) & (acc > 1.0)
    if max_acc > 0:
        magnitude[moving] = (
            np.sqrt(slopes[moving])
            * (acc[moving] / max_acc) ** VELOCITY_FLOW_EXPONENT
            * VELOCITY_SCALE
        )

    return np.column_stack([dx / length * magnitude, dy / length * magnitude])


def find_spawn_points(
    routing: RoutingAssignment,
    accumulation: np.ndarray,
    max_points: int = MAX_SPAWN_POINTS,
) -> list[tuple[int, int]]:
    """
    Particle spawn points on significant channel cells.

    A cell qualifies when its accumulation exceeds 1% of the maximum, it
    has a flow direction, and it is a junction (more than one inflow), a
    main channel (largest inflow above 80% of its accumulation) or on
    the sparse ``(x + y) % 20 == 0`` lattice.

    Returns
    -------
    list[tuple[int, int]]
        ``(x, y)`` cells, row-major; capped at ``max_points`` by
        descending accumulation
    """
    acc = np.asarray(accumulation, dtype=np.float64)
    n = acc.size
    if n == 0:
        return []
    width = routing.width

    receivers = routing.downstream_indices()
    senders = np.flatnonzero(receivers >= 0)
    inflow_count = np.bincount(receivers[senders], minlength=n)
    max_inflow = np.zeros(n, dtype=np.float64)
    np.maximum.at(max_inflow, receivers[senders], acc[senders])

    idx = np.arange(n)
    xs = idx % width
    ys = idx // width

    threshold = float(acc.max()) * SPAWN_THRESHOLD_FRACTION
    candidate = (acc > threshold) & (routing.primary >= 0)
    feature = (
        (inflow_count > 1)
        | (max_inflow > acc * MAIN_CHANNEL_INFLOW_RATIO)
        | ((xs + ys) % SPAWN_LATTICE_SPACING == 0)
    )
    cells = np.flatnonzero(candidate & feature)

    if len(cells) > max_points:
        cells = cells[np.argsort(-acc[cells], kind="stable")][:max_points]

    return [(int(i % width), int(i // width)) for i in cells]


def find_outlets(
    routing: RoutingAssignment,
    accumulation: np.ndarray,
    limit: int = MAX_OUTLETS,
) -> list[tuple[int, int, float]]:
    """
    Major outlets: no-flow cells draining more than one cell, largest first.

    Parameters
    ----------
    routing : RoutingAssignment
        Routing result
    accumulation : np.ndarray
        Flat accumulation
    limit : int
        Maximum number of outlets returned

    Returns
    -------
    list[tuple[int, int, float]]
        ``(x, y, accumulation)`` per outlet
    """
    acc = np.asarray(accumulation, dtype=np.float64)
    cells = np.flatnonzero(routing.no_flow_mask() & (acc > 1.0))
    cells = cells[np.argsort(-acc[cells], kind="stable")][:limit]
    width = routing.width
    return [(int(i % width), int(i // width), float(acc[i])) for i in cells]


def generate_visualization_data(
    grid: ElevationGrid,
    routing: RoutingAssignment,
    accumulation: np.ndarray,
    max_spawn_points: int = MAX_SPAWN_POINTS,
) -> FlowVisualizationData:
    """
    Build the data bundle consumed by the water flow renderer.

    Parameters
    ----------
    grid : ElevationGrid
        Conditioned grid
    routing : RoutingAssignment
        Routing result
    accumulation : np.ndarray
        Flat accumulation
    max_spawn_points : int
        Cap on spawn points

    Returns
    -------
    FlowVisualizationData
        Velocities, spawn points and copies of accumulation and slopes
    """
    acc = np.asarray(accumulation, dtype=np.float64).copy()
    acc[~np.asarray(grid.valid_mask)] = 0.0

    velocities = compute_velocities(routing, acc)
    spawn_points = find_spawn_points(routing, acc, max_spawn_points)

    logger.info(f"Visualization data: {len(spawn_points)} spawn points")
    return FlowVisualizationData(
        width=grid.width,
        height=grid.height,
        accumulation=acc,
        slopes=np.array(routing.slopes, dtype=np.float64),
        velocities=velocities,
        spawn_points=spawn_points,
    )
