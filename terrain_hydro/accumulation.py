"""
Flow accumulation: upstream contributing cell count per cell.

Every valid cell contributes one unit of its own runoff; no-data cells
hold 0. The propagation strategy depends on the routing variant:

- D8: Kahn topological order over the single-receiver graph (exact).
- D-infinity: cells processed in descending elevation, each passing its
  full accumulation to its two receivers by proportion (exact, since
  flow always moves to a strictly lower cell).
- MFD: a fixed number of Jacobi relaxation passes. The pass count bounds
  accuracy; it is a tunable knob, not a convergence guarantee.

A routing that induces a cycle raises :class:`CyclicFlowGraphError`
instead of looping forever.
"""

import logging

import numba
import numpy as np

from terrain_hydro.constants import MFD_ITERATIONS
from terrain_hydro.elevation_grid import NEIGHBOR_OFFSETS, ElevationGrid
from terrain_hydro.exceptions import CyclicFlowGraphError
from terrain_hydro.flow_routing import (
    _DX,
    _DY,
    D8Routing,
    DInfRouting,
    MFDRouting,
    RoutingAssignment,
)

logger = logging.getLogger(__name__)


@numba.njit(cache=True)
def _kahn_accumulate(receivers, valid):
    """
    Accumulate along a single-receiver graph in topological order.

    Returns the accumulation and the number of cells processed; fewer
    processed than valid cells means the graph has a cycle.
    """
    n = receivers.shape[0]
    acc = np.zeros(n, dtype=np.float64)
    indegree = np.zeros(n, dtype=np.int64)

    for i in range(n):
        if not valid[i]:
            continue
        acc[i] = 1.0
        r = receivers[i]
        if r >= 0 and valid[r]:
            indegree[r] += 1

    # Array-backed FIFO queue seeded with headwaters
    queue = np.empty(n, dtype=np.int64)
    head = 0
    tail = 0
    for i in range(n):
        if valid[i] and indegree[i] == 0:
            queue[tail] = i
            tail += 1

    while head < tail:
        i = queue[head]
        head += 1
        r = receivers[i]
        if r >= 0 and valid[r]:
            acc[r] += acc[i]
            indegree[r] -= 1
            if indegree[r] == 0:
                queue[tail] = r
                tail += 1

    return acc, tail


@numba.njit(cache=True)
def _descending_accumulate(order, octants, props, valid, width, height, dx, dy):
    """
    Distribute accumulation to two receivers per cell in a fixed order.

    Returns the accumulation and the index of the first cell whose
    receiver was already processed (-1 if none).
    """
    n = valid.shape[0]
    acc = np.zeros(n, dtype=np.float64)
    done = np.zeros(n, dtype=np.bool_)
    for i in range(n):
        if valid[i]:
            acc[i] = 1.0

    for t in range(order.shape[0]):
        i = order[t]
        done[i] = True
        y = i // width
        x = i - y * width
        for side in range(2):
            k = octants[i, side]
            p = props[i, side]
            if k < 0 or p <= 0.0:
                continue
            nx = x + dx[k]
            ny = y + dy[k]
            if nx < 0 or nx >= width or ny < 0 or ny >= height:
                continue
            r = ny * width + nx
            if not valid[r]:
                continue
            if done[r]:
                return acc, i
            acc[r] += acc[i] * p

    return acc, -1


def accumulate_d8(routing: D8Routing, valid: np.ndarray) -> np.ndarray:
    """
    D8 flow accumulation via Kahn's topological sort.

    Parameters
    ----------
    routing : D8Routing
        Single-direction routing
    valid : np.ndarray
        Flat validity mask of the grid

    Returns
    -------
    np.ndarray
        Flat float64 accumulation (valid cells >= 1, no-data 0)

    Raises
    ------
    CyclicFlowGraphError
        If some valid cells never reach zero in-degree
    """
    receivers = np.ascontiguousarray(routing.downstream_indices(), dtype=np.int64)
    valid = np.ascontiguousarray(valid, dtype=np.bool_)
    acc, processed = _kahn_accumulate(receivers, valid)

    n_valid = int(np.count_nonzero(valid))
    if processed < n_valid:
        raise CyclicFlowGraphError(
            f"D8 flow graph contains a cycle: {n_valid - processed} of "
            f"{n_valid} cells never reached zero in-degree"
        )
    return acc


def accumulate_dinf(
    routing: DInfRouting, elevation: np.ndarray, valid: np.ndarray
) -> np.ndarray:
    """
    D-infinity flow accumulation in descending elevation order.

    Parameters
    ----------
    routing : DInfRouting
        Two-receiver routing
    elevation : np.ndarray
        Flat elevation buffer the routing was computed from
    valid : np.ndarray
        Flat validity mask of the grid

    Returns
    -------
    np.ndarray
        Flat float64 accumulation

    Raises
    ------
    CyclicFlowGraphError
        If a cell sends flow to a cell that was already processed
    """
    valid = np.ascontiguousarray(valid, dtype=np.bool_)
    cells = np.flatnonzero(valid)
    # Stable sort keeps index order among equal elevations
    order = cells[np.argsort(-elevation[cells], kind="stable")].astype(np.int64)

    acc, bad = _descending_accumulate(
        order,
        np.ascontiguousarray(routing.octants),
        np.ascontiguousarray(routing.proportions),
        valid,
        routing.width,
        routing.height,
        _DX,
        _DY,
    )
    if bad >= 0:
        y, x = divmod(int(bad), routing.width)
        raise CyclicFlowGraphError(
            f"D-infinity flow from cell ({x}, {y}) reaches an already "
            f"processed cell"
        )
    return acc


def accumulate_mfd(
    routing: MFDRouting,
    valid: np.ndarray,
    iterations: int = MFD_ITERATIONS,
    tolerance: float | None = None,
) -> np.ndarray:
    """
    MFD flow accumulation by Jacobi relaxation.

    Each pass starts every valid cell at 1 and adds the previous pass's
    accumulation of its upstream neighbors scaled by their proportions.
    A chain of up to ``iterations`` cells is resolved exactly.

    Parameters
    ----------
    routing : MFDRouting
        Multiple flow direction routing
    valid : np.ndarray
        Flat validity mask of the grid
    iterations : int
        Number of relaxation passes
    tolerance : float, optional
        Stop early once the largest change between passes is within this
        value. Off by default.

    Returns
    -------
    np.ndarray
        Flat float64 accumulation
    """
    if iterations < 1:
        raise ValueError(f"iterations must be >= 1, got {iterations}")

    h, w = routing.height, routing.width
    base = valid.reshape(h, w).astype(np.float64)
    props = routing.proportions.reshape(h, w, 8)
    prev = base.copy()

    for iteration in range(iterations):
        acc = base.copy()
        for k, (dx, dy) in enumerate(NEIGHBOR_OFFSETS):
            src_r = slice(max(0, -dy), h - max(0, dy))
            src_c = slice(max(0, -dx), w - max(0, dx))
            tgt_r = slice(max(0, dy), h - max(0, -dy))
            tgt_c = slice(max(0, dx), w - max(0, -dx))
            acc[tgt_r, tgt_c] += prev[src_r, src_c] * props[src_r, src_c, k]

        delta = float(np.max(np.abs(acc - prev)))
        prev = acc
        logger.debug(f"  MFD pass {iteration + 1}/{iterations}: max change {delta:.6g}")
        if tolerance is not None and delta <= tolerance:
            logger.debug(f"  MFD converged after {iteration + 1} passes")
            break

    return prev.ravel()


def compute_accumulation(
    grid: ElevationGrid,
    routing: RoutingAssignment,
    iterations: int = MFD_ITERATIONS,
    tolerance: float | None = None,
) -> np.ndarray:
    """
    Compute flow accumulation for any routing variant.

    Parameters
    ----------
    grid : ElevationGrid
        Grid the routing was computed from
    routing : RoutingAssignment
        D8, D-infinity or MFD routing
    iterations : int
        Relaxation passes (MFD only)
    tolerance : float, optional
        Early-stop threshold on the max change per pass (MFD only)

    Returns
    -------
    np.ndarray
        Flat float64 accumulation, one value per cell
    """
    if (routing.width, routing.height) != (grid.width, grid.height):
        raise ValueError(
            f"Routing is {routing.width}x{routing.height}, "
            f"grid is {grid.width}x{grid.height}"
        )

    valid = np.asarray(grid.valid_mask)

    if isinstance(routing, D8Routing):
        acc = accumulate_d8(routing, valid)
    elif isinstance(routing, DInfRouting):
        acc = accumulate_dinf(routing, grid.elevation, valid)
    elif isinstance(routing, MFDRouting):
        acc = accumulate_mfd(routing, valid, iterations, tolerance)
    else:
        raise TypeError(f"Unsupported routing type: {type(routing).__name__}")

    max_acc = float(acc.max()) if acc.size else 0.0
    logger.info(
        f"Flow accumulation ({routing.model.value}): max {max_acc:,.1f} cells"
    )
    return acc
