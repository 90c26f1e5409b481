"""
Flow routing: per-cell flow direction and slope under three models.

Models
------
d8
    Single steepest-descent direction (O'Callaghan & Mark 1984).
dinf
    Continuous flow angle from the steepest of eight triangular facets,
    split between the two bracketing octants (Tarboton 1997).
mfd
    Proportional split over all strictly downslope neighbors, weighted by
    slope raised to an exponent (Quinn et al. 1991).

Neighbors are scanned in the fixed order E, SE, S, SW, W, NW, N, NE
(octants 0-7, angle ``k * pi/4`` measured clockwise from east on a
north-up grid). Ties are always broken by the first maximum in that order.
Out-of-grid and no-data neighbors are never routed to; a cell without a
downslope neighbor is an outlet (no flow).

The per-cell kernels are independent and compiled with numba.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numba
import numpy as np

from terrain_hydro.config import RoutingModel
from terrain_hydro.constants import MFD_EXPONENT, SQRT_2
from terrain_hydro.elevation_grid import NEIGHBOR_OFFSETS, ElevationGrid

logger = logging.getLogger(__name__)

# D8 code of octant k is 1 << k (E=1, SE=2, ... NE=128), 0 for no flow.
# Lookup arrays for numba (dict not supported in njit)
NO_FLOW = 0
_DX = np.array([dx for dx, _ in NEIGHBOR_OFFSETS], dtype=np.int64)
_DY = np.array([dy for _, dy in NEIGHBOR_OFFSETS], dtype=np.int64)
_CODES = np.array([1 << k for k in range(8)], dtype=np.uint8)
_DIST = np.array([1.0, SQRT_2] * 4, dtype=np.float64)


@numba.njit(cache=True)
def _d8_kernel(elev, valid, resolution, dx, dy, dist, codes):
    """Steepest descent direction, slope and octant for every valid cell."""
    nrows, ncols = elev.shape
    directions = np.zeros((nrows, ncols), dtype=np.uint8)
    slopes = np.zeros((nrows, ncols), dtype=np.float64)
    primary = np.full((nrows, ncols), -1, dtype=np.int8)

    for i in range(nrows):
        for j in range(ncols):
            if not valid[i, j]:
                continue
            z = elev[i, j]
            best = 0.0
            best_k = -1
            for k in range(8):
                ni = i + dy[k]
                nj = j + dx[k]
                if ni < 0 or ni >= nrows or nj < 0 or nj >= ncols:
                    continue
                if not valid[ni, nj]:
                    continue
                s = (z - elev[ni, nj]) / (resolution * dist[k])
                if s > best:
                    best = s
                    best_k = k
            if best_k >= 0:
                directions[i, j] = codes[best_k]
                slopes[i, j] = best
                primary[i, j] = best_k

    return directions, slopes, primary


@numba.njit(cache=True)
def _dinf_kernel(elev, valid, resolution, dx, dy):
    """
    D-infinity facet flow for every valid cell.

    Returns angle (NaN = no flow), the two bracketing octants and their
    proportions, the facet slope and the dominant octant.
    """
    nrows, ncols = elev.shape
    q = math.pi / 4.0
    diag = resolution * math.sqrt(2.0)

    angles = np.full((nrows, ncols), np.nan, dtype=np.float64)
    octants = np.full((nrows, ncols, 2), -1, dtype=np.int8)
    props = np.zeros((nrows, ncols, 2), dtype=np.float64)
    slopes = np.zeros((nrows, ncols), dtype=np.float64)
    primary = np.full((nrows, ncols), -1, dtype=np.int8)

    nz = np.empty(8, dtype=np.float64)
    nok = np.empty(8, dtype=np.bool_)

    for i in range(nrows):
        for j in range(ncols):
            if not valid[i, j]:
                continue
            z = elev[i, j]
            for k in range(8):
                ni = i + dy[k]
                nj = j + dx[k]
                if 0 <= ni < nrows and 0 <= nj < ncols and valid[ni, nj]:
                    nz[k] = elev[ni, nj]
                    nok[k] = True
                else:
                    nz[k] = np.nan
                    nok[k] = False

            best_s = 0.0
            best_angle = -1.0
            for k in range(8):
                # Facet between octant k and k+1: one cardinal, one diagonal
                if k % 2 == 0:
                    c = k
                    d = k + 1
                else:
                    c = (k + 1) % 8
                    d = k
                if nok[c] and nok[d]:
                    s1 = (z - nz[c]) / resolution
                    s2 = (nz[c] - nz[d]) / resolution
                    r = math.atan2(s2, s1)
                    s = math.hypot(s1, s2)
                    if r < 0.0:
                        r = 0.0
                        s = s1
                    elif r > q:
                        r = q
                        s = (z - nz[d]) / diag
                elif nok[c]:
                    r = 0.0
                    s = (z - nz[c]) / resolution
                elif nok[d]:
                    r = q
                    s = (z - nz[d]) / diag
                else:
                    continue

                if s > best_s:
                    best_s = s
                    if k % 2 == 0:
                        best_angle = k * q + r
                    else:
                        best_angle = (k + 1) * q - r

            if best_angle < 0.0:
                continue
            if best_angle >= 2.0 * math.pi:
                best_angle -= 2.0 * math.pi

            a = int(math.floor(best_angle / q))
            if a > 7:
                a = 7
            frac = best_angle / q - a
            if frac < 0.0:
                frac = 0.0
            elif frac > 1.0:
                frac = 1.0
            b = (a + 1) % 8

            pa = 1.0 - frac
            pb = frac
            down_a = nok[a] and nz[a] < z
            down_b = nok[b] and nz[b] < z
            if not down_a:
                pa = 0.0
            if not down_b:
                pb = 0.0
            total = pa + pb
            if total > 0.0:
                pa /= total
                pb /= total
            elif down_a:
                pa = 1.0
            elif down_b:
                pb = 1.0
            else:
                continue

            angles[i, j] = best_angle
            octants[i, j, 0] = a
            octants[i, j, 1] = b
            props[i, j, 0] = pa
            props[i, j, 1] = pb
            slopes[i, j] = best_s
            if pa > pb or (pa == pb and a < b):
                primary[i, j] = a
            else:
                primary[i, j] = b

    return angles, octants, props, slopes, primary


@numba.njit(cache=True)
def _mfd_kernel(elev, valid, resolution, exponent, dx, dy, dist):
    """Slope-weighted proportions over all strictly downslope neighbors."""
    nrows, ncols = elev.shape
    props = np.zeros((nrows, ncols, 8), dtype=np.float64)
    slopes = np.zeros((nrows, ncols), dtype=np.float64)
    primary = np.full((nrows, ncols), -1, dtype=np.int8)

    weights = np.empty(8, dtype=np.float64)

    for i in range(nrows):
        for j in range(ncols):
            if not valid[i, j]:
                continue
            z = elev[i, j]
            total = 0.0
            best = 0.0
            best_k = -1
            for k in range(8):
                weights[k] = 0.0
                ni = i + dy[k]
                nj = j + dx[k]
                if ni < 0 or ni >= nrows or nj < 0 or nj >= ncols:
                    continue
                if not valid[ni, nj]:
                    continue
                s = (z - elev[ni, nj]) / (resolution * dist[k])
                if s <= 0.0:
                    continue
                w = s**exponent
                weights[k] = w
                total += w
                if s > best:
                    best = s
            if total <= 0.0:
                continue

            best_w = 0.0
            for k in range(8):
                p = weights[k] / total
                props[i, j, k] = p
                if p > best_w:
                    best_w = p
                    best_k = k
            slopes[i, j] = best
            primary[i, j] = best_k

    return props, slopes, primary


def _freeze(*arrays: np.ndarray) -> None:
    for arr in arrays:
        arr.flags.writeable = False


@dataclass(frozen=True, eq=False)
class RoutingAssignment(ABC):
    """
    Immutable per-cell routing result (abstract).

    Concrete variants are :class:`D8Routing`, :class:`DInfRouting` and
    :class:`MFDRouting`. All arrays are flat (row-major) and read-only.

    Attributes
    ----------
    width, height : int
        Grid dimensions
    slopes : np.ndarray
        Steepest downslope gradient per cell (0 for no flow)
    primary : np.ndarray
        Dominant octant per cell (-1 = no flow), used for tracing
    """

    width: int
    height: int
    slopes: np.ndarray
    primary: np.ndarray

    model = None

    def __post_init__(self):
        _freeze(self.slopes, self.primary)

    @property
    def size(self) -> int:
        return self.width * self.height

    def downstream(self, index: int) -> int | None:
        """Flat index of the dominant downstream cell, or None for no flow."""
        k = int(self.primary[index])
        if k < 0:
            return None
        y, x = divmod(int(index), self.width)
        dx, dy = NEIGHBOR_OFFSETS[k]
        return (y + dy) * self.width + (x + dx)

    def downstream_indices(self) -> np.ndarray:
        """Dominant downstream index per cell (-1 for no flow)."""
        idx = np.arange(self.size, dtype=np.int64)
        k = self.primary.astype(np.int64)
        has_flow = k >= 0
        k_safe = np.where(has_flow, k, 0)
        offset = _DY[k_safe] * self.width + _DX[k_safe]
        return np.where(has_flow, idx + offset, -1)

    def no_flow_mask(self) -> np.ndarray:
        return self.primary < 0

    def flow_directions(self) -> np.ndarray:
        """D8 code of the dominant octant per cell (0 for no flow)."""
        k = self.primary.astype(np.int64)
        return np.where(k >= 0, _CODES[np.where(k >= 0, k, 0)], NO_FLOW).astype(
            np.uint8
        )

    @abstractmethod
    def octant_proportions(self) -> np.ndarray:
        """``(N, 8)`` share of each cell's flow sent to each octant."""


@dataclass(frozen=True, eq=False)
class D8Routing(RoutingAssignment):
    """Single steepest-descent direction per cell as a D8 code."""

    directions: np.ndarray = None

    model = RoutingModel.D8

    def __post_init__(self):
        super().__post_init__()
        _freeze(self.directions)

    def octant_proportions(self) -> np.ndarray:
        out = np.zeros((self.size, 8), dtype=np.float64)
        has_flow = self.primary >= 0
        out[np.flatnonzero(has_flow), self.primary[has_flow]] = 1.0
        return out


@dataclass(frozen=True, eq=False)
class DInfRouting(RoutingAssignment):
    """
    Continuous flow angle split between two bracketing octants.

    Attributes
    ----------
    angles : np.ndarray
        Flow angle in [0, 2*pi) clockwise from east (NaN = no flow)
    octants : np.ndarray
        ``(N, 2)`` bracketing octants A and B (-1 = no flow)
    proportions : np.ndarray
        ``(N, 2)`` share of flow sent to A and B, summing to 1
    """

    angles: np.ndarray = None
    octants: np.ndarray = None
    proportions: np.ndarray = None

    model = RoutingModel.DINF

    def __post_init__(self):
        super().__post_init__()
        _freeze(self.angles, self.octants, self.proportions)

    def octant_proportions(self) -> np.ndarray:
        out = np.zeros((self.size, 8), dtype=np.float64)
        cells = np.flatnonzero(self.octants[:, 0] >= 0)
        for side in (0, 1):
            np.add.at(
                out,
                (cells, self.octants[cells, side]),
                self.proportions[cells, side],
            )
        return out


@dataclass(frozen=True, eq=False)
class MFDRouting(RoutingAssignment):
    """Proportions over all eight octants, summing to 1 where flow exists."""

    proportions: np.ndarray = None
    exponent: float = MFD_EXPONENT

    model = RoutingModel.MFD

    def __post_init__(self):
        super().__post_init__()
        _freeze(self.proportions)

    def octant_proportions(self) -> np.ndarray:
        return self.proportions


def _kernel_inputs(grid: ElevationGrid) -> tuple[np.ndarray, np.ndarray]:
    elev = np.ascontiguousarray(grid.as_array(), dtype=np.float64)
    valid = np.ascontiguousarray(grid.valid_mask.reshape(grid.shape))
    return elev, valid


def compute_d8(grid: ElevationGrid) -> D8Routing:
    """
    Steepest-descent (D8) routing.

    Parameters
    ----------
    grid : ElevationGrid
        Conditioned elevation grid

    Returns
    -------
    D8Routing
        D8 codes (0 = no flow), slopes and dominant octants
    """
    elev, valid = _kernel_inputs(grid)
    directions, slopes, primary = _d8_kernel(
        elev, valid, grid.resolution, _DX, _DY, _DIST, _CODES
    )
    return D8Routing(
        width=grid.width,
        height=grid.height,
        slopes=slopes.ravel(),
        primary=primary.ravel(),
        directions=directions.ravel(),
    )


def compute_dinf(grid: ElevationGrid) -> DInfRouting:
    """
    D-infinity routing (Tarboton 1997).

    The steepest of the eight triangular facets gives a continuous flow
    angle. Flow is split linearly between the two octants bracketing the
    angle; a side whose neighbor is missing or not strictly lower is
    dropped and the remaining share renormalized to 1.

    Parameters
    ----------
    grid : ElevationGrid
        Conditioned elevation grid

    Returns
    -------
    DInfRouting
        Angles, bracketing octants, proportions and slopes
    """
    elev, valid = _kernel_inputs(grid)
    angles, octants, props, slopes, primary = _dinf_kernel(
        elev, valid, grid.resolution, _DX, _DY
    )
    n = grid.size
    return DInfRouting(
        width=grid.width,
        height=grid.height,
        slopes=slopes.ravel(),
        primary=primary.ravel(),
        angles=angles.ravel(),
        octants=octants.reshape(n, 2),
        proportions=props.reshape(n, 2),
    )


def compute_mfd(grid: ElevationGrid, exponent: float = MFD_EXPONENT) -> MFDRouting:
    """
    Multiple flow direction routing (Quinn et al. 1991).

    Parameters
    ----------
    grid : ElevationGrid
        Conditioned elevation grid
    exponent : float
        Slope exponent of the neighbor weights

    Returns
    -------
    MFDRouting
        ``(N, 8)`` proportions, slopes and dominant octants
    """
    if exponent <= 0:
        raise ValueError(f"MFD exponent must be positive, got {exponent}")
    elev, valid = _kernel_inputs(grid)
    props, slopes, primary = _mfd_kernel(
        elev, valid, grid.resolution, float(exponent), _DX, _DY, _DIST
    )
    return MFDRouting(
        width=grid.width,
        height=grid.height,
        slopes=slopes.ravel(),
        primary=primary.ravel(),
        proportions=props.reshape(grid.size, 8),
        exponent=float(exponent),
    )


def compute_routing(
    grid: ElevationGrid,
    model: RoutingModel | str = RoutingModel.D8,
    mfd_exponent: float = MFD_EXPONENT,
) -> RoutingAssignment:
    """
    Compute flow routing with the selected model.

    Parameters
    ----------
    grid : ElevationGrid
        Conditioned elevation grid
    model : RoutingModel or str
        d8, dinf or mfd
    mfd_exponent : float
        Slope exponent used by the mfd model

    Returns
    -------
    RoutingAssignment
        Model-specific routing variant
    """
    model = RoutingModel(model)
    logger.info(
        f"Computing {model.value} flow routing on {grid.width}x{grid.height} grid"
    )

    if model == RoutingModel.D8:
        routing = compute_d8(grid)
    elif model == RoutingModel.DINF:
        routing = compute_dinf(grid)
    else:
        routing = compute_mfd(grid, mfd_exponent)

    n_outlets = int(np.count_nonzero(routing.no_flow_mask() & grid.valid_mask))
    logger.info(f"  {model.value} routing done: {n_outlets:,} no-flow valid cells")
    return routing
