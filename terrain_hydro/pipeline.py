"""
End-to-end terrain hydrology pipeline.

Runs the stages strictly in order:
conditioning -> routing -> accumulation -> stream extraction ->
hierarchical network -> visualization data.
"""

import logging
import time
from dataclasses import dataclass, field

import numpy as np

from terrain_hydro.accumulation import compute_accumulation
from terrain_hydro.conditioning import condition_grid
from terrain_hydro.config import Settings, get_settings
from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.flow_routing import RoutingAssignment, compute_routing
from terrain_hydro.flow_visualization import (
    FlowVisualizationData,
    find_outlets,
    generate_visualization_data,
)
from terrain_hydro.stream_extraction import HierarchicalStreamNetwork, StreamExtractor

logger = logging.getLogger(__name__)


@dataclass
class HydrologyResult:
    """
    Outputs of every pipeline stage.

    Attributes
    ----------
    grid : ElevationGrid
        Conditioned grid
    conditioning : dict
        Conditioning diagnostics
    routing : RoutingAssignment
        Routing variant of the configured model
    accumulation : np.ndarray
        Flat accumulation field
    streams : list
        Traced (and possibly smoothed) grid polylines
    hierarchical : HierarchicalStreamNetwork or None
        Coarse-to-fine network, None when skipped
    visualization : FlowVisualizationData
        Velocities and spawn points
    outlets : list[tuple[int, int, float]]
        Major outlets ``(x, y, accumulation)``, largest first
    timings : dict[str, float]
        Stage durations [s]
    """

    grid: ElevationGrid
    conditioning: dict
    routing: RoutingAssignment
    accumulation: np.ndarray
    streams: list
    hierarchical: HierarchicalStreamNetwork | None
    visualization: FlowVisualizationData
    outlets: list[tuple[int, int, float]]
    timings: dict[str, float] = field(default_factory=dict)


def run_pipeline(
    grid: ElevationGrid,
    settings: Settings | None = None,
    copy_input: bool = True,
) -> HydrologyResult:
    """
    Run the full terrain hydrology pipeline on a grid.

    Parameters
    ----------
    grid : ElevationGrid
        Input grid
    settings : Settings, optional
        Pipeline settings; defaults to :func:`get_settings`
    copy_input : bool
        Condition a copy instead of mutating ``grid`` in place

    Returns
    -------
    HydrologyResult
        All intermediate outputs
    """
    if settings is None:
        settings = get_settings()

    timings = {}
    start_total = time.time()
    logger.info(
        f"Pipeline start: {grid.width}x{grid.height} grid, "
        f"{settings.conditioning_method.value} conditioning, "
        f"{settings.routing_model.value} routing"
    )

    work = grid.copy() if copy_input else grid

    start = time.time()
    conditioning = condition_grid(
        work,
        settings.conditioning_method,
        epsilon=settings.epsilon,
        max_breach_length=settings.max_breach_length,
    )
    timings["conditioning"] = time.time() - start

    start = time.time()
    routing = compute_routing(
        work, settings.routing_model, mfd_exponent=settings.mfd_exponent
    )
    timings["routing"] = time.time() - start

    start = time.time()
    accumulation = compute_accumulation(
        work, routing, iterations=settings.mfd_iterations
    )
    timings["accumulation"] = time.time() - start

    start = time.time()
    extractor = StreamExtractor(work, routing, accumulation)
    streams = extractor.stream_network(
        settings.stream_threshold,
        settings.threshold_mode,
        smooth_iterations=settings.smoothing_iterations,
    )
    timings["streams"] = time.time() - start

    hierarchical = None
    if not settings.compute_hierarchical:
        logger.info("Hierarchical streams disabled")
    elif work.size > settings.hierarchical_max_cells:
        logger.warning(
            f"Skipping hierarchical streams: {work.size:,} cells exceeds "
            f"{settings.hierarchical_max_cells:,}"
        )
    else:
        start = time.time()
        hierarchical = extractor.hierarchical(
            settings.hierarchical_thresholds, settings.max_polylines_per_level
        )
        timings["hierarchical"] = time.time() - start

    start = time.time()
    visualization = generate_visualization_data(work, routing, accumulation)
    outlets = find_outlets(routing, accumulation)
    timings["visualization"] = time.time() - start

    for stage, elapsed in timings.items():
        logger.info(f"  {stage}: {elapsed:.2f}s")
    logger.info(f"Pipeline finished in {time.time() - start_total:.2f}s")

    return HydrologyResult(
        grid=work,
        conditioning=conditioning,
        routing=routing,
        accumulation=accumulation,
        streams=streams,
        hierarchical=hierarchical,
        visualization=visualization,
        outlets=outlets,
        timings=timings,
    )
