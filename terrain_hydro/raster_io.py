"""
Raster I/O adapter for elevation grids.

Reads single-band rasters (GeoTIFF, ASCII GRID, VRT) into
:class:`ElevationGrid` instances and writes per-cell result arrays back
out as GeoTIFF. No hydrology happens here.
"""

import logging
from pathlib import Path

import numpy as np

from terrain_hydro.config import get_settings
from terrain_hydro.constants import DEFAULT_NODATA
from terrain_hydro.elevation_grid import ElevationGrid
from terrain_hydro.exceptions import RasterIOError

logger = logging.getLogger(__name__)

# Elevations and accumulation as floats or int32 counts, D8 codes as uint8
GEOTIFF_DTYPES = ("float32", "float64", "int32", "uint8")


def read_elevation_grid(filepath: Path) -> ElevationGrid:
    """
    Read the first band of a raster file into an elevation grid.

    Parameters
    ----------
    filepath : Path
        Path to raster file (.tif, .asc, .vrt)

    Returns
    -------
    ElevationGrid
        Grid with the file's transform and nodata value

    Raises
    ------
    FileNotFoundError
        If file does not exist
    RasterIOError
        If the file cannot be decoded
    """
    import rasterio
    from rasterio.errors import RasterioIOError

    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"Raster file not found: {filepath}")

    logger.info(f"Reading raster: {filepath}")

    try:
        with rasterio.open(filepath) as src:
            data = src.read(1).astype(np.float64)
            transform = src.transform
            nodata = src.nodata if src.nodata is not None else DEFAULT_NODATA
    except RasterioIOError as e:
        raise RasterIOError(f"Cannot read raster {filepath}: {e}") from e

    # Square cells assumed; average both axes as the nominal resolution
    resolution = (abs(transform.a) + abs(transform.e)) / 2.0
    grid = ElevationGrid.from_array(data, resolution, transform, nodata)

    logger.info(f"Read raster: {grid.height}x{grid.width} cells")
    logger.info(f"Cell size: {resolution}")
    logger.info(f"Valid cells: {grid.valid_count:,} of {grid.size:,}")
    return grid


def read_merged_grid(
    filepaths: list[Path],
    tolerance: float | None = None,
) -> ElevationGrid:
    """
    Read several raster tiles and merge them into one grid.

    Parameters
    ----------
    filepaths : list[Path]
        Tile paths; later tiles win where tiles overlap
    tolerance : float, optional
        Maximum allowed resolution difference between tiles. Defaults to
        ``Settings.merge_resolution_tolerance``.

    Returns
    -------
    ElevationGrid
        Merged grid
    """
    if tolerance is None:
        tolerance = get_settings().merge_resolution_tolerance
    grids = [read_elevation_grid(Path(p)) for p in filepaths]
    return ElevationGrid.merge(grids, tolerance)


def save_raster_geotiff(
    data: np.ndarray,
    grid: ElevationGrid,
    output_path: Path,
    nodata: float = DEFAULT_NODATA,
    dtype: str = "float32",
    crs: str | None = None,
) -> None:
    """
    Save a per-cell array as a single-band GeoTIFF aligned with a grid.

    Parameters
    ----------
    data : np.ndarray
        Flat or ``(height, width)`` array (elevation, accumulation, D8
        codes, ...)
    grid : ElevationGrid
        Grid providing shape and transform
    output_path : Path
        Output GeoTIFF path
    nodata : float
        Value written to the grid's no-data cells
    dtype : str
        One of ``GEOTIFF_DTYPES``
    crs : str, optional
        CRS of the output (e.g. 'EPSG:2180')

    Raises
    ------
    RasterIOError
        If the array size does not match the grid or the dtype is not
        supported
    """
    import rasterio

    output_path = Path(output_path)
    arr = np.asarray(data)
    if arr.size != grid.size:
        raise RasterIOError(
            f"Array has {arr.size} cells, grid has {grid.size} "
            f"({grid.width}x{grid.height})"
        )
    if dtype not in GEOTIFF_DTYPES:
        raise RasterIOError(
            f"Unsupported output dtype: {dtype} "
            f"(expected one of {', '.join(GEOTIFF_DTYPES)})"
        )

    band = np.where(grid.valid_mask, arr.ravel(), nodata).reshape(grid.shape)
    profile = {
        "driver": "GTiff",
        "width": grid.width,
        "height": grid.height,
        "count": 1,
        "dtype": dtype,
        "crs": crs,
        "transform": grid.geo_transform,
        "nodata": nodata,
        "compress": "lzw",
    }
    with rasterio.open(output_path, "w", **profile) as dst:
        dst.write(band.astype(dtype), 1)

    logger.info(f"Saved: {output_path} ({output_path.stat().st_size / 1024:.1f} KB)")
