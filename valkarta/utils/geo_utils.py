"""
Geographic utility functions for shapefiles, boundaries and sample grids.
"""

import logging
from typing import Tuple

import geopandas as gpd
import numpy as np
from shapely.geometry.base import BaseGeometry

from ..exceptions import GridError

logger = logging.getLogger(__name__)


def reproject_gdf(gdf: gpd.GeoDataFrame, target_crs) -> gpd.GeoDataFrame:
    """
    Reproject GeoDataFrame to target CRS.

    Args:
        gdf: GeoDataFrame to reproject
        target_crs: Target CRS (e.g., 'EPSG:3006' or a pyproj CRS)

    Returns:
        Reprojected GeoDataFrame

    Raises:
        ValueError: If GeoDataFrame has no CRS defined
    """
    if gdf.crs is None:
        raise ValueError(
            "GeoDataFrame has no CRS defined. Cannot reproject. "
            "Set CRS first using: gdf.set_crs('EPSG:XXXX', inplace=True)"
        )

    if not gdf.crs.equals(target_crs):
        logger.info(f"Reprojecting from {gdf.crs.to_string()} to {target_crs}")
        return gdf.to_crs(target_crs)

    logger.info(f"GeoDataFrame already in {gdf.crs.to_string()}, no reprojection needed")
    return gdf


def validate_geometries(gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """
    Validate and fix invalid geometries.

    Args:
        gdf: GeoDataFrame to validate

    Returns:
        GeoDataFrame with valid, non-empty geometries
    """
    logger.info("Validating geometries...")

    missing = gdf.geometry.isna() | gdf.geometry.is_empty
    if missing.any():
        logger.warning(f"Dropping {int(missing.sum())} features without geometry")
        gdf = gdf[~missing]

    invalid = ~gdf.is_valid
    invalid_count = invalid.sum()

    if invalid_count > 0:
        logger.warning(f"Found {invalid_count} invalid geometries. Attempting to fix...")

        gdf = gdf.copy()
        gdf.loc[invalid, 'geometry'] = gdf.loc[invalid, 'geometry'].buffer(0)

        still_invalid = ~gdf.is_valid
        still_invalid_count = still_invalid.sum()

        if still_invalid_count > 0:
            logger.warning(f"Could not fix {still_invalid_count} geometries. These will be dropped.")
            gdf = gdf[gdf.is_valid]
        else:
            logger.info("All invalid geometries fixed successfully")
    else:
        logger.info("All geometries are valid")

    return gdf


def get_bounds(gdf: gpd.GeoDataFrame) -> dict:
    """
    Get bounding box of GeoDataFrame.

    Returns:
        Dictionary with minx, miny, maxx, maxy
    """
    bounds = gdf.total_bounds
    return {
        'minx': float(bounds[0]),
        'miny': float(bounds[1]),
        'maxx': float(bounds[2]),
        'maxy': float(bounds[3])
    }


def build_national_boundary(gdf: gpd.GeoDataFrame) -> BaseGeometry:
    """Union of all sub-region polygons."""
    boundary = gdf.geometry.union_all()
    if boundary.is_empty:
        raise ValueError("Cannot build a national boundary from empty geometries")
    return boundary


def generate_sample_grid(
    boundary: BaseGeometry,
    resolution: Tuple[int, int],
    crs=None
) -> gpd.GeoDataFrame:
    """
    Regular lattice over the boundary's bounding box, clipped to the boundary.

    Lattice points on the boundary line are kept. The result depends only on
    the boundary and the resolution.

    Args:
        boundary: National boundary polygon
        resolution: (nx, ny) lattice points along X and Y
        crs: CRS to attach to the result

    Returns:
        GeoDataFrame with ix, iy (lattice indices), x, y and point geometry

    Raises:
        GridError: If no lattice point intersects the boundary
    """
    nx, ny = resolution
    minx, miny, maxx, maxy = boundary.bounds

    xs = np.linspace(minx, maxx, nx)
    ys = np.linspace(miny, maxy, ny)
    ix, iy = np.meshgrid(np.arange(nx), np.arange(ny))
    ix = ix.ravel()
    iy = iy.ravel()

    lattice = gpd.GeoDataFrame(
        {'ix': ix, 'iy': iy, 'x': xs[ix], 'y': ys[iy]},
        geometry=gpd.points_from_xy(xs[ix], ys[iy]),
        crs=crs
    )

    inside = lattice.intersects(boundary)
    grid = lattice[inside].reset_index(drop=True)

    if grid.empty:
        raise GridError(
            f"No point of the {nx} x {ny} lattice falls inside the boundary; "
            "use a finer grid resolution"
        )

    logger.info(f"Sample grid: {len(grid):,} of {len(lattice):,} lattice points inside boundary")

    return grid
