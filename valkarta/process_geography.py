"""
process_geography.py
Reduce voting districts to points, join them to the vote table, and build
the prediction grid.

This script:
1. Loads the voting-district shapefile and standardizes identifiers
2. Validates geometries and merges multi-part districts
3. Reduces every district to its centroid
4. Inner-joins centroids to the tidy vote table (drops are counted)
5. Loads county outlines and reprojects them onto the district CRS
6. Builds a sample grid clipped to the national boundary

Usage:
    python -m valkarta.process_geography [--cache-dir DIR] [--grid-resolution NX NY]
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple

import geopandas as gpd
import pandas as pd

from .clean_votes import load_votes
from .config import (
    DATA_DIR, DEFAULT_GRID_RESOLUTION, DISTRICT_ID_FIELD, DISTRICT_POINTS_FILE,
    GRID_META_FILE, GRID_POINTS_FILE, PROJECTED_CRS, VOTES_LONG_FILE,
    ensure_directories, get_processed_path, get_source_path, setup_logging
)
from .exceptions import GridError, SchemaError
from .utils.data_loader import load_shapefile, validate_district_ids
from .utils.geo_utils import (
    build_national_boundary, generate_sample_grid, get_bounds,
    reproject_gdf, validate_geometries
)

logger = logging.getLogger(__name__)


# ============================================================================
# DISTRICTS
# ============================================================================

def prepare_district_shapes(
    gdf: gpd.GeoDataFrame,
    id_field: str = DISTRICT_ID_FIELD,
    target_crs: str = PROJECTED_CRS
) -> gpd.GeoDataFrame:
    """
    One valid polygon record per district identifier, in a projected CRS.

    Args:
        gdf: Raw district polygons
        id_field: Attribute holding the district identifier
        target_crs: CRS used when the input is geographic (lon/lat)

    Returns:
        GeoDataFrame with district_id and geometry
    """
    if id_field not in gdf.columns:
        raise SchemaError(f"District shapefile has no '{id_field}' field. Columns: {list(gdf.columns)}")

    if gdf.crs is None:
        raise SchemaError("District shapefile has no CRS")

    gdf = gdf.rename(columns={id_field: 'district_id'})[['district_id', 'geometry']]
    gdf, _ = validate_district_ids(gdf)
    gdf = validate_geometries(gdf)

    duplicated = gdf['district_id'].duplicated()
    if duplicated.any():
        logger.warning(f"Merging {int(duplicated.sum())} extra parts of multi-part districts")
        gdf = gdf.dissolve(by='district_id', as_index=False)

    if gdf.crs.is_geographic:
        gdf = reproject_gdf(gdf, target_crs)

    logger.info(f"Prepared {len(gdf):,} districts in {gdf.crs.to_string()}")

    return gdf.reset_index(drop=True)


def load_district_shapes(shapefile_path: Path, id_field: str = DISTRICT_ID_FIELD) -> gpd.GeoDataFrame:
    """Load and prepare the voting-district shapefile."""
    logger.info("=" * 70)
    logger.info("LOADING DISTRICT SHAPEFILE")
    logger.info("=" * 70)

    return prepare_district_shapes(load_shapefile(shapefile_path), id_field)


def district_crs(shapefile_path: Path):
    """CRS the prepared districts end up in, read from the first feature only."""
    if not shapefile_path.exists():
        raise FileNotFoundError(f"Shapefile not found: {shapefile_path}")
    crs = gpd.read_file(shapefile_path, engine="pyogrio", rows=1).crs
    if crs is None:
        raise SchemaError("District shapefile has no CRS")
    return PROJECTED_CRS if crs.is_geographic else crs


def compute_centroids(districts: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Geometric centroid of each district in its own projected CRS.

    Returns:
        DataFrame with district_id, x, y
    """
    centroids = districts.geometry.centroid
    return pd.DataFrame({
        'district_id': districts['district_id'].astype(str).to_numpy(),
        'x': centroids.x.to_numpy(),
        'y': centroids.y.to_numpy(),
    })


# ============================================================================
# JOIN
# ============================================================================

def join_votes_to_points(
    votes: pd.DataFrame,
    points: pd.DataFrame
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Inner-join the tidy vote table to district centroids.

    Vote rows without a centroid and centroids without votes are dropped.
    The drops are not errors; they are counted in the report.

    Args:
        votes: Tidy vote table with district_id
        points: District centroids with district_id, x, y

    Returns:
        (joined DataFrame, report dictionary)
    """
    logger.info("\nJoining votes to district centroids...")

    if 'geometry' in points.columns:
        points = pd.DataFrame(points.drop(columns=['geometry']))

    vote_ids = set(votes['district_id'])
    point_ids = set(points['district_id'])

    joined = votes.merge(points[['district_id', 'x', 'y']], on='district_id', how='inner')

    unmatched_votes = ~votes['district_id'].isin(point_ids)
    unmatched_points = ~points['district_id'].isin(vote_ids)

    report = {
        'matched_districts': int(joined['district_id'].nunique()),
        'dropped_vote_rows': int(unmatched_votes.sum()),
        'dropped_vote_districts': int(votes.loc[unmatched_votes, 'district_id'].nunique()),
        'dropped_geometries': int(unmatched_points.sum()),
    }

    logger.info(f"  Matched: {report['matched_districts']:,} districts")

    if report['dropped_vote_rows'] > 0:
        sample = sorted(votes.loc[unmatched_votes, 'district_id'].unique())[:10]
        logger.warning(
            f"  Districts in vote table but not in geography: {report['dropped_vote_districts']} "
            f"({report['dropped_vote_rows']} rows dropped)"
        )
        logger.warning(f"    Sample unmatched: {sample}")

    if report['dropped_geometries'] > 0:
        sample = sorted(points.loc[unmatched_points, 'district_id'])[:10]
        logger.warning(f"  Districts in geography but not in vote table: {report['dropped_geometries']}")
        logger.warning(f"    Sample unmatched: {sample}")

    return joined, report


# ============================================================================
# COUNTIES AND GRID
# ============================================================================

def load_county_shapes(shapefile_path: Path, target_crs) -> gpd.GeoDataFrame:
    """Load county outlines and reproject them onto the district CRS."""
    logger.info("=" * 70)
    logger.info("LOADING COUNTY SHAPEFILE")
    logger.info("=" * 70)

    counties = validate_geometries(load_shapefile(shapefile_path))
    return reproject_gdf(counties, target_crs)


def build_grid(
    counties: gpd.GeoDataFrame,
    resolution: Tuple[int, int] = DEFAULT_GRID_RESOLUTION
) -> gpd.GeoDataFrame:
    """Sample grid over the union of all counties."""
    logger.info(f"Building {resolution[0]} x {resolution[1]} sample grid...")

    bounds = get_bounds(counties)
    logger.info(
        f"  Bounds: ({bounds['minx']:.0f}, {bounds['miny']:.0f}) to "
        f"({bounds['maxx']:.0f}, {bounds['maxy']:.0f})"
    )

    boundary = build_national_boundary(counties)
    return generate_sample_grid(boundary, resolution, crs=counties.crs)


def save_table(df: pd.DataFrame, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if 'geometry' in df.columns:
        df = pd.DataFrame(df.drop(columns=['geometry']))
    df.to_csv(output_path, index=False)
    logger.info(f"Saved: {output_path}")
    return output_path


def save_grid_meta(
    resolution: Tuple[int, int],
    bounds: Sequence[float],
    output_path: Path
) -> Path:
    """
    Record the lattice the grid was sampled from.

    Rendering needs the full (nx, ny) and the bounding box; neither can be
    recovered from the clipped grid points alone.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    meta = {
        'nx': int(resolution[0]),
        'ny': int(resolution[1]),
        'bounds': [float(b) for b in bounds],
    }
    with open(output_path, 'w') as f:
        json.dump(meta, f, indent=2)
    logger.info(f"Saved: {output_path}")
    return output_path


def load_grid_meta(file_path: Path) -> Tuple[Tuple[int, int], Tuple[float, float, float, float]]:
    """Read a file written by save_grid_meta. Returns ((nx, ny), bounds)."""
    if not file_path.exists():
        raise FileNotFoundError(
            f"Grid metadata not found: {file_path}\n"
            "Please run process_geography first."
        )
    with open(file_path) as f:
        meta = json.load(f)
    return (int(meta['nx']), int(meta['ny'])), tuple(float(b) for b in meta['bounds'])


def main():
    parser = argparse.ArgumentParser(
        description="Join district centroids to votes and build the prediction grid"
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DATA_DIR,
        help="Cache root holding raw/ and processed/ (default: %(default)s)"
    )
    parser.add_argument(
        "--grid-resolution",
        type=int,
        nargs=2,
        metavar=("NX", "NY"),
        default=list(DEFAULT_GRID_RESOLUTION),
        help="Lattice points along X and Y (default: %(default)s)"
    )

    args = parser.parse_args()
    setup_logging("process_geography")

    try:
        votes = load_votes(get_processed_path(VOTES_LONG_FILE, args.cache_dir))
        districts = load_district_shapes(get_source_path("districts", args.cache_dir))
        counties = load_county_shapes(get_source_path("counties", args.cache_dir), districts.crs)
    except (FileNotFoundError, SchemaError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)

    joined, report = join_votes_to_points(votes, compute_centroids(districts))
    logger.info(f"Join report: {report}")

    try:
        grid = build_grid(counties, tuple(args.grid_resolution))
    except GridError as e:
        logger.error(str(e))
        sys.exit(1)

    ensure_directories(args.cache_dir)
    save_table(joined, get_processed_path(DISTRICT_POINTS_FILE, args.cache_dir))
    save_table(grid, get_processed_path(GRID_POINTS_FILE, args.cache_dir))
    save_grid_meta(
        tuple(args.grid_resolution),
        counties.total_bounds,
        get_processed_path(GRID_META_FILE, args.cache_dir)
    )


if __name__ == "__main__":
    main()
