"""
render_map.py
Render the faceted party popularity map.

This script:
1. Loads prediction cells (clamped log2 ratio per grid point and party)
2. Orders parties by national share, largest first
3. Rasterizes each party's cells onto the sample lattice
4. Draws one panel per party with county outlines and a shared diverging
   colour bar (0.5x .. 2x the national share by default)
5. Writes the figure to the exports directory

Usage:
    python -m valkarta.render_map [--cache-dir DIR] [--clamp L] [--output FILE]
"""

import argparse
import logging
import math
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.cm import ScalarMappable
from matplotlib.colors import Normalize

from .config import (
    DATA_DIR, DEFAULT_CLAMP_LOG2_RANGE, DISTRICT_POINTS_FILE, GRID_META_FILE,
    MAP_FILE, PARTY_NAMES, PREDICTIONS_FILE, ensure_directories, exports_dir,
    get_processed_path, get_source_path, setup_logging
)
from .process_geography import district_crs, load_county_shapes, load_grid_meta
from .utils.ratio_calculator import ratio_tick_labels

logger = logging.getLogger(__name__)

COLORMAP = "RdBu"
PANEL_COLUMNS = 4
FIGURE_TITLE = "Regional party popularity, Riksdag election 2018"


def party_order(predictions: pd.DataFrame) -> List[str]:
    """Parties by descending national share."""
    shares = predictions.groupby('party')['national_share'].first()
    return list(shares.sort_values(ascending=False, kind='stable').index)


def build_raster(cells: pd.DataFrame, resolution: Tuple[int, int]) -> np.ndarray:
    """
    Place one party's cells on the (ny, nx) lattice; NaN outside the country.
    """
    nx, ny = resolution
    ix = cells['ix'].to_numpy(dtype=int)
    iy = cells['iy'].to_numpy(dtype=int)
    if len(cells) and (ix.max() >= nx or iy.max() >= ny or ix.min() < 0 or iy.min() < 0):
        raise ValueError(
            f"Grid cells span ix 0..{ix.max()}, iy 0..{iy.max()}, "
            f"which does not fit a {nx} x {ny} lattice"
        )
    raster = np.full((ny, nx), np.nan)
    raster[iy, ix] = cells['log2_ratio'].to_numpy(dtype=float)
    return raster


def lattice_extent(
    bounds: Sequence[float],
    resolution: Tuple[int, int]
) -> Tuple[float, float, float, float]:
    """imshow extent putting pixel centres on the lattice points."""
    minx, miny, maxx, maxy = bounds
    nx, ny = resolution
    dx = (maxx - minx) / (nx - 1)
    dy = (maxy - miny) / (ny - 1)
    return (minx - dx / 2, maxx + dx / 2, miny - dy / 2, maxy + dy / 2)


def render_party_map(
    predictions: pd.DataFrame,
    counties: gpd.GeoDataFrame,
    bounds: Sequence[float],
    resolution: Tuple[int, int],
    output_path: Path,
    limit: float = DEFAULT_CLAMP_LOG2_RANGE,
    failed: Optional[Iterable[str]] = None
) -> Path:
    """
    Draw one raster panel per party and save the figure.

    Parties listed in ``failed`` have no panel and are named in a caption.

    Args:
        predictions: Prediction cells (ix, iy, party, national_share, log2_ratio)
        counties: County outlines in the grid CRS
        bounds: (minx, miny, maxx, maxy) of the sample lattice
        resolution: (nx, ny) of the sample lattice
        output_path: Image path; format follows the suffix
        limit: Half-width of the colour scale in log2 units
        failed: Parties without a fitted surface

    Returns:
        Path of the written image
    """
    logger.info("=" * 70)
    logger.info("RENDERING MAP")
    logger.info("=" * 70)

    parties = party_order(predictions)
    n_panels = max(len(parties), 1)
    ncols = min(PANEL_COLUMNS, n_panels)
    nrows = math.ceil(n_panels / ncols)

    fig, axes = plt.subplots(nrows, ncols, figsize=(3 * ncols, 5.5 * nrows), squeeze=False)
    cmap = matplotlib.colormaps[COLORMAP]
    norm = Normalize(vmin=-limit, vmax=limit)
    extent = lattice_extent(bounds, resolution)
    outlines = counties.boundary

    shares = predictions.groupby('party')['national_share'].first()

    for ax, party in zip(axes.flat, parties):
        raster = build_raster(predictions[predictions['party'] == party], resolution)
        ax.imshow(
            raster, origin='lower', extent=extent,
            cmap=cmap, norm=norm, interpolation='nearest'
        )
        outlines.plot(ax=ax, color='black', linewidth=0.2)
        ax.set_title(f"{PARTY_NAMES.get(party, party)} ({shares[party]:.1%})", fontsize=9)
        ax.set_aspect('equal')
        ax.set_axis_off()

    for ax in axes.flat[len(parties):]:
        ax.set_axis_off()

    if parties:
        ticks, labels = ratio_tick_labels(limit)
        cbar = fig.colorbar(
            ScalarMappable(norm=norm, cmap=cmap),
            ax=axes.ravel().tolist(),
            orientation='horizontal',
            fraction=0.03,
            pad=0.02,
            ticks=ticks
        )
        cbar.ax.set_xticklabels(labels)
        cbar.set_label("Local share relative to national share")
    else:
        axes.flat[0].text(0.5, 0.5, "No party surfaces available", ha='center', va='center')

    failed = sorted(failed or [])
    if failed:
        fig.text(0.01, 0.005, f"No surface: {', '.join(failed)}", fontsize=8)
        logger.warning(f"Omitted panels: {failed}")

    fig.suptitle(FIGURE_TITLE)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=200, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Saved {len(parties)} panels to {output_path}")

    return output_path


def main():
    parser = argparse.ArgumentParser(
        description="Render the faceted party popularity map"
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DATA_DIR,
        help="Cache root holding raw/, processed/ and exports/ (default: %(default)s)"
    )
    parser.add_argument(
        "--clamp",
        type=float,
        default=DEFAULT_CLAMP_LOG2_RANGE,
        help="Colour scale half-width in log2 units (default: %(default)s)"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help=f"Output image (default: <cache-dir>/exports/{MAP_FILE})"
    )

    args = parser.parse_args()
    setup_logging("render_map")

    predictions_path = get_processed_path(PREDICTIONS_FILE, args.cache_dir)
    if not predictions_path.exists():
        logger.error(f"Predictions not found: {predictions_path}. Please run fit_surfaces first.")
        sys.exit(1)

    predictions = pd.read_csv(predictions_path)

    failed = []
    points_path = get_processed_path(DISTRICT_POINTS_FILE, args.cache_dir)
    if points_path.exists():
        fitted = set(predictions['party'])
        failed = sorted(set(pd.read_csv(points_path, usecols=['party'])['party']) - fitted)

    try:
        resolution, bounds = load_grid_meta(get_processed_path(GRID_META_FILE, args.cache_dir))
        crs = district_crs(get_source_path("districts", args.cache_dir))
        counties = load_county_shapes(get_source_path("counties", args.cache_dir), crs)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        sys.exit(1)

    ensure_directories(args.cache_dir)
    output_path = args.output or exports_dir(args.cache_dir) / MAP_FILE

    render_party_map(
        predictions,
        counties,
        bounds,
        resolution,
        output_path,
        limit=args.clamp,
        failed=failed,
    )


if __name__ == "__main__":
    main()
