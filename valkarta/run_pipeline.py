"""
run_pipeline.py
Run every stage in one process: download, clean, join, fit, render.

Intermediate tables are kept in memory; only the download cache and the
final image are written.

Usage:
    python -m valkarta.run_pipeline [--cache-dir DIR] [--output FILE]
                                    [--grid-resolution NX NY] [--complexity N]
                                    [--clamp L] [--exclude CODE ...]
                                    [--method NAME] [--force-download]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .clean_votes import load_raw_votes, log_national_shares, normalize_votes, validate_shares
from .config import (
    DATA_DIR, DEFAULT_CLAMP_LOG2_RANGE, DEFAULT_EXCLUDED_PARTY_CODES,
    DEFAULT_GRID_RESOLUTION, DEFAULT_SMOOTHING_COMPLEXITY, DEFAULT_SMOOTHING_METHOD,
    MAP_FILE, AnalysisSettings, exports_dir, setup_logging
)
from .download_data import acquire_all
from .exceptions import ValkartaError
from .fit_surfaces import fit_and_predict
from .process_geography import (
    build_grid, compute_centroids, join_votes_to_points,
    load_county_shapes, load_district_shapes
)
from .render_map import render_party_map
from .utils.smoothing import SMOOTHERS

logger = logging.getLogger(__name__)


def run_pipeline(
    settings: AnalysisSettings = AnalysisSettings(),
    cache_dir: Path = DATA_DIR,
    output_path: Optional[Path] = None,
    force_download: bool = False
) -> Dict[str, Any]:
    """
    Produce the party popularity map.

    Args:
        settings: Grid, smoothing, clamp and exclusion options
        cache_dir: Cache root for downloads and the exported image
        output_path: Image path (default: <cache_dir>/exports/party_popularity.png)
        force_download: Fetch sources even if cached

    Returns:
        Summary with vote stats, join report, failed parties and output path
    """
    logger.info(f"Settings: {settings}")

    paths = acquire_all(cache_dir, force=force_download)

    tidy, vote_stats = normalize_votes(load_raw_votes(paths["votes"]), settings.excluded_party_codes)
    validate_shares(tidy)
    log_national_shares(tidy)

    districts = load_district_shapes(paths["districts"])
    counties = load_county_shapes(paths["counties"], districts.crs)

    joined, join_report = join_votes_to_points(tidy, compute_centroids(districts))
    grid = build_grid(counties, settings.grid_resolution)

    predictions, failures = fit_and_predict(joined, grid, settings)

    output_path = output_path or exports_dir(cache_dir) / MAP_FILE
    render_party_map(
        predictions,
        counties,
        counties.total_bounds,
        settings.grid_resolution,
        output_path,
        limit=settings.clamp_log2_range,
        failed=failures,
    )

    return {
        'vote_stats': vote_stats,
        'join_report': join_report,
        'grid_points': len(grid),
        'failed_parties': failures,
        'output_path': output_path,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Map regional party popularity from Swedish election results"
    )
    parser.add_argument("--cache-dir", type=Path, default=DATA_DIR,
                        help="Cache root for downloads and outputs (default: %(default)s)")
    parser.add_argument("--output", type=Path, default=None,
                        help=f"Output image (default: <cache-dir>/exports/{MAP_FILE})")
    parser.add_argument("--grid-resolution", type=int, nargs=2, metavar=("NX", "NY"),
                        default=list(DEFAULT_GRID_RESOLUTION),
                        help="Lattice points along X and Y (default: %(default)s)")
    parser.add_argument("--complexity", type=int, default=DEFAULT_SMOOTHING_COMPLEXITY,
                        help="Number of basis functions per surface (default: %(default)s)")
    parser.add_argument("--clamp", type=float, default=DEFAULT_CLAMP_LOG2_RANGE,
                        help="Display range in log2 units (default: %(default)s)")
    parser.add_argument("--exclude", nargs="+", default=sorted(DEFAULT_EXCLUDED_PARTY_CODES),
                        help="Party codes to drop (default: %(default)s)")
    parser.add_argument("--method", choices=sorted(SMOOTHERS), default=DEFAULT_SMOOTHING_METHOD,
                        help="Smoothing method (default: %(default)s)")
    parser.add_argument("--force-download", action="store_true",
                        help="Re-download sources even if cached")

    args = parser.parse_args()
    setup_logging("run_pipeline")

    settings = AnalysisSettings(
        grid_resolution=tuple(args.grid_resolution),
        smoothing_complexity=args.complexity,
        clamp_log2_range=args.clamp,
        excluded_party_codes=frozenset(args.exclude),
        smoothing_method=args.method,
    )

    try:
        summary = run_pipeline(settings, args.cache_dir, args.output, args.force_download)
    except (ValkartaError, FileNotFoundError) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("=" * 70)
    logger.info("DONE")
    logger.info("=" * 70)
    logger.info(f"Join report: {summary['join_report']}")
    if summary['failed_parties']:
        logger.warning(f"Parties without a panel: {sorted(summary['failed_parties'])}")
    logger.info(f"Map: {summary['output_path']}")


if __name__ == "__main__":
    main()
