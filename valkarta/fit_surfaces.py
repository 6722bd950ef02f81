"""
fit_surfaces.py
Fit one smooth share surface per party and evaluate it on the sample grid.

This script:
1. Loads the joined district centroid + vote table
2. Fits share ~ f(x, y) independently for every party
3. Evaluates each surface on the shared sample grid
4. Converts predictions to clamped log2 ratios against the national share
5. Exports the prediction cells

A party whose surface cannot be fitted is logged and left out; the other
parties are unaffected.

Usage:
    python -m valkarta.fit_surfaces [--cache-dir DIR] [--method NAME]
                                    [--complexity N] [--clamp L]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from .config import (
    DATA_DIR, DEFAULT_CLAMP_LOG2_RANGE, DEFAULT_SMOOTHING_COMPLEXITY,
    DEFAULT_SMOOTHING_METHOD, DISTRICT_POINTS_FILE, GRID_POINTS_FILE,
    PREDICTIONS_FILE, AnalysisSettings, get_processed_path, setup_logging
)
from .exceptions import SmoothingError
from .utils.ratio_calculator import display_ratio
from .utils.smoothing import SMOOTHERS, FittedSurface, SurfaceSmoother, make_smoother

logger = logging.getLogger(__name__)

PREDICTION_COLUMNS = [
    'ix', 'iy', 'x', 'y', 'party',
    'predicted_share', 'national_share', 'log2_ratio'
]


def national_shares(joined: pd.DataFrame) -> pd.Series:
    """Party -> national share (constant within a party)."""
    return joined.groupby('party')['national_share'].first()


def fit_party_surfaces(
    joined: pd.DataFrame,
    smoother: SurfaceSmoother
) -> Tuple[Dict[str, FittedSurface], Dict[str, str]]:
    """
    Fit an independent surface for every party in the joined table.

    Districts without retained votes (NaN share) are not used for fitting.

    Args:
        joined: District centroids joined to tidy votes
        smoother: Smoother used for every party

    Returns:
        (party -> fitted surface, party -> failure message)
    """
    logger.info("=" * 70)
    logger.info(f"FITTING SURFACES ({smoother.name})")
    logger.info("=" * 70)

    usable = joined[joined['district_share'].notna()]
    skipped = len(joined) - len(usable)
    if skipped > 0:
        logger.info(f"Skipping {skipped:,} rows from districts without retained votes")

    surfaces: Dict[str, FittedSurface] = {}
    failures: Dict[str, str] = {}

    for party in tqdm(sorted(joined['party'].unique()), desc="Fitting", unit="party"):
        rows = usable[usable['party'] == party]

        if rows.empty:
            failures[party] = "no districts with retained votes"
            logger.error(f"[{party}] fit failed: {failures[party]}")
            continue

        try:
            surfaces[party] = smoother.fit(
                rows[['x', 'y']].to_numpy(),
                rows['district_share'].to_numpy()
            )
            logger.info(f"[{party}] fitted on {len(rows):,} districts")
        except SmoothingError as e:
            failures[party] = str(e)
            logger.error(f"[{party}] fit failed: {e}")

    logger.info(f"Fitted {len(surfaces)} of {len(surfaces) + len(failures)} parties")

    return surfaces, failures


def predict_on_grid(
    surfaces: Dict[str, FittedSurface],
    grid: pd.DataFrame,
    shares: pd.Series,
    clamp: float = DEFAULT_CLAMP_LOG2_RANGE
) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """
    Evaluate every fitted surface on the grid.

    Args:
        surfaces: Party -> fitted surface
        grid: Sample grid with ix, iy, x, y
        shares: Party -> national share
        clamp: Half-width of the log2 display range

    Returns:
        (prediction cells, party -> failure message)
    """
    logger.info(f"\nPredicting on {len(grid):,} grid points...")

    coords = grid[['x', 'y']].to_numpy(dtype=float)
    frames = []
    failures: Dict[str, str] = {}

    for party, surface in surfaces.items():
        national = float(shares.get(party, np.nan))
        if not np.isfinite(national) or national <= 0:
            failures[party] = f"national share is {national}; no ratio can be formed"
            logger.error(f"[{party}] prediction skipped: {failures[party]}")
            continue

        try:
            predicted = surface.predict(coords)
            if predicted.shape != (len(coords),):
                raise SmoothingError(
                    f"Expected {len(coords)} predictions, got shape {predicted.shape}"
                )
        except SmoothingError as e:
            failures[party] = str(e)
            logger.error(f"[{party}] prediction failed: {e}")
            continue

        frame = grid[['ix', 'iy', 'x', 'y']].reset_index(drop=True).copy()
        frame['party'] = party
        frame['predicted_share'] = predicted
        frame['national_share'] = national
        frame['log2_ratio'] = display_ratio(predicted, national, clamp)
        frames.append(frame)

        if len(predicted):
            logger.info(
                f"[{party}] predicted share {np.nanmin(predicted):.3f} .. {np.nanmax(predicted):.3f} "
                f"(national {national:.3f})"
            )

    if frames:
        predictions = pd.concat(frames, ignore_index=True)
    else:
        predictions = pd.DataFrame(columns=PREDICTION_COLUMNS)

    return predictions[PREDICTION_COLUMNS], failures


def fit_and_predict(
    joined: pd.DataFrame,
    grid: pd.DataFrame,
    settings: AnalysisSettings = AnalysisSettings()
) -> Tuple[pd.DataFrame, Dict[str, str]]:
    """Fit every party and predict on the grid. Returns (cells, failures)."""
    smoother = make_smoother(settings.smoothing_method, settings.smoothing_complexity)
    surfaces, fit_failures = fit_party_surfaces(joined, smoother)
    predictions, predict_failures = predict_on_grid(
        surfaces, grid, national_shares(joined), settings.clamp_log2_range
    )
    return predictions, {**fit_failures, **predict_failures}


def load_table(file_path: Path, stage: str) -> pd.DataFrame:
    if not file_path.exists():
        raise FileNotFoundError(
            f"Input not found: {file_path}\n"
            f"Please run {stage} first."
        )
    return pd.read_csv(file_path, dtype={'district_id': str})


def main():
    parser = argparse.ArgumentParser(
        description="Fit per-party share surfaces and predict on the sample grid"
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DATA_DIR,
        help="Cache root holding processed/ (default: %(default)s)"
    )
    parser.add_argument(
        "--method",
        choices=sorted(SMOOTHERS),
        default=DEFAULT_SMOOTHING_METHOD,
        help="Smoothing method (default: %(default)s)"
    )
    parser.add_argument(
        "--complexity",
        type=int,
        default=DEFAULT_SMOOTHING_COMPLEXITY,
        help="Number of basis functions (default: %(default)s)"
    )
    parser.add_argument(
        "--clamp",
        type=float,
        default=DEFAULT_CLAMP_LOG2_RANGE,
        help="Display range in log2 units (default: %(default)s)"
    )

    args = parser.parse_args()
    setup_logging("fit_surfaces")

    settings = AnalysisSettings(
        smoothing_complexity=args.complexity,
        clamp_log2_range=args.clamp,
        smoothing_method=args.method,
    )

    try:
        joined = load_table(get_processed_path(DISTRICT_POINTS_FILE, args.cache_dir), "process_geography")
        grid = load_table(get_processed_path(GRID_POINTS_FILE, args.cache_dir), "process_geography")
    except FileNotFoundError as e:
        logger.error(str(e))
        sys.exit(1)

    predictions, failures = fit_and_predict(joined, grid, settings)

    if failures:
        logger.warning(f"Parties without a surface: {sorted(failures)}")

    output_path = get_processed_path(PREDICTIONS_FILE, args.cache_dir)
    predictions.to_csv(output_path, index=False)
    logger.info(f"Saved: {output_path}")


if __name__ == "__main__":
    main()
