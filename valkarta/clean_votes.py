"""
clean_votes.py
Clean and reshape the per-district vote table.

This script:
1. Loads the raw vote table (one row per voting district, one column per party)
2. Builds the 8-digit district identifier (län + kommun + valdistrikt)
3. Keeps raw vote count columns, drops percentage columns
4. Reshapes to one row per district and party
5. Drops invalid ballots and the "other parties" bucket
6. Computes district and national vote shares
7. Exports the tidy table

Usage:
    python -m valkarta.clean_votes [--cache-dir DIR] [--exclude CODE ...]
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import (
    DATA_DIR, DEFAULT_EXCLUDED_PARTY_CODES, DISTRICT_CODE_COLUMNS,
    PARTY_CODES, PERCENT_COLUMN_MARKER, VOTES_LONG_FILE,
    ensure_directories, get_processed_path, get_source_path, setup_logging
)
from .exceptions import SchemaError
from .utils.data_loader import load_vote_table

logger = logging.getLogger(__name__)

# Anything after the first whitespace in a party column name is a qualifier
QUALIFIER_PATTERN = r"\s.*$"


def party_code_from_column(column: str) -> str:
    """'SD röster' -> 'SD'."""
    return str(column).strip().split()[0] if str(column).strip() else ""


# ============================================================================
# LOADING
# ============================================================================

def load_raw_votes(file_path: Path) -> pd.DataFrame:
    """
    Load the raw vote table with district code parts kept as text.

    Args:
        file_path: Path to the delimited vote table

    Returns:
        DataFrame with raw rows
    """
    logger.info("=" * 70)
    logger.info("LOADING RAW VOTE TABLE")
    logger.info("=" * 70)

    df = load_vote_table(file_path, text_columns=list(DISTRICT_CODE_COLUMNS))
    logger.info(f"Columns: {list(df.columns)}")

    return df


# ============================================================================
# DISTRICT IDENTIFIERS
# ============================================================================

def build_district_id(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """
    Zero-pad the code parts and concatenate them into ``district_id``.

    Rows whose code parts are not digits, or are wider than their field,
    are dropped and counted.

    Args:
        df: Raw vote table

    Returns:
        (DataFrame with district_id column, number of rows dropped)

    Raises:
        SchemaError: If a code column is missing or identifiers repeat
    """
    missing = [col for col in DISTRICT_CODE_COLUMNS if col not in df.columns]
    if missing:
        raise SchemaError(f"Vote table is missing district code columns: {missing}")

    df = df.copy()
    valid = pd.Series(True, index=df.index)
    parts = []

    for col, width in DISTRICT_CODE_COLUMNS.items():
        part = df[col].astype("string").str.strip()
        ok = part.str.fullmatch(r"\d+") & (part.str.len() <= width)
        valid &= ok.fillna(False).astype(bool)
        parts.append(part.str.zfill(width))

    district_id = parts[0]
    for part in parts[1:]:
        district_id = district_id + part

    invalid_count = int((~valid).sum())
    if invalid_count > 0:
        sample = df.loc[~valid, list(DISTRICT_CODE_COLUMNS)].head(5).to_dict('records')
        logger.warning(f"Removing {invalid_count} rows with malformed district codes, e.g. {sample}")

    df = df[valid].copy()
    df['district_id'] = district_id[valid].astype(str)

    duplicated = df['district_id'].duplicated(keep=False)
    if duplicated.any():
        dupes = sorted(df.loc[duplicated, 'district_id'].unique())[:10]
        raise SchemaError(f"District identifiers are not unique, e.g. {dupes}")

    logger.info(f"Built {len(df):,} district identifiers")

    return df, invalid_count


# ============================================================================
# RESHAPING
# ============================================================================

def select_count_columns(
    df: pd.DataFrame,
    party_codes: Iterable[str] = PARTY_CODES,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_PARTY_CODES
) -> List[str]:
    """
    Pick the raw vote count columns.

    A count column starts with a known party code (parliamentary or
    excluded) and is not a percentage column.

    Raises:
        SchemaError: If a parliamentary party has no count column, or a
            party has more than one
    """
    party_codes = list(party_codes)
    known = set(party_codes) | set(excluded)
    skip = set(DISTRICT_CODE_COLUMNS) | {'district_id'}

    count_columns = []
    for col in df.columns:
        if col in skip or PERCENT_COLUMN_MARKER in str(col).lower():
            continue
        if party_code_from_column(col) in known:
            count_columns.append(col)

    codes = [party_code_from_column(col) for col in count_columns]

    missing = [code for code in party_codes if code not in codes]
    if missing:
        raise SchemaError(f"Vote table has no count column for parties: {missing}")

    repeated = sorted({code for code in codes if codes.count(code) > 1})
    if repeated:
        raise SchemaError(f"More than one count column for parties: {repeated}")

    logger.info(f"Count columns: {count_columns}")

    return count_columns


def reshape_long(df: pd.DataFrame, count_columns: List[str]) -> pd.DataFrame:
    """
    Wide to long: one row per (district, party).

    Raises:
        SchemaError: If a count is missing, non-numeric, fractional or negative
    """
    long_df = df.melt(
        id_vars=['district_id'],
        value_vars=count_columns,
        var_name='column',
        value_name='raw_votes'
    )
    long_df['party'] = (
        long_df['column'].astype(str).str.strip().str.replace(QUALIFIER_PATTERN, "", regex=True)
    )

    votes = pd.to_numeric(long_df['raw_votes'], errors='coerce')

    bad = votes.isna()
    if bad.any():
        sample = long_df.loc[bad, ['district_id', 'column', 'raw_votes']].head(5).to_dict('records')
        raise SchemaError(f"{int(bad.sum())} missing or non-numeric vote counts, e.g. {sample}")

    if (votes < 0).any():
        raise SchemaError(f"{int((votes < 0).sum())} negative vote counts")

    if not np.allclose(votes, votes.round()):
        raise SchemaError("Vote counts must be whole numbers")

    long_df['votes'] = votes.round().astype('int64')

    logger.info(f"Reshaped to {len(long_df):,} district-party rows")

    return long_df[['district_id', 'party', 'votes']]


def exclude_parties(long_df: pd.DataFrame, excluded: Iterable[str]) -> pd.DataFrame:
    """Drop rows for excluded party codes."""
    excluded = set(excluded)
    mask = long_df['party'].isin(excluded)
    logger.info(f"Excluding {int(mask.sum()):,} rows for codes {sorted(excluded)}")
    return long_df[~mask].reset_index(drop=True)


# ============================================================================
# SHARES
# ============================================================================

def compute_shares(long_df: pd.DataFrame) -> pd.DataFrame:
    """
    Add district_total, district_share, national_share and zero_votes.

    A district with no retained votes keeps NaN shares and is flagged with
    ``zero_votes``; it is never given a share of 0 or 1.

    Raises:
        SchemaError: If no votes remain at all
    """
    df = long_df.copy()

    df['district_total'] = df.groupby('district_id')['votes'].transform('sum')
    df['zero_votes'] = df['district_total'] == 0
    df['district_share'] = (
        df['votes'] / df['district_total'].where(~df['zero_votes'])
    ).astype(float)

    party_totals = df.groupby('party')['votes'].sum()
    grand_total = party_totals.sum()
    if grand_total == 0:
        raise SchemaError("No retained votes in the vote table")

    df['national_share'] = df['party'].map(party_totals / grand_total).astype(float)

    zero_districts = df.loc[df['zero_votes'], 'district_id'].nunique()
    if zero_districts > 0:
        logger.warning(f"{zero_districts} districts have no retained votes; their shares are NaN")

    return df


def normalize_votes(
    raw: pd.DataFrame,
    excluded: Iterable[str] = DEFAULT_EXCLUDED_PARTY_CODES,
    party_codes: Iterable[str] = PARTY_CODES
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Raw wide table to tidy long table with shares.

    Returns:
        (tidy DataFrame, stats dictionary)
    """
    logger.info("Normalizing vote table...")

    excluded = set(excluded)
    with_ids, invalid_count = build_district_id(raw)
    count_columns = select_count_columns(with_ids, party_codes, excluded)
    long_df = reshape_long(with_ids, count_columns)
    long_df = exclude_parties(long_df, excluded)
    tidy = compute_shares(long_df)

    stats = {
        'rows_in': len(raw),
        'invalid_codes_dropped': invalid_count,
        'districts': tidy['district_id'].nunique(),
        'zero_vote_districts': int(tidy.loc[tidy['zero_votes'], 'district_id'].nunique()),
        'parties': sorted(tidy['party'].unique()),
    }

    return tidy, stats


def validate_shares(tidy: pd.DataFrame) -> Dict[str, Any]:
    """
    Check share invariants on a tidy table.

    Returns:
        Dictionary with validation results
    """
    logger.info("\nValidating shares...")

    counted = tidy[~tidy['zero_votes']]
    share_sums = counted.groupby('district_id')['district_share'].sum()
    national = tidy.groupby('party')['national_share'].agg(['min', 'max'])

    validation = {
        'districts': tidy['district_id'].nunique(),
        'max_share_sum_deviation': float((share_sums - 1).abs().max()) if len(share_sums) else 0.0,
        'national_share_sum': float(national['min'].sum()),
        'national_share_constant': bool(np.allclose(national['min'], national['max'])),
        'zero_vote_districts': sorted(tidy.loc[tidy['zero_votes'], 'district_id'].unique()),
    }

    logger.info(f"  Districts: {validation['districts']:,}")
    logger.info(f"  Max |share sum - 1|: {validation['max_share_sum_deviation']:.2e}")
    logger.info(f"  National share sum: {validation['national_share_sum']:.6f}")
    logger.info(f"  Zero-vote districts: {len(validation['zero_vote_districts'])}")

    return validation


def log_national_shares(tidy: pd.DataFrame) -> None:
    national = tidy.groupby('party')['national_share'].first().sort_values(ascending=False)
    logger.info("National shares:")
    for party, share in national.items():
        logger.info(f"  {party:>3}: {share:6.2%}")


def save_votes(tidy: pd.DataFrame, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    tidy.to_csv(output_path, index=False)
    logger.info(f"Saved: {output_path}")
    return output_path


def load_votes(file_path: Path) -> pd.DataFrame:
    """Read a tidy table written by save_votes."""
    if not file_path.exists():
        raise FileNotFoundError(
            f"Tidy vote table not found: {file_path}\n"
            "Please run clean_votes first."
        )
    return pd.read_csv(file_path, dtype={'district_id': str})


def main():
    parser = argparse.ArgumentParser(
        description="Clean and reshape the per-district vote table"
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DATA_DIR,
        help="Cache root holding raw/ and processed/ (default: %(default)s)"
    )
    parser.add_argument(
        "--exclude",
        nargs="+",
        default=None,
        help="Party codes to drop (default: invalid ballots and other parties)"
    )

    args = parser.parse_args()
    setup_logging("clean_votes")

    excluded: Optional[Iterable[str]] = args.exclude or DEFAULT_EXCLUDED_PARTY_CODES

    try:
        raw = load_raw_votes(get_source_path("votes", args.cache_dir))
        tidy, stats = normalize_votes(raw, excluded)
    except (FileNotFoundError, SchemaError) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Stats: {stats}")
    validate_shares(tidy)
    log_national_shares(tidy)

    ensure_directories(args.cache_dir)
    save_votes(tidy, get_processed_path(VOTES_LONG_FILE, args.cache_dir))


if __name__ == "__main__":
    main()
