import logging
from pathlib import Path
from typing import List, Optional, Tuple

import geopandas as gpd
import pandas as pd

from ..config import DISTRICT_ID_PATTERN, DISTRICT_ID_WIDTH, VOTES_ENCODING, VOTES_SEPARATOR

logger = logging.getLogger(__name__)


def load_vote_table(
    file_path: Path,
    separator: str = VOTES_SEPARATOR,
    encoding: str = VOTES_ENCODING,
    text_columns: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Load the per-district vote table.

    Args:
        file_path: Path to delimited file
        separator: Field separator
        encoding: File encoding
        text_columns: Columns read as strings so leading zeros survive

    Returns:
        DataFrame with one row per district
    """
    logger.info(f"Loading vote table from {file_path}")

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    dtype = {col: str for col in text_columns} if text_columns else None
    df = pd.read_csv(file_path, sep=separator, encoding=encoding, dtype=dtype, low_memory=False)

    logger.info(f"Loaded {len(df):,} rows, {len(df.columns)} columns")

    return df


def load_shapefile(shapefile_path: Path) -> gpd.GeoDataFrame:
    """
    Load a polygon shapefile.

    Args:
        shapefile_path: Path to .shp file

    Returns:
        GeoDataFrame with geometries
    """
    logger.info(f"Loading shapefile from {shapefile_path}")

    if not shapefile_path.exists():
        raise FileNotFoundError(f"Shapefile not found: {shapefile_path}")

    gdf = gpd.read_file(shapefile_path, engine="pyogrio")

    logger.info(f"Loaded {len(gdf):,} features")
    logger.info(f"CRS: {gdf.crs}")

    return gdf


def validate_district_ids(
    df: pd.DataFrame,
    id_column: str = 'district_id'
) -> Tuple[pd.DataFrame, int]:
    """
    Standardize district identifiers and drop malformed ones.

    Args:
        df: DataFrame with district identifiers
        id_column: Name of identifier column

    Returns:
        (DataFrame with valid identifiers only, number of rows dropped)
    """
    df = df.copy()
    ids = df[id_column].astype("string").str.strip()
    df[id_column] = ids.str.zfill(DISTRICT_ID_WIDTH)

    valid = df[id_column].str.match(DISTRICT_ID_PATTERN, na=False).astype(bool)
    invalid_count = int((~valid).sum())

    if invalid_count > 0:
        sample = df.loc[~valid, id_column].head(10).tolist()
        logger.warning(f"Removing {invalid_count} rows with invalid district identifiers, e.g. {sample}")
        df = df[valid]

    return df, invalid_count
