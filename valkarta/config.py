import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

# DATA PATHS =================================================================

PROJECT_ROOT = Path(__file__).parent.parent
DATA_DIR = PROJECT_ROOT / "data"

RAW_SUBDIR = "raw"
PROCESSED_SUBDIR = "processed"
EXPORTS_SUBDIR = "exports"


def raw_dir(cache_dir: Path) -> Path:
    return Path(cache_dir) / RAW_SUBDIR


def processed_dir(cache_dir: Path) -> Path:
    return Path(cache_dir) / PROCESSED_SUBDIR


def exports_dir(cache_dir: Path) -> Path:
    return Path(cache_dir) / EXPORTS_SUBDIR


def ensure_directories(cache_dir: Path) -> None:
    """Create the raw/processed/exports tree under a cache root."""
    for directory in [raw_dir(cache_dir), processed_dir(cache_dir), exports_dir(cache_dir)]:
        directory.mkdir(parents=True, exist_ok=True)


# DATA SOURCES ==============================================================

VAL_BASE_URL = "https://data.val.se/val/val2018"
SCB_BASE_URL = "https://www.scb.se/contentassets/3443fea3fa6640f7a57ee15d9a1a5d99"

# Each source resolves to one expected file under the raw directory.
# "archive" is the zip to fetch when that file is missing (None: plain file).
DATA_SOURCES: Dict[str, Dict[str, Optional[str]]] = {
    "votes": {
        "url": f"{VAL_BASE_URL}/statistik/2018_R_per_valdistrikt.skv",
        "archive": None,
        "path": "2018_R_per_valdistrikt.skv",
    },
    "districts": {
        "url": f"{VAL_BASE_URL}/valgeografi/valdistrikt.zip",
        "archive": "valdistrikt.zip",
        "path": "valdistrikt/alla_valdistrikt.shp",
    },
    "counties": {
        "url": f"{SCB_BASE_URL}/lan_sweref99tm_region.zip",
        "archive": "lan_sweref99tm_region.zip",
        "path": "lan_sweref99tm_region/Lan_Sweref99TM_region.shp",
    },
}

DOWNLOAD_CHUNK_SIZE = 8192
DOWNLOAD_TIMEOUT = 60  # seconds

# VOTE TABLE ================================================================

VOTES_SEPARATOR = ";"
VOTES_ENCODING = "utf-8"

# Code part -> zero-padded width. Order defines the district identifier.
DISTRICT_CODE_COLUMNS: Dict[str, int] = {
    "LAN": 2,
    "KOM": 2,
    "VALDIST": 4,
}
DISTRICT_ID_WIDTH = sum(DISTRICT_CODE_COLUMNS.values())
DISTRICT_ID_PATTERN = rf"^\d{{{DISTRICT_ID_WIDTH}}}$"

# Percentage columns carry this marker somewhere after the party code
PERCENT_COLUMN_MARKER = "proc"

# Parliamentary parties, 2018
PARTY_CODES: List[str] = ["S", "M", "SD", "C", "V", "KD", "L", "MP"]

PARTY_NAMES = {
    "S": "Socialdemokraterna",
    "M": "Moderaterna",
    "SD": "Sverigedemokraterna",
    "C": "Centerpartiet",
    "V": "Vänsterpartiet",
    "KD": "Kristdemokraterna",
    "L": "Liberalerna",
    "MP": "Miljöpartiet",
}

# Invalid ballots and the "other parties" bucket
DEFAULT_EXCLUDED_PARTY_CODES: FrozenSet[str] = frozenset({"OGILTIGA", "ÖVR"})

# GEOGRAPHY =================================================================

DISTRICT_ID_FIELD = "Lkfv"
PROJECTED_CRS = "EPSG:3006"  # SWEREF 99 TM

# ANALYSIS DEFAULTS ==========================================================

DEFAULT_GRID_RESOLUTION: Tuple[int, int] = (100, 300)  # (nx, ny)
DEFAULT_SMOOTHING_COMPLEXITY = 25
DEFAULT_CLAMP_LOG2_RANGE = 1.0
DEFAULT_SMOOTHING_METHOD = "tensor_spline"


@dataclass(frozen=True)
class AnalysisSettings:
    grid_resolution: Tuple[int, int] = DEFAULT_GRID_RESOLUTION
    smoothing_complexity: int = DEFAULT_SMOOTHING_COMPLEXITY
    clamp_log2_range: float = DEFAULT_CLAMP_LOG2_RANGE
    excluded_party_codes: FrozenSet[str] = field(default_factory=lambda: DEFAULT_EXCLUDED_PARTY_CODES)
    smoothing_method: str = DEFAULT_SMOOTHING_METHOD

    def __post_init__(self):
        nx, ny = self.grid_resolution
        if nx < 2 or ny < 2:
            raise ValueError(f"grid_resolution must be at least (2, 2), got {self.grid_resolution}")
        if self.smoothing_complexity < 1:
            raise ValueError("smoothing_complexity must be positive")
        if self.clamp_log2_range <= 0:
            raise ValueError("clamp_log2_range must be positive")
        object.__setattr__(self, "excluded_party_codes", frozenset(self.excluded_party_codes))


# OUTPUT NAMES ===============================================================

VOTES_LONG_FILE = "votes_long.csv"
DISTRICT_POINTS_FILE = "district_points.csv"
GRID_POINTS_FILE = "grid_points.csv"
GRID_META_FILE = "grid_meta.json"
PREDICTIONS_FILE = "predictions.csv"
MAP_FILE = "party_popularity.png"

# LOGGING CONFIG ===========================================================

LOG_DIR = PROJECT_ROOT / "logs"

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M"


def setup_logging(stage: str, log_dir: Path = LOG_DIR, level: int = logging.INFO) -> None:
    """Log a stage to logs/<stage>.log and the console."""
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=[
            logging.FileHandler(log_dir / f"{stage}.log", encoding='utf-8'),
            logging.StreamHandler()
        ]
    )


# UTILS =====================================================================

def get_source_path(name: str, cache_dir: Path) -> Path:
    """Expected local file for a named data source."""
    if name not in DATA_SOURCES:
        raise KeyError(f"Unknown data source: {name}. Known: {sorted(DATA_SOURCES)}")
    return raw_dir(cache_dir) / DATA_SOURCES[name]["path"]


def get_processed_path(filename: str, cache_dir: Path) -> Path:
    return processed_dir(cache_dir) / filename


def check_data_directory_structure(cache_dir: Path) -> Dict[str, bool]:
    """Verify that all required directories exist."""
    return {
        "raw": raw_dir(cache_dir).exists(),
        "processed": processed_dir(cache_dir).exists(),
        "exports": exports_dir(cache_dir).exists(),
    }


if __name__ == "__main__":
    print("=" * 70)
    print("VALKARTA - CONFIGURATION")
    print("=" * 70)
    print(f"\nProject Root: {PROJECT_ROOT}")
    print(f"Data Directory: {DATA_DIR}")
    print(f"\nParties: {PARTY_CODES}")
    print(f"Excluded codes: {sorted(DEFAULT_EXCLUDED_PARTY_CODES)}")
    print(f"Settings: {AnalysisSettings()}")
    print("\nData sources:")
    for name, source in DATA_SOURCES.items():
        print(f"  {name}: {source['url']}")
    print("\nDirectory Structure:")
    for name, exists in check_data_directory_structure(DATA_DIR).items():
        status = "OK" if exists else "MISSING"
        print(f"  {status} {name}")
    print("\n" + "=" * 70)
