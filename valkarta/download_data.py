"""
download_data.py
Download Swedish 2018 election results and voting-district / county shapefiles.

This script:
1. Downloads the per-district vote table from Valmyndigheten
2. Downloads and extracts the voting-district shapefile
3. Downloads and extracts the county (län) shapefile
4. Verifies that all expected files are present

Files already present in the cache directory are not downloaded again.

Usage:
    python -m valkarta.download_data [--cache-dir DIR] [--force] [--only NAME]
"""

import argparse
import logging
import os
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Dict

import requests
from tqdm import tqdm

from .config import (
    DATA_DIR, DATA_SOURCES, DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT,
    ensure_directories, get_source_path, raw_dir, setup_logging
)
from .exceptions import AcquisitionError

logger = logging.getLogger(__name__)


def download_file(url: str, output_path: Path, force: bool = False) -> bool:
    """
    Download a file with progress bar.

    The body is streamed to a uniquely named ``.part`` file next to the
    target and renamed into place once complete, so a partially written
    file is never taken for a cache hit and concurrent runs never share a
    temporary file.

    Args:
        url: URL to download from
        output_path: Path to save file
        force: If True, re-download even if file exists

    Returns:
        True if a download happened, False if the file was already present

    Raises:
        AcquisitionError: If the request fails
    """
    if output_path.exists() and not force:
        logger.info(f"File already exists: {output_path.name}")
        return False

    partial_path = None

    try:
        logger.info(f"Downloading from {url}")

        response = requests.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()

        total_size = int(response.headers.get('content-length', 0))

        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(
            dir=output_path.parent, prefix=f"{output_path.name}.", suffix=".part"
        )
        partial_path = Path(name)

        with os.fdopen(fd, 'wb') as f, tqdm(
            desc=output_path.name,
            total=total_size,
            unit='B',
            unit_scale=True,
            unit_divisor=1024,
        ) as pbar:
            for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                size = f.write(chunk)
                pbar.update(size)

        partial_path.replace(output_path)
        logger.info(f"Successfully downloaded: {output_path.name}")
        return True

    except requests.exceptions.RequestException as e:
        raise AcquisitionError(f"Failed to download {url}: {e}") from e

    finally:
        if partial_path is not None:
            partial_path.unlink(missing_ok=True)


def extract_zip(zip_path: Path, extract_dir: Path) -> None:
    """
    Extract a ZIP file.

    Args:
        zip_path: Path to ZIP file
        extract_dir: Directory to extract to

    Raises:
        AcquisitionError: If the archive is not a readable ZIP file
    """
    try:
        logger.info(f"Extracting {zip_path.name}")

        with zipfile.ZipFile(zip_path, 'r') as zip_ref:
            zip_ref.extractall(extract_dir)

        logger.info(f"Extracted to {extract_dir}")

    except zipfile.BadZipFile as e:
        raise AcquisitionError(f"Failed to extract {zip_path}: {e}") from e


def ensure_resource(name: str, cache_dir: Path, force: bool = False) -> Path:
    """
    Make sure a named data source exists locally.

    Presence of the expected file is the only cache test; there is no
    staleness check against the remote copy.

    Args:
        name: Key into DATA_SOURCES
        cache_dir: Cache root holding the raw/ directory
        force: If True, fetch again even if the file exists

    Returns:
        Path to the expected local file
    """
    source = DATA_SOURCES[name]
    target = get_source_path(name, cache_dir)

    if target.exists() and not force:
        logger.info(f"[{name}] cached: {target}")
        return target

    if source["archive"] is None:
        download_file(source["url"], target, force=force)
    else:
        # The archive is never a cache entry; only the extracted file is
        zip_path = raw_dir(cache_dir) / source["archive"]
        try:
            download_file(source["url"], zip_path, force=True)
            extract_zip(zip_path, target.parent)
        finally:
            zip_path.unlink(missing_ok=True)

    if not target.exists():
        raise AcquisitionError(f"[{name}] expected file not found after download: {target}")

    logger.info(f"[{name}] ready: {target}")
    return target


def acquire_all(cache_dir: Path, force: bool = False) -> Dict[str, Path]:
    """Fetch every configured data source. Returns name -> local path."""
    logger.info("=" * 70)
    logger.info("DATA ACQUISITION")
    logger.info("=" * 70)

    ensure_directories(cache_dir)
    return {name: ensure_resource(name, cache_dir, force) for name in DATA_SOURCES}


def verify_downloads(cache_dir: Path) -> dict:
    """
    Verify that all required data files are present.

    Returns:
        Dictionary with one flag per source plus 'all_ready'
    """
    logger.info("=" * 70)
    logger.info("VERIFICATION")
    logger.info("=" * 70)

    status = {}
    for name in DATA_SOURCES:
        path = get_source_path(name, cache_dir)
        status[name] = path.exists()
        if status[name]:
            logger.info(f"{name}: {path.name}")
        else:
            logger.warning(f"{name}: NOT FOUND")

    status['all_ready'] = all(status[name] for name in DATA_SOURCES)

    if status['all_ready']:
        logger.info("All required data is ready for processing!")
    else:
        logger.warning("Some data files are missing. Please download them.")

    return status


def main():
    """Main download function."""
    parser = argparse.ArgumentParser(
        description="Download election results and shapefiles"
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=DATA_DIR,
        help="Cache root for downloaded data (default: %(default)s)"
    )
    parser.add_argument(
        "--only",
        choices=sorted(DATA_SOURCES),
        help="Download a single source"
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Force re-download of existing files"
    )

    args = parser.parse_args()
    setup_logging("download_data")

    logger.info("Starting data download process...")
    logger.info(f"Force mode: {args.force}")

    try:
        if args.only:
            ensure_directories(args.cache_dir)
            ensure_resource(args.only, args.cache_dir, args.force)
            sys.exit(0)
        else:
            acquire_all(args.cache_dir, args.force)
    except AcquisitionError as e:
        logger.error(str(e))
        sys.exit(1)

    status = verify_downloads(args.cache_dir)
    sys.exit(0 if status['all_ready'] else 1)


if __name__ == "__main__":
    main()
