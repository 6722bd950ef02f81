"""Tests for rasterization and figure output."""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import box

from valkarta.render_map import build_raster, lattice_extent, party_order, render_party_map
from valkarta.utils.geo_utils import build_national_boundary, generate_sample_grid


@pytest.fixture
def counties() -> gpd.GeoDataFrame:
    return gpd.GeoDataFrame(
        {"name": ["west", "east"], "geometry": [box(0, 0, 5, 20), box(5, 0, 10, 20)]},
        geometry="geometry",
        crs="EPSG:3006",
    )


def _predictions(grid: pd.DataFrame) -> pd.DataFrame:
    frames = []
    for party, national in [("M", 0.2), ("S", 0.3), ("KD", 0.06)]:
        frame = grid[["ix", "iy", "x", "y"]].copy()
        frame["party"] = party
        frame["predicted_share"] = national * (0.5 + frame["x"] / 10)
        frame["national_share"] = national
        frame["log2_ratio"] = np.clip(np.log2(frame["predicted_share"] / national), -1, 1)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def test_party_order_is_descending_national_share(counties: gpd.GeoDataFrame) -> None:
    grid = generate_sample_grid(build_national_boundary(counties), (5, 9))

    assert party_order(_predictions(grid)) == ["S", "M", "KD"]


def test_build_raster_places_cells_and_leaves_gaps() -> None:
    cells = pd.DataFrame({"ix": [0, 2], "iy": [1, 0], "log2_ratio": [0.5, -1.0]})

    raster = build_raster(cells, (3, 2))

    assert raster.shape == (2, 3)
    assert raster[1, 0] == 0.5
    assert raster[0, 2] == -1.0
    assert np.isnan(raster).sum() == 4


def test_lattice_extent_pads_half_a_cell() -> None:
    assert lattice_extent((0, 0, 10, 20), (11, 21)) == pytest.approx((-0.5, 10.5, -0.5, 20.5))


def test_render_party_map_writes_image(tmp_path: Path, counties: gpd.GeoDataFrame) -> None:
    grid = generate_sample_grid(build_national_boundary(counties), (11, 21))
    output = tmp_path / "exports" / "map.png"

    written = render_party_map(
        _predictions(grid), counties, counties.total_bounds, (11, 21), output, failed=["MP"]
    )

    assert written == output
    assert output.exists() and output.stat().st_size > 0


def test_render_party_map_without_panels_still_writes(tmp_path: Path, counties: gpd.GeoDataFrame) -> None:
    empty = pd.DataFrame(columns=["ix", "iy", "x", "y", "party", "predicted_share", "national_share", "log2_ratio"])
    output = tmp_path / "empty.pdf"

    render_party_map(empty, counties, counties.total_bounds, (11, 21), output, failed=["S", "M"])

    assert output.exists()


def test_build_raster_rejects_cells_outside_lattice() -> None:
    cells = pd.DataFrame({"ix": [0, 5], "iy": [0, 1], "log2_ratio": [0.1, 0.2]})

    with pytest.raises(ValueError, match="3 x 2"):
        build_raster(cells, (3, 2))
