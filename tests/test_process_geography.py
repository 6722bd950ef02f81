"""Tests for centroid reduction, the vote join and the sample grid."""

from __future__ import annotations

from pathlib import Path

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest
from shapely.geometry import Point, Polygon, box

from valkarta.clean_votes import normalize_votes
from valkarta.exceptions import GridError, SchemaError
from valkarta.process_geography import (
    build_grid,
    compute_centroids,
    district_crs,
    join_votes_to_points,
    load_county_shapes,
    load_district_shapes,
    load_grid_meta,
    prepare_district_shapes,
    save_grid_meta,
    save_table,
)
from valkarta.utils.geo_utils import build_national_boundary, generate_sample_grid


def test_prepare_district_shapes_pads_ids_and_keeps_projected_crs(district_polygons: gpd.GeoDataFrame) -> None:
    prepared = prepare_district_shapes(district_polygons)

    assert prepared["district_id"].tolist() == ["01140001", "01800012", "25840003"]
    assert prepared.crs.to_epsg() == 3006


def test_prepare_district_shapes_merges_parts_and_drops_bad_ids() -> None:
    gdf = gpd.GeoDataFrame(
        {
            "Lkfv": ["01140001", "01140001", "abc"],
            "geometry": [box(0, 0, 1, 1), box(1, 0, 2, 1), box(5, 5, 6, 6)],
        },
        geometry="geometry",
        crs="EPSG:3006",
    )

    prepared = prepare_district_shapes(gdf)

    assert prepared["district_id"].tolist() == ["01140001"]
    assert pytest.approx(prepared.geometry.iloc[0].area) == 2.0


def test_prepare_district_shapes_reprojects_geographic_input() -> None:
    gdf = gpd.GeoDataFrame(
        {"Lkfv": ["01140001"], "geometry": [box(18.0, 59.0, 18.1, 59.1)]},
        geometry="geometry",
        crs="EPSG:4326",
    )

    prepared = prepare_district_shapes(gdf)

    assert prepared.crs.to_epsg() == 3006
    centroid = prepared.geometry.iloc[0].centroid
    # SWEREF 99 TM eastings around Stockholm are in the 600-700 km range
    assert 600_000 < centroid.x < 700_000


def test_prepare_district_shapes_requires_id_field_and_crs(district_polygons: gpd.GeoDataFrame) -> None:
    with pytest.raises(SchemaError):
        prepare_district_shapes(district_polygons.rename(columns={"Lkfv": "other"}))

    without_crs = gpd.GeoDataFrame(
        {"Lkfv": district_polygons["Lkfv"].tolist()},
        geometry=list(district_polygons.geometry),
    )
    with pytest.raises(SchemaError):
        prepare_district_shapes(without_crs)


def test_compute_centroids_uses_geometric_centre(district_polygons: gpd.GeoDataFrame) -> None:
    points = compute_centroids(prepare_district_shapes(district_polygons))

    first = points.set_index("district_id").loc["01140001"]
    assert (first["x"], first["y"]) == pytest.approx((1.0, 1.0))
    second = points.set_index("district_id").loc["01800012"]
    assert (second["x"], second["y"]) == pytest.approx((12.0, 2.0))


def test_join_drops_and_counts_misses(raw_votes: pd.DataFrame) -> None:
    tidy, _ = normalize_votes(raw_votes)
    points = pd.DataFrame({
        "district_id": ["01140001", "01800012", "99990001"],
        "x": [1.0, 12.0, 50.0],
        "y": [1.0, 2.0, 50.0],
    })

    joined, report = join_votes_to_points(tidy, points)

    assert set(joined["district_id"]) == {"01140001", "01800012"}
    assert "25840003" not in set(joined["district_id"])
    assert report["matched_districts"] == 2
    assert report["dropped_vote_districts"] == 1
    assert report["dropped_vote_rows"] == len(tidy[tidy["district_id"] == "25840003"])
    assert report["dropped_geometries"] == 1
    assert {"x", "y", "district_share", "national_share"} <= set(joined.columns)


def test_join_with_full_overlap_reports_no_drops(raw_votes: pd.DataFrame, district_polygons: gpd.GeoDataFrame) -> None:
    tidy, _ = normalize_votes(raw_votes)
    points = compute_centroids(prepare_district_shapes(district_polygons))

    joined, report = join_votes_to_points(tidy, points)

    assert len(joined) == len(tidy)
    assert report["dropped_vote_rows"] == 0
    assert report["dropped_geometries"] == 0


def test_grid_keeps_points_inside_or_on_boundary() -> None:
    triangle = Polygon([(0, 0), (10, 0), (0, 10)])

    grid = generate_sample_grid(triangle, (11, 11))

    # lattice points with x + y <= 10, boundary included
    assert len(grid) == 66
    assert grid.intersects(triangle).all()
    assert ((grid["x"] + grid["y"]) <= 10 + 1e-9).all()
    assert set(grid.columns) >= {"ix", "iy", "x", "y", "geometry"}


def test_grid_discards_only_outside_points() -> None:
    triangle = Polygon([(0, 0), (10, 0), (0, 10)])
    grid = generate_sample_grid(triangle, (11, 11))

    kept = set(zip(grid["ix"], grid["iy"]))
    for ix in range(11):
        for iy in range(11):
            if (ix, iy) not in kept:
                assert not Point(ix, iy).intersects(triangle)


def test_grid_is_deterministic() -> None:
    shape = Polygon([(0, 0), (7, 1), (9, 8), (2, 9), (1, 4)])

    first = generate_sample_grid(shape, (40, 60))
    second = generate_sample_grid(shape, (40, 60))

    pd.testing.assert_frame_equal(
        pd.DataFrame(first.drop(columns="geometry")),
        pd.DataFrame(second.drop(columns="geometry")),
    )


def test_build_grid_covers_union_of_counties() -> None:
    counties = gpd.GeoDataFrame(
        {"name": ["north", "south"], "geometry": [box(0, 5, 4, 10), box(0, 0, 4, 5)]},
        geometry="geometry",
        crs="EPSG:3006",
    )

    boundary = build_national_boundary(counties)
    grid = build_grid(counties, (5, 11))

    assert boundary.bounds == (0.0, 0.0, 4.0, 10.0)
    assert len(grid) == 55
    assert grid.crs.to_epsg() == 3006
    assert np.isclose(grid["y"].max(), 10.0)


def test_shapefile_stage_round_trip(tmp_path: Path, district_polygons: gpd.GeoDataFrame) -> None:
    districts_path = tmp_path / "districts.shp"
    district_polygons.to_file(districts_path)

    counties = gpd.GeoDataFrame(
        {"name": ["all"], "geometry": [box(0, 0, 20, 20)]},
        geometry="geometry",
        crs="EPSG:3006",
    ).to_crs("EPSG:4326")
    counties_path = tmp_path / "counties.shp"
    counties.to_file(counties_path)

    districts = load_district_shapes(districts_path)
    loaded_counties = load_county_shapes(counties_path, districts.crs)

    assert district_crs(districts_path).to_epsg() == 3006
    assert loaded_counties.crs.equals(districts.crs)
    assert pytest.approx(loaded_counties.total_bounds[2], abs=1e-3) == 20.0

    out = save_table(compute_centroids(districts), tmp_path / "processed" / "points.csv")
    assert out.exists()


def test_grid_without_inside_points_raises() -> None:
    diamond = Polygon([(5, 0), (10, 5), (5, 10), (0, 5)])

    with pytest.raises(GridError, match="2 x 2"):
        generate_sample_grid(diamond, (2, 2))


def test_grid_meta_round_trip(tmp_path: Path) -> None:
    path = save_grid_meta((7, 9), np.array([0.0, 1.0, 60.0, 90.0]), tmp_path / "processed" / "grid_meta.json")

    resolution, bounds = load_grid_meta(path)

    assert resolution == (7, 9)
    assert bounds == (0.0, 1.0, 60.0, 90.0)

    with pytest.raises(FileNotFoundError):
        load_grid_meta(tmp_path / "missing.json")
