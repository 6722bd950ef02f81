"""Shared fixtures: synthetic vote tables and district polygons."""

from __future__ import annotations

from typing import Dict, List

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from valkarta.config import PARTY_CODES

OTHER_CODES = ["ÖVR", "OGILTIGA"]


def make_raw_votes(rows: List[Dict], codes: List[str] | None = None) -> pd.DataFrame:
    """
    Build a raw wide vote table.

    Each row dict holds LAN/KOM/VALDIST as text and a ``votes`` mapping of
    party code -> count. Every code gets a count and a percentage column.
    """
    codes = codes or PARTY_CODES + OTHER_CODES
    records = []
    for row in rows:
        record = {
            "LAN": row["LAN"],
            "KOM": row["KOM"],
            "VALDIST": row["VALDIST"],
            "VALDISTRIKTSNAMN": row.get("name", "Distrikt"),
        }
        total = sum(row["votes"].values()) or 1
        for code in codes:
            count = row["votes"].get(code, 0)
            record[f"{code} röster"] = count
            record[f"{code} proc"] = round(100 * count / total, 2)
        records.append(record)
    return pd.DataFrame(records)


@pytest.fixture
def raw_votes() -> pd.DataFrame:
    first = dict(zip(PARTY_CODES, [100, 80, 60, 40, 30, 20, 10, 10]))
    first.update({"ÖVR": 5, "OGILTIGA": 3})

    second = {code: 50 for code in PARTY_CODES}
    second.update({"ÖVR": 10})

    # no votes for any parliamentary party
    third = {"ÖVR": 7}

    return make_raw_votes([
        {"LAN": "01", "KOM": "14", "VALDIST": "0001", "votes": first},
        {"LAN": "1", "KOM": "80", "VALDIST": "12", "votes": second},
        {"LAN": "25", "KOM": "84", "VALDIST": "0003", "votes": third},
    ])


@pytest.fixture
def district_polygons() -> gpd.GeoDataFrame:
    """Three projected square districts, identifiers stored as integers."""
    return gpd.GeoDataFrame(
        {
            "Lkfv": [1140001, 1800012, 25840003],
            "geometry": [box(0, 0, 2, 2), box(10, 0, 14, 4), box(0, 10, 2, 12)],
        },
        geometry="geometry",
        crs="EPSG:3006",
    )
