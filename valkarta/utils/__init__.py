"""
Utility functions for election data processing.
"""

from .data_loader import load_vote_table, load_shapefile, validate_district_ids
from .geo_utils import (
    reproject_gdf, validate_geometries, get_bounds,
    build_national_boundary, generate_sample_grid
)
from .ratio_calculator import log2_ratio, clamp_log2, display_ratio
from .smoothing import (
    SurfaceSmoother, FittedSurface, TensorSplineSmoother,
    RadialBasisSmoother, make_smoother
)

__all__ = [
    'load_vote_table',
    'load_shapefile',
    'validate_district_ids',
    'reproject_gdf',
    'validate_geometries',
    'get_bounds',
    'build_national_boundary',
    'generate_sample_grid',
    'log2_ratio',
    'clamp_log2',
    'display_ratio',
    'SurfaceSmoother',
    'FittedSurface',
    'TensorSplineSmoother',
    'RadialBasisSmoother',
    'make_smoother',
]
