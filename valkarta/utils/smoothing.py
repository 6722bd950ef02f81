"""
Two-dimensional smoothers for turning per-district shares into surfaces.

Every smoother exposes ``fit(coordinates, targets) -> FittedSurface`` and
every fitted surface exposes ``predict(coordinates)``. The rest of the
pipeline only talks to those two calls, so any multivariate smoother can
be registered in SMOOTHERS.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, Type

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from patsy import PatsyError
from scipy.interpolate import RBFInterpolator

from ..config import DEFAULT_SMOOTHING_COMPLEXITY
from ..exceptions import SmoothingError

logger = logging.getLogger(__name__)


def _as_coordinates(coordinates) -> np.ndarray:
    coords = np.asarray(coordinates, dtype=float)
    if coords.ndim != 2 or coords.shape[1] != 2:
        raise SmoothingError(f"Expected an (n, 2) coordinate array, got shape {coords.shape}")
    if not np.isfinite(coords).all():
        raise SmoothingError("Coordinates must be finite")
    return coords


def _check_training(coordinates, targets) -> Tuple[np.ndarray, np.ndarray]:
    coords = _as_coordinates(coordinates)
    values = np.asarray(targets, dtype=float)
    if values.ndim != 1 or len(values) != len(coords):
        raise SmoothingError(
            f"Got {len(coords)} coordinates but targets of shape {values.shape}"
        )
    if not np.isfinite(values).all():
        raise SmoothingError("Targets must be finite")
    return coords, values


class FittedSurface(ABC):
    """A fitted surface; maps projected coordinates to predicted shares."""

    @abstractmethod
    def predict(self, coordinates) -> np.ndarray:
        ...


class SurfaceSmoother(ABC):
    """Fits a share ~ f(x, y) surface from scattered observations."""

    name = "abstract"

    @abstractmethod
    def fit(self, coordinates, targets) -> FittedSurface:
        ...


# ============================================================================
# TENSOR PRODUCT SPLINE
# ============================================================================

class TensorSplineSurface(FittedSurface):

    def __init__(self, result, lower: np.ndarray, upper: np.ndarray):
        self.result = result
        self.lower = lower
        self.upper = upper

    def predict(self, coordinates) -> np.ndarray:
        # The spline basis is only supported on the training box
        coords = np.clip(_as_coordinates(coordinates), self.lower, self.upper)
        frame = pd.DataFrame({'x': coords[:, 0], 'y': coords[:, 1]})
        try:
            predicted = self.result.predict(frame)
        except (PatsyError, ValueError) as e:
            raise SmoothingError(f"Tensor spline prediction failed: {e}") from e
        return np.asarray(predicted, dtype=float)


class TensorSplineSmoother(SurfaceSmoother):
    """
    Tensor product of two cubic regression splines, fitted by least squares.

    ``complexity`` is the total number of basis functions: sqrt(complexity)
    cubic regression spline functions per axis, their product centred to
    sum to zero, plus the intercept. The default of 25 is a 5 x 5 basis.
    Non-square values are rounded to the nearest square.
    """

    name = "tensor_spline"

    def __init__(self, complexity: int = DEFAULT_SMOOTHING_COMPLEXITY):
        per_axis = int(round(math.sqrt(complexity)))
        if per_axis < 3:
            raise ValueError(f"complexity must be at least 9 for a tensor spline, got {complexity}")
        if per_axis ** 2 != complexity:
            logger.warning(f"Complexity {complexity} is not a square; using {per_axis ** 2} basis functions")
        self.per_axis = per_axis
        self.formula = (
            f"share ~ te(cr(x, df={per_axis}), cr(y, df={per_axis}), constraints='center')"
        )

    @property
    def n_basis(self) -> int:
        return self.per_axis ** 2

    def fit(self, coordinates, targets) -> TensorSplineSurface:
        coords, values = _check_training(coordinates, targets)

        if len(values) < self.n_basis:
            raise SmoothingError(
                f"Need at least {self.n_basis} observations for {self.n_basis} basis functions, "
                f"got {len(values)}"
            )

        frame = pd.DataFrame({'x': coords[:, 0], 'y': coords[:, 1], 'share': values})

        try:
            result = smf.ols(self.formula, data=frame).fit()
        except (PatsyError, ValueError, np.linalg.LinAlgError) as e:
            raise SmoothingError(f"Tensor spline fit failed: {e}") from e

        exog = result.model.exog
        if not np.isfinite(exog).all():
            raise SmoothingError("Degenerate coordinates: spline basis is not finite")
        rank = np.linalg.matrix_rank(exog)
        if rank < exog.shape[1]:
            raise SmoothingError(
                f"Degenerate coordinates: basis rank {rank} < {exog.shape[1]} columns"
            )

        return TensorSplineSurface(result, coords.min(axis=0), coords.max(axis=0))


# ============================================================================
# RADIAL BASIS FUNCTIONS
# ============================================================================

class RadialBasisSurface(FittedSurface):

    def __init__(self, interpolator: RBFInterpolator):
        self.interpolator = interpolator

    def predict(self, coordinates) -> np.ndarray:
        try:
            return np.asarray(self.interpolator(_as_coordinates(coordinates)), dtype=float)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise SmoothingError(f"RBF evaluation failed: {e}") from e


class RadialBasisSmoother(SurfaceSmoother):
    """
    Radial basis function surface (scipy RBFInterpolator).

    ``complexity`` caps the number of nearest districts used for each local
    evaluation; with fewer observations than that the fit is global.
    ``smoothing`` > 0 turns interpolation into smoothing.
    """

    name = "rbf"

    def __init__(
        self,
        complexity: Optional[int] = None,
        kernel: str = "thin_plate_spline",
        smoothing: float = 0.0,
        degree: int = 1
    ):
        self.complexity = complexity
        self.kernel = kernel
        self.smoothing = smoothing
        self.degree = degree

    def fit(self, coordinates, targets) -> RadialBasisSurface:
        coords, values = _check_training(coordinates, targets)

        neighbors = None
        if self.complexity is not None and self.complexity < len(values):
            neighbors = self.complexity

        try:
            interpolator = RBFInterpolator(
                coords, values,
                neighbors=neighbors,
                smoothing=self.smoothing,
                kernel=self.kernel,
                degree=self.degree,
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            raise SmoothingError(f"RBF fit failed: {e}") from e

        return RadialBasisSurface(interpolator)


SMOOTHERS: Dict[str, Type[SurfaceSmoother]] = {
    TensorSplineSmoother.name: TensorSplineSmoother,
    RadialBasisSmoother.name: RadialBasisSmoother,
}


def make_smoother(method: str, complexity: int = DEFAULT_SMOOTHING_COMPLEXITY) -> SurfaceSmoother:
    """Build a registered smoother with the given complexity."""
    if method not in SMOOTHERS:
        raise ValueError(f"Unknown smoothing method: {method}. Known: {sorted(SMOOTHERS)}")
    return SMOOTHERS[method](complexity=complexity)
