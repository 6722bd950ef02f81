"""Tests for the surface smoothers."""

from __future__ import annotations

import numpy as np
import pytest

from valkarta.exceptions import SmoothingError
from valkarta.utils.smoothing import (
    RadialBasisSmoother,
    TensorSplineSmoother,
    make_smoother,
)


def _smooth_surface(coords: np.ndarray) -> np.ndarray:
    return 0.3 + 0.1 * np.sin(coords[:, 0] / 30.0) + 0.05 * coords[:, 1] / 300.0


def _scattered_points(n: int = 400, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.column_stack([rng.uniform(0, 100, n), rng.uniform(0, 300, n)])


def test_tensor_spline_recovers_smooth_surface() -> None:
    coords = _scattered_points()
    smoother = TensorSplineSmoother(complexity=25)

    surface = smoother.fit(coords, _smooth_surface(coords))

    query = np.array([[20.0, 50.0], [50.0, 150.0], [80.0, 250.0]])
    predicted = surface.predict(query)

    assert predicted.shape == (3,)
    assert np.allclose(predicted, _smooth_surface(query), atol=0.01)


def test_tensor_spline_basis_size_follows_complexity() -> None:
    assert TensorSplineSmoother(25).n_basis == 25
    assert TensorSplineSmoother(16).per_axis == 4
    assert "df=5" in TensorSplineSmoother(25).formula

    with pytest.raises(ValueError):
        TensorSplineSmoother(4)


def test_tensor_spline_predicts_outside_training_box() -> None:
    coords = _scattered_points()
    surface = TensorSplineSmoother().fit(coords, _smooth_surface(coords))

    predicted = surface.predict(np.array([[-50.0, -50.0], [500.0, 900.0]]))

    assert np.isfinite(predicted).all()


def test_tensor_spline_rejects_too_few_observations() -> None:
    coords = _scattered_points(n=10)

    with pytest.raises(SmoothingError, match="at least 25"):
        TensorSplineSmoother().fit(coords, _smooth_surface(coords))


def test_tensor_spline_rejects_degenerate_coordinates() -> None:
    coords = np.column_stack([np.linspace(0, 100, 60), np.zeros(60)])

    with pytest.raises(SmoothingError):
        TensorSplineSmoother().fit(coords, np.linspace(0.1, 0.5, 60))


def test_smoothers_validate_inputs() -> None:
    smoother = RadialBasisSmoother(kernel="linear", degree=0)

    with pytest.raises(SmoothingError):
        smoother.fit(np.zeros((3, 3)), np.zeros(3))
    with pytest.raises(SmoothingError):
        smoother.fit(np.zeros((3, 2)), np.zeros(2))
    with pytest.raises(SmoothingError):
        smoother.fit(np.array([[0.0, 0.0], [1.0, np.inf]]), np.zeros(2))
    with pytest.raises(SmoothingError):
        smoother.fit(np.array([[0.0, 0.0], [1.0, 1.0]]), np.array([0.1, np.nan]))


def test_rbf_interpolates_between_two_districts() -> None:
    surface = RadialBasisSmoother(kernel="linear", degree=0).fit(
        np.array([[0.0, 0.0], [10.0, 0.0]]), np.array([0.8, 0.2])
    )

    predicted = surface.predict(np.array([[5.0, 0.0], [0.0, 0.0]]))

    assert 0.2 < predicted[0] < 0.8
    assert pytest.approx(predicted[1], abs=1e-9) == 0.8


def test_rbf_fails_on_duplicate_coordinates() -> None:
    coords = np.array([[0.0, 0.0], [0.0, 0.0], [1.0, 1.0]])

    with pytest.raises(SmoothingError):
        RadialBasisSmoother(kernel="linear", degree=0).fit(coords, np.array([0.1, 0.2, 0.3]))


def test_make_smoother_registry() -> None:
    assert isinstance(make_smoother("tensor_spline", 25), TensorSplineSmoother)
    rbf = make_smoother("rbf", 25)
    assert isinstance(rbf, RadialBasisSmoother)
    assert rbf.complexity == 25

    with pytest.raises(ValueError):
        make_smoother("loess")
