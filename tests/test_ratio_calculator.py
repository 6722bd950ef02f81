"""Tests for the log2 display ratio arithmetic."""

from __future__ import annotations

import numpy as np
import pytest

from valkarta.utils.ratio_calculator import (
    clamp_log2,
    display_ratio,
    log2_ratio,
    ratio_tick_labels,
)


def test_log2_ratio_basic_values() -> None:
    values = log2_ratio([0.1, 0.2, 0.4, 0.8], 0.2)

    assert np.allclose(values, [-1.0, 0.0, 1.0, 2.0])


def test_display_ratio_saturates_at_half_and_double() -> None:
    values = display_ratio([0.01, 0.05, 0.1, 0.2, 0.4, 0.9], 0.1)

    assert values.min() == -1.0
    assert values.max() == 1.0
    assert pytest.approx(values[2]) == 0.0
    assert ((values >= -1) & (values <= 1)).all()


def test_non_positive_predictions_saturate_low_and_nan_stays_nan() -> None:
    values = display_ratio([-0.05, 0.0, np.nan], 0.2)

    assert values[0] == -1.0
    assert values[1] == -1.0
    assert np.isnan(values[2])


def test_clamp_is_idempotent() -> None:
    rng = np.random.default_rng(3)
    raw = rng.normal(0, 3, 500)

    once = clamp_log2(raw, 1.0)
    twice = clamp_log2(once, 1.0)

    assert np.array_equal(once, twice)


def test_display_ratio_is_monotonic_in_predicted_share() -> None:
    predicted = np.linspace(-0.1, 0.9, 1001)

    values = display_ratio(predicted, 0.17)

    assert (np.diff(values) >= 0).all()


def test_custom_limit_and_invalid_national_share() -> None:
    values = display_ratio([0.01, 1.0], 0.1, limit=2.0)
    assert list(values) == [-2.0, 2.0]

    with pytest.raises(ValueError):
        display_ratio([0.1], 0.0)


def test_ratio_tick_labels() -> None:
    ticks, labels = ratio_tick_labels(1.0)

    assert list(ticks) == [-1.0, 0.0, 1.0]
    assert labels == ["0.5×", "1×", "2×"]

    ticks, labels = ratio_tick_labels(0.5)
    assert len(ticks) == 3
    assert labels[1] == "1×"
