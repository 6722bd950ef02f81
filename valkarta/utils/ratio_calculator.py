"""
Functions for turning predicted shares into display ratios.
"""

import numpy as np

from ..config import DEFAULT_CLAMP_LOG2_RANGE


def log2_ratio(predicted, national) -> np.ndarray:
    """
    log2(predicted / national), unclamped.

    Non-positive predictions give -inf, NaN stays NaN.
    """
    predicted = np.asarray(predicted, dtype=float)
    national = np.asarray(national, dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        ratio = predicted / national
        return np.log2(np.where(np.isnan(ratio) | (ratio > 0), ratio, 0.0))


def clamp_log2(values, limit: float = DEFAULT_CLAMP_LOG2_RANGE) -> np.ndarray:
    """Clamp to [-limit, limit]. NaN passes through."""
    return np.clip(np.asarray(values, dtype=float), -limit, limit)


def display_ratio(predicted, national, limit: float = DEFAULT_CLAMP_LOG2_RANGE) -> np.ndarray:
    """
    Clamped log2 ratio of predicted share against the national share.

    A limit of 1 shows 0.5x to 2x the national average. Predictions at or
    below zero saturate at -limit.

    Args:
        predicted: Predicted shares
        national: National share, scalar or broadcastable
        limit: Half-width of the display range in log2 units

    Returns:
        Array of values in [-limit, limit] (or NaN)
    """
    national = np.asarray(national, dtype=float)
    if np.any(national <= 0):
        raise ValueError("National share must be positive")
    return clamp_log2(log2_ratio(predicted, national), limit)


def ratio_tick_labels(limit: float = DEFAULT_CLAMP_LOG2_RANGE):
    """Colour bar ticks in log2 units with 'N×' labels."""
    ticks = np.arange(-np.floor(limit), np.floor(limit) + 1)
    if ticks.size < 3:
        ticks = np.array([-limit, 0.0, limit])
    labels = [f"{2 ** t:g}×" for t in ticks]
    return ticks, labels
