"""Lag-to-threshold interpolation curve."""

from __future__ import annotations


def threshold(
    lag: float,
    min_lag: float,
    max_lag: float,
    lo_threshold: float,
    hi_threshold: float,
) -> float:
    """Return the allowed bad-actor ratio for the current lag.

    ``lo_threshold`` applies at or below ``min_lag`` and ``hi_threshold``
    at or above ``max_lag``, with linear interpolation in between. With the
    usual ``lo_threshold > hi_threshold`` the allowed ratio shrinks as lag
    grows.

    A zero-width domain (``min_lag == max_lag``) is a step at ``max_lag``.

    Example:
        >>> threshold(300, 70, 300, 0.50, 0.01)
        0.01
    """
    if max_lag == min_lag:
        return hi_threshold if lag >= max_lag else lo_threshold
    # Endpoints are returned as-is so they compare exactly.
    if lag <= min_lag:
        return lo_threshold
    if lag >= max_lag:
        return hi_threshold

    t = (lag - min_lag) / (max_lag - min_lag)
    return lo_threshold + t * (hi_threshold - lo_threshold)
