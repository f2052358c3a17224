"""
Statistics primitives shared by the flux corrections.

All functions are pure: inputs are converted with :func:`numpy.asarray`
and never modified.
"""

from typing import Optional

import numpy as np


def _as_series(seq) -> np.ndarray:
    data = np.asarray(seq, dtype=float)
    if data.ndim != 1:
        raise ValueError("Input must be one-dimensional")
    if data.size == 0:
        raise ValueError("Input must not be empty")
    return data


def mean(seq) -> float:
    """Arithmetic mean of a non-empty series."""
    return float(np.mean(_as_series(seq)))


def stddev(seq, known_mean: Optional[float] = None) -> float:
    """
    Sample standard deviation (divisor ``n - 1``).

    Parameters
    ----------
    seq : array_like
        One-dimensional, non-empty series.
    known_mean : float, optional
        Pre-computed mean of *seq*; avoids a second pass over the data.

    Returns
    -------
    float
        Standard deviation, or ``nan`` for a single sample.
    """
    data = _as_series(seq)
    if data.size < 2:
        return float("nan")

    centre = mean(data) if known_mean is None else known_mean
    deviations = data - centre
    return float(np.sqrt(np.dot(deviations, deviations) / (data.size - 1)))


def covariance(a, b) -> float:
    """
    Population covariance (divisor ``n``) of two equal-length series.

    Deviations are taken about each series' own mean, i.e.
    :math:`\\overline{a'b'}` in Reynolds notation.
    """
    x = _as_series(a)
    y = _as_series(b)
    if x.size != y.size:
        raise ValueError("Series must have the same length")

    return float(np.dot(x - x.mean(), y - y.mean()) / x.size)
