"""
Data quality assessment for sensible heat flux measurements.

This module implements data quality checks based on:
1. Steady state (stationarity) test
2. Integral turbulence characteristics (ITC)

and the bit set in which the flux pipeline accumulates their outcome.

References:
    Foken, T., & Wichura, B. (1996) Tools for quality assessment of surface-based flux measurements
    Foken et al. (2004) Handbook of Micrometeorology
"""

import logging
from dataclasses import dataclass
from enum import IntFlag

import numpy as np

from .constants import QualityThreshold
from .statistics import covariance, stddev

logger = logging.getLogger(__name__)


class QualityFlags(IntFlag):
    """
    Quality bits attached to a flux result.

    Bits are only ever added while the pipeline runs; ``VALID`` is the
    baseline every result starts from.

    ==========================  ==============================================
    Member                      Interpretation
    --------------------------  ----------------------------------------------
    VALID                       Baseline, flux computed
    SPIKES_DETECTED             Despiking replaced at least one sample
    NON_STATIONARY_CONDITIONS   Stationarity test failed
    WEAK_TURBULENCE             ITC test failed
    ANGLE_OF_ATTACK_EXCEEDED    Rotation pitch angle above 30°
    RAIN_DETECTED               Reserved
    OUTSIDE_FLUX_FOOTPRINT      Reserved
    ==========================  ==============================================
    """

    NONE = 0
    VALID = 1
    SPIKES_DETECTED = 1 << 1
    NON_STATIONARY_CONDITIONS = 1 << 2
    WEAK_TURBULENCE = 1 << 3
    ANGLE_OF_ATTACK_EXCEEDED = 1 << 4
    RAIN_DETECTED = 1 << 5
    OUTSIDE_FLUX_FOOTPRINT = 1 << 6


@dataclass(frozen=True)
class StationarityResult:
    """
    Outcome of the Foken & Wichura (1996) stationarity test.

    Parameters
    ----------
    is_stationary : bool
        ``True`` when ``relative_difference <= 0.3``.
    covariance : float
        Whole-period covariance :math:`\\overline{w'T'}` (K m s⁻¹), reused
        for the flux itself.
    mean_sub_covariance : float
        Mean of the sub-period covariances.
    relative_difference : float
        ``|covariance - mean_sub_covariance| / |covariance|``; ``inf``
        when the whole-period covariance is zero.
    """

    is_stationary: bool
    covariance: float
    mean_sub_covariance: float
    relative_difference: float


@dataclass(frozen=True)
class TurbulenceResult:
    """
    Outcome of the integral turbulence characteristics test.

    The ratios are the standard deviations of the rotated wind
    components divided by the mean rotated streamwise wind.
    """

    passed: bool
    sigma_u_ratio: float
    sigma_v_ratio: float
    sigma_w_ratio: float


def check_stationarity(
    w,
    t,
    sub_periods: int = QualityThreshold.STATIONARITY["sub_periods"],
    threshold: float = QualityThreshold.STATIONARITY["max_relative_difference"],
) -> StationarityResult:
    """
    Steady-state test of the kinematic heat flux (Foken & Wichura, 1996).

    The record is cut into ``sub_periods`` contiguous segments of
    ``len(w) // sub_periods`` samples; trailing samples that do not fill a
    segment are ignored by the sub-period average but still count in the
    whole-period covariance.

    Parameters
    ----------
    w : array_like
        Rotated vertical wind (m s⁻¹).
    t : array_like
        Sonic temperature (K or °C).
    sub_periods : int, default ``6``
        Number of sub-periods (5-min blocks of a 30-min interval).
    threshold : float, default ``0.3``
        Largest relative difference still considered stationary.

    Returns
    -------
    StationarityResult

    Raises
    ------
    ValueError
        If the series differ in length or are shorter than
        ``sub_periods``.

    Examples
    --------
    >>> w = np.tile([1.0, -1.0], 600)
    >>> result = check_stationarity(w, 0.5 * w)
    >>> result.is_stationary, result.covariance
    (True, 0.5)
    """
    w = np.asarray(w, dtype=float)
    t = np.asarray(t, dtype=float)
    if w.shape != t.shape:
        raise ValueError("w and t must have the same length")
    if sub_periods < 1 or w.size < sub_periods:
        raise ValueError(f"At least {sub_periods} samples are required")

    segment_length = w.size // sub_periods
    total_covariance = covariance(w, t)

    sub_covariances = [
        covariance(
            w[i * segment_length : (i + 1) * segment_length],
            t[i * segment_length : (i + 1) * segment_length],
        )
        for i in range(sub_periods)
    ]
    mean_sub_covariance = float(np.mean(sub_covariances))

    if total_covariance == 0.0:
        relative_difference = float("inf")
    else:
        relative_difference = abs(total_covariance - mean_sub_covariance) / abs(
            total_covariance
        )

    logger.debug(
        "Stationarity: cov=%.5g, mean sub-period cov=%.5g, relative difference=%.3f",
        total_covariance,
        mean_sub_covariance,
        relative_difference,
    )

    return StationarityResult(
        is_stationary=bool(relative_difference <= threshold),
        covariance=total_covariance,
        mean_sub_covariance=mean_sub_covariance,
        relative_difference=float(relative_difference),
    )


def _within(value: float, bounds) -> bool:
    low, high = bounds
    return bool(np.isfinite(value) and low <= value <= high)


def check_turbulence(u, v, w, bounds=None) -> TurbulenceResult:
    """
    Integral turbulence characteristics test on rotated wind series.

    Passes only if all three ratios :math:`\\sigma_u/\\bar{u}`,
    :math:`\\sigma_v/\\bar{u}` and :math:`\\sigma_w/\\bar{u}` lie inside
    their (inclusive) bounds, by default ``[0.5, 3.0]``, ``[0.5, 2.5]`` and
    ``[0.1, 1.0]``.

    Parameters
    ----------
    u, v, w : array_like
        Rotated wind components (m s⁻¹), at least two samples each.
    bounds : dict, optional
        Mapping with keys ``"sigma_u"``, ``"sigma_v"``, ``"sigma_w"`` to
        ``(low, high)`` tuples.  Defaults to
        ``QualityThreshold.ITC_BOUNDS``.

    Returns
    -------
    TurbulenceResult
        A zero mean wind gives infinite (or ``nan``) ratios and fails.
    """
    bounds = QualityThreshold.ITC_BOUNDS if bounds is None else bounds

    u = np.asarray(u, dtype=float)
    mean_u = float(np.mean(u))

    with np.errstate(divide="ignore", invalid="ignore"):
        ratios = np.array([stddev(u, mean_u), stddev(v), stddev(w)]) / mean_u

    sigma_u_ratio, sigma_v_ratio, sigma_w_ratio = (float(r) for r in ratios)
    passed = (
        _within(sigma_u_ratio, bounds["sigma_u"])
        and _within(sigma_v_ratio, bounds["sigma_v"])
        and _within(sigma_w_ratio, bounds["sigma_w"])
    )

    logger.debug(
        "ITC ratios: su/U=%.3f, sv/U=%.3f, sw/U=%.3f (%s)",
        sigma_u_ratio,
        sigma_v_ratio,
        sigma_w_ratio,
        "pass" if passed else "fail",
    )

    return TurbulenceResult(
        passed=passed,
        sigma_u_ratio=sigma_u_ratio,
        sigma_v_ratio=sigma_v_ratio,
        sigma_w_ratio=sigma_w_ratio,
    )
