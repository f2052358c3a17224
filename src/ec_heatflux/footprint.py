"""
Flux footprint estimate for quality control of eddy covariance fluxes.

Provides the distance of the footprint peak under neutral stratification,
using a logarithmic wind profile for the friction velocity.  The
estimate ignores boundary-layer height and buoyancy effects and is meant
as a source-area indicator, not a full footprint model.

References:
    Kljun et al. (2015) A simple two-dimensional parameterisation for Flux Footprint Prediction (FFP)
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .constants import K_VON_KARMAN, ProcessingConfig


@dataclass(frozen=True)
class FootprintEstimate:
    """Peak footprint distance and the quantities it was derived from"""

    peak_distance: float  # Distance of the footprint maximum (m)
    friction_velocity: float  # u* from the log wind profile (m/s)
    roughness_length: float  # z0 used (m)
    measurement_height: float  # z_m (m)


def estimate_roughness_length(measurement_height: float) -> float:
    """Roughness length guess of one tenth of the measurement height."""
    return ProcessingConfig.ROUGHNESS_HEIGHT_RATIO * measurement_height


def friction_velocity(
    mean_wind: float,
    measurement_height: float,
    roughness_length: float,
) -> float:
    """
    Friction velocity from the neutral logarithmic wind profile.

    .. math::
        u_* = \\frac{\\kappa\\,\\bar{u}}{\\ln(z_m / z_0)}

    with :math:`\\kappa = 0.41`.
    """
    return mean_wind * K_VON_KARMAN / np.log(measurement_height / roughness_length)


def peak_footprint_distance(
    mean_wind: float,
    measurement_height: float,
    roughness_length: Optional[float] = None,
) -> FootprintEstimate:
    """
    Estimate the distance of the flux footprint peak (neutral conditions).

    .. math::
        x_{max} = z_m \\, \\frac{2\\,\\bar{u}}{u_*}
                  \\left(1 - e^{-1.5\\, z_m / z_0}\\right)

    Parameters
    ----------
    mean_wind : float
        Mean streamwise wind speed at measurement height (m s⁻¹).
    measurement_height : float
        Measurement height *z_m* (m).  Must be positive.
    roughness_length : float, optional
        Roughness length *z₀* (m).  Defaults to ``measurement_height / 10``.

    Returns
    -------
    FootprintEstimate
        ``peak_distance`` is ``nan`` for calm or reversed mean flow
        (``mean_wind <= 0``).

    Raises
    ------
    ValueError
        If the measurement height is not positive or the roughness length
        is not inside ``(0, measurement_height)``.

    Notes
    -----
    * Assumes neutral stability, a logarithmic wind profile, homogeneous
      surface conditions and no boundary-layer height limitation.
    * Because :math:`u_*` is proportional to :math:`\\bar{u}`, the peak
      distance depends on the wind only through its sign.

    Examples
    --------
    >>> est = peak_footprint_distance(5.0, 3.0)
    >>> round(est.peak_distance, 2)
    33.7
    """
    if measurement_height <= 0:
        raise ValueError("Measurement height must be positive")

    z0 = (
        estimate_roughness_length(measurement_height)
        if roughness_length is None
        else roughness_length
    )
    if not 0 < z0 < measurement_height:
        raise ValueError("Roughness length must be positive and below measurement height")

    u_star = friction_velocity(mean_wind, measurement_height, z0)

    if mean_wind <= 0:
        peak_distance = float("nan")
    else:
        peak_distance = (
            measurement_height
            * (2.0 * mean_wind / u_star)
            * (1.0 - np.exp(-1.5 * measurement_height / z0))
        )

    return FootprintEstimate(
        peak_distance=float(peak_distance),
        friction_velocity=float(u_star),
        roughness_length=float(z0),
        measurement_height=float(measurement_height),
    )
