"""
Coordinate rotation of sonic anemometer wind series.

This module implements two coordinate rotation methods:
1. Double rotation (Tanner & Thurtell, 1969)
2. Planar fit rotation (Wilczak et al., 2001)

Both rotate every sample of an averaging interval.  Degenerate cases
(extreme tilt, singular regression) are returned as a
:class:`RotationFailure` value instead of being raised, and
:func:`apply_coordinate_rotation` turns them into quality flags while
handing back the unrotated series.

References:
    Tanner, C. B., & Thurtell, G. W. (1969). Anemoclinometer measurements of Reynolds stress and heat transport in the atmospheric surface layer. ECOM-66-G22-F.
    Wilczak, J. M., Oncley, S. P., & Stage, S. A. (2001). Boundary-Layer Meteorology, 99(1), 127-150.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Optional, Tuple, Union

import numpy as np

from .constants import QualityThreshold

logger = logging.getLogger(__name__)

MAX_ROTATION_ANGLE = QualityThreshold.ROTATION["max_rotation_angle"]
SINGULAR_DETERMINANT = QualityThreshold.ROTATION["singular_determinant"]
VERY_LOW_WIND_SPEED = QualityThreshold.WIND_SPEED["very_low"]
LOW_WIND_SPEED = QualityThreshold.WIND_SPEED["low"]


class RotationMethod(IntEnum):
    """Coordinate rotation method"""

    DOUBLE_ROTATION = 0
    PLANAR_FIT = 1


class TerrainType(IntEnum):
    """Terrain classes used by :func:`recommend_rotation_method`"""

    FLAT = 0
    ROLLING = 1
    COMPLEX = 2
    URBAN = 3


class RotationQualityFlags(IntFlag):
    """
    Quality bits local to the rotation stage.

    ======================  ==================================================
    Member                  Meaning
    ----------------------  --------------------------------------------------
    VALID                   Rotation carried out normally
    LOW_WIND_SPEED          Horizontal wind below 0.3 m s⁻¹
    EXTREME_ROTATION_ANGLE  A rotation angle exceeded 45°; data left unrotated
    SINGULAR_MATRIX         Planar-fit regression singular; data left unrotated
    COMPLEX_TERRAIN         Reserved
    ======================  ==================================================
    """

    NONE = 0
    VALID = 1
    LOW_WIND_SPEED = 1 << 1
    EXTREME_ROTATION_ANGLE = 1 << 2
    SINGULAR_MATRIX = 1 << 3
    COMPLEX_TERRAIN = 1 << 4


@dataclass(frozen=True)
class WindMeans:
    """
    Interval means of the three wind components (m s⁻¹).

    Examples
    --------
    >>> means = WindMeans(u_mean=3.0, v_mean=4.0, w_mean=0.1)
    >>> means.horizontal_speed
    5.0
    """

    u_mean: float
    v_mean: float
    w_mean: float

    @classmethod
    def from_series(cls, u, v, w) -> "WindMeans":
        return cls(
            u_mean=float(np.mean(u)),
            v_mean=float(np.mean(v)),
            w_mean=float(np.mean(w)),
        )

    @property
    def horizontal_speed(self) -> float:
        return float(np.hypot(self.u_mean, self.v_mean))


@dataclass
class RotatedSeries:
    """Successful rotation: new arrays and the angles used (degrees)."""

    u: np.ndarray
    v: np.ndarray
    w: np.ndarray
    alpha: float
    beta: float


@dataclass
class RotationFailure:
    """Failed rotation: the quality bit describing why, and a message."""

    flag: RotationQualityFlags
    message: str


RotationOutcome = Union[RotatedSeries, RotationFailure]


@dataclass
class RotationCorrection:
    """
    Result of :func:`apply_coordinate_rotation`.

    Parameters
    ----------
    u, v, w : ndarray
        Rotated series, or the input series when rotation was skipped or
        failed.
    alpha, beta : float
        Rotation angles in degrees (``0`` when not rotated).
    quality_flags : RotationQualityFlags
        Rotation-stage quality bits.
    """

    u: np.ndarray
    v: np.ndarray
    w: np.ndarray
    alpha: float
    beta: float
    quality_flags: RotationQualityFlags

    @property
    def rotated(self) -> bool:
        """True when the returned series are actually rotated."""
        failed = (
            RotationQualityFlags.EXTREME_ROTATION_ANGLE
            | RotationQualityFlags.SINGULAR_MATRIX
        )
        return bool(self.quality_flags & RotationQualityFlags.VALID) and not (
            self.quality_flags & failed
        )


class CoordinateRotation:
    """Base class for coordinate rotation methods"""

    def __init__(self):
        """Initialize rotation parameters"""
        self.alpha = 0.0  # radians
        self.beta = 0.0  # radians

    def get_rotation_angles(self) -> Tuple[float, float]:
        """Get current rotation angles in degrees"""
        return float(np.degrees(self.alpha)), float(np.degrees(self.beta))

    def rotate(self, u, v, w, means: Optional[WindMeans] = None) -> RotationOutcome:
        raise NotImplementedError


class DoubleRotation(CoordinateRotation):
    """
    Perform a *double rotation* of sonic-anemometer wind series.

    The double-rotation algorithm (Tanner & Thurtell, 1969) aligns the
    measurement axes with the mean flow in two sequential steps:

    1. **Yaw** (*α*): rotate about the original *z*-axis so the new
       *x*-axis points along the horizontal mean wind vector
       ``(ū, v̄)``.
    2. **Pitch** (*β*): rotate the resulting ``(u₁, w)`` pair about the
       cross-wind axis to set the mean vertical velocity to zero.

    Attributes
    ----------
    alpha : float
        Yaw angle ``atan2(v̄, ū)`` (rad).
    beta : float
        Pitch angle ``atan2(w̄, √(ū² + v̄²))`` (rad).

    Examples
    --------
    >>> u = np.array([2.0, 3.0, 4.0])
    >>> v = np.array([1.0, 1.0, 1.0])
    >>> w = np.array([0.1, 0.0, -0.05])
    >>> out = DoubleRotation().rotate(u, v, w)
    >>> bool(abs(np.mean(out.v)) < 1e-12 and abs(np.mean(out.w)) < 1e-12)
    True
    """

    def calculate_angles(self, means: WindMeans) -> None:
        """
        Compute yaw (*α*) and pitch (*β*) from interval means.

        Parameters
        ----------
        means : WindMeans
            Mean wind components prior to rotation.
        """
        self.alpha = np.arctan2(means.v_mean, means.u_mean)
        self.beta = np.arctan2(means.w_mean, means.horizontal_speed)

    def rotate(self, u, v, w, means: Optional[WindMeans] = None) -> RotationOutcome:
        """
        Rotate every sample into the mean-wind coordinate system.

        Parameters
        ----------
        u, v, w : array_like
            Wind components in instrument coordinates (m s⁻¹).
        means : WindMeans, optional
            Pre-computed interval means.

        Returns
        -------
        RotatedSeries or RotationFailure
            ``RotationFailure`` with ``EXTREME_ROTATION_ANGLE`` when the
            pitch angle exceeds 45°.
        """
        u = np.asarray(u, dtype=float)
        v = np.asarray(v, dtype=float)
        w = np.asarray(w, dtype=float)
        if means is None:
            means = WindMeans.from_series(u, v, w)

        self.calculate_angles(means)
        alpha_deg, beta_deg = self.get_rotation_angles()

        if abs(beta_deg) > MAX_ROTATION_ANGLE:
            return RotationFailure(
                flag=RotationQualityFlags.EXTREME_ROTATION_ANGLE,
                message=f"Extreme rotation angle detected: {beta_deg:.1f} degrees",
            )

        cos_a = np.cos(self.alpha)
        sin_a = np.sin(self.alpha)
        cos_b = np.cos(self.beta)
        sin_b = np.sin(self.beta)

        # First rotation (yaw)
        u1 = u * cos_a + v * sin_a
        v1 = -u * sin_a + v * cos_a

        # Second rotation (pitch)
        u_rot = u1 * cos_b + w * sin_b
        w_rot = -u1 * sin_b + w * cos_b

        return RotatedSeries(u=u_rot, v=v1, w=w_rot, alpha=alpha_deg, beta=beta_deg)


class PlanarFit(CoordinateRotation):
    """
    Apply the *planar-fit* coordinate rotation of Wilczak, Oncley &
    Stage (2001) to a single averaging interval.

    A plane

    .. math::
       w = b_0 + b_1\\,u + b_2\\,v

    is fitted by least squares (normal equations on deviations from the
    interval means) and the coordinate system is rotated so that its new
    *z*-axis is the unit normal of that plane.  The reported angles are

    .. math::
       \\beta = \\tan^{-1}\\!\\left(b_1 / \\sqrt{1 + b_1^2 + b_2^2}\\right),\\qquad
       \\alpha = \\tan^{-1}\\!\\left(b_2 / \\sqrt{1 + b_2^2}\\right)

    Attributes
    ----------
    b0, b1, b2 : float
        Plane offset and slopes from :pymeth:`fit_plane`.
    alpha, beta : float
        Reported rotation angles (rad).
    matrix : ndarray
        3 × 3 rotation matrix whose last row is the unit plane normal.
    """

    def __init__(self):
        super().__init__()
        self.b0 = 0.0  # Plane offset
        self.b1 = 0.0  # Plane slope in u
        self.b2 = 0.0  # Plane slope in v
        self.matrix = np.eye(3)

    def fit_plane(self, u, v, w, means: Optional[WindMeans] = None) -> Optional[RotationFailure]:
        """
        Fit the mean-flow plane and derive the rotation.

        Parameters
        ----------
        u, v, w : array_like
            Equal-length wind component series (m s⁻¹).
        means : WindMeans, optional
            Pre-computed interval means.

        Returns
        -------
        RotationFailure or None
            ``SINGULAR_MATRIX`` when the normal-equation determinant is
            below ``1e-10`` in magnitude, ``EXTREME_ROTATION_ANGLE`` when
            either angle exceeds 45°, otherwise ``None``.
        """
        u = np.asarray(u, dtype=float)
        v = np.asarray(v, dtype=float)
        w = np.asarray(w, dtype=float)
        if means is None:
            means = WindMeans.from_series(u, v, w)

        u_dev = u - means.u_mean
        v_dev = v - means.v_mean
        w_dev = w - means.w_mean

        sum_uu = np.dot(u_dev, u_dev)
        sum_vv = np.dot(v_dev, v_dev)
        sum_uv = np.dot(u_dev, v_dev)
        sum_uw = np.dot(u_dev, w_dev)
        sum_vw = np.dot(v_dev, w_dev)

        det = sum_uu * sum_vv - sum_uv * sum_uv
        if abs(det) < SINGULAR_DETERMINANT:
            return RotationFailure(
                flag=RotationQualityFlags.SINGULAR_MATRIX,
                message="Singular matrix encountered in planar fit calculation",
            )

        self.b1 = float((sum_uw * sum_vv - sum_vw * sum_uv) / det)
        self.b2 = float((sum_vw * sum_uu - sum_uw * sum_uv) / det)
        self.b0 = means.w_mean - self.b1 * means.u_mean - self.b2 * means.v_mean

        norm = np.sqrt(1.0 + self.b1**2 + self.b2**2)
        roll_norm = np.sqrt(1.0 + self.b2**2)

        self.beta = np.arctan(self.b1 / norm)
        self.alpha = np.arctan(self.b2 / roll_norm)

        alpha_deg, beta_deg = self.get_rotation_angles()
        if abs(beta_deg) > MAX_ROTATION_ANGLE or abs(alpha_deg) > MAX_ROTATION_ANGLE:
            return RotationFailure(
                flag=RotationQualityFlags.EXTREME_ROTATION_ANGLE,
                message=(
                    f"Extreme rotation angles detected: "
                    f"alpha={alpha_deg:.1f}°, beta={beta_deg:.1f}°"
                ),
            )

        # Rows: streamwise, cross-stream (no u component), plane normal
        both = roll_norm * norm
        self.matrix = np.array(
            [
                [(1.0 + self.b2**2) / both, -self.b1 * self.b2 / both, self.b1 / both],
                [0.0, 1.0 / roll_norm, self.b2 / roll_norm],
                [-self.b1 / norm, -self.b2 / norm, 1.0 / norm],
            ]
        )
        return None

    def rotate(self, u, v, w, means: Optional[WindMeans] = None) -> RotationOutcome:
        """
        Fit the plane and rotate all samples in one matrix product.

        The plane offset ``b0`` is removed from *w* before rotating, so
        samples lying on the fitted plane end up with ``w = 0``.

        Returns
        -------
        RotatedSeries or RotationFailure
        """
        u = np.asarray(u, dtype=float)
        v = np.asarray(v, dtype=float)
        w = np.asarray(w, dtype=float)

        failure = self.fit_plane(u, v, w, means)
        if failure is not None:
            return failure

        rotated = self.matrix @ np.vstack([u, v, w - self.b0])
        alpha_deg, beta_deg = self.get_rotation_angles()

        return RotatedSeries(
            u=rotated[0],
            v=rotated[1],
            w=rotated[2],
            alpha=alpha_deg,
            beta=beta_deg,
        )


def recommend_rotation_method(
    terrain: TerrainType,
    average_wind_speed: float,
    terrain_slope: float = 0.0,
) -> RotationMethod:
    """
    Suggest a rotation method from site characteristics.

    Flat terrain with slope below 5° and rolling terrain with slope below
    10° get double rotation; complex, urban or steeper sites get planar
    fit.  Advisory only: the flux pipeline uses whatever method its
    options name.

    Parameters
    ----------
    terrain : TerrainType
        Site terrain class.
    average_wind_speed : float
        Typical horizontal wind speed (m s⁻¹).  Currently not used by
        the guideline table.
    terrain_slope : float, default ``0``
        Mean terrain slope (degrees).

    Examples
    --------
    >>> recommend_rotation_method(TerrainType.FLAT, 3.0, terrain_slope=2.0)
    <RotationMethod.DOUBLE_ROTATION: 0>
    >>> recommend_rotation_method(TerrainType.ROLLING, 3.0, terrain_slope=12.0)
    <RotationMethod.PLANAR_FIT: 1>
    """
    if terrain == TerrainType.FLAT and terrain_slope < 5:
        return RotationMethod.DOUBLE_ROTATION
    if terrain == TerrainType.ROLLING and terrain_slope < 10:
        return RotationMethod.DOUBLE_ROTATION
    return RotationMethod.PLANAR_FIT


def apply_coordinate_rotation(
    u,
    v,
    w,
    method: RotationMethod = RotationMethod.DOUBLE_ROTATION,
) -> RotationCorrection:
    """
    Rotate an interval of wind data, degrading gracefully.

    * Horizontal wind below 0.05 m s⁻¹: no rotation, angles ``0``,
      flags ``LOW_WIND_SPEED`` only.
    * Horizontal wind below 0.3 m s⁻¹: ``VALID | LOW_WIND_SPEED`` and the
      rotation is attempted.
    * A failed rotation returns the unrotated input with angles ``0`` and
      the failure bit added to the flags collected so far.

    Parameters
    ----------
    u, v, w : array_like
        Equal-length wind component series (m s⁻¹).
    method : RotationMethod, default ``DOUBLE_ROTATION``
        Rotation to apply.

    Returns
    -------
    RotationCorrection
    """
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    w = np.asarray(w, dtype=float)

    means = WindMeans.from_series(u, v, w)
    horizontal_speed = means.horizontal_speed

    if horizontal_speed < VERY_LOW_WIND_SPEED:
        logger.debug(
            "Horizontal wind %.3f m/s too low, skipping rotation", horizontal_speed
        )
        return RotationCorrection(
            u=u,
            v=v,
            w=w,
            alpha=0.0,
            beta=0.0,
            quality_flags=RotationQualityFlags.LOW_WIND_SPEED,
        )

    quality_flags = RotationQualityFlags.VALID
    if horizontal_speed < LOW_WIND_SPEED:
        quality_flags |= RotationQualityFlags.LOW_WIND_SPEED

    rotation = PlanarFit() if method == RotationMethod.PLANAR_FIT else DoubleRotation()
    outcome = rotation.rotate(u, v, w, means)

    if isinstance(outcome, RotationFailure):
        logger.warning("%s; using unrotated data", outcome.message)
        return RotationCorrection(
            u=u,
            v=v,
            w=w,
            alpha=0.0,
            beta=0.0,
            quality_flags=quality_flags | outcome.flag,
        )

    logger.debug(
        "%s applied: alpha=%.2f deg, beta=%.2f deg",
        RotationMethod(method).name,
        outcome.alpha,
        outcome.beta,
    )
    return RotationCorrection(
        u=outcome.u,
        v=outcome.v,
        w=outcome.w,
        alpha=outcome.alpha,
        beta=outcome.beta,
        quality_flags=quality_flags,
    )
