"""
Sensible heat flux processing for eddy covariance measurements.

This module sequences the corrections of one averaging interval
(despiking, coordinate rotation, stationarity and turbulence tests,
footprint estimate) and converts the kinematic heat flux into W m⁻².
Malformed input raises :class:`FluxValidationError`; every data-quality
problem found on the way is reported through
:class:`~ec_heatflux.data_quality.QualityFlags` and the diagnostics of
the returned :class:`FluxResult`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from .constants import (
    CP_DRY_AIR,
    FLUX_UNIT,
    RHO_AIR,
    WPL_CORRECTION_FACTOR,
    ProcessingConfig,
    QualityThreshold,
)
from .coord_rotation import RotationMethod, apply_coordinate_rotation
from .data_quality import QualityFlags, check_stationarity, check_turbulence
from .despiking import remove_spikes
from .footprint import peak_footprint_distance

logger = logging.getLogger(__name__)

MAX_ANGLE_OF_ATTACK = QualityThreshold.ROTATION["max_angle_of_attack"]
MIN_RECORD_LENGTH = QualityThreshold.STATIONARITY["sub_periods"]


class FluxValidationError(ValueError):
    """Input series or options that cannot be processed."""


def _coerce_rotation_method(value) -> RotationMethod:
    if isinstance(value, str):
        key = value.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return RotationMethod[key]
        except KeyError:
            raise FluxValidationError(f"Unknown rotation method: {value}") from None
    try:
        return RotationMethod(value)
    except ValueError:
        raise FluxValidationError(f"Unknown rotation method: {value}") from None


@dataclass(frozen=True)
class FluxOptions:
    """
    Configuration of one flux computation.

    Parameters
    ----------
    measurement_height : float, optional
        Sonic height above ground (m).  Required for the footprint
        diagnostics.
    roughness_length : float, optional
        Surface roughness length (m).  Defaults to a tenth of the
        measurement height when the footprint is estimated.
    rotation_method : RotationMethod or str, default ``DOUBLE_ROTATION``
        Coordinate rotation to apply.  Names such as ``"planar_fit"`` are
        accepted.
    min_samples : int, default ``9000``
        Shortest accepted record (15 min at 10 Hz).
    sampling_frequency : float, optional
        Sampling frequency (Hz); validated when given.

    Raises
    ------
    FluxValidationError
        For non-positive height or frequency, a roughness length outside
        ``(0, measurement_height)``, or fewer ``min_samples`` than the
        six stationarity sub-periods.

    Examples
    --------
    >>> FluxOptions.thirty_minute(measurement_height=3.0).min_samples
    18000
    >>> FluxOptions(rotation_method="planar_fit").rotation_method
    <RotationMethod.PLANAR_FIT: 1>
    """

    measurement_height: Optional[float] = None
    roughness_length: Optional[float] = None
    rotation_method: RotationMethod = RotationMethod.DOUBLE_ROTATION
    min_samples: int = ProcessingConfig.MIN_SAMPLES["15min"]
    sampling_frequency: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(
            self, "rotation_method", _coerce_rotation_method(self.rotation_method)
        )
        self.validate()

    def validate(self) -> None:
        """Raise :class:`FluxValidationError` for unusable option values."""
        height = self.measurement_height
        if height is not None and not height > 0:
            raise FluxValidationError("Measurement height must be positive")

        if self.roughness_length is not None:
            if not self.roughness_length > 0:
                raise FluxValidationError("Roughness length must be positive")
            if height is not None and self.roughness_length >= height:
                raise FluxValidationError(
                    "Roughness length must be smaller than measurement height"
                )

        if self.sampling_frequency is not None and not self.sampling_frequency > 0:
            raise FluxValidationError("Sampling frequency must be positive")

        if self.min_samples < MIN_RECORD_LENGTH:
            raise FluxValidationError(
                f"min_samples must be at least {MIN_RECORD_LENGTH}"
            )

    @classmethod
    def fifteen_minute(cls, **overrides) -> "FluxOptions":
        """15-min profile: 9000 samples, double rotation."""
        settings = {
            "min_samples": ProcessingConfig.MIN_SAMPLES["15min"],
            "rotation_method": RotationMethod.DOUBLE_ROTATION,
        }
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def thirty_minute(cls, **overrides) -> "FluxOptions":
        """30-min profile: 18000 samples, planar fit."""
        settings = {
            "min_samples": ProcessingConfig.MIN_SAMPLES["30min"],
            "rotation_method": RotationMethod.PLANAR_FIT,
        }
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def for_interval(
        cls,
        minutes: float,
        sampling_frequency: float = ProcessingConfig.SAMPLING_FREQUENCY,
        **overrides,
    ) -> "FluxOptions":
        """Options whose minimum sample count covers *minutes* of data."""
        if not minutes > 0:
            raise FluxValidationError("Averaging interval must be positive")
        if not sampling_frequency > 0:
            raise FluxValidationError("Sampling frequency must be positive")

        settings = {
            "min_samples": int(round(minutes * 60.0 * sampling_frequency)),
            "sampling_frequency": sampling_frequency,
        }
        settings.update(overrides)
        return cls(**settings)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "FluxOptions":
        """
        Build options from a plain configuration dictionary.

        Recognised keys are the field names plus ``averaging_interval``
        (minutes), which sets ``min_samples`` together with
        ``sampling_frequency`` when ``min_samples`` is not given.
        """
        settings = {
            "measurement_height": config.get("measurement_height"),
            "roughness_length": config.get("roughness_length"),
            "rotation_method": config.get(
                "rotation_method", RotationMethod.DOUBLE_ROTATION
            ),
            "sampling_frequency": config.get("sampling_frequency"),
        }

        if "min_samples" in config:
            settings["min_samples"] = int(config["min_samples"])
            return cls(**settings)

        if "averaging_interval" in config:
            frequency = settings.pop("sampling_frequency") or ProcessingConfig.SAMPLING_FREQUENCY
            return cls.for_interval(config["averaging_interval"], frequency, **settings)

        return cls(**settings)


@dataclass(frozen=True)
class FluxResult:
    """
    Sensible heat flux of one averaging interval.

    Parameters
    ----------
    value : float
        Sensible heat flux (W m⁻²).
    unit : str
        Unit label, ``"W/m²"``.
    quality_flags : QualityFlags
        Accumulated quality bits.
    diagnostics : dict of str to float
        Private copy of the diagnostics: ``spike_percentage``, ``spike_count``,
        ``rotation_angle_alpha``, ``rotation_angle_beta``,
        ``rotation_quality_flags``, ``stationarity_relative_difference``,
        ``sigma_u_ratio``, ``sigma_v_ratio``, ``sigma_w_ratio`` and, when a
        measurement height was given, ``flux_footprint_distance`` and
        ``friction_velocity``.  Not part of the hash.
    """

    value: float
    unit: str
    quality_flags: QualityFlags
    diagnostics: Dict[str, float] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "diagnostics", dict(self.diagnostics))

    def has_flag(self, flag: QualityFlags) -> bool:
        return bool(self.quality_flags & flag)

    def to_series(self) -> pd.Series:
        """Flatten value, flags and diagnostics into a pandas Series."""
        row = {"value": self.value, "quality_flags": int(self.quality_flags)}
        row.update(self.diagnostics)
        return pd.Series(row)


def validate_inputs(u, v, w, t, options: FluxOptions) -> Tuple[np.ndarray, ...]:
    """
    Check series shape and options before any processing.

    Returns
    -------
    tuple of ndarray
        ``(u, v, w, t)`` as float arrays.

    Raises
    ------
    FluxValidationError
        For series that are not one-dimensional, differ in length, are
        shorter than ``options.min_samples`` or contain non-finite
        values, and for invalid options.
    """
    options.validate()

    series = tuple(np.asarray(x, dtype=float) for x in (u, v, w, t))

    if any(s.ndim != 1 for s in series):
        raise FluxValidationError("Input series must be one-dimensional")

    length = series[0].size
    if any(s.size != length for s in series):
        raise FluxValidationError("All input arrays must have the same length")

    if length < options.min_samples:
        raise FluxValidationError(
            f"Minimum of {options.min_samples} data points required, got {length}"
        )

    if not all(np.isfinite(s).all() for s in series):
        raise FluxValidationError("Input series contain non-finite values")

    return series


def calculate_flux(covariance: float) -> float:
    """Convert kinematic heat flux w'T' (K m s⁻¹) to W m⁻²: ρ · c_p · w'T'."""
    return RHO_AIR * CP_DRY_AIR * covariance


def compute_sensible_heat_flux(
    u,
    v,
    w,
    t,
    options: Optional[FluxOptions] = None,
) -> FluxResult:
    """
    Compute the sensible heat flux of one averaging interval.

    Processing steps:

    1. Validate series and options (fatal on failure)
    2. Despike all four channels
    3. Rotate the wind into mean-flow coordinates
    4. Stationarity test on rotated *w* and despiked *T*
    5. Integral turbulence characteristics test on rotated *u, v, w*
    6. Footprint peak distance, if a measurement height is configured
    7. ``H = ρ c_p w'T'`` with the approximate 7 % WPL adjustment

    Parameters
    ----------
    u, v, w : array_like
        Wind components (m s⁻¹), instrument coordinates.
    t : array_like
        Sonic temperature (°C or K).
    options : FluxOptions, optional
        Defaults to ``FluxOptions()`` (15-min profile, double rotation).

    Returns
    -------
    FluxResult

    Raises
    ------
    FluxValidationError
        If the input fails :func:`validate_inputs`.  Quality problems
        never raise.
    """
    options = FluxOptions() if options is None else options
    u, v, w, t = validate_inputs(u, v, w, t, options)

    quality_flags = QualityFlags.VALID
    diagnostics: Dict[str, float] = {}

    # Step 1: Despiking
    despiked = remove_spikes(u, v, w, t)
    if despiked.spike_count > 0:
        quality_flags |= QualityFlags.SPIKES_DETECTED
    diagnostics["spike_percentage"] = despiked.spike_percentage
    diagnostics["spike_count"] = float(despiked.spike_count)

    # Step 2: Coordinate rotation
    rotation = apply_coordinate_rotation(
        despiked.u, despiked.v, despiked.w, options.rotation_method
    )
    if abs(rotation.beta) > MAX_ANGLE_OF_ATTACK:
        quality_flags |= QualityFlags.ANGLE_OF_ATTACK_EXCEEDED
    diagnostics["rotation_angle_alpha"] = rotation.alpha
    diagnostics["rotation_angle_beta"] = rotation.beta
    diagnostics["rotation_quality_flags"] = float(int(rotation.quality_flags))

    # Step 3: Stationarity test
    stationarity = check_stationarity(rotation.w, despiked.t)
    if not stationarity.is_stationary:
        quality_flags |= QualityFlags.NON_STATIONARY_CONDITIONS
    diagnostics["stationarity_relative_difference"] = stationarity.relative_difference

    # Step 4: Turbulence test
    turbulence = check_turbulence(rotation.u, rotation.v, rotation.w)
    if not turbulence.passed:
        quality_flags |= QualityFlags.WEAK_TURBULENCE
    diagnostics["sigma_u_ratio"] = turbulence.sigma_u_ratio
    diagnostics["sigma_v_ratio"] = turbulence.sigma_v_ratio
    diagnostics["sigma_w_ratio"] = turbulence.sigma_w_ratio

    # Step 5: Flux footprint
    if options.measurement_height is not None:
        footprint = peak_footprint_distance(
            float(np.mean(rotation.u)),
            options.measurement_height,
            options.roughness_length,
        )
        diagnostics["flux_footprint_distance"] = footprint.peak_distance
        diagnostics["friction_velocity"] = footprint.friction_velocity
        logger.debug("Footprint peak at %.1f m", footprint.peak_distance)

    # Step 6: Flux with approximate WPL adjustment
    flux = calculate_flux(stationarity.covariance) * WPL_CORRECTION_FACTOR

    logger.debug(
        "Sensible heat flux %.2f %s, flags=%s", flux, FLUX_UNIT, quality_flags
    )

    return FluxResult(
        value=float(flux),
        unit=FLUX_UNIT,
        quality_flags=quality_flags,
        diagnostics=diagnostics,
    )


class SensibleHeatFluxProcessor:
    """
    Dictionary-configured processor for one or many averaging intervals.

    Configuration keys are those of :meth:`FluxOptions.from_config` plus

    * ``averaging_interval`` -- block length in minutes (default ``15``)
    * ``columns`` -- mapping of ``"u"``, ``"v"``, ``"w"``, ``"t"`` to
      DataFrame column names (default ``u``, ``v``, ``w``, ``ts``)

    Examples
    --------
    >>> processor = SensibleHeatFluxProcessor(
    ...     {"measurement_height": 3.0, "averaging_interval": 30,
    ...      "rotation_method": "planar_fit"})
    >>> processor.options.min_samples
    18000
    """

    DEFAULT_COLUMNS = {"u": "u", "v": "v", "w": "w", "t": "ts"}

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize processor with configuration.

        Raises
        ------
        FluxValidationError
            If the configuration yields invalid options.
        """
        self.config = {} if config is None else dict(config)
        self.averaging_interval = self.config.get("averaging_interval", 15)
        self.columns = {**self.DEFAULT_COLUMNS, **self.config.get("columns", {})}

        settings = dict(self.config)
        settings.setdefault("averaging_interval", self.averaging_interval)
        self.options = FluxOptions.from_config(settings)

    def process(self, u, v, w, t) -> FluxResult:
        """Process one interval of measurements."""
        return compute_sensible_heat_flux(u, v, w, t, self.options)

    def process_dataframe(
        self,
        df: pd.DataFrame,
        interval: Optional[str] = None,
        columns: Optional[Dict[str, str]] = None,
    ) -> pd.DataFrame:
        """
        Compute one flux per averaging block of a time-indexed DataFrame.

        Parameters
        ----------
        df : pandas.DataFrame
            High-frequency record with a ``DatetimeIndex`` and the columns
            named in ``self.columns``.
        interval : str, optional
            pandas frequency string of the blocks; defaults to
            ``"{averaging_interval}min"``.
        columns : dict, optional
            Per-call override of ``self.columns``.

        Returns
        -------
        pandas.DataFrame
            One row per non-empty block, indexed by block start, with the
            columns of :meth:`FluxResult.to_series`.  Blocks failing
            validation (for instance incomplete ones) have ``value`` NaN
            and ``quality_flags`` 0.

        Raises
        ------
        ValueError
            If the index is not a ``DatetimeIndex`` or columns are missing.
        """
        if not isinstance(df.index, pd.DatetimeIndex):
            raise ValueError("DataFrame must be indexed by time")

        names = {**self.columns, **(columns or {})}
        missing = [name for name in names.values() if name not in df.columns]
        if missing:
            raise ValueError(f"Missing columns: {missing}")

        freq = interval or f"{self.averaging_interval}min"
        rows = []
        for start, block in df.groupby(pd.Grouper(freq=freq)):
            if block.empty:
                continue
            try:
                result = self.process(
                    block[names["u"]].to_numpy(),
                    block[names["v"]].to_numpy(),
                    block[names["w"]].to_numpy(),
                    block[names["t"]].to_numpy(),
                )
            except FluxValidationError as err:
                logger.warning("Skipping block starting %s: %s", start, err)
                rows.append(
                    pd.Series(
                        {"value": np.nan, "quality_flags": int(QualityFlags.NONE)},
                        name=start,
                    )
                )
                continue
            rows.append(result.to_series().rename(start))

        if not rows:
            return pd.DataFrame(columns=["value", "quality_flags"])

        frame = pd.DataFrame(rows)
        frame.index.name = "interval_start"
        return frame
