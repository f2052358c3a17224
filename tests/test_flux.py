import copy
import dataclasses
import logging
import pickle

import numpy as np
import pandas as pd
import pytest

from ec_heatflux import (
    FluxOptions,
    FluxResult,
    FluxValidationError,
    QualityFlags,
    RotationMethod,
    RotationQualityFlags,
    SensibleHeatFluxProcessor,
    calculate_flux,
    compute_sensible_heat_flux,
    validate_inputs,
)


def synthetic_interval(n_samples, seed=42, w_t_covariance=0.1, u_mean=5.0):
    """Gaussian turbulence with a prescribed w'T' covariance"""
    rng = np.random.default_rng(seed)
    u = rng.normal(u_mean, 0.5, n_samples)
    v = rng.normal(0.0, 0.5, n_samples)
    w = rng.normal(0.0, 0.3, n_samples)
    w -= w.mean()
    t = 20.0 + (w_t_covariance / np.mean(w**2)) * w + rng.normal(0.0, 0.2, n_samples)
    return u, v, w, t


@pytest.fixture
def short_options():
    return FluxOptions(min_samples=1200)


@pytest.fixture
def short_interval():
    return synthetic_interval(1200, seed=1)


class TestCalculateFlux:
    def test_conversion(self):
        assert calculate_flux(0.1) == pytest.approx(1.225 * 1004.0 * 0.1)

    def test_negative_covariance(self):
        assert calculate_flux(-0.02) < 0


class TestFluxOptions:
    def test_defaults(self):
        options = FluxOptions()
        assert options.min_samples == 9000
        assert options.rotation_method == RotationMethod.DOUBLE_ROTATION
        assert options.measurement_height is None

    def test_presets(self):
        fifteen = FluxOptions.fifteen_minute()
        thirty = FluxOptions.thirty_minute(measurement_height=3.0)

        assert (fifteen.min_samples, fifteen.rotation_method) == (
            9000,
            RotationMethod.DOUBLE_ROTATION,
        )
        assert (thirty.min_samples, thirty.rotation_method) == (
            18000,
            RotationMethod.PLANAR_FIT,
        )
        assert thirty.measurement_height == 3.0

    def test_preset_override(self):
        options = FluxOptions.thirty_minute(rotation_method=RotationMethod.DOUBLE_ROTATION)
        assert options.rotation_method == RotationMethod.DOUBLE_ROTATION
        assert options.min_samples == 18000

    def test_for_interval(self):
        options = FluxOptions.for_interval(30, 20.0)
        assert options.min_samples == 36000
        assert options.sampling_frequency == 20.0

    @pytest.mark.parametrize("name", ["planar_fit", "PLANAR_FIT", "planar-fit"])
    def test_rotation_method_by_name(self, name):
        assert FluxOptions(rotation_method=name).rotation_method == RotationMethod.PLANAR_FIT

    def test_unknown_rotation_method(self):
        with pytest.raises(FluxValidationError, match="Unknown rotation method"):
            FluxOptions(rotation_method="triple_rotation")

    def test_from_config(self):
        options = FluxOptions.from_config(
            {
                "measurement_height": 2.5,
                "roughness_length": 0.1,
                "rotation_method": "planar_fit",
                "averaging_interval": 30,
            }
        )
        assert options.min_samples == 18000
        assert options.rotation_method == RotationMethod.PLANAR_FIT
        assert options.roughness_length == 0.1

    def test_from_config_explicit_min_samples(self):
        options = FluxOptions.from_config({"min_samples": 500, "averaging_interval": 30})
        assert options.min_samples == 500

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"measurement_height": 0.0}, "Measurement height"),
            ({"measurement_height": -3.0}, "Measurement height"),
            ({"sampling_frequency": 0.0}, "Sampling frequency"),
            ({"roughness_length": -0.1}, "Roughness length"),
            ({"measurement_height": 2.0, "roughness_length": 2.0}, "Roughness length"),
            ({"min_samples": 0}, "min_samples"),
            ({"min_samples": 5}, "min_samples must be at least 6"),
        ],
    )
    def test_invalid_options(self, kwargs, message):
        with pytest.raises(FluxValidationError, match=message):
            FluxOptions(**kwargs)

    def test_frozen(self):
        options = FluxOptions()
        with pytest.raises(dataclasses.FrozenInstanceError):
            options.min_samples = 10


class TestValidateInputs:
    def test_returns_float_arrays(self, short_options):
        series = validate_inputs([1] * 1200, [0] * 1200, [0] * 1200, [20] * 1200, short_options)
        assert all(s.dtype == float for s in series)

    def test_length_mismatch(self, short_interval, short_options):
        u, v, w, t = short_interval
        with pytest.raises(FluxValidationError, match="same length"):
            validate_inputs(u, v, w[:-1], t, short_options)

    def test_too_few_samples(self, short_interval):
        with pytest.raises(FluxValidationError, match="Minimum of 9000"):
            validate_inputs(*short_interval, FluxOptions())

    def test_non_finite(self, short_interval, short_options):
        u, v, w, t = (s.copy() for s in short_interval)
        t[10] = np.nan
        with pytest.raises(FluxValidationError, match="non-finite"):
            validate_inputs(u, v, w, t, short_options)

    def test_is_value_error(self, short_interval):
        with pytest.raises(ValueError):
            compute_sensible_heat_flux(*short_interval)

    def test_record_shorter_than_sub_periods(self):
        """Fewer samples than stationarity sub-periods never reach the pipeline"""
        u, v, w, t = synthetic_interval(5, seed=2)
        with pytest.raises(FluxValidationError, match="min_samples must be at least 6"):
            compute_sensible_heat_flux(u, v, w, t, FluxOptions(min_samples=5))
        with pytest.raises(FluxValidationError, match="Minimum of 6"):
            compute_sensible_heat_flux(u, v, w, t, FluxOptions(min_samples=6))


class TestComputeSensibleHeatFlux:
    def test_end_to_end(self):
        """30 min at 10 Hz with w'T' = 0.1 K m/s"""
        u, v, w, t = synthetic_interval(18000)

        result = compute_sensible_heat_flux(u, v, w, t, FluxOptions.fifteen_minute())

        assert isinstance(result, FluxResult)
        assert result.unit == "W/m²"
        assert result.value == pytest.approx(1.225 * 1004.0 * 0.1 * 1.07, rel=0.04)
        assert result.has_flag(QualityFlags.VALID)
        assert not result.has_flag(QualityFlags.NON_STATIONARY_CONDITIONS)
        assert not result.has_flag(QualityFlags.ANGLE_OF_ATTACK_EXCEEDED)
        assert abs(result.diagnostics["rotation_angle_beta"]) < 1.0
        assert result.diagnostics["spike_percentage"] < 1.0

    def test_planar_fit_end_to_end(self):
        u, v, w, t = synthetic_interval(18000, seed=3)

        result = compute_sensible_heat_flux(
            u, v, w, t, FluxOptions.thirty_minute(measurement_height=3.0)
        )

        assert result.value == pytest.approx(131.4, rel=0.05)
        assert result.diagnostics["rotation_quality_flags"] == float(RotationQualityFlags.VALID)

    def test_required_diagnostics(self, short_interval, short_options):
        result = compute_sensible_heat_flux(*short_interval, short_options)

        for key in (
            "spike_percentage",
            "spike_count",
            "rotation_angle_alpha",
            "rotation_angle_beta",
            "rotation_quality_flags",
            "stationarity_relative_difference",
            "sigma_u_ratio",
            "sigma_v_ratio",
            "sigma_w_ratio",
        ):
            assert key in result.diagnostics
        assert "flux_footprint_distance" not in result.diagnostics

    def test_footprint_with_measurement_height(self, short_interval):
        options = FluxOptions(min_samples=1200, measurement_height=3.0)

        result = compute_sensible_heat_flux(*short_interval, options)

        assert result.diagnostics["flux_footprint_distance"] > 0
        assert result.diagnostics["friction_velocity"] > 0

    def test_spikes_flagged(self, short_interval, short_options):
        u, v, w, t = (s.copy() for s in short_interval)
        t[600] += 25.0

        result = compute_sensible_heat_flux(u, v, w, t, short_options)

        assert result.has_flag(QualityFlags.SPIKES_DETECTED)
        assert result.diagnostics["spike_count"] >= 1

    def test_non_stationary_flagged(self, short_options):
        rng = np.random.default_rng(9)
        ramp = np.linspace(-0.5, 0.5, 1200)
        u = rng.normal(5.0, 0.5, 1200)
        v = rng.normal(0.0, 0.5, 1200)
        w = rng.normal(0.0, 0.3, 1200) + ramp
        t = 20.0 + 2.0 * ramp

        result = compute_sensible_heat_flux(u, v, w, t, short_options)

        assert result.has_flag(QualityFlags.NON_STATIONARY_CONDITIONS)
        assert result.diagnostics["stationarity_relative_difference"] > 0.3

    def test_weak_turbulence_flagged(self, short_interval, short_options):
        """sigma_u / U = 0.1 is far below the ITC lower bound"""
        result = compute_sensible_heat_flux(*short_interval, short_options)

        assert result.has_flag(QualityFlags.WEAK_TURBULENCE)
        assert result.diagnostics["sigma_u_ratio"] < 0.5

    def test_angle_of_attack_flagged(self, short_options):
        u, v, w, t = synthetic_interval(1200, seed=4)
        w = w + 5.0 * np.tan(np.radians(35.0))

        result = compute_sensible_heat_flux(u, v, w, t, short_options)

        assert result.has_flag(QualityFlags.ANGLE_OF_ATTACK_EXCEEDED)
        assert result.diagnostics["rotation_angle_beta"] == pytest.approx(35.0, abs=1.0)

    def test_extreme_tilt_left_unrotated(self, short_options):
        u, v, w, t = synthetic_interval(1200, seed=4)
        w = w + 10.0

        result = compute_sensible_heat_flux(u, v, w, t, short_options)

        rotation_flags = RotationQualityFlags(int(result.diagnostics["rotation_quality_flags"]))
        assert rotation_flags & RotationQualityFlags.EXTREME_ROTATION_ANGLE
        assert result.diagnostics["rotation_angle_beta"] == 0.0
        assert not result.has_flag(QualityFlags.ANGLE_OF_ATTACK_EXCEEDED)
        assert np.isfinite(result.value)

    def test_calm_wind(self, short_options):
        rng = np.random.default_rng(8)
        u = 0.01 + rng.normal(0.0, 0.001, 1200)
        v = 0.01 + rng.normal(0.0, 0.001, 1200)
        w = rng.normal(0.0, 0.001, 1200)
        t = 20.0 + rng.normal(0.0, 0.01, 1200)

        result = compute_sensible_heat_flux(u, v, w, t, short_options)

        assert result.diagnostics["rotation_quality_flags"] == float(
            RotationQualityFlags.LOW_WIND_SPEED
        )
        assert result.diagnostics["rotation_angle_alpha"] == 0.0
        assert result.has_flag(QualityFlags.VALID)

    def test_inputs_not_modified(self, short_interval, short_options):
        u, v, w, t = (s.copy() for s in short_interval)
        t[600] += 25.0
        original = t.copy()

        compute_sensible_heat_flux(u, v, w, t, short_options)

        np.testing.assert_array_equal(t, original)


class TestFluxResult:
    @pytest.fixture
    def result(self, short_interval, short_options):
        return compute_sensible_heat_flux(*short_interval, short_options)

    def test_immutable(self, result):
        with pytest.raises(dataclasses.FrozenInstanceError):
            result.value = 0.0

    def test_diagnostics_copied(self):
        diagnostics = {"spike_count": 1.0}
        result = FluxResult(10.0, "W/m²", QualityFlags.VALID, diagnostics)
        diagnostics["spike_count"] = 5.0
        assert result.diagnostics["spike_count"] == 1.0

    def test_pickle_round_trip(self, result):
        restored = pickle.loads(pickle.dumps(result))
        assert restored == result
        assert restored.quality_flags == result.quality_flags

    def test_deepcopy(self, result):
        assert copy.deepcopy(result) == result

    def test_asdict(self, result):
        fields = dataclasses.asdict(result)
        assert fields["value"] == result.value
        assert fields["diagnostics"] == result.diagnostics

    def test_hashable(self, result):
        assert hash(result) == hash(copy.deepcopy(result))
        assert len({result, copy.deepcopy(result)}) == 1

    def test_has_flag(self):
        result = FluxResult(
            value=10.0,
            unit="W/m²",
            quality_flags=QualityFlags.VALID | QualityFlags.SPIKES_DETECTED,
            diagnostics={},
        )
        assert result.has_flag(QualityFlags.SPIKES_DETECTED)
        assert not result.has_flag(QualityFlags.WEAK_TURBULENCE)

    def test_to_series(self, result):
        series = result.to_series()

        assert isinstance(series, pd.Series)
        assert series["value"] == result.value
        assert series["quality_flags"] == int(result.quality_flags)
        assert series["spike_percentage"] == result.diagnostics["spike_percentage"]


class TestSensibleHeatFluxProcessor:
    @pytest.fixture
    def record(self):
        """Two full one-minute blocks and an incomplete third one"""
        n_samples = 1300
        u, v, w, t = synthetic_interval(n_samples, seed=21)
        index = pd.date_range("2024-06-01 12:00", periods=n_samples, freq="100ms")
        return pd.DataFrame({"u": u, "v": v, "w": w, "ts": t}, index=index)

    def test_config(self):
        processor = SensibleHeatFluxProcessor(
            {"averaging_interval": 30, "rotation_method": "planar_fit", "measurement_height": 3.0}
        )
        assert processor.options.min_samples == 18000
        assert processor.options.rotation_method == RotationMethod.PLANAR_FIT

    def test_default_config(self):
        processor = SensibleHeatFluxProcessor()
        assert processor.options.min_samples == 9000
        assert processor.options.rotation_method == RotationMethod.DOUBLE_ROTATION
        assert processor.averaging_interval == 15

    def test_invalid_config(self):
        with pytest.raises(FluxValidationError):
            SensibleHeatFluxProcessor({"measurement_height": -1.0})

    def test_process(self, short_interval):
        processor = SensibleHeatFluxProcessor({"min_samples": 1200})
        result = processor.process(*short_interval)
        assert result == compute_sensible_heat_flux(*short_interval, FluxOptions(min_samples=1200))

    def test_process_dataframe(self, record, caplog):
        processor = SensibleHeatFluxProcessor({"averaging_interval": 1})

        with caplog.at_level(logging.WARNING, logger="ec_heatflux.flux"):
            fluxes = processor.process_dataframe(record)

        assert len(fluxes) == 3
        assert list(fluxes.index) == list(
            pd.date_range("2024-06-01 12:00", periods=3, freq="1min")
        )
        assert np.isfinite(fluxes["value"].iloc[:2]).all()
        assert np.isnan(fluxes["value"].iloc[2])
        assert fluxes["quality_flags"].iloc[2] == 0
        assert "Skipping block" in caplog.text

    def test_custom_columns(self, record):
        processor = SensibleHeatFluxProcessor(
            {"averaging_interval": 1, "columns": {"t": "T_sonic"}}
        )
        fluxes = processor.process_dataframe(record.rename(columns={"ts": "T_sonic"}))
        assert len(fluxes) == 3

    def test_requires_datetime_index(self, record):
        processor = SensibleHeatFluxProcessor({"averaging_interval": 1})
        with pytest.raises(ValueError, match="indexed by time"):
            processor.process_dataframe(record.reset_index(drop=True))

    def test_missing_columns(self, record):
        processor = SensibleHeatFluxProcessor({"averaging_interval": 1})
        with pytest.raises(ValueError, match="Missing columns"):
            processor.process_dataframe(record.drop(columns="ts"))

    def test_per_call_columns_and_interval(self, record):
        processor = SensibleHeatFluxProcessor({"min_samples": 300})
        fluxes = processor.process_dataframe(
            record.rename(columns={"w": "w_sonic"}),
            interval="30s",
            columns={"w": "w_sonic"},
        )
        assert len(fluxes) == 5
        assert np.isfinite(fluxes["value"].iloc[:4]).all()

    def test_min_samples_below_sub_periods_rejected(self):
        with pytest.raises(FluxValidationError, match="min_samples must be at least 6"):
            SensibleHeatFluxProcessor({"min_samples": 3})

    def test_short_trailing_block_skipped(self, record, caplog):
        processor = SensibleHeatFluxProcessor({"min_samples": 6})

        with caplog.at_level(logging.WARNING, logger="ec_heatflux.flux"):
            fluxes = processor.process_dataframe(record.iloc[:14], interval="1s")

        assert len(fluxes) == 2
        assert np.isfinite(fluxes["value"].iloc[0])
        assert np.isnan(fluxes["value"].iloc[1])
        assert "Minimum of 6" in caplog.text
