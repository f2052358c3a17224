"""
Physical constants and configuration parameters for sensible heat flux calculations.

This module provides:
1. Physical constants
2. Flux conversion parameters
3. Quality control thresholds
4. Processing configuration defaults
"""

# Physical constants
K_VON_KARMAN = 0.41  # von Karman constant (dimensionless)
RHO_AIR = 1.225  # Air density at 15 °C and 1013.25 hPa (kg/m^3)
CP_DRY_AIR = 1004.0  # Specific heat capacity of dry air (J/kg/K)

# Approximate Webb-Pearman-Leuning adjustment applied to the final flux
WPL_CORRECTION_FACTOR = 1.0 + 0.07

FLUX_UNIT = "W/m²"


# Quality control thresholds
class QualityThreshold:
    """Default thresholds for quality control"""

    # Foken & Wichura (1996) stationarity test
    STATIONARITY = {
        "sub_periods": 6,  # 5-min blocks of a 30-min period
        "max_relative_difference": 0.3,  # 30 % difference threshold
    }

    # ITC (Integral Turbulence Characteristics) bounds on sigma/U
    ITC_BOUNDS = {
        "sigma_u": (0.5, 3.0),
        "sigma_v": (0.5, 2.5),
        "sigma_w": (0.1, 1.0),
    }

    # Rotation limits (degrees)
    ROTATION = {
        "max_rotation_angle": 45.0,
        "max_angle_of_attack": 30.0,
        "singular_determinant": 1e-10,
    }

    # Horizontal wind speed regimes (m/s)
    WIND_SPEED = {
        "very_low": 0.05,  # skip rotation entirely
        "low": 0.3,  # flag but rotate
    }


# Processing parameters
class ProcessingConfig:
    """Default configuration for flux processing"""

    SAMPLING_FREQUENCY = 10.0  # Hz

    # Minimum number of samples per averaging interval
    MIN_SAMPLES = {
        "15min": 9000,  # 15 minutes at 10 Hz
        "30min": 18000,  # 30 minutes at 10 Hz
    }

    # Despiking parameters (Vickers & Mahrt, 1997)
    DESPIKE = {
        "window_size": 10,  # Moving window length (samples)
        "z_threshold": 3.5,  # Number of standard deviations
        "max_consecutive": 3,  # Longest run still treated as a spike
        "max_iterations": 10,  # Detection passes
    }

    # Roughness length estimate as fraction of measurement height
    ROUGHNESS_HEIGHT_RATIO = 0.1
