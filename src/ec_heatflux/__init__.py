# ec_heatflux/__init__.py
from . import constants
from . import statistics
from . import despiking
from . import coord_rotation
from . import data_quality
from . import footprint
from . import flux

from .coord_rotation import RotationMethod, RotationQualityFlags, TerrainType
from .data_quality import QualityFlags
from .flux import (
    FluxOptions,
    FluxResult,
    FluxValidationError,
    SensibleHeatFluxProcessor,
    calculate_flux,
    compute_sensible_heat_flux,
    validate_inputs,
)

__version__ = "0.1.0"
