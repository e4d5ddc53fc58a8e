"""CTRV-UKF: Unscented Kalman Filter fusing lidar and radar into a CTRV track.

Quick Start::

    from ctrv_ukf import UKF, MeasurementPackage
    ukf = UKF()
    ukf.process(MeasurementPackage.lidar(0, 1.0, 2.0))
    ukf.process(MeasurementPackage.radar(100000, 2.3, 1.1, 0.2))
    print(ukf.x, ukf.P)
"""

__version__ = "1.0.0"
__license__ = "AGPL-3.0-or-later"

# ---------------------------------------------------------------------------
# Filter core
# ---------------------------------------------------------------------------
from .ukf import (
    UKF,
    UKFParams,
    ukf_weights,
    ctrv_transition,
    N_X, N_AUG, LAMBDA, N_SIGMA, N_Z_LIDAR, N_Z_RADAR,
    STD_LASPX, STD_LASPY, STD_RADR, STD_RADPHI, STD_RADRD,
)
from .measurement import (
    SensorType,
    MeasurementPackage,
    GroundTruth,
    MeasurementRecord,
)
from .errors import (
    UKFError,
    NonPositiveDefiniteCovariance,
    SingularInnovation,
    UnorderedTimestamp,
    UnsupportedSensor,
)
from .coords import (
    normalize_angle,
    polar_to_cartesian,
    radar_measurement,
)

# ---------------------------------------------------------------------------
# Evaluation: metrics, playback, synthetic data
# ---------------------------------------------------------------------------
from .metrics import (
    compute_rmse,
    compute_nis,
    estimate_to_cartesian,
    nis_bounds,
    nis_consistency,
)
from .datasets import (
    load_measurements,
    save_measurements,
    parse_line,
    SyntheticScenarioGenerator,
)

__all__ = [
    "__version__",
    # Core
    "UKF", "UKFParams", "ukf_weights", "ctrv_transition",
    "N_X", "N_AUG", "LAMBDA", "N_SIGMA", "N_Z_LIDAR", "N_Z_RADAR",
    "STD_LASPX", "STD_LASPY", "STD_RADR", "STD_RADPHI", "STD_RADRD",
    # Measurements
    "SensorType", "MeasurementPackage", "GroundTruth", "MeasurementRecord",
    # Errors
    "UKFError", "NonPositiveDefiniteCovariance", "SingularInnovation",
    "UnorderedTimestamp", "UnsupportedSensor",
    # Coords
    "normalize_angle", "polar_to_cartesian", "radar_measurement",
    # Metrics
    "compute_rmse", "compute_nis", "estimate_to_cartesian",
    "nis_bounds", "nis_consistency",
    # Data
    "load_measurements", "save_measurements", "parse_line",
    "SyntheticScenarioGenerator",
]
