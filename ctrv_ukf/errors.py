"""
CTRV-UKF Error Taxonomy
========================
Exceptions raised by the filter core and the measurement parsers.

Fatal numeric errors derive from ``np.linalg.LinAlgError`` so that callers
already catching numpy failures keep working. After a fatal error the filter
state is corrupted and the caller must ``reset()`` it.

Input errors derive from ``ValueError``.
"""

import numpy as np


class UKFError(Exception):
    """Base class for every error raised by ctrv_ukf."""


# ===== FATAL (state corrupted) =====

class NonPositiveDefiniteCovariance(UKFError, np.linalg.LinAlgError):
    """Cholesky factorization of the augmented covariance failed."""

    def __init__(self, P_aug: np.ndarray):
        self.P_aug = P_aug
        if np.all(np.isfinite(P_aug)):
            eig_min = float(np.min(np.linalg.eigvalsh(0.5 * (P_aug + P_aug.T))))
            detail = f"min eigenvalue {eig_min:.3e}"
        else:
            detail = "non-finite entries"
        super().__init__(
            f"Augmented covariance is not positive definite "
            f"({detail}); filter must be reset")


class SingularInnovation(UKFError, np.linalg.LinAlgError):
    """Innovation covariance S could not be inverted."""

    def __init__(self, sensor: str, S: np.ndarray):
        self.sensor = sensor
        self.S = S
        super().__init__(
            f"Singular innovation covariance during {sensor} update; "
            f"filter must be reset")


# ===== RECOVERABLE / INPUT =====

class UnorderedTimestamp(UKFError, ValueError):
    """Measurement timestamp precedes the filter's last timestamp."""

    def __init__(self, timestamp: int, last_timestamp: int):
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
        super().__init__(
            f"Measurement at {timestamp} us is older than last "
            f"processed measurement at {last_timestamp} us")


class UnsupportedSensor(UKFError, ValueError):
    """Sensor kind is neither LIDAR nor RADAR."""
