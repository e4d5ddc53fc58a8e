"""
CTRV-UKF Accuracy & Consistency Metrics
========================================
RMSE against ground truth and NIS-based filter consistency.

For a consistent filter NIS ~ chi2(n_z): about 5 % of lidar NIS values
should exceed 5.991 and about 5 % of radar NIS values should exceed 7.815.

References:
  - Bar-Shalom, Li, Kirubarajan (2001) — "Estimation with Applications to
    Tracking and Navigation", §5.4
"""

import numpy as np
from scipy.stats import chi2
from typing import Sequence, Tuple


def estimate_to_cartesian(x: np.ndarray) -> np.ndarray:
    """CTRV state [px, py, v, yaw, yaw_rate] → [px, py, vx, vy]."""
    px, py, v, yaw = x[0], x[1], x[2], x[3]
    return np.array([px, py, v * np.cos(yaw), v * np.sin(yaw)])


def compute_rmse(estimations: Sequence[np.ndarray],
                 ground_truth: Sequence[np.ndarray]) -> np.ndarray:
    """Component-wise root mean squared error.

    Args:
        estimations: Estimated vectors, one per time step
        ground_truth: Truth vectors of the same layout

    Returns:
        RMSE per component

    Raises:
        ValueError: Empty input or mismatched sizes
    """
    if len(estimations) == 0 or len(estimations) != len(ground_truth):
        raise ValueError(
            f"RMSE needs equal, non-empty inputs "
            f"(got {len(estimations)} estimations, {len(ground_truth)} truths)")

    est = np.asarray(estimations, dtype=np.float64)
    gt = np.asarray(ground_truth, dtype=np.float64)
    if est.shape != gt.shape:
        raise ValueError(f"Shape mismatch: {est.shape} vs {gt.shape}")

    return np.sqrt(np.mean((est - gt)**2, axis=0))


def compute_nis(innovation: np.ndarray, S_inv: np.ndarray) -> float:
    """Normalized Innovation Squared: y^T S^{-1} y.

    Takes the already inverted innovation covariance, as computed for the
    Kalman gain, so a singular S is reported once by the update.
    """
    return float(innovation @ S_inv @ innovation)


def nis_bounds(dof: int, confidence: float = 0.95) -> Tuple[float, float]:
    """Two-sided chi-square acceptance interval for NIS."""
    tail = (1.0 - confidence) / 2
    return float(chi2.ppf(tail, df=dof)), float(chi2.ppf(1.0 - tail, df=dof))


def nis_consistency(nis_values: Sequence[float], dof: int,
                    probability: float = 0.95) -> float:
    """Fraction of NIS values above the one-sided chi-square threshold.

    A well-tuned filter returns roughly ``1 - probability``.
    """
    values = np.asarray(nis_values, dtype=np.float64)
    if values.size == 0:
        return 0.0
    threshold = chi2.ppf(probability, df=dof)
    return float(np.mean(values > threshold))
