"""
CTRV-UKF Coordinate Helpers
============================
Angle wrapping and the polar/Cartesian conversions used by the radar
measurement model.

Angles are kept in the half-open interval (-pi, pi]. Wrapping is done with
a constant-time floor reduction rather than an iterative loop, so very large
inputs (e.g. a yaw accumulated over a long coast) cost the same as small ones.
"""

import numpy as np
from typing import Tuple

TWO_PI = 2.0 * np.pi


def normalize_angle(a: float) -> float:
    """Wrap an angle into (-pi, pi]."""
    a = a - TWO_PI * np.floor((a + np.pi) / TWO_PI)
    # floor reduction lands on [-pi, pi); fold the lower edge onto +pi
    if a <= -np.pi:
        a += TWO_PI
    return float(a)


def polar_to_cartesian(rho: float, phi: float) -> Tuple[float, float]:
    """Range/bearing to (px, py). Bearing is measured from +x toward +y."""
    return rho * np.cos(phi), rho * np.sin(phi)


def radar_measurement(state: np.ndarray, min_range: float = 1e-6) -> np.ndarray:
    """Project CTRV state(s) into radar space [rho, phi, rho_dot].

    Args:
        state: (5,) state vector or (5, N) matrix of sigma points
        min_range: Below this range the range rate is undefined and set to 0

    Returns:
        (3,) or (3, N) array matching the input layout
    """
    state = np.asarray(state, dtype=np.float64)
    px, py, v, yaw = state[0], state[1], state[2], state[3]

    rho = np.sqrt(px * px + py * py)
    phi = np.arctan2(py, px)

    # object at the sensor origin: rho_dot has no direction to project on
    safe_rho = np.where(rho < min_range, 1.0, rho)
    rho_dot = np.where(rho < min_range, 0.0,
                       (px * np.cos(yaw) * v + py * np.sin(yaw) * v) / safe_rho)

    return np.array([rho, phi, rho_dot])
