"""
CTRV-UKF Filter Core
=====================
Unscented Kalman Filter fusing asynchronous lidar and radar measurements
into a Constant Turn Rate and Velocity magnitude (CTRV) estimate.

State:
    x = [px, py, v, yaw, yaw_rate]
        px, py   : planar position (m)
        v        : speed magnitude (m/s)
        yaw      : heading (rad), kept in (-pi, pi]
        yaw_rate : turn rate (rad/s)

Augmented state (process noise passed through the dynamics):
    x_aug = [x, nu_a, nu_yawdd]

Cycle per measurement:
    process(meas)
      ├── first call      → seed x, P from the measurement
      └── later calls     → predict(dt)
                              ├── augmented sigma points (Cholesky of P_aug)
                              ├── CTRV propagation of every sigma point
                              └── weighted mean / covariance
                            update_lidar(z)   linear Kalman update
                            update_radar(z)   unscented update

Sigma spreading uses lambda = 3 - n_aug, so the centre weight is -4/3.

References:
  - Julier, Uhlmann (1997) — "A New Extension of the Kalman Filter to
    Nonlinear Systems"
  - Wan, van der Merwe (2000) — "The Unscented Kalman Filter for Nonlinear
    Estimation"
"""

import logging
import warnings
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np
from scipy.linalg import cholesky

from .coords import normalize_angle, polar_to_cartesian, radar_measurement
from .errors import (
    NonPositiveDefiniteCovariance, SingularInnovation, UnorderedTimestamp,
    UnsupportedSensor,
)
from .measurement import MeasurementPackage, SensorType
from .metrics import compute_nis

logger = logging.getLogger(__name__)


# ===== DIMENSIONS =====

N_X = 5                      # State dimension
N_AUG = 7                    # Augmented state dimension
LAMBDA = 3 - N_AUG           # Sigma point spreading parameter
N_SIGMA = 2 * N_AUG + 1      # Number of sigma points
N_Z_LIDAR = 2
N_Z_RADAR = 3

YAW = 3                      # Index of yaw in the state
PHI = 1                      # Index of bearing in the radar measurement

# ===== SENSOR NOISE (manufacturer supplied, not tunable) =====

STD_LASPX = 0.15             # Lidar px (m)
STD_LASPY = 0.15             # Lidar py (m)
STD_RADR = 0.3               # Radar range (m)
STD_RADPHI = 0.03            # Radar bearing (rad)
STD_RADRD = 0.3              # Radar range rate (m/s)

LIDAR_H = np.array([
    [1.0, 0.0, 0.0, 0.0, 0.0],
    [0.0, 1.0, 0.0, 0.0, 0.0],
])
LIDAR_R = np.diag([STD_LASPX**2, STD_LASPY**2])
RADAR_R = np.diag([STD_RADR**2, STD_RADPHI**2, STD_RADRD**2])


@dataclass
class UKFParams:
    """Tunable filter parameters.

    Process noise defaults suit urban driving; sensor noise is fixed at
    module level and is not part of this dataclass.
    """
    std_a: float = 2.0                   # Longitudinal acceleration noise (m/s^2)
    std_yawdd: float = 2.0               # Yaw acceleration noise (rad/s^2)
    use_laser: bool = True               # Lidar updates (init always allowed)
    use_radar: bool = True               # Radar updates (init always allowed)
    yaw_rate_threshold: float = 1e-3     # Below this |yaw_rate| drive straight
    min_range: float = 1e-6              # Radar range-rate guard near origin


def ukf_weights(n_aug: int = N_AUG, lam: float = LAMBDA) -> np.ndarray:
    """Sigma point weights: w0 = lam/(lam+n), wi = 1/(2(lam+n))."""
    weights = np.full(2 * n_aug + 1, 0.5 / (lam + n_aug))
    weights[0] = lam / (lam + n_aug)
    return weights


def ctrv_transition(sigma_aug: np.ndarray, dt: float,
                    yaw_rate_threshold: float = 1e-3) -> np.ndarray:
    """Propagate one augmented sigma point through the CTRV model.

    Args:
        sigma_aug: [px, py, v, yaw, yaw_rate, nu_a, nu_yawdd]
        dt: Time step (s)
        yaw_rate_threshold: |yaw_rate| at or below which the straight-line
            branch is used

    Returns:
        Predicted state [px, py, v, yaw, yaw_rate]
    """
    px, py, v, yaw, yawd, nu_a, nu_yawdd = sigma_aug

    if abs(yawd) > yaw_rate_threshold:
        px_p = px + v / yawd * (np.sin(yaw + yawd * dt) - np.sin(yaw))
        py_p = py + v / yawd * (-np.cos(yaw + yawd * dt) + np.cos(yaw))
    else:
        px_p = px + v * np.cos(yaw) * dt
        py_p = py + v * np.sin(yaw) * dt

    v_p = v
    yaw_p = yaw + yawd * dt
    yawd_p = yawd

    # process noise
    dt2 = 0.5 * dt * dt
    px_p += dt2 * np.cos(yaw) * nu_a
    py_p += dt2 * np.sin(yaw) * nu_a
    v_p += dt * nu_a
    yaw_p += dt2 * nu_yawdd
    yawd_p += dt * nu_yawdd

    return np.array([px_p, py_p, v_p, yaw_p, yawd_p])


class UKF:
    """
    Unscented Kalman Filter for a single CTRV target.

    Usage:
        ukf = UKF()
        for meas in measurements:           # non-decreasing timestamps
            ukf.process(meas)
            print(ukf.x, ukf.P)

    The first measurement only seeds the state. Each later measurement runs
    a prediction to its timestamp and, when its sensor is enabled, an update.
    Fatal numeric errors (``NonPositiveDefiniteCovariance``,
    ``SingularInnovation``) propagate; call ``reset()`` before reuse.
    """

    def __init__(self, params: Optional[UKFParams] = None,
                 use_laser: Optional[bool] = None,
                 use_radar: Optional[bool] = None):
        params = params or UKFParams()
        if use_laser is not None:
            params = replace(params, use_laser=use_laser)
        if use_radar is not None:
            params = replace(params, use_radar=use_radar)
        self.params = params
        if not (self.params.use_laser or self.params.use_radar):
            warnings.warn("UKF constructed with both lidar and radar updates "
                          "disabled; it will only predict")

        self._weights = ukf_weights()
        self._weights.setflags(write=False)
        self._scale = np.sqrt(LAMBDA + N_AUG)

        self.reset()

    def reset(self):
        """Return to the uninitialized state."""
        self._x = np.zeros(N_X)
        self._P = np.eye(N_X)
        self._Xsig_pred = np.zeros((N_X, N_SIGMA))
        self._time_us = 0
        self._initialized = False
        self.nis_lidar: Optional[float] = None
        self.nis_radar: Optional[float] = None

    # ===== ACCESSORS =====

    @property
    def x(self) -> np.ndarray:
        return self._x.copy()

    @property
    def P(self) -> np.ndarray:
        return self._P.copy()

    @property
    def weights(self) -> np.ndarray:
        return self._weights

    @property
    def Xsig_pred(self) -> np.ndarray:
        """Sigma points of the last prediction (N_X x N_SIGMA)."""
        return self._Xsig_pred.copy()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def time_us(self) -> int:
        return self._time_us

    # ===== INGRESS =====

    def process(self, meas: MeasurementPackage, strict: bool = False) -> np.ndarray:
        """Run one filter cycle for a measurement.

        Args:
            meas: Measurement package (timestamp in microseconds)
            strict: Raise ``UnorderedTimestamp`` instead of skipping an
                out-of-order measurement

        Returns:
            Copy of the posterior state vector

        ``nis_lidar`` / ``nis_radar`` hold the NIS of this cycle's update and
        are None for every sensor that was not updated.
        """
        self.nis_lidar = None
        self.nis_radar = None

        if not self._initialized:
            self._initialize(meas)
            return self.x

        if meas.timestamp < self._time_us:
            err = UnorderedTimestamp(meas.timestamp, self._time_us)
            if strict:
                raise err
            logger.warning("Skipping measurement: %s", err)
            return self.x

        dt = (meas.timestamp - self._time_us) / 1e6
        self.predict(dt)
        self._time_us = meas.timestamp

        if meas.sensor_type is SensorType.LIDAR and self.params.use_laser:
            self.update_lidar(meas.raw_measurements)
        elif meas.sensor_type is SensorType.RADAR and self.params.use_radar:
            self.update_radar(meas.raw_measurements)
        else:
            logger.debug("No update for %s measurement (sensor disabled)",
                         meas.sensor_type.name)

        return self.x

    def _initialize(self, meas: MeasurementPackage):
        z = meas.raw_measurements
        x = np.zeros(N_X)

        if meas.sensor_type is SensorType.LIDAR:
            x[0], x[1] = z[0], z[1]
            P = np.diag([STD_LASPX**2, STD_LASPY**2, 1.0, 1.0, 1.0])
        elif meas.sensor_type is SensorType.RADAR:
            x[0], x[1] = polar_to_cartesian(z[0], z[1])
            # conservative position variance, not a Jacobian projection
            var_pos = (STD_RADR + STD_RADPHI)**2
            P = np.diag([var_pos, var_pos, 1.0, 1.0, 1.0])
        else:
            raise UnsupportedSensor(
                f"Cannot initialize from sensor type {meas.sensor_type!r}")

        self._x = x
        self._P = P
        self._time_us = meas.timestamp
        self._initialized = True
        logger.info("UKF initialized from %s at t=%d us: x=%s",
                    meas.sensor_type.name, meas.timestamp, self._x)

    # ===== PREDICTION =====

    def predict(self, dt: float):
        """Propagate x, P forward by dt seconds."""
        Xsig_aug = self.augmented_sigma_points()
        self.predict_sigma_points(Xsig_aug, dt)
        self.predict_mean_and_covariance()
        logger.debug("Predicted dt=%.4f s: x=%s", dt, self._x)

    def augmented_sigma_points(self) -> np.ndarray:
        """Sigma points of the augmented state (N_AUG x N_SIGMA).

        Raises:
            NonPositiveDefiniteCovariance: P_aug has no Cholesky factor
        """
        x_aug = np.zeros(N_AUG)
        x_aug[:N_X] = self._x

        P_aug = np.zeros((N_AUG, N_AUG))
        P_aug[:N_X, :N_X] = self._P
        P_aug[5, 5] = self.params.std_a**2
        P_aug[6, 6] = self.params.std_yawdd**2

        try:
            L = cholesky(P_aug, lower=True)
        except (np.linalg.LinAlgError, ValueError):
            raise NonPositiveDefiniteCovariance(P_aug) from None

        Xsig_aug = np.zeros((N_AUG, N_SIGMA))
        Xsig_aug[:, 0] = x_aug
        for i in range(N_AUG):
            Xsig_aug[:, i + 1] = x_aug + self._scale * L[:, i]
            Xsig_aug[:, i + 1 + N_AUG] = x_aug - self._scale * L[:, i]
        return Xsig_aug

    def predict_sigma_points(self, Xsig_aug: np.ndarray, dt: float) -> np.ndarray:
        """Run every augmented sigma point through the CTRV model."""
        threshold = self.params.yaw_rate_threshold
        for i in range(N_SIGMA):
            self._Xsig_pred[:, i] = ctrv_transition(Xsig_aug[:, i], dt, threshold)
        return self._Xsig_pred

    def predict_mean_and_covariance(self):
        """Recombine predicted sigma points into x and P."""
        x = self._Xsig_pred @ self._weights

        P = np.zeros((N_X, N_X))
        for i in range(N_SIGMA):
            x_diff = self._Xsig_pred[:, i] - x
            x_diff[YAW] = normalize_angle(x_diff[YAW])
            P += self._weights[i] * np.outer(x_diff, x_diff)

        x[YAW] = normalize_angle(x[YAW])
        self._x = x
        self._P = 0.5 * (P + P.T)

    # ===== UPDATE =====

    def update_lidar(self, z: np.ndarray):
        """Linear Kalman update with a [px, py] measurement."""
        z = np.asarray(z, dtype=np.float64)
        y = z - LIDAR_H @ self._x
        Ht = LIDAR_H.T
        S = LIDAR_H @ self._P @ Ht + LIDAR_R
        Si = self._invert_innovation(S, "lidar")
        K = self._P @ Ht @ Si

        self._x = self._x + K @ y
        self._x[YAW] = normalize_angle(self._x[YAW])
        P = (np.eye(N_X) - K @ LIDAR_H) @ self._P
        self._P = 0.5 * (P + P.T)

        self.nis_lidar = compute_nis(y, Si)
        logger.debug("Lidar update: NIS=%.3f", self.nis_lidar)

    def update_radar(self, z: np.ndarray):
        """Unscented update with a [rho, phi, rho_dot] measurement.

        Uses the sigma points of the preceding prediction. Assumes the object
        is not at the sensor origin, where rho_dot is undefined.
        """
        z = np.asarray(z, dtype=np.float64)
        Xsig = self._Xsig_pred
        Zsig = radar_measurement(Xsig, self.params.min_range)

        z_pred = Zsig @ self._weights

        S = RADAR_R.copy()
        Tc = np.zeros((N_X, N_Z_RADAR))
        for i in range(N_SIGMA):
            z_diff = Zsig[:, i] - z_pred
            z_diff[PHI] = normalize_angle(z_diff[PHI])

            x_diff = Xsig[:, i] - self._x
            x_diff[YAW] = normalize_angle(x_diff[YAW])

            S += self._weights[i] * np.outer(z_diff, z_diff)
            Tc += self._weights[i] * np.outer(x_diff, z_diff)

        Si = self._invert_innovation(S, "radar")
        K = Tc @ Si

        y = z - z_pred
        y[PHI] = normalize_angle(y[PHI])

        self._x = self._x + K @ y
        self._x[YAW] = normalize_angle(self._x[YAW])
        P = self._P - K @ S @ K.T
        self._P = 0.5 * (P + P.T)

        self.nis_radar = compute_nis(y, Si)
        logger.debug("Radar update: NIS=%.3f", self.nis_radar)

    @staticmethod
    def _invert_innovation(S: np.ndarray, sensor: str) -> np.ndarray:
        try:
            Si = np.linalg.inv(S)
        except np.linalg.LinAlgError:
            raise SingularInnovation(sensor, S) from None
        if not np.all(np.isfinite(Si)):
            raise SingularInnovation(sensor, S)
        return Si


__all__ = [
    "UKF", "UKFParams", "ukf_weights", "ctrv_transition",
    "N_X", "N_AUG", "LAMBDA", "N_SIGMA", "N_Z_LIDAR", "N_Z_RADAR",
    "STD_LASPX", "STD_LASPY", "STD_RADR", "STD_RADPHI", "STD_RADRD",
    "LIDAR_H", "LIDAR_R", "RADAR_R",
]
