"""
CTRV-UKF Measurement Packages
==============================
Input types consumed by ``UKF.process``.

Supported sensors:
    LIDAR : [px, py] Cartesian position (m)
    RADAR : [rho, phi, rho_dot] range (m), bearing (rad), range rate (m/s)

Timestamps are integer microseconds, monotonic per filter.
"""

import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import UnsupportedSensor


class SensorType(Enum):
    """Sensor kinds the filter understands."""
    LIDAR = "L"
    RADAR = "R"

    @property
    def measurement_dim(self) -> int:
        return 2 if self is SensorType.LIDAR else 3

    @classmethod
    def from_code(cls, code: str) -> "SensorType":
        """Parse the one-letter sensor code used in measurement files."""
        try:
            return cls(code.strip().upper())
        except ValueError:
            raise UnsupportedSensor(f"Unknown sensor code: {code!r}") from None


@dataclass
class MeasurementPackage:
    """A single sensor measurement.

    Attributes:
        timestamp: Measurement time in microseconds
        sensor_type: Which sensor produced the measurement
        raw_measurements: Measurement vector in the sensor's native format
    """
    timestamp: int
    sensor_type: SensorType
    raw_measurements: np.ndarray

    def __post_init__(self):
        if not isinstance(self.sensor_type, SensorType):
            raise UnsupportedSensor(f"Unsupported sensor: {self.sensor_type!r}")
        self.timestamp = int(self.timestamp)
        self.raw_measurements = np.asarray(self.raw_measurements, dtype=np.float64).ravel()
        n_z = self.sensor_type.measurement_dim
        if self.raw_measurements.shape != (n_z,):
            raise ValueError(
                f"{self.sensor_type.name} measurement needs {n_z} values, "
                f"got {self.raw_measurements.size}")

    @classmethod
    def lidar(cls, timestamp: int, px: float, py: float) -> "MeasurementPackage":
        return cls(timestamp, SensorType.LIDAR, np.array([px, py]))

    @classmethod
    def radar(cls, timestamp: int, rho: float, phi: float,
              rho_dot: float) -> "MeasurementPackage":
        return cls(timestamp, SensorType.RADAR, np.array([rho, phi, rho_dot]))


@dataclass
class GroundTruth:
    """Reference kinematics recorded alongside a measurement."""
    px: float
    py: float
    vx: float
    vy: float
    yaw: Optional[float] = None
    yaw_rate: Optional[float] = None

    def as_vector(self) -> np.ndarray:
        """[px, py, vx, vy], the layout used for RMSE."""
        return np.array([self.px, self.py, self.vx, self.vy])


@dataclass
class MeasurementRecord:
    """A measurement with its optional ground truth (one line of a data file)."""
    measurement: MeasurementPackage
    ground_truth: Optional[GroundTruth] = None
    metadata: dict = field(default_factory=dict)
