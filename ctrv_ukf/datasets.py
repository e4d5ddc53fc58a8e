"""
CTRV-UKF Measurement Data: Files & Synthetic Scenarios
========================================================

Playback format (whitespace separated, one measurement per line):

    L  px   py   timestamp  gt_px  gt_py  gt_vx  gt_vy  [gt_yaw  gt_yaw_rate]
    R  rho  phi  rho_dot    timestamp  gt_px  gt_py  gt_vx  gt_vy  [gt_yaw  gt_yaw_rate]

Ground-truth columns are optional as a block. Blank lines and lines starting
with '#' are ignored. Timestamps are integer microseconds.

The synthetic generator produces the same records from a CTRV truth with
the sensors' specified noise, for reproducible benchmarks and tests.
"""

import logging
import numpy as np
from pathlib import Path
from typing import Iterable, List, Optional, Union

from .coords import normalize_angle, radar_measurement
from .errors import UnsupportedSensor
from .measurement import (
    GroundTruth, MeasurementPackage, MeasurementRecord, SensorType,
)
from .ukf import (
    STD_LASPX, STD_LASPY, STD_RADR, STD_RADPHI, STD_RADRD, ctrv_transition,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# ===== FILE PLAYBACK =====

def parse_line(line: str, lineno: int = 0) -> Optional[MeasurementRecord]:
    """Parse one line of a measurement file. Returns None for blank/comment lines."""
    text = line.strip()
    if not text or text.startswith('#'):
        return None

    fields = text.split()
    try:
        sensor = SensorType.from_code(fields[0])
    except UnsupportedSensor as e:
        raise UnsupportedSensor(f"line {lineno}: {e}") from None

    n_z = sensor.measurement_dim
    try:
        z = [float(v) for v in fields[1:1 + n_z]]
        timestamp = int(fields[1 + n_z])
        gt_fields = [float(v) for v in fields[2 + n_z:]]
    except (IndexError, ValueError) as e:
        raise ValueError(f"line {lineno}: malformed {sensor.name} record: {e}") from None

    truth = None
    if gt_fields:
        if len(gt_fields) not in (4, 6):
            raise ValueError(
                f"line {lineno}: expected 4 or 6 ground-truth values, got {len(gt_fields)}")
        truth = GroundTruth(*gt_fields)

    return MeasurementRecord(
        measurement=MeasurementPackage(timestamp, sensor, np.array(z)),
        ground_truth=truth,
        metadata={'line': lineno},
    )


def load_measurements(filepath: PathLike) -> List[MeasurementRecord]:
    """Load a measurement file.

    Raises:
        UnsupportedSensor: A line starts with an unknown sensor code
        ValueError: A line has missing or non-numeric fields
    """
    records = []
    with open(filepath) as f:
        for lineno, line in enumerate(f, start=1):
            rec = parse_line(line, lineno)
            if rec is not None:
                records.append(rec)

    logger.info("Loaded %d measurements from %s", len(records), filepath)
    return records


def format_record(record: MeasurementRecord) -> str:
    meas = record.measurement
    cols = [meas.sensor_type.value]
    cols += [repr(float(v)) for v in meas.raw_measurements]
    cols.append(str(meas.timestamp))
    gt = record.ground_truth
    if gt is not None:
        cols += [repr(float(v)) for v in (gt.px, gt.py, gt.vx, gt.vy)]
        if gt.yaw is not None and gt.yaw_rate is not None:
            cols += [repr(float(gt.yaw)), repr(float(gt.yaw_rate))]
    return '\t'.join(cols)


def save_measurements(filepath: PathLike, records: Iterable[MeasurementRecord]):
    """Write records in the playback format."""
    with open(filepath, 'w') as f:
        for rec in records:
            f.write(format_record(rec) + '\n')


# ===== SYNTHETIC SCENARIOS =====

class SyntheticScenarioGenerator:
    """Generate CTRV ground truth with noisy lidar/radar measurements.

    Usage::

        gen = SyntheticScenarioGenerator(seed=42)
        records = gen.straight_line(n_steps=20, speed=5.0, sensors="lidar")
        for rec in records:
            ukf.process(rec.measurement)

    ``sensors`` selects the measurement stream: "lidar", "radar" or "both"
    (alternating, lidar first).
    """

    def __init__(self, seed: int = 42, lidar_std: Optional[float] = None,
                 radar_std: Optional[np.ndarray] = None):
        self.rng = np.random.RandomState(seed)
        self.lidar_std = np.array([STD_LASPX, STD_LASPY]) if lidar_std is None \
            else np.full(2, lidar_std)
        self.radar_std = np.array([STD_RADR, STD_RADPHI, STD_RADRD]) if radar_std is None \
            else np.asarray(radar_std, dtype=np.float64)

    def _sensor_for_step(self, k: int, sensors: str) -> SensorType:
        if sensors == "lidar":
            return SensorType.LIDAR
        if sensors == "radar":
            return SensorType.RADAR
        if sensors == "both":
            return SensorType.LIDAR if k % 2 == 0 else SensorType.RADAR
        raise UnsupportedSensor(f"Unknown sensor selection: {sensors!r}")

    def _measure(self, sensor: SensorType, truth: np.ndarray) -> np.ndarray:
        if sensor is SensorType.LIDAR:
            return truth[:2] + self.rng.randn(2) * self.lidar_std

        noisy = radar_measurement(truth) + self.rng.randn(3) * self.radar_std
        noisy[1] = normalize_angle(noisy[1])
        return noisy

    def trajectory(self, x0: np.ndarray, n_steps: int, dt: float,
                   sensors: str = "both", t0_us: int = 0) -> List[MeasurementRecord]:
        """Noise-free CTRV truth from x0, measured every dt seconds.

        The first record is at ``t0_us`` and measures x0 itself.
        """
        x = np.asarray(x0, dtype=np.float64).copy()
        records = []

        for k in range(n_steps):
            if k > 0:
                x = ctrv_transition(np.r_[x, 0.0, 0.0], dt)
                x[3] = normalize_angle(x[3])
            sensor = self._sensor_for_step(k, sensors)
            z = self._measure(sensor, x)
            timestamp = t0_us + int(round(k * dt * 1e6))

            px, py, v, yaw, yawd = x
            truth = GroundTruth(px, py, v * np.cos(yaw), v * np.sin(yaw), yaw, yawd)
            records.append(MeasurementRecord(
                measurement=MeasurementPackage(timestamp, sensor, z),
                ground_truth=truth,
                metadata={'step': k},
            ))

        return records

    def straight_line(self, n_steps: int = 20, dt: float = 0.1,
                      start=(0.0, 0.0), speed: float = 5.0,
                      heading: float = 0.0,
                      sensors: str = "lidar") -> List[MeasurementRecord]:
        """Constant-velocity target on a straight line."""
        x0 = np.array([start[0], start[1], speed, heading, 0.0])
        return self.trajectory(x0, n_steps, dt, sensors)

    def constant_turn(self, n_steps: int = 100, dt: float = 0.1,
                      start=(20.0, 0.0), speed: float = 5.0,
                      heading: float = 0.0, yaw_rate: float = 0.5,
                      sensors: str = "both") -> List[MeasurementRecord]:
        """Target circling at constant speed and turn rate."""
        x0 = np.array([start[0], start[1], speed, heading, yaw_rate])
        return self.trajectory(x0, n_steps, dt, sensors)
