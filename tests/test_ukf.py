#!/usr/bin/env python3
"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
CTRV-UKF - FILTER CORE TEST SUITE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Covers weights, sigma point generation, CTRV propagation, prediction,
lidar/radar updates, initialization, error handling and end-to-end runs.

Run with: pytest tests/ -v --cov=ctrv_ukf --cov-report=html
═══════════════════════════════════════════════════════════════════════════════════════════════════════
"""

import logging
import pytest
import numpy as np
from numpy.testing import assert_allclose
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import ctrv_ukf.ukf as ukf_module
from ctrv_ukf import (
    UKF, UKFParams, MeasurementPackage, SensorType, SyntheticScenarioGenerator,
    NonPositiveDefiniteCovariance, SingularInnovation, UnorderedTimestamp,
    UnsupportedSensor, UKFError, ctrv_transition, ukf_weights, normalize_angle,
    N_AUG, N_SIGMA, N_X,
)


# =============================================================================
# FIXTURES / HELPERS
# =============================================================================

@pytest.fixture
def ukf():
    return UKF()


@pytest.fixture
def lidar_seeded():
    """Filter seeded from a lidar measurement at (1, 2), t=0."""
    f = UKF()
    f.process(MeasurementPackage.lidar(0, 1.0, 2.0))
    return f


def assert_covariance_valid(P):
    assert np.linalg.norm(P - P.T) <= 1e-9
    assert np.linalg.eigvalsh(P).min() > -1e-9


# =============================================================================
# WEIGHTS
# =============================================================================

class TestWeights:
    def test_weights_sum_to_one(self, ukf):
        assert abs(ukf.weights.sum() - 1.0) < 1e-12

    def test_weight_values(self, ukf):
        w = ukf.weights
        assert len(w) == 2 * N_AUG + 1
        assert w[0] == pytest.approx(-4.0 / 3.0)
        assert_allclose(w[1:], 1.0 / 6.0)

    def test_weights_read_only(self, ukf):
        with pytest.raises(ValueError):
            ukf.weights[0] = 1.0

    def test_weights_unchanged_by_processing(self, lidar_seeded):
        before = lidar_seeded.weights.copy()
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        lidar_seeded.process(MeasurementPackage.radar(200000, 2.3, 1.1, 0.2))
        assert_allclose(lidar_seeded.weights, before, atol=0)

    def test_standalone_weights_match(self, ukf):
        assert_allclose(ukf_weights(), ukf.weights)


# =============================================================================
# SIGMA POINTS
# =============================================================================

class TestSigmaPoints:
    def test_shape_and_mean_column(self, lidar_seeded):
        X = lidar_seeded.augmented_sigma_points()
        assert X.shape == (N_AUG, N_SIGMA)
        assert_allclose(X[:N_X, 0], lidar_seeded.x)
        assert_allclose(X[N_X:, 0], 0.0)

    def test_symmetry_about_mean(self, lidar_seeded):
        X = lidar_seeded.augmented_sigma_points()
        for i in range(1, N_AUG + 1):
            mid = 0.5 * (X[:, i] + X[:, i + N_AUG])
            assert_allclose(X[:, 0] - mid, 0.0, atol=1e-12)

    def test_spread_is_sqrt3_cholesky(self, lidar_seeded):
        X = lidar_seeded.augmented_sigma_points()
        # diagonal P_aug: first column offsets px by sqrt(3) * 0.15
        assert X[0, 1] - X[0, 0] == pytest.approx(np.sqrt(3.0) * 0.15)
        # noise dimension uses std_a = 2
        assert X[5, 6] - X[5, 0] == pytest.approx(np.sqrt(3.0) * 2.0)

    def test_recovers_covariance(self):
        f = UKF()
        f.process(MeasurementPackage.lidar(0, 0.5, -0.5))
        P = np.array([
            [0.5, 0.1, 0.0, 0.02, 0.0],
            [0.1, 0.4, 0.0, 0.0, 0.01],
            [0.0, 0.0, 1.0, 0.1, 0.0],
            [0.02, 0.0, 0.1, 0.8, 0.05],
            [0.0, 0.01, 0.0, 0.05, 0.3],
        ])
        f._P = P
        X = f.augmented_sigma_points()
        d = X - X[:, [0]]
        P_rec = (d[:, 1:] @ d[:, 1:].T) / 6.0
        assert_allclose(P_rec[:N_X, :N_X], P, atol=1e-12)


# =============================================================================
# CTRV PROPAGATION
# =============================================================================

class TestCTRVTransition:
    def test_straight_line_zero_noise(self):
        x = np.array([1.0, 2.0, 3.0, 0.7, 0.0, 0.0, 0.0])
        t = 0.5
        out = ctrv_transition(x, t)
        assert out[0] == pytest.approx(1.0 + 3.0 * t * np.cos(0.7))
        assert out[1] == pytest.approx(2.0 + 3.0 * t * np.sin(0.7))
        assert out[2] == pytest.approx(3.0)
        assert out[3] == pytest.approx(0.7)
        assert out[4] == pytest.approx(0.0)

    def test_turning_quarter_circle(self):
        # v=pi/2 m/s, yaw_rate=pi/2 rad/s, 1 s → quarter circle of radius 1
        x = np.array([0.0, 0.0, np.pi / 2, 0.0, np.pi / 2, 0.0, 0.0])
        out = ctrv_transition(x, 1.0)
        assert_allclose(out[:2], [1.0, 1.0], atol=1e-12)
        assert out[3] == pytest.approx(np.pi / 2)

    def test_noise_terms(self):
        dt = 0.2
        x = np.array([0.0, 0.0, 1.0, 0.0, 0.0, 2.0, 3.0])
        out = ctrv_transition(x, dt)
        assert out[0] == pytest.approx(1.0 * dt + 0.5 * dt**2 * 2.0)
        assert out[1] == pytest.approx(0.0)
        assert out[2] == pytest.approx(1.0 + dt * 2.0)
        assert out[3] == pytest.approx(0.5 * dt**2 * 3.0)
        assert out[4] == pytest.approx(dt * 3.0)

    def test_branch_continuity_at_threshold(self):
        v, dt = 5.0, 0.1
        for yawd in (1.0001e-3, -1.0001e-3):
            x = np.array([1.0, -1.0, v, 0.3, yawd, 0.0, 0.0])
            turning = ctrv_transition(x, dt)
            straight = ctrv_transition(x, dt, yaw_rate_threshold=1.0)
            assert np.abs(turning[:2] - straight[:2]).max() <= v * abs(yawd) * dt**2

    def test_threshold_is_exclusive(self):
        # exactly at the threshold the straight branch is used
        x = np.array([0.0, 0.0, 2.0, 0.0, 1e-3, 0.0, 0.0])
        out = ctrv_transition(x, 1.0)
        assert out[0] == pytest.approx(2.0)
        assert out[1] == pytest.approx(0.0)


# =============================================================================
# PREDICTION
# =============================================================================

class TestPrediction:
    def test_zero_dt_is_noop(self, lidar_seeded):
        x0, P0 = lidar_seeded.x, lidar_seeded.P
        lidar_seeded.predict(0.0)
        assert_allclose(lidar_seeded.x, x0, atol=1e-9)
        assert_allclose(lidar_seeded.P, P0, atol=1e-9)

    def test_repeated_zero_dt(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.2, 2.1))
        x0 = lidar_seeded.x
        for _ in range(5):
            lidar_seeded.predict(0.0)
        assert_allclose(lidar_seeded.x, x0, atol=1e-9)

    def test_covariance_grows_with_dt(self, lidar_seeded):
        P0 = lidar_seeded.P
        lidar_seeded.predict(0.5)
        P1 = lidar_seeded.P
        assert P1[2, 2] > P0[2, 2]
        assert P1[4, 4] > P0[4, 4]
        assert_covariance_valid(P1)

    def test_predicted_sigma_columns(self, lidar_seeded):
        lidar_seeded.predict(0.1)
        X = lidar_seeded.Xsig_pred
        assert X.shape == (N_X, N_SIGMA)

    def test_moving_target_advances(self):
        f = UKF()
        f.process(MeasurementPackage.lidar(0, 0.0, 0.0))
        f._x = np.array([0.0, 0.0, 4.0, 0.0, 0.0])
        f._P = np.diag([0.01, 0.01, 1e-4, 1e-6, 1e-6])
        f.predict(1.0)
        assert f.x[0] == pytest.approx(4.0, abs=1e-4)
        assert f.x[1] == pytest.approx(0.0, abs=1e-4)

    def test_yaw_normalized_after_predict(self):
        f = UKF()
        f.process(MeasurementPackage.lidar(0, 5.0, 5.0))
        f._x = np.array([5.0, 5.0, 1.0, np.pi - 0.01, 1.0])
        f.predict(0.5)
        assert -np.pi < f.x[3] <= np.pi
        assert f.x[3] < 0


# =============================================================================
# INITIALIZATION
# =============================================================================

class TestInitialization:
    def test_lidar_seed(self, lidar_seeded):
        assert lidar_seeded.is_initialized
        assert_allclose(lidar_seeded.x, [1.0, 2.0, 0.0, 0.0, 0.0])
        assert_allclose(np.diag(lidar_seeded.P), [0.0225, 0.0225, 1.0, 1.0, 1.0])
        assert_allclose(lidar_seeded.P - np.diag(np.diag(lidar_seeded.P)), 0.0)
        assert lidar_seeded.time_us == 0

    def test_radar_seed(self, ukf):
        ukf.process(MeasurementPackage.radar(0, np.sqrt(2.0), np.pi / 4, 0.0))
        assert abs(ukf.x[0] - 1.0) < 1e-9
        assert abs(ukf.x[1] - 1.0) < 1e-9
        assert_allclose(ukf.x[2:], 0.0)
        assert ukf.P[0, 0] == pytest.approx(0.1089)
        assert ukf.P[1, 1] == pytest.approx(0.1089)
        assert_allclose(np.diag(ukf.P)[2:], 1.0)

    def test_seed_ignores_enable_flags(self):
        f = UKF(use_laser=False)
        f.process(MeasurementPackage.lidar(10, 3.0, 4.0))
        assert f.is_initialized
        assert_allclose(f.x[:2], [3.0, 4.0])

    def test_init_returns_state(self, ukf):
        x = ukf.process(MeasurementPackage.lidar(0, 1.0, 2.0))
        assert_allclose(x, ukf.x)

    def test_reset(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        lidar_seeded.reset()
        assert not lidar_seeded.is_initialized
        assert lidar_seeded.nis_lidar is None
        lidar_seeded.process(MeasurementPackage.lidar(5, 7.0, 8.0))
        assert_allclose(lidar_seeded.x[:2], [7.0, 8.0])
        assert lidar_seeded.time_us == 5

    def test_init_logged(self, ukf, caplog):
        with caplog.at_level(logging.INFO, logger="ctrv_ukf.ukf"):
            ukf.process(MeasurementPackage.lidar(0, 1.0, 2.0))
        assert "initialized" in caplog.text


# =============================================================================
# UPDATES
# =============================================================================

class TestLidarUpdate:
    def test_pulls_toward_measurement(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        x = lidar_seeded.x
        assert 1.0 < x[0] < 1.1
        assert 2.0 < x[1] < 2.1
        assert lidar_seeded.P[0, 0] < 0.0225
        assert lidar_seeded.time_us == 100000
        assert_covariance_valid(lidar_seeded.P)

    def test_records_nis(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        assert lidar_seeded.nis_lidar is not None
        assert lidar_seeded.nis_lidar >= 0.0
        assert lidar_seeded.nis_radar is None

    def test_nis_value(self, lidar_seeded):
        # dt=0 keeps P at the seed, so S = 2 * 0.0225 on the px axis
        lidar_seeded.process(MeasurementPackage.lidar(0, 1.3, 2.0))
        assert lidar_seeded.nis_lidar == pytest.approx(0.09 / 0.045, rel=1e-6)

    def test_stationary_target_variance_bounded(self):
        rng = np.random.RandomState(7)
        f = UKF(use_radar=False)
        truth = np.array([3.0, -4.0])
        f.process(MeasurementPackage.lidar(0, *(truth + rng.randn(2) * 0.15)))
        for k in range(1, 50):
            z = truth + rng.randn(2) * 0.15
            f.process(MeasurementPackage.lidar(k * 100000, *z))
            P = f.P
            assert 0.0 < P[0, 0] < 0.0225
            assert 0.0 < P[1, 1] < 0.0225
            assert_covariance_valid(P)
        assert f.P[2, 2] < 1.0
        assert np.linalg.norm(f.x[:2] - truth) < 0.3


class TestRadarUpdate:
    def test_mixed_sequence(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        x_before = lidar_seeded.x
        lidar_seeded.process(MeasurementPackage.radar(200000, 2.3, 1.1, 0.2))
        x = lidar_seeded.x
        assert not np.allclose(x, x_before)
        assert abs(x[3]) <= np.pi
        assert lidar_seeded.nis_radar is not None
        assert_covariance_valid(lidar_seeded.P)

    def test_radar_reduces_range_uncertainty(self):
        f = UKF()
        f.process(MeasurementPackage.radar(0, 10.0, 0.0, 0.0))
        f.process(MeasurementPackage.radar(50000, 10.0, 0.0, 0.0))
        assert f.P[0, 0] < (0.3 + 0.03)**2


# =============================================================================
# ERROR HANDLING
# =============================================================================

class TestErrors:
    def test_cholesky_failure_is_fatal(self):
        f = UKF(UKFParams(std_a=0.0))
        f.process(MeasurementPackage.lidar(0, 1.0, 2.0))
        with pytest.raises(NonPositiveDefiniteCovariance) as exc:
            f.process(MeasurementPackage.lidar(100000, 1.0, 2.0))
        assert isinstance(exc.value, np.linalg.LinAlgError)
        assert isinstance(exc.value, UKFError)

    def test_non_finite_covariance_is_fatal(self, lidar_seeded):
        lidar_seeded._P[2, 2] = np.nan
        with pytest.raises(NonPositiveDefiniteCovariance):
            lidar_seeded.predict(0.1)

    def test_singular_innovation(self, lidar_seeded, monkeypatch):
        monkeypatch.setattr(ukf_module, "LIDAR_R", np.zeros((2, 2)))
        lidar_seeded._P = np.diag([0.0, 0.0, 1.0, 1.0, 1.0])
        with pytest.raises(SingularInnovation) as exc:
            lidar_seeded.update_lidar(np.array([1.0, 2.0]))
        assert exc.value.sensor == "lidar"

    def test_unordered_timestamp_skipped(self, lidar_seeded, caplog):
        lidar_seeded.process(MeasurementPackage.lidar(200000, 1.1, 2.1))
        x0, P0 = lidar_seeded.x, lidar_seeded.P
        with caplog.at_level(logging.WARNING, logger="ctrv_ukf.ukf"):
            lidar_seeded.process(MeasurementPackage.lidar(100000, 9.0, 9.0))
        assert_allclose(lidar_seeded.x, x0)
        assert_allclose(lidar_seeded.P, P0)
        assert lidar_seeded.time_us == 200000
        assert "Skipping" in caplog.text
        assert lidar_seeded.nis_lidar is None

    def test_nis_cleared_when_sensor_not_updated(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(100000, 1.1, 2.1))
        assert lidar_seeded.nis_lidar is not None
        lidar_seeded.process(MeasurementPackage.radar(200000, 2.3, 1.1, 0.2))
        assert lidar_seeded.nis_lidar is None
        assert lidar_seeded.nis_radar is not None

    def test_unordered_timestamp_strict(self, lidar_seeded):
        lidar_seeded.process(MeasurementPackage.lidar(200000, 1.1, 2.1))
        with pytest.raises(UnorderedTimestamp):
            lidar_seeded.process(MeasurementPackage.lidar(100000, 9.0, 9.0), strict=True)

    def test_disabled_sensor_still_predicts(self):
        f = UKF(use_radar=False)
        f.process(MeasurementPackage.lidar(0, 1.0, 2.0))
        P0 = f.P
        f.process(MeasurementPackage.radar(500000, 5.0, 0.1, 1.0))
        assert f.nis_radar is None
        assert f.time_us == 500000
        assert f.P[2, 2] > P0[2, 2]

    def test_unknown_sensor_rejected(self):
        with pytest.raises(UnsupportedSensor):
            MeasurementPackage(0, "S", np.array([1.0, 2.0]))
        with pytest.raises(UnsupportedSensor):
            SensorType.from_code("X")

    def test_unknown_sensor_cannot_seed(self, ukf):
        meas = MeasurementPackage.lidar(0, 1.0, 2.0)
        meas.sensor_type = "S"
        with pytest.raises(UnsupportedSensor):
            ukf.process(meas)
        assert not ukf.is_initialized
        assert_allclose(ukf.x, 0.0)

    def test_wrong_measurement_size(self):
        with pytest.raises(ValueError):
            MeasurementPackage(0, SensorType.RADAR, np.array([1.0, 2.0]))

    def test_both_sensors_disabled_warns(self):
        with pytest.warns(UserWarning):
            UKF(use_laser=False, use_radar=False)

    def test_flag_override_does_not_mutate_params(self):
        params = UKFParams()
        f = UKF(params, use_laser=False)
        assert params.use_laser is True
        assert f.params.use_laser is False


# =============================================================================
# END-TO-END
# =============================================================================

class TestEndToEnd:
    def test_straight_line_speed_converges(self):
        for seed in range(10):
            gen = SyntheticScenarioGenerator(seed=seed)
            records = gen.straight_line(n_steps=21, dt=0.1, speed=5.0, sensors="lidar")
            f = UKF()
            for rec in records:
                f.process(rec.measurement)
                assert_covariance_valid(f.P)
            assert f.time_us == 2000000
            assert abs(f.x[2] - 5.0) < 0.5, f"seed {seed}: v={f.x[2]:.3f}"

    def test_yaw_wraparound(self):
        gen = SyntheticScenarioGenerator(seed=3)
        # yaw starts 2.5 rad before +pi and crosses it after 5 s
        records = gen.constant_turn(n_steps=100, dt=0.1, start=(30.0, 10.0),
                                    speed=5.0, heading=np.pi - 2.5,
                                    yaw_rate=0.5, sensors="both")
        f = UKF()
        yaws = []
        for rec in records:
            f.process(rec.measurement)
            x = f.x
            assert abs(x[3]) <= np.pi
            assert_covariance_valid(f.P)
            yaws.append(x[3])

        steps = [abs(normalize_angle(b - a)) for a, b in zip(yaws[20:], yaws[21:])]
        assert max(steps) < 1.0

        truth_yaw = records[-1].ground_truth.yaw
        assert abs(normalize_angle(yaws[-1] - truth_yaw)) < 0.5

    def test_turning_target_position_rmse(self):
        gen = SyntheticScenarioGenerator(seed=11)
        records = gen.constant_turn(n_steps=200, start=(25.0, 5.0))
        f = UKF()
        errors = []
        for k, rec in enumerate(records):
            f.process(rec.measurement)
            if k >= 50:
                gt = rec.ground_truth
                errors.append(np.hypot(f.x[0] - gt.px, f.x[1] - gt.py))
        assert np.sqrt(np.mean(np.square(errors))) < 0.3
