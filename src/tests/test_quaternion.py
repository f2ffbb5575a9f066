"""
===============================================================================
AHRS - Quaternion Test Suite
===============================================================================
Tests for the Quaternion value type: identity, normalization and sign
convention, Euler conversion, Hamilton product, rotation vectors and the
kinematic derivative.

All floating-point comparisons use numpy.testing.assert_allclose with
explicit tolerances appropriate for double-precision arithmetic.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose

from ahrs.core.quaternion import Quaternion


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def identity_quat():
    return Quaternion.identity()


@pytest.fixture
def quat_90z():
    """90-degree yaw."""
    return Quaternion.from_euler(0.0, 0.0, np.pi / 2)


# =============================================================================
# Test: Construction and normalization
# =============================================================================

class TestConstruction:

    def test_identity(self, identity_quat):
        assert_allclose(identity_quat.components, [1.0, 0.0, 0.0, 0.0], atol=1e-15)
        assert repr(identity_quat).startswith("Quaternion(w=1.000000")

    def test_normalizes_by_default(self):
        q = Quaternion(2.0, 0.0, 0.0, 0.0)
        assert_allclose(q.components, [1.0, 0.0, 0.0, 0.0], atol=1e-15)

    def test_scalar_positive_convention(self):
        """q and -q are the same rotation; the stored form has w >= 0."""
        q = Quaternion(-0.5, 0.5, 0.5, 0.5)
        assert q.w > 0.0
        assert_allclose(q.components, [0.5, -0.5, -0.5, -0.5], atol=1e-15)

    def test_zero_quaternion_rejected(self):
        with pytest.raises(ValueError):
            Quaternion(0.0, 0.0, 0.0, 0.0)

    def test_nan_quaternion_rejected(self):
        with pytest.raises(ValueError):
            Quaternion(np.nan, 0.0, 0.0, 0.0)

    def test_from_array_wrong_length(self):
        with pytest.raises(ValueError):
            Quaternion.from_array([1.0, 0.0, 0.0])

    def test_unnormalized_kept_when_requested(self):
        q = Quaternion(2.0, 0.0, 0.0, 0.0, normalize=False)
        assert_allclose(q.components, [2.0, 0.0, 0.0, 0.0])


# =============================================================================
# Test: Euler conversion
# =============================================================================

class TestEuler:

    @pytest.mark.parametrize("angles_deg", [
        (10.0, 20.0, 30.0),
        (-45.0, 10.0, 170.0),
        (120.0, -60.0, -90.0),
        (0.0, 0.0, 0.0),
    ])
    def test_round_trip(self, angles_deg):
        angles = np.radians(angles_deg)
        q = Quaternion.from_euler(*angles)
        assert_allclose(q.to_euler(), angles, atol=1e-12)

    def test_pure_yaw_components(self, quat_90z):
        s = np.sqrt(0.5)
        assert_allclose(quat_90z.components, [s, 0.0, 0.0, s], atol=1e-15)

    def test_pitch_clipped_at_gimbal_lock(self):
        """Rounding past sin(pitch) = 1 must not produce NaN."""
        q = Quaternion.from_euler(0.3, np.pi / 2, 0.1)
        roll, pitch, yaw = q.to_euler()
        assert np.isfinite([roll, pitch, yaw]).all()
        assert_allclose(pitch, np.pi / 2, atol=1e-6)


# =============================================================================
# Test: Algebra
# =============================================================================

class TestAlgebra:

    def test_multiply_identity(self, quat_90z, identity_quat):
        assert quat_90z * identity_quat == quat_90z
        assert identity_quat * quat_90z == quat_90z

    def test_two_quarter_turns_make_half_turn(self, quat_90z):
        half = quat_90z * quat_90z
        assert_allclose(half.angle_to(Quaternion.identity()), np.pi, atol=1e-7)

    def test_equality_ignores_sign(self):
        q = Quaternion(0.5, 0.5, 0.5, 0.5)
        neg = Quaternion(-0.5, -0.5, -0.5, -0.5, normalize=False)
        assert q == neg

    def test_scalar_product_not_supported(self, identity_quat):
        with pytest.raises(TypeError):
            identity_quat * 3.0

    def test_angle_to(self, identity_quat, quat_90z):
        assert_allclose(identity_quat.angle_to(quat_90z), np.pi / 2, atol=1e-12)
        assert_allclose(quat_90z.angle_to(quat_90z), 0.0, atol=1e-7)


# =============================================================================
# Test: Rotation vectors and kinematics
# =============================================================================

class TestKinematics:

    def test_rotation_vector_matches_euler(self):
        q = Quaternion.from_rotation_vector(np.array([0.0, 0.0, np.pi / 2]))
        assert q == Quaternion.from_euler(0.0, 0.0, np.pi / 2)

    def test_zero_rotation_vector(self):
        q = Quaternion.from_rotation_vector(np.zeros(3))
        assert q == Quaternion.identity()

    def test_composed_steps_match_single_rotation(self, identity_quat):
        """Right-multiplying small body-rate steps, as the truth model does."""
        omega = np.array([0.2, -0.1, 0.5])
        dt = 0.01
        step = Quaternion.from_rotation_vector(omega * dt)
        q = identity_quat
        for _ in range(100):
            q = q * step
        assert q == Quaternion.from_rotation_vector(omega * 1.0)

    def test_derivative_at_identity(self, identity_quat):
        """At identity, dq/dt = 0.5 * [0, omega]."""
        omega = np.array([0.1, -0.2, 0.3])
        assert_allclose(identity_quat.derivative(omega), [0.0, 0.05, -0.1, 0.15],
                        atol=1e-15)

    def test_derivative_orthogonal_to_q(self, quat_90z):
        """The unit-norm constraint implies q . dq/dt = 0."""
        omega = np.array([0.4, 0.1, -0.7])
        assert_allclose(np.dot(quat_90z.components, quat_90z.derivative(omega)),
                        0.0, atol=1e-14)

