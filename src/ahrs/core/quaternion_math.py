"""
===============================================================================
AHRS - Quaternion Math Utilities
===============================================================================

Pure, stateless helpers used by the attitude filter:

    euler_to_quaternion     -- 3-2-1 Euler angles -> unit quaternion
    quaternion_to_euler     -- quaternion -> 3-2-1 Euler angles
    kinematics_operator     -- 4x4 Omega(w) with dq/dt = 0.5 * Omega(w) * q
    measurement_jacobian    -- d(roll, pitch, yaw)/dq, 3x4
    wrap_angle_difference   -- measured - predicted, wrapped to (-pi, pi]

Quaternions are plain 4-element arrays [q0, q1, q2, q3] here so the filter can
keep them inside its state vector.
===============================================================================
"""

import numpy as np
from typing import Sequence, Union

from .constants import GIMBAL_LOCK_EPSILON, PI, TWO_PI
from .quaternion import Quaternion

ArrayLike = Union[Sequence[float], np.ndarray]


def euler_to_quaternion(angles: ArrayLike) -> np.ndarray:
    """
    Convert (roll, pitch, yaw) in radians to a unit quaternion [q0..q3].

    Parameters
    ----------
    angles : array_like
        3-2-1 Euler angles (roll, pitch, yaw) in radians.

    Returns
    -------
    np.ndarray
        Unit quaternion with q0 >= 0.
    """
    angles = np.asarray(angles, dtype=np.float64).flatten()
    if angles.shape[0] != 3:
        raise ValueError(f"Expected 3 Euler angles, got {angles.shape[0]}")
    return Quaternion.from_euler(angles[0], angles[1], angles[2]).components


def quaternion_to_euler(quat: ArrayLike) -> np.ndarray:
    """
    Convert a quaternion [q0..q3] to (roll, pitch, yaw) in radians.

    The input is normalized first; a zero quaternion raises ValueError.
    """
    return np.array(Quaternion.from_array(quat).to_euler(), dtype=np.float64)


def kinematics_operator(p: float, q: float, r: float) -> np.ndarray:
    """
    Quaternion kinematics matrix for body rate (p, q, r).

        dq/dt = 0.5 * Omega * q

                | 0  -p  -q  -r |
        Omega = | p   0   r  -q |
                | q  -r   0   p |
                | r   q  -p   0 |

    Omega is skew-symmetric, so I + Omega*dt/2 only changes the quaternion
    norm at second order.
    """
    return np.array([
        [0.0,  -p,   -q,   -r],
        [p,    0.0,   r,   -q],
        [q,    -r,   0.0,   p],
        [r,     q,   -p,  0.0],
    ], dtype=np.float64)


def measurement_jacobian(quat: ArrayLike) -> np.ndarray:
    """
    Jacobian of the 3-2-1 Euler angles with respect to the quaternion.

    With
        roll  = atan2(n1, d1),  n1 = 2(q0 q1 + q2 q3), d1 = 1 - 2(q1^2 + q2^2)
        pitch = asin(s),        s  = 2(q0 q2 - q3 q1)
        yaw   = atan2(n3, d3),  n3 = 2(q0 q3 + q1 q2), d3 = 1 - 2(q2^2 + q3^2)

    the rows are d(atan2)/dq = (d*dn - n*dd) / (n^2 + d^2) and
    d(asin)/dq = ds / sqrt(1 - s^2).

    Parameters
    ----------
    quat : array_like
        Unit quaternion [q0, q1, q2, q3].

    Returns
    -------
    np.ndarray
        3x4 matrix, rows (roll, pitch, yaw).

    Notes
    -----
    All three rows are singular at pitch = +/-90 deg. The denominators are
    floored at GIMBAL_LOCK_EPSILON so the matrix stays finite there; the
    entries become very large, which the filter sees as a near-useless
    measurement rather than a crash.
    """
    q0, q1, q2, q3 = np.asarray(quat, dtype=np.float64).flatten()[:4]

    # Roll
    n1 = 2.0 * (q0 * q1 + q2 * q3)
    d1 = 1.0 - 2.0 * (q1 * q1 + q2 * q2)
    den1 = max(n1 * n1 + d1 * d1, GIMBAL_LOCK_EPSILON)
    d_roll = np.array([
        2.0 * q1 * d1,
        2.0 * q0 * d1 + 4.0 * q1 * n1,
        2.0 * q3 * d1 + 4.0 * q2 * n1,
        2.0 * q2 * d1,
    ]) / den1

    # Pitch
    s = np.clip(2.0 * (q0 * q2 - q3 * q1), -1.0, 1.0)
    cos_pitch = max(np.sqrt(1.0 - s * s), GIMBAL_LOCK_EPSILON)
    d_pitch = 2.0 * np.array([q2, -q3, q0, -q1]) / cos_pitch

    # Yaw
    n3 = 2.0 * (q0 * q3 + q1 * q2)
    d3 = 1.0 - 2.0 * (q2 * q2 + q3 * q3)
    den3 = max(n3 * n3 + d3 * d3, GIMBAL_LOCK_EPSILON)
    d_yaw = np.array([
        2.0 * q3 * d3,
        2.0 * q2 * d3,
        2.0 * q1 * d3 + 4.0 * q2 * n3,
        2.0 * q0 * d3 + 4.0 * q3 * n3,
    ]) / den3

    return np.vstack([d_roll, d_pitch, d_yaw])


def wrap_angle_difference(measured: Union[float, ArrayLike],
                          predicted: Union[float, ArrayLike],
                          degrees: bool = False) -> Union[float, np.ndarray]:
    """
    Signed difference measured - predicted, wrapped into (-pi, pi].

    The sign follows measured - predicted and the result takes the shorter
    way around. A measurement of 179 deg against a prediction of -179 deg
    gives -2 deg (magnitude 2 deg), not +358 deg or +2 deg.

    Parameters
    ----------
    measured, predicted : float or array_like
        Angles in the same unit; arrays are handled element-wise.
    degrees : bool, optional
        Interpret inputs and output in degrees, range (-180, 180].

    Returns
    -------
    float or np.ndarray
        Matches the shape of the broadcast inputs.
    """
    half_turn = 180.0 if degrees else PI
    full_turn = 360.0 if degrees else TWO_PI

    diff = np.asarray(measured, dtype=np.float64) - np.asarray(predicted, dtype=np.float64)
    wrapped = half_turn - np.mod(half_turn - diff, full_turn)

    if wrapped.ndim == 0:
        return float(wrapped)
    return wrapped
