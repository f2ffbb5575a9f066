"""
===============================================================================
AHRS - Quaternion Value Type
===============================================================================

Unit quaternion used to represent the body attitude of the sensor rig.

Convention
----------
Scalar-first:

    q = [q0, q1, q2, q3] = q0 + q1*i + q2*j + q3*k

Euler angles follow the aerospace 3-2-1 (ZYX) sequence:
    1. Yaw   (psi)   about Z
    2. Pitch (theta) about the new Y
    3. Roll  (phi)   about the new X

Angular rates are body-frame rates (as measured by a strapdown gyro), so
kinematics use the right-multiplied form dq/dt = 0.5 * q (*) [0, omega].

References
----------
    [1] Diebel, "Representing Attitude: Euler Angles, Unit Quaternions, and
        Rotation Vectors", Stanford, 2006.
    [2] Markley & Crassidis, "Fundamentals of Spacecraft Attitude
        Determination and Control", Springer, 2014.
===============================================================================
"""

import numpy as np
from typing import Sequence, Tuple

from .constants import QUAT_NORM_TOLERANCE


class Quaternion:
    """
    Unit quaternion for 3D rotation representation.

    A rotation by angle theta about unit axis n is

        q = [cos(theta/2), sin(theta/2) * n]

    Two quaternions q and -q encode the same rotation; normalized instances
    are stored with q0 >= 0.

    Examples
    --------
    >>> q = Quaternion.from_euler(0.0, 0.0, np.pi / 2)   # 90-deg yaw
    >>> roll, pitch, yaw = q.to_euler()
    """

    _COMPARISON_TOLERANCE = 1e-9

    def __init__(self, w: float, x: float, y: float, z: float,
                 normalize: bool = True) -> None:
        """
        Parameters
        ----------
        w, x, y, z : float
            Scalar part followed by the i, j, k components.
        normalize : bool, optional
            Normalize to unit magnitude and enforce w >= 0 (default True).
        """
        self._q = np.array([w, x, y, z], dtype=np.float64)

        if normalize:
            self._normalize_in_place()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def w(self) -> float:
        return float(self._q[0])

    @property
    def x(self) -> float:
        return float(self._q[1])

    @property
    def y(self) -> float:
        return float(self._q[2])

    @property
    def z(self) -> float:
        return float(self._q[3])

    @property
    def components(self) -> np.ndarray:
        """Copy of the quaternion as a 4-element array [w, x, y, z]."""
        return self._q.copy()

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _normalize_in_place(self) -> None:
        """
        Scale to unit norm and pick the w >= 0 representative.

        Raises
        ------
        ValueError
            If the quaternion has near-zero norm.
        """
        n = np.linalg.norm(self._q)

        if not np.isfinite(n) or n < QUAT_NORM_TOLERANCE:
            raise ValueError(
                f"Cannot normalize degenerate quaternion (norm = {n:.2e})."
            )

        self._q /= n

        if self._q[0] < 0.0:
            self._q = -self._q

    # =========================================================================
    # FACTORY METHODS
    # =========================================================================

    @staticmethod
    def identity() -> 'Quaternion':
        """The identity rotation [1, 0, 0, 0]."""
        return Quaternion(1.0, 0.0, 0.0, 0.0, normalize=False)

    @staticmethod
    def from_array(q: Sequence[float], normalize: bool = True) -> 'Quaternion':
        """
        Build a quaternion from a 4-element sequence [w, x, y, z].

        Raises
        ------
        ValueError
            If the input does not have exactly four elements.
        """
        arr = np.asarray(q, dtype=np.float64).flatten()
        if arr.shape[0] != 4:
            raise ValueError(f"Quaternion needs 4 components, got {arr.shape[0]}")
        return Quaternion(arr[0], arr[1], arr[2], arr[3], normalize=normalize)

    @staticmethod
    def from_euler(phi: float, theta: float, psi: float) -> 'Quaternion':
        """
        Create a quaternion from 3-2-1 (ZYX) Euler angles.

        The result is the product of the single-axis rotations

            q = q_z(psi) * q_y(theta) * q_x(phi)

        Parameters
        ----------
        phi : float
            Roll about X (radians).
        theta : float
            Pitch about Y (radians). Roll and yaw become coupled at
            +/- pi/2 (gimbal lock).
        psi : float
            Yaw about Z (radians).

        Returns
        -------
        Quaternion
            Unit quaternion equivalent to the Euler sequence.

        References
        ----------
        Diebel (2006), Eq. 290.
        """
        c_phi = np.cos(phi / 2.0)
        s_phi = np.sin(phi / 2.0)
        c_theta = np.cos(theta / 2.0)
        s_theta = np.sin(theta / 2.0)
        c_psi = np.cos(psi / 2.0)
        s_psi = np.sin(psi / 2.0)

        w = c_phi * c_theta * c_psi + s_phi * s_theta * s_psi
        x = s_phi * c_theta * c_psi - c_phi * s_theta * s_psi
        y = c_phi * s_theta * c_psi + s_phi * c_theta * s_psi
        z = c_phi * c_theta * s_psi - s_phi * s_theta * c_psi

        return Quaternion(w, x, y, z)

    @staticmethod
    def from_rotation_vector(rot_vec: np.ndarray) -> 'Quaternion':
        """
        Exact quaternion for a rotation vector (axis * angle).

        Used by the simulator to integrate truth attitude over one step,
        q_{k+1} = q_k * from_rotation_vector(omega * dt).

        Parameters
        ----------
        rot_vec : np.ndarray
            3-element rotation vector in radians.
        """
        rot_vec = np.asarray(rot_vec, dtype=np.float64)
        angle = np.linalg.norm(rot_vec)

        if angle < 1e-12:
            # Second-order small-angle form avoids dividing by ~0
            half = 0.5 * rot_vec
            return Quaternion(1.0, half[0], half[1], half[2])

        axis = rot_vec / angle
        s = np.sin(angle / 2.0)
        return Quaternion(np.cos(angle / 2.0), s * axis[0], s * axis[1], s * axis[2])

    # =========================================================================
    # ALGEBRA
    # =========================================================================

    def multiply(self, other: 'Quaternion') -> 'Quaternion':
        """
        Hamilton product self * other.

        The product rotates first by `other` and then by `self`.
        """
        a1, b1, c1, d1 = self.w, self.x, self.y, self.z
        a2, b2, c2, d2 = other.w, other.x, other.y, other.z

        w = a1 * a2 - b1 * b2 - c1 * c2 - d1 * d2
        x = a1 * b2 + b1 * a2 + c1 * d2 - d1 * c2
        y = a1 * c2 - b1 * d2 + c1 * a2 + d1 * b2
        z = a1 * d2 + b1 * c2 - c1 * b2 + d1 * a2

        return Quaternion(w, x, y, z)

    # =========================================================================
    # CONVERSION
    # =========================================================================

    def to_euler(self) -> Tuple[float, float, float]:
        """
        Convert to 3-2-1 (ZYX) Euler angles.

            phi   = atan2(2*(w*x + y*z), 1 - 2*(x^2 + y^2))
            theta = arcsin(2*(w*y - z*x))
            psi   = atan2(2*(w*z + x*y), 1 - 2*(y^2 + z^2))

        Returns
        -------
        tuple of (float, float, float)
            (roll, pitch, yaw) in radians. Pitch is in [-pi/2, pi/2].

        Warnings
        --------
        At pitch = +/-pi/2 roll and yaw are not separable; both atan2
        arguments collapse toward zero and only their combination is
        meaningful.
        """
        w, x, y, z = self.w, self.x, self.y, self.z

        phi = np.arctan2(2.0 * (w * x + y * z), 1.0 - 2.0 * (x * x + y * y))

        # Clip so rounding past +/-1 cannot give NaN
        sinp = np.clip(2.0 * (w * y - z * x), -1.0, 1.0)
        theta = np.arcsin(sinp)

        psi = np.arctan2(2.0 * (w * z + x * y), 1.0 - 2.0 * (y * y + z * z))

        return (float(phi), float(theta), float(psi))

    # =========================================================================
    # KINEMATICS
    # =========================================================================

    def derivative(self, omega: np.ndarray) -> np.ndarray:
        """
        Quaternion time-derivative for body angular rate omega.

            | dw/dt |       | -x  -y  -z |   | omega_x |
            | dx/dt | = 0.5 |  w  -z   y | * | omega_y |
            | dy/dt |       |  z   w  -x |   | omega_z |
            | dz/dt |       | -y   x   w |

        Parameters
        ----------
        omega : np.ndarray
            Body-frame angular rate [p, q, r] in rad/s.

        Returns
        -------
        np.ndarray
            [dw/dt, dx/dt, dy/dt, dz/dt].
        """
        omega = np.asarray(omega, dtype=np.float64)
        w, x, y, z = self.w, self.x, self.y, self.z
        ox, oy, oz = omega[0], omega[1], omega[2]

        return 0.5 * np.array([
            -x * ox - y * oy - z * oz,
             w * ox - z * oy + y * oz,
             z * ox + w * oy - x * oz,
            -y * ox + x * oy + w * oz
        ], dtype=np.float64)

    def angle_to(self, other: 'Quaternion') -> float:
        """Smallest rotation angle (radians) taking self onto other."""
        dot = abs(float(np.dot(self._q, other._q)))
        return 2.0 * np.arccos(np.clip(dot, -1.0, 1.0))

    # =========================================================================
    # OPERATORS
    # =========================================================================

    def __mul__(self, other: 'Quaternion') -> 'Quaternion':
        if isinstance(other, Quaternion):
            return self.multiply(other)
        return NotImplemented

    def __eq__(self, other: object) -> bool:
        """Rotation equality: q and -q compare equal."""
        if not isinstance(other, Quaternion):
            return NotImplemented
        return (np.allclose(self._q, other._q, atol=self._COMPARISON_TOLERANCE)
                or np.allclose(self._q, -other._q, atol=self._COMPARISON_TOLERANCE))

    __hash__ = None

    def __repr__(self) -> str:
        return (f"Quaternion(w={self.w:.6f}, x={self.x:.6f}, "
                f"y={self.y:.6f}, z={self.z:.6f})")
