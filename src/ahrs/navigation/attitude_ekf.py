"""
===============================================================================
AHRS - 7-State Attitude Extended Kalman Filter
===============================================================================

Fuses gyroscope rates with accelerometer-derived Euler angles to estimate
attitude (as a unit quaternion) together with the slowly varying gyro bias.

State Vector (7 elements)
-------------------------
    X[0:4] = attitude quaternion [q0, q1, q2, q3]   (body -> reference)
    X[4:7] = gyroscope bias [bx, by, bz]            (rad/s)

Process Model
-------------
    omega = gyro - b
    q_k+1 = q_k + (dt/2) * Omega(omega) * q_k
    b_k+1 = b_k                                  (random walk via W)

The transition Jacobian A = df/dX is identity except for its two top blocks:

    A[0:4, 0:4] = I4 + (dt/2) * Omega(omega)
    A[0:4, 4:7] = d(q_k+1)/db   (omega depends on the bias estimate)

Measurement Model
-----------------
    z = (roll, pitch, yaw) = euler(q)
    H[0:3, 0:4] = d euler / dq,  H[0:3, 4:7] = 0

The innovation is wrapped into (-pi, pi] per axis so measurements near
+/-180 deg do not produce spurious full-turn errors.

Joseph Form Covariance Update
-----------------------------
    P = (I - K*H) * P * (I - K*H)^T + K * R * K^T

This stays symmetric positive semi-definite under rounding, unlike the
short form P = (I - K*H) * P.

Gimbal Lock
-----------
The 3-angle measurement model is singular at pitch = +/-90 deg. The state
itself is a quaternion and has no such singularity, but H blows up there.
measurement_jacobian() keeps H finite, so near the singularity an update
either applies a poorly conditioned correction or is reported as degenerate.
It never raises and never leaves NaN/Inf in the state.

Threading
---------
An instance is not reentrant: predict() and update() read and write the
same arrays without locking. Callers sharing an instance across threads
must serialize access themselves.
===============================================================================
"""

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Mapping, Optional

import numpy as np

from ahrs.core.constants import (
    BIAS_SIZE,
    DEFAULT_BIAS_PROCESS_VARIANCE,
    DEFAULT_MEAS_VARIANCE,
    DEFAULT_QUAT_PROCESS_VARIANCE,
    DEG2RAD,
    MEAS_SIZE,
    QUAT_NORM_TOLERANCE,
    QUAT_SIZE,
    STATE_SIZE,
)
from ahrs.core.quaternion import Quaternion
from ahrs.core.quaternion_math import (
    euler_to_quaternion,
    kinematics_operator,
    measurement_jacobian,
    quaternion_to_euler,
    wrap_angle_difference,
)

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS AND RESULTS
# =============================================================================

class FilterConfigError(ValueError):
    """Invalid filter configuration (e.g. a non-positive variance)."""


class FilterNotInitializedError(RuntimeError):
    """predict() or update() called before initialize()."""


class FilterDivergenceError(ArithmeticError):
    """predict() would have left a non-finite covariance; nothing was changed."""


class UpdateStatus(Enum):
    """Outcome of a measurement update."""
    OK = auto()
    DEGENERATE_INNOVATION = auto()


@dataclass
class UpdateResult:
    """
    Structured report returned by AttitudeFilter.update().

    Attributes
    ----------
    status : UpdateStatus
        OK when the correction was applied.
    innovation : np.ndarray
        Wrapped angle error (measured - predicted), radians.
    innovation_covariance : np.ndarray or None
        S = H P H^T + R when it could be formed.
    message : str
        Human-readable reason for a fault.
    """
    status: UpdateStatus
    innovation: np.ndarray = field(default_factory=lambda: np.full(MEAS_SIZE, np.nan))
    innovation_covariance: Optional[np.ndarray] = None
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.status is UpdateStatus.OK

    @property
    def nis(self) -> float:
        """Normalized innovation squared nu^T S^-1 nu (NaN if unavailable)."""
        if not self.ok or self.innovation_covariance is None:
            return float('nan')
        return float(self.innovation @ np.linalg.solve(self.innovation_covariance,
                                                       self.innovation))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class FilterConfig:
    """
    Tuning and initial conditions for AttitudeFilter.

    Attributes:
        measurement_variance: Variance of each Euler-angle measurement [rad^2].
        bias_process_variance: Per-step random-walk variance of each bias axis.
        quaternion_process_variance: Per-step process variance of each
                                     quaternion component.
        initial_angles: Starting (roll, pitch, yaw) [rad].
        initial_bias: Starting gyro bias guess [rad/s].
    """
    measurement_variance: float = DEFAULT_MEAS_VARIANCE
    bias_process_variance: float = DEFAULT_BIAS_PROCESS_VARIANCE
    quaternion_process_variance: float = DEFAULT_QUAT_PROCESS_VARIANCE
    initial_angles: np.ndarray = field(default_factory=lambda: np.zeros(3))
    initial_bias: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.initial_angles = np.asarray(self.initial_angles, dtype=np.float64).flatten()
        self.initial_bias = np.asarray(self.initial_bias, dtype=np.float64).flatten()

    def validate(self) -> None:
        """
        Raises
        ------
        FilterConfigError
            On a non-positive or non-finite variance, or a start vector that
            is not 3 finite numbers.
        """
        variances = {
            'measurement_variance': self.measurement_variance,
            'bias_process_variance': self.bias_process_variance,
            'quaternion_process_variance': self.quaternion_process_variance,
        }
        for name, value in variances.items():
            if not np.isfinite(value) or value <= 0.0:
                raise FilterConfigError(
                    f"{name} must be strictly positive, got {value!r}"
                )

        for name, vec in (('initial_angles', self.initial_angles),
                          ('initial_bias', self.initial_bias)):
            if vec.shape != (3,) or not np.all(np.isfinite(vec)):
                raise FilterConfigError(
                    f"{name} must be 3 finite values, got {vec!r}"
                )

    @classmethod
    def from_dict(cls, mapping: Optional[Mapping[str, Any]]) -> 'FilterConfig':
        """
        Build from a config mapping (e.g. the 'filter' section of the YAML).

        'initial_angles_deg' is accepted in place of 'initial_angles'.
        Unknown keys are rejected so typos do not silently fall back to
        defaults.
        """
        data: Dict[str, Any] = dict(mapping or {})

        if 'initial_angles_deg' in data:
            if 'initial_angles' in data:
                raise FilterConfigError(
                    "Give either initial_angles or initial_angles_deg, not both"
                )
            angles_deg = data.pop('initial_angles_deg')
            try:
                data['initial_angles'] = np.asarray(angles_deg, dtype=np.float64) * DEG2RAD
            except (TypeError, ValueError) as exc:
                raise FilterConfigError(
                    f"initial_angles_deg must be 3 numbers, got {angles_deg!r}"
                ) from exc

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise FilterConfigError(f"Unknown filter config keys: {unknown}")

        for key in ('measurement_variance', 'bias_process_variance',
                    'quaternion_process_variance'):
            if key in data:
                try:
                    data[key] = float(data[key])
                except (TypeError, ValueError) as exc:
                    raise FilterConfigError(
                        f"{key} must be a number, got {data[key]!r}"
                    ) from exc

        for key in ('initial_angles', 'initial_bias'):
            if key in data:
                try:
                    data[key] = np.asarray(data[key], dtype=np.float64)
                except (TypeError, ValueError) as exc:
                    raise FilterConfigError(
                        f"{key} must be 3 numbers, got {data[key]!r}"
                    ) from exc

        return cls(**data)


# =============================================================================
# FILTER
# =============================================================================

class AttitudeFilter:
    """
    7-state EKF estimating attitude quaternion and gyro bias.

    Call predict() once per gyro sample and update() whenever a fresh
    attitude measurement is available (updates may be skipped).

    Attributes
    ----------
    X : np.ndarray
        State [q0, q1, q2, q3, bx, by, bz].
    P : np.ndarray
        7x7 state covariance.
    A : np.ndarray
        Last transition Jacobian.
    H : np.ndarray
        Last measurement Jacobian (3x7).
    K : np.ndarray
        Last Kalman gain (7x3).
    W : np.ndarray
        Process noise covariance (diagonal).
    R : np.ndarray
        Measurement noise covariance (diagonal).
    I : np.ndarray
        7x7 identity.

    Examples
    --------
    >>> ekf = AttitudeFilter()
    >>> ekf.initialize(np.zeros(3), np.zeros(3), 0.01, 1e-6, 1e-4)
    >>> ekf.predict(np.array([0.0, 0.0, 0.01]), dt=0.01)
    >>> result = ekf.update(np.zeros(3))
    >>> result.ok
    True
    """

    dtype = np.float64

    def __init__(self) -> None:
        self.X: Optional[np.ndarray] = None
        self.P: Optional[np.ndarray] = None
        self.A: Optional[np.ndarray] = None
        self.H: Optional[np.ndarray] = None
        self.K: Optional[np.ndarray] = None
        self.W: Optional[np.ndarray] = None
        self.R: Optional[np.ndarray] = None
        self.I: Optional[np.ndarray] = None

        self._initialized = False
        self.predict_count = 0
        self.update_count = 0
        self.fault_count = 0

    @classmethod
    def from_config(cls, config: FilterConfig) -> 'AttitudeFilter':
        ekf = cls()
        ekf.initialize(
            config.initial_angles,
            config.initial_bias,
            config.measurement_variance,
            config.bias_process_variance,
            config.quaternion_process_variance,
        )
        return ekf

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self, start_angle: np.ndarray, start_bias: np.ndarray,
                   meas_var: float, bias_process_var: float,
                   quat_process_var: float) -> None:
        """
        Allocate all filter matrices and set the initial estimate.

        Parameters
        ----------
        start_angle : np.ndarray
            Initial (roll, pitch, yaw) in radians.
        start_bias : np.ndarray
            Initial gyro bias guess in rad/s.
        meas_var : float
            Variance of each Euler-angle measurement (R = meas_var * I3).
        bias_process_var : float
            Process variance of each bias component.
        quat_process_var : float
            Process variance of each quaternion component.

        Raises
        ------
        FilterConfigError
            If any variance is not strictly positive or a vector is malformed.
            The filter is left untouched (Uninitialized stays Uninitialized).
        """
        config = FilterConfig(
            measurement_variance=meas_var,
            bias_process_variance=bias_process_var,
            quaternion_process_variance=quat_process_var,
            initial_angles=start_angle,
            initial_bias=start_bias,
        )
        config.validate()

        self.I = np.eye(STATE_SIZE, dtype=self.dtype)
        self.P = np.eye(STATE_SIZE, dtype=self.dtype)
        self.A = np.eye(STATE_SIZE, dtype=self.dtype)
        self.R = np.eye(MEAS_SIZE, dtype=self.dtype) * config.measurement_variance

        self.W = np.diag(
            [config.quaternion_process_variance] * QUAT_SIZE
            + [config.bias_process_variance] * BIAS_SIZE
        ).astype(self.dtype)

        self.H = np.zeros((MEAS_SIZE, STATE_SIZE), dtype=self.dtype)
        self.K = np.zeros((STATE_SIZE, MEAS_SIZE), dtype=self.dtype)

        self.X = np.zeros(STATE_SIZE, dtype=self.dtype)
        self.X[0:4] = euler_to_quaternion(config.initial_angles)
        self.X[4:7] = config.initial_bias

        self.predict_count = 0
        self.update_count = 0
        self.fault_count = 0
        self._initialized = True

        logger.info(
            "Attitude EKF initialized: angles=%s rad, bias=%s rad/s, "
            "R=%.3e, W_quat=%.3e, W_bias=%.3e",
            np.array2string(config.initial_angles, precision=4),
            np.array2string(config.initial_bias, precision=4),
            config.measurement_variance,
            config.quaternion_process_variance,
            config.bias_process_variance,
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_initialized(self, operation: str) -> None:
        if not self._initialized:
            raise FilterNotInitializedError(
                f"AttitudeFilter.{operation}() called before initialize()"
            )

    # =========================================================================
    # PREDICT STEP
    # =========================================================================

    def predict(self, gyro: np.ndarray, dt: float) -> None:
        """
        Time update driven by one gyro sample.

        Parameters
        ----------
        gyro : np.ndarray
            Measured body rate [p, q, r] in rad/s, bias included.
        dt : float
            True elapsed time since the previous predict, seconds (> 0).

        Raises
        ------
        FilterNotInitializedError
            Before initialize().
        ValueError
            On a malformed gyro vector or a non-positive dt. State is not
            modified.
        FilterDivergenceError
            When the propagated covariance overflows (e.g. after very many
            predicts with no update). X and P keep their last finite values.
        """
        self._require_initialized('predict')

        gyro = np.asarray(gyro, dtype=self.dtype).flatten()
        if gyro.shape != (3,) or not np.all(np.isfinite(gyro)):
            raise ValueError(f"gyro must be 3 finite values, got {gyro!r}")
        if not np.isfinite(dt) or dt <= 0.0:
            raise ValueError(f"dt must be a positive number of seconds, got {dt!r}")

        q = self.X[0:4].copy()
        omega = gyro - self.X[4:7]
        omega_matrix = kinematics_operator(omega[0], omega[1], omega[2])

        # Jacobian at the pre-update state
        A = self._transition_jacobian(q, omega_matrix, dt)

        # First-order quaternion integration; bias is a random walk
        q_new = q + 0.5 * dt * (omega_matrix @ q)

        with np.errstate(over='ignore', invalid='ignore'):
            q_new = q_new / np.linalg.norm(q_new)
            P = A @ self.P @ A.T + self.W
            P = 0.5 * (P + P.T)

        if not (np.all(np.isfinite(q_new)) and np.all(np.isfinite(P))):
            self.fault_count += 1
            logger.warning("Predict #%d rejected (fault #%d): propagated state "
                           "or covariance is not finite",
                           self.predict_count + 1, self.fault_count)
            raise FilterDivergenceError(
                "Covariance propagation overflowed; state left unchanged. "
                "Apply measurement updates or reinitialize the filter."
            )

        self.A = A
        self.X[0:4] = q_new
        self.P = P

        self.predict_count += 1
        logger.debug("predict #%d: dt=%.4f s, omega=%s", self.predict_count, dt, omega)

    def _transition_jacobian(self, q: np.ndarray, omega_matrix: np.ndarray,
                             dt: float) -> np.ndarray:
        """
        A = df/dX for the process model.

        Top-left 4x4:  I4 + (dt/2) * Omega(omega)
        Top-right 4x3: -(dt/2) * d(Omega(omega) q)/d(omega), i.e.

            |  q1   q2   q3 |
            | -q0   q3  -q2 |  * dt/2
            | -q3  -q0   q1 |
            |  q2  -q1  -q0 |

        The bias rows stay identity.
        """
        A = np.eye(STATE_SIZE, dtype=self.dtype)
        A[0:4, 0:4] += 0.5 * dt * omega_matrix

        q0, q1, q2, q3 = q
        half_dt = 0.5 * dt
        A[0:4, 4:7] = half_dt * np.array([
            [ q1,  q2,  q3],
            [-q0,  q3, -q2],
            [-q3, -q0,  q1],
            [ q2, -q1, -q0],
        ])
        return A

    # =========================================================================
    # MEASUREMENT UPDATE
    # =========================================================================

    def update(self, measured_angles: np.ndarray) -> UpdateResult:
        """
        Correct the state with an accelerometer-derived Euler measurement.

        The correction is computed on working copies and committed only if
        every intermediate is finite, so a degenerate update leaves X and P
        exactly as they were.

        Parameters
        ----------
        measured_angles : np.ndarray
            Measured (roll, pitch, yaw) in radians.

        Returns
        -------
        UpdateResult
            status OK, or DEGENERATE_INNOVATION when S = H P H^T + R cannot
            be inverted or the correction is non-finite.

        Raises
        ------
        FilterNotInitializedError
            Before initialize().
        ValueError
            On a malformed measurement vector.
        """
        self._require_initialized('update')

        z = np.asarray(measured_angles, dtype=self.dtype).flatten()
        if z.shape != (MEAS_SIZE,) or not np.all(np.isfinite(z)):
            raise ValueError(f"measured_angles must be 3 finite values, got {z!r}")

        X = self.X.copy()
        q = X[0:4] / np.linalg.norm(X[0:4])
        X[0:4] = q

        H = np.zeros((MEAS_SIZE, STATE_SIZE), dtype=self.dtype)
        H[:, 0:4] = measurement_jacobian(q)

        S = H @ self.P @ H.T + self.R
        if not np.all(np.isfinite(S)):
            return self._degenerate("innovation covariance is not finite", S)

        try:
            S_inv = np.linalg.inv(S)
        except np.linalg.LinAlgError as exc:
            return self._degenerate(f"innovation covariance is singular ({exc})", S)

        if not np.all(np.isfinite(S_inv)):
            return self._degenerate("inverse innovation covariance is not finite", S)

        K = self.P @ H.T @ S_inv

        predicted = quaternion_to_euler(q)
        angle_err = wrap_angle_difference(z, predicted)

        X = X + K @ angle_err

        q_norm = np.linalg.norm(X[0:4])
        if not np.isfinite(q_norm) or q_norm < QUAT_NORM_TOLERANCE:
            return self._degenerate("corrected quaternion is degenerate", S, angle_err)
        X[0:4] /= q_norm

        I_KH = self.I - K @ H
        P = I_KH @ self.P @ I_KH.T + K @ self.R @ K.T
        P = 0.5 * (P + P.T)

        if not (np.all(np.isfinite(X)) and np.all(np.isfinite(P))):
            return self._degenerate("corrected state is not finite", S, angle_err)

        self.X = X
        self.P = P
        self.H = H
        self.K = K
        self.update_count += 1

        logger.debug("update #%d: innovation=%s", self.update_count, angle_err)
        return UpdateResult(
            status=UpdateStatus.OK,
            innovation=angle_err,
            innovation_covariance=S,
        )

    def _degenerate(self, reason: str, S: np.ndarray,
                    innovation: Optional[np.ndarray] = None) -> UpdateResult:
        self.fault_count += 1
        logger.warning("Degenerate attitude update skipped (fault #%d): %s",
                       self.fault_count, reason)
        result = UpdateResult(
            status=UpdateStatus.DEGENERATE_INNOVATION,
            innovation_covariance=S.copy() if np.all(np.isfinite(S)) else None,
            message=reason,
        )
        if innovation is not None:
            result.innovation = np.asarray(innovation, dtype=self.dtype).copy()
        return result

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    @property
    def quaternion(self) -> np.ndarray:
        """Current unit quaternion [q0, q1, q2, q3]."""
        self._require_initialized('quaternion')
        return self.X[0:4].copy()

    @property
    def bias(self) -> np.ndarray:
        """Current gyro bias estimate [bx, by, bz], rad/s."""
        self._require_initialized('bias')
        return self.X[4:7].copy()

    @property
    def attitude(self) -> Quaternion:
        return Quaternion.from_array(self.quaternion)

    @property
    def euler_angles(self) -> np.ndarray:
        """Current (roll, pitch, yaw) estimate in radians."""
        return quaternion_to_euler(self.quaternion)

    @property
    def state(self) -> np.ndarray:
        self._require_initialized('state')
        return self.X.copy()

    @property
    def covariance(self) -> np.ndarray:
        self._require_initialized('covariance')
        return self.P.copy()

    def __repr__(self) -> str:
        if not self._initialized:
            return "AttitudeFilter(uninitialized)"
        roll, pitch, yaw = np.degrees(self.euler_angles)
        return (f"AttitudeFilter(rpy=[{roll:.2f}, {pitch:.2f}, {yaw:.2f}] deg, "
                f"bias={np.array2string(self.bias, precision=5)} rad/s)")
