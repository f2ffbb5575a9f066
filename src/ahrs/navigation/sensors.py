"""
===============================================================================
AHRS - Simulated Sensor Models
===============================================================================
Sensor models that feed the attitude filter in scenarios and tests:

  IMU               -- three-axis gyro (bias, bias random walk, white noise)
                       and accelerometer (gravity specific force + noise)
  HeadingReference  -- yaw aid (truth yaw + white noise); the accelerometer
                       alone cannot observe heading
  AttitudeSensor    -- combines accelerometer tilt and heading into the
                       (roll, pitch, yaw) measurement the filter consumes

The body is assumed quasi-static, so the accelerometer senses only gravity.
Frames are NED: gravity is +Z in the reference frame, and a level body at
rest reads [0, 0, -g].

All noise comes from numpy.random.Generator. Constructors take config
dictionaries so parameters can be loaded straight from the YAML file.
===============================================================================
"""

import numpy as np
from typing import Optional, Tuple

from ahrs.core.constants import DEG2RAD, STANDARD_GRAVITY


def tilt_from_accel(accel: np.ndarray) -> Tuple[float, float]:
    """
    Roll and pitch of a static body from its accelerometer reading.

        roll  = atan2(-f_y, -f_z)
        pitch = atan2( f_x, sqrt(f_y^2 + f_z^2))

    Parameters
    ----------
    accel : np.ndarray
        Specific force [f_x, f_y, f_z] in m/s^2 (body frame).

    Returns
    -------
    tuple of (float, float)
        (roll, pitch) in radians.
    """
    fx, fy, fz = np.asarray(accel, dtype=np.float64)
    roll = np.arctan2(-fy, -fz)
    pitch = np.arctan2(fx, np.sqrt(fy * fy + fz * fz))
    return float(roll), float(pitch)


class IMU:
    """
    Gyroscope + accelerometer model.

    Gyroscope error model:
        - Constant turn-on bias (rad/s, per axis)
        - Bias random walk (rad/s/sqrt(s)) applied every sample
        - White rate noise (rad/s, 1-sigma)

    Accelerometer error model:
        - White noise (m/s^2, 1-sigma)

    Parameters (passed as config dict):
        gyro_bias               : list[3] -- rad/s
        gyro_bias_random_walk   : float   -- rad/s/sqrt(s)
        gyro_noise_std          : float   -- rad/s
        accel_noise_std         : float   -- m/s^2
        gravity                 : float   -- m/s^2
        seed                    : int     -- (optional) RNG seed
    """

    def __init__(self, config: Optional[dict] = None):
        config = config or {}
        self.rng = np.random.default_rng(config.get("seed", None))

        try:
            self.gyro_bias = np.asarray(
                config.get("gyro_bias", [0.0, 0.0, 0.0]), dtype=np.float64
            ).copy()
            self.gyro_bias_rw = float(config.get("gyro_bias_random_walk", 0.0))
            self.gyro_noise_std = float(config.get("gyro_noise_std", 0.0))
            self.accel_noise_std = float(config.get("accel_noise_std", 0.0))
            self.gravity = float(config.get("gravity", STANDARD_GRAVITY))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid IMU configuration: {exc}") from exc

        if self.gyro_bias.shape != (3,):
            raise ValueError(f"gyro_bias must have 3 elements, got {self.gyro_bias!r}")

        for name, value in (("gyro_bias_random_walk", self.gyro_bias_rw),
                            ("gyro_noise_std", self.gyro_noise_std),
                            ("accel_noise_std", self.accel_noise_std)):
            if value < 0.0:
                raise ValueError(f"{name} must be non-negative")

    def measure_gyro(self, omega_true: np.ndarray, dt: float) -> np.ndarray:
        """
        Gyro reading for true body rate omega_true, advancing the bias walk.
        """
        if self.gyro_bias_rw > 0.0:
            self.gyro_bias += self.rng.normal(
                0.0, self.gyro_bias_rw * np.sqrt(dt), size=3
            )

        noise = self.rng.normal(0.0, self.gyro_noise_std, size=3) \
            if self.gyro_noise_std > 0.0 else np.zeros(3)

        return np.asarray(omega_true, dtype=np.float64) + self.gyro_bias + noise

    def measure_accel(self, euler_true: np.ndarray) -> np.ndarray:
        """
        Accelerometer reading of a static body at attitude euler_true.

        Specific force in the body frame for 3-2-1 angles (roll phi,
        pitch theta):

            f = [g sin(theta), -g sin(phi) cos(theta), -g cos(phi) cos(theta)]
        """
        phi, theta = euler_true[0], euler_true[1]
        g = self.gravity
        f = np.array([
            g * np.sin(theta),
            -g * np.sin(phi) * np.cos(theta),
            -g * np.cos(phi) * np.cos(theta),
        ])
        if self.accel_noise_std > 0.0:
            f = f + self.rng.normal(0.0, self.accel_noise_std, size=3)
        return f


class HeadingReference:
    """
    Yaw aid (compass-like), truth plus white noise.

    Parameters (passed as config dict):
        yaw_noise_std_deg : float -- degrees (1-sigma)
        seed              : int   -- (optional) RNG seed
    """

    def __init__(self, config: Optional[dict] = None):
        config = config or {}
        self.rng = np.random.default_rng(config.get("seed", None))
        try:
            self.noise_std = float(config.get("yaw_noise_std_deg", 0.0)) * DEG2RAD
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid heading configuration: {exc}") from exc
        if self.noise_std < 0.0:
            raise ValueError("yaw_noise_std_deg must be non-negative")

    def measure(self, yaw_true: float) -> float:
        if self.noise_std > 0.0:
            return float(yaw_true + self.rng.normal(0.0, self.noise_std))
        return float(yaw_true)


class AttitudeSensor:
    """
    Accelerometer-derived (roll, pitch) plus aided yaw.

    Produces exactly the 3-angle measurement AttitudeFilter.update() takes.
    """

    def __init__(self, imu: IMU, heading: HeadingReference):
        self.imu = imu
        self.heading = heading

    def measure(self, euler_true: np.ndarray) -> np.ndarray:
        accel = self.imu.measure_accel(euler_true)
        roll, pitch = tilt_from_accel(accel)
        yaw = self.heading.measure(euler_true[2])
        return np.array([roll, pitch, yaw], dtype=np.float64)
