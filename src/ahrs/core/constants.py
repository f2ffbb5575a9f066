"""
===============================================================================
AHRS - Constants and Default Tunings
===============================================================================
Angle conversion factors, physical constants used by the sensor models, and
the default noise tunings of the 7-state attitude filter. SI units and
radians throughout.
===============================================================================
"""

import numpy as np


# =============================================================================
# MATHEMATICAL CONSTANTS
# =============================================================================
PI = np.pi
TWO_PI = 2.0 * np.pi
HALF_PI = 0.5 * np.pi
DEG2RAD = PI / 180.0
RAD2DEG = 180.0 / PI

# =============================================================================
# PHYSICAL CONSTANTS
# =============================================================================
STANDARD_GRAVITY = 9.80665             # m/s^2

# =============================================================================
# FILTER DIMENSIONS
# =============================================================================
STATE_SIZE = 7                         # [q0, q1, q2, q3, bx, by, bz]
QUAT_SIZE = 4
BIAS_SIZE = 3
MEAS_SIZE = 3                          # [roll, pitch, yaw]

# =============================================================================
# DEFAULT FILTER TUNING
# =============================================================================
DEFAULT_MEAS_VARIANCE = 0.01           # rad^2, per Euler axis
DEFAULT_BIAS_PROCESS_VARIANCE = 1.0e-6 # (rad/s)^2 per step
DEFAULT_QUAT_PROCESS_VARIANCE = 1.0e-4 # per step, per quaternion component

# =============================================================================
# NUMERICAL TOLERANCES
# =============================================================================
QUAT_NORM_TOLERANCE = 1e-10            # below this a quaternion is degenerate
GIMBAL_LOCK_EPSILON = 1e-6             # floor for cos(pitch) style denominators
