"""
===============================================================================
AHRS - Attitude and Heading Reference Filter
===============================================================================
7-state Extended Kalman Filter fusing gyro rates with accelerometer-derived
attitude angles to estimate an attitude quaternion and gyro bias.

Subpackages:
    core          -- Quaternion type, quaternion math helpers, constants
    navigation    -- AttitudeFilter (the EKF) and simulated sensor models
    simulation    -- Scenario runner and Monte Carlo assessment
    visualization -- History plots
===============================================================================
"""

from ahrs.navigation.attitude_ekf import (
    AttitudeFilter,
    FilterConfig,
    FilterConfigError,
    FilterDivergenceError,
    FilterNotInitializedError,
    UpdateResult,
    UpdateStatus,
)

__version__ = "0.1.0"

__all__ = [
    'AttitudeFilter',
    'FilterConfig',
    'FilterConfigError',
    'FilterDivergenceError',
    'FilterNotInitializedError',
    'UpdateResult',
    'UpdateStatus',
]
