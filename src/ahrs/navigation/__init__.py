"""
===============================================================================
AHRS - Navigation Subsystem
===============================================================================
Modules:
    attitude_ekf  -- 7-state attitude/gyro-bias Extended Kalman Filter
    sensors       -- simulated gyro, accelerometer and heading aid
===============================================================================
"""
