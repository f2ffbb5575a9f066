"""
===============================================================================
AHRS - Core Math
===============================================================================
Modules:
    constants        -- angle factors, gravity, default filter tunings
    quaternion       -- Quaternion value type (scalar-first, 3-2-1 Euler)
    quaternion_math  -- pure helpers used by the filter (Euler conversion,
                        kinematics operator, measurement Jacobian, angle wrap)
===============================================================================
"""
