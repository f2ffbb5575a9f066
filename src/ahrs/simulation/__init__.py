"""
===============================================================================
AHRS - Simulation
===============================================================================
Modules:
    scenario     -- closed-loop truth/sensor/filter run -> pandas history
    monte_carlo  -- seed-dispersed batches and NIS consistency statistics
===============================================================================
"""
