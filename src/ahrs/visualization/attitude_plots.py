"""
Plotting utilities for attitude filter runs.
Time histories of truth vs estimate, gyro bias convergence and filter health,
saved as PNG with the non-interactive Agg backend.
"""

import os

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for saving
import matplotlib.pyplot as plt
import pandas as pd


COLORS = {
    'truth': '#546E7A',     # Blue grey
    'estimate': '#2E86AB',  # Steel blue
    'fault': '#C73E1D',     # Red
    'bound': '#F18F01',     # Orange
}
AXIS_COLORS = ['#2E86AB', '#F18F01', '#2E7D32']

_ANGLE_COLUMNS = (('roll', 'Roll'), ('pitch', 'Pitch'), ('yaw', 'Yaw'))


def _finish(fig, path):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def plot_attitude_history(history: pd.DataFrame, path: str) -> str:
    """Plot true and estimated roll/pitch/yaw plus the attitude error.

    Parameters
    ----------
    history : pd.DataFrame
        Output of simulation.scenario.run_scenario.
    path : str
        Destination PNG file.

    Returns
    -------
    str
        The path written.
    """
    fig, axes = plt.subplots(4, 1, figsize=(10, 10), sharex=True)
    t = history['time'].to_numpy()

    for ax, (key, label) in zip(axes[:3], _ANGLE_COLUMNS):
        ax.plot(t, np.degrees(history[f'{key}_true']), color=COLORS['truth'],
                linestyle='--', label='truth')
        ax.plot(t, np.degrees(history[f'{key}_est']), color=COLORS['estimate'],
                label='EKF')
        ax.set_ylabel(f'{label} [deg]')
        ax.grid(True, alpha=0.3)
    axes[0].legend(loc='upper right')

    err_ax = axes[3]
    err_ax.semilogy(t, np.degrees(history['attitude_error']) + 1e-12,
                    color=COLORS['estimate'])
    faults = history['update_status'] == 'DEGENERATE_INNOVATION'
    if faults.any():
        err_ax.scatter(t[faults.to_numpy()],
                       np.degrees(history.loc[faults, 'attitude_error']) + 1e-12,
                       color=COLORS['fault'], marker='x', label='degenerate update')
        err_ax.legend(loc='upper right')
    err_ax.set_ylabel('Attitude error [deg]')
    err_ax.set_xlabel('Time [s]')
    err_ax.grid(True, which='both', alpha=0.3)

    fig.suptitle('Attitude estimate vs truth')
    return _finish(fig, path)


def plot_bias_history(history: pd.DataFrame, path: str) -> str:
    """Plot estimated gyro bias per axis against the simulated truth,
    and the covariance trace underneath."""
    fig, (bias_ax, trace_ax) = plt.subplots(2, 1, figsize=(10, 7), sharex=True)
    t = history['time'].to_numpy()

    for color, axis in zip(AXIS_COLORS, ('x', 'y', 'z')):
        bias_ax.plot(t, history[f'bias_{axis}_est'], color=color, label=f'b_{axis} est')
        bias_ax.plot(t, history[f'bias_{axis}_true'], color=color, linestyle=':',
                     label=f'b_{axis} true')
    bias_ax.set_ylabel('Gyro bias [rad/s]')
    bias_ax.legend(loc='upper right', ncol=3)
    bias_ax.grid(True, alpha=0.3)

    trace_ax.semilogy(t, history['trace_p'], color=COLORS['bound'])
    trace_ax.set_ylabel('trace(P)')
    trace_ax.set_xlabel('Time [s]')
    trace_ax.grid(True, which='both', alpha=0.3)

    fig.suptitle('Gyro bias estimation')
    return _finish(fig, path)
