"""
===============================================================================
AHRS - Monte Carlo Filter Assessment
===============================================================================
Runs N dispersed scenarios to check that the attitude filter converges and is
statistically consistent across gyro biases and starting attitudes it was not
told about.

Each run draws, from its own seeded generator:
    - true gyro bias     ~ N(nominal, bias_sigma)        per axis
    - true start angles  ~ N(nominal, angle_sigma_deg)   per axis

Consistency is judged with the normalized innovation squared (NIS). For a
consistent filter, the sum of NIS over N updates of a 3-D measurement is
chi-squared with 3N degrees of freedom, so the time-averaged NIS should fall
inside

    [chi2.ppf(alpha/2, 3N) / N, chi2.ppf(1 - alpha/2, 3N) / N]

References
----------
    [1] Bar-Shalom, Li & Kirubarajan, "Estimation with Applications to
        Tracking and Navigation", Wiley, 2001, Sec. 5.4.
===============================================================================
"""

import copy
import logging
from multiprocessing import Pool
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from ahrs.core.constants import DEG2RAD, MEAS_SIZE
from ahrs.navigation.attitude_ekf import FilterConfig
from ahrs.simulation.scenario import ScenarioConfig, run_scenario, summarize

logger = logging.getLogger(__name__)


def _run_single_wrapper(args: Tuple[Dict[str, Any], int]) -> Dict[str, Any]:
    """
    Execute one dispersed run.

    Module-level so multiprocessing can pickle it. Failures are recorded in
    the result row instead of aborting the whole batch.
    """
    config, run_id = args

    result: Dict[str, Any] = {
        'run_id': run_id,
        'success': False,
        'final_attitude_error_deg': np.nan,
        'rms_attitude_error_deg': np.nan,
        'final_bias_error': np.nan,
        'n_updates': 0,
        'n_faults': 0,
        'mean_nis': np.nan,
        'error_message': '',
    }

    try:
        filter_config = FilterConfig.from_dict(config.get('filter'))
        scenario = ScenarioConfig.from_dict(config.get('scenario'))
        history = run_scenario(filter_config, scenario,
                               imu_config=config.get('imu'),
                               heading_config=config.get('heading'))
        result.update(summarize(history))
        result['success'] = True
    except (ValueError, ArithmeticError, np.linalg.LinAlgError) as exc:
        result['error_message'] = str(exc)
        logger.warning("Run %d failed: %s", run_id, exc)

    return result


class MonteCarloSim:
    """
    Seed-dispersed batch of filter runs.

    Parameters
    ----------
    base_config : dict
        Nominal configuration with 'filter', 'scenario', 'imu' and
        optional 'heading' sections (same layout as the YAML file).
    n_runs : int
        Number of dispersed runs.
    seed : int, optional
        Master seed; run i uses seed + i.
    n_workers : int, optional
        Worker processes. 1 runs sequentially in-process.
    bias_sigma : float, optional
        1-sigma dispersion of the true gyro bias per axis [rad/s].
    angle_sigma_deg : float, optional
        1-sigma dispersion of the true starting angles per axis [deg].
    """

    def __init__(self, base_config: Dict[str, Any], n_runs: int = 20,
                 seed: int = 0, n_workers: int = 1,
                 bias_sigma: float = 0.02, angle_sigma_deg: float = 2.0):
        if n_runs < 1:
            raise ValueError("n_runs must be >= 1")
        if n_workers < 1:
            raise ValueError("n_workers must be >= 1")

        self.base_config = base_config
        self.n_runs = int(n_runs)
        self.seed = int(seed)
        self.n_workers = int(n_workers)
        self.bias_sigma = float(bias_sigma)
        self.angle_sigma_deg = float(angle_sigma_deg)
        self.results: Optional[pd.DataFrame] = None

    def _dispersed_config(self, run_id: int) -> Dict[str, Any]:
        rng = np.random.default_rng(self.seed + run_id)
        config = copy.deepcopy(self.base_config)

        imu = dict(config.get('imu') or {})
        nominal_bias = np.asarray(imu.get('gyro_bias', [0.0, 0.0, 0.0]), dtype=float)
        imu['gyro_bias'] = (nominal_bias + rng.normal(0.0, self.bias_sigma, 3)).tolist()
        imu['seed'] = self.seed + run_id
        config['imu'] = imu

        scenario = dict(config.get('scenario') or {})
        if 'initial_angles_deg' in scenario:
            nominal = np.asarray(scenario.pop('initial_angles_deg'), dtype=float) * DEG2RAD
        else:
            nominal = np.asarray(scenario.pop('initial_angles', [0.0, 0.0, 0.0]), dtype=float)
        scenario['initial_angles'] = (
            nominal + rng.normal(0.0, self.angle_sigma_deg * DEG2RAD, 3)
        ).tolist()
        config['scenario'] = scenario

        # Heading noise is re-seeded from the IMU seed by run_scenario
        heading = dict(config.get('heading') or {})
        heading.pop('seed', None)
        config['heading'] = heading
        return config

    def run(self) -> pd.DataFrame:
        """
        Execute all runs and aggregate them.

        Returns
        -------
        pd.DataFrame
            One row per run (see _run_single_wrapper for columns).
        """
        jobs: List[Tuple[Dict[str, Any], int]] = [
            (self._dispersed_config(i), i) for i in range(self.n_runs)
        ]
        logger.info("Monte Carlo: %d runs on %d worker(s)", self.n_runs, self.n_workers)

        if self.n_workers == 1:
            rows = [_run_single_wrapper(job) for job in jobs]
        else:
            with Pool(processes=self.n_workers) as pool:
                rows = pool.map(_run_single_wrapper, jobs)

        self.results = pd.DataFrame(rows).sort_values('run_id').reset_index(drop=True)
        n_ok = int(self.results['success'].sum())
        logger.info("Monte Carlo complete: %d/%d runs succeeded", n_ok, self.n_runs)
        return self.results

    def nis_consistency(self, alpha: float = 0.05) -> Dict[str, Any]:
        """
        Fraction of runs whose time-averaged NIS lies in the chi-squared
        acceptance interval.

        Parameters
        ----------
        alpha : float
            Two-sided significance level.

        Returns
        -------
        dict
            'lower', 'upper' (per-run bounds on mean NIS for the median
            update count), 'fraction_inside', and 'inside' (bool per run).
        """
        if self.results is None:
            raise RuntimeError("Call run() before nis_consistency()")
        if not 0.0 < alpha < 1.0:
            raise ValueError("alpha must be in (0, 1)")

        ok = self.results[self.results['success'] & (self.results['n_updates'] > 0)]
        if ok.empty:
            raise ValueError("No successful runs with updates to assess")

        inside = []
        for _, row in ok.iterrows():
            n = int(row['n_updates'])
            dof = MEAS_SIZE * n
            lo = stats.chi2.ppf(alpha / 2.0, dof) / n
            hi = stats.chi2.ppf(1.0 - alpha / 2.0, dof) / n
            inside.append(bool(lo <= row['mean_nis'] <= hi))

        n_med = int(np.median(ok['n_updates']))
        dof_med = MEAS_SIZE * n_med
        return {
            'lower': float(stats.chi2.ppf(alpha / 2.0, dof_med) / n_med),
            'upper': float(stats.chi2.ppf(1.0 - alpha / 2.0, dof_med) / n_med),
            'fraction_inside': float(np.mean(inside)),
            'inside': inside,
        }

    def statistics(self) -> Dict[str, float]:
        """Mean / 95th percentile of the headline error metrics."""
        if self.results is None:
            raise RuntimeError("Call run() before statistics()")
        ok = self.results[self.results['success']]
        return {
            'success_rate': float(self.results['success'].mean()),
            'mean_final_attitude_error_deg': float(ok['final_attitude_error_deg'].mean()),
            'p95_final_attitude_error_deg': float(np.percentile(ok['final_attitude_error_deg'], 95))
            if not ok.empty else float('nan'),
            'mean_final_bias_error': float(ok['final_bias_error'].mean()),
            'total_faults': int(self.results['n_faults'].sum()),
        }
