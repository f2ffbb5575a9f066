#!/usr/bin/env python3
"""
===============================================================================
AHRS SIMULATION - MAIN ENTRY POINT
===============================================================================
Runs the 7-state attitude EKF against simulated gyro/accelerometer data.

USAGE:
    ahrs-sim                              # Single run, default config
    ahrs-sim --config my_filter.yaml      # Custom configuration
    ahrs-sim --duration 30 --plot         # Longer run, save plots
    ahrs-sim --monte-carlo 50             # Monte Carlo with 50 runs

OUTPUTS (under --output, default ./output):
    history.csv            - Per-cycle truth/estimate history
    monte_carlo.csv        - Per-run Monte Carlo summary
    attitude.png, bias.png - Plots (with --plot)
===============================================================================
"""

import argparse
import logging
import sys
from importlib import resources
from pathlib import Path
from typing import List, Optional

import numpy as np
import yaml

from ahrs.core.constants import RAD2DEG
from ahrs.navigation.attitude_ekf import (
    FilterConfig, FilterConfigError, FilterDivergenceError,
)
from ahrs.simulation.monte_carlo import MonteCarloSim
from ahrs.simulation.scenario import ScenarioConfig, run_scenario, summarize

logger = logging.getLogger('AHRS_MAIN')

# Shipped as package data (see [tool.setuptools.package-data])
DEFAULT_CONFIG = 'config/filter_config.yaml'


def setup_logging(level: str = 'INFO', log_file: Optional[str] = None) -> None:
    """Configure root logging for the CLI (library modules never do this)."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode='w'))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        handlers=handlers,
        force=True,
    )


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load the filter/scenario configuration from YAML.

    Args:
        config_path: Path to YAML config. Defaults to the
                     config/filter_config.yaml bundled with the package.

    Returns:
        Configuration dictionary (empty sections filled with {}).
    """
    if config_path:
        path = Path(config_path)
        logger.info("Loading configuration from: %s", path)
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
    else:
        path = resources.files('ahrs').joinpath(DEFAULT_CONFIG)
        logger.info("Loading bundled default configuration: ahrs/%s", DEFAULT_CONFIG)
        config = yaml.safe_load(path.read_text()) or {}

    if not isinstance(config, dict):
        raise FilterConfigError(f"Top level of {path} must be a mapping")
    for section in ('filter', 'scenario', 'imu', 'heading', 'monte_carlo'):
        if config.get(section) is None:
            config[section] = {}
        elif not isinstance(config[section], dict):
            raise FilterConfigError(f"Section '{section}' of {path} must be a mapping")
    return config


def run_single(config: dict, output_dir: Path, plot: bool) -> dict:
    filter_config = FilterConfig.from_dict(config['filter'])
    filter_config.validate()
    scenario = ScenarioConfig.from_dict(config['scenario'])

    history = run_scenario(filter_config, scenario,
                           imu_config=config['imu'],
                           heading_config=config['heading'])

    csv_path = output_dir / 'history.csv'
    history.to_csv(csv_path, index=False)
    logger.info("Saved history to %s", csv_path)

    summary = summarize(history)
    final = history.iloc[-1]
    logger.info("Final attitude error: %.4f deg (RMS %.4f deg)",
                summary['final_attitude_error_deg'], summary['rms_attitude_error_deg'])
    logger.info("Final bias estimate: [%.5f, %.5f, %.5f] rad/s",
                final['bias_x_est'], final['bias_y_est'], final['bias_z_est'])
    logger.info("Final Euler estimate: [%.3f, %.3f, %.3f] deg",
                final['roll_est'] * RAD2DEG, final['pitch_est'] * RAD2DEG,
                final['yaw_est'] * RAD2DEG)
    logger.info("Updates: %d ok, %d degenerate; mean NIS %.3f",
                summary['n_updates'], summary['n_faults'], summary['mean_nis'])

    if plot:
        from ahrs.visualization.attitude_plots import (
            plot_attitude_history, plot_bias_history,
        )
        plot_attitude_history(history, str(output_dir / 'attitude.png'))
        plot_bias_history(history, str(output_dir / 'bias.png'))
        logger.info("Plots saved to %s", output_dir)

    return summary


def run_monte_carlo(config: dict, n_runs: int, output_dir: Path) -> dict:
    mc_cfg = config['monte_carlo']
    try:
        sim = MonteCarloSim(
            config,
            n_runs=n_runs,
            seed=int(mc_cfg.get('seed', 0)),
            n_workers=int(mc_cfg.get('workers', 1)),
            bias_sigma=float(mc_cfg.get('bias_sigma', 0.02)),
            angle_sigma_deg=float(mc_cfg.get('angle_sigma_deg', 2.0)),
        )
        alpha = float(mc_cfg.get('alpha', 0.05))
    except TypeError as exc:
        raise FilterConfigError(f"Invalid monte_carlo section: {exc}") from exc
    results = sim.run()
    csv_path = output_dir / 'monte_carlo.csv'
    results.to_csv(csv_path, index=False)
    logger.info("Saved Monte Carlo results to %s", csv_path)

    stats = sim.statistics()
    logger.info("Success rate: %.1f%%", 100.0 * stats['success_rate'])
    logger.info("Final attitude error: mean %.4f deg, p95 %.4f deg",
                stats['mean_final_attitude_error_deg'],
                stats['p95_final_attitude_error_deg'])
    if stats['success_rate'] > 0.0 and np.any(results['n_updates'] > 0):
        nis = sim.nis_consistency(alpha=alpha)
        stats['nis_fraction_inside'] = nis['fraction_inside']
        logger.info("NIS consistency: %.0f%% of runs inside [%.3f, %.3f]",
                    100.0 * nis['fraction_inside'], nis['lower'], nis['upper'])
    return stats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='7-state attitude EKF simulation driver')
    parser.add_argument('--config', type=str, default=None,
                        help='YAML configuration file')
    parser.add_argument('--duration', type=float, default=None,
                        help='Override scenario duration [s]')
    parser.add_argument('--monte-carlo', type=int, default=0, metavar='N',
                        help='Run N dispersed Monte Carlo runs instead of one')
    parser.add_argument('--plot', action='store_true',
                        help='Save attitude and bias plots (single run only)')
    parser.add_argument('--output', type=str, default='output',
                        help='Output directory')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--log-file', type=str, default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config = load_config(args.config)
        if args.duration is not None:
            config['scenario']['duration'] = args.duration

        output_dir = Path(args.output)
        output_dir.mkdir(parents=True, exist_ok=True)

        if args.monte_carlo > 0:
            run_monte_carlo(config, args.monte_carlo, output_dir)
        else:
            run_single(config, output_dir, args.plot)
    except (FilterConfigError, ValueError, OSError, yaml.YAMLError) as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    except FilterDivergenceError as exc:
        logger.error("Filter diverged: %s", exc)
        return 2

    return 0


if __name__ == '__main__':
    sys.exit(main())
