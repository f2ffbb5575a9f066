"""
===============================================================================
AHRS - Simulation Test Suite
===============================================================================
End-to-end tests that run the attitude filter against the simulated sensors:
sensor models, the closed-loop scenario runner, Monte Carlo aggregation,
plotting and the command-line driver.

Scenarios are kept short so the suite stays fast; convergence thresholds are
loose enough to hold for any seed.
===============================================================================
"""

import sys
import os
from importlib import resources

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
import yaml
from numpy.testing import assert_allclose

from ahrs import main as cli
from ahrs.navigation.attitude_ekf import FilterConfig, FilterConfigError
from ahrs.navigation.sensors import IMU, AttitudeSensor, HeadingReference, tilt_from_accel
from ahrs.simulation.monte_carlo import MonteCarloSim
from ahrs.simulation.scenario import ScenarioConfig, run_scenario, summarize
from ahrs.visualization.attitude_plots import plot_attitude_history, plot_bias_history


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def imu_config():
    return {
        "gyro_bias": [0.05, -0.02, 0.01],
        "gyro_bias_random_walk": 0.0,
        "gyro_noise_std": 0.002,
        "accel_noise_std": 0.05,
        "seed": 42,
    }


@pytest.fixture
def base_config(imu_config):
    """Nominal configuration in the same layout as the YAML file."""
    return {
        "filter": {
            "measurement_variance": 0.01,
            "bias_process_variance": 1e-6,
            "quaternion_process_variance": 1e-4,
        },
        "scenario": {
            "duration": 0.5,
            "dt": 0.01,
            "initial_angles_deg": [5.0, -3.0, 20.0],
        },
        "imu": imu_config,
        "heading": {"yaw_noise_std_deg": 1.0},
        "monte_carlo": {"seed": 0, "workers": 1},
    }


@pytest.fixture(scope="module")
def history():
    """Five seconds of a slowly rotating body, updated every cycle."""
    scenario = ScenarioConfig(
        duration=5.0, dt=0.01,
        body_rates=np.radians([2.0, -1.0, 5.0]),
        initial_angles=np.radians([5.0, -3.0, 20.0]),
    )
    imu = {"gyro_bias": [0.05, -0.02, 0.01], "gyro_noise_std": 0.002,
           "accel_noise_std": 0.05, "seed": 7}
    return run_scenario(FilterConfig(), scenario, imu_config=imu,
                        heading_config={"yaw_noise_std_deg": 1.0})


# =============================================================================
# Test: Sensor models
# =============================================================================

class TestSensors:

    @pytest.mark.parametrize("angles_deg", [
        (0.0, 0.0, 0.0),
        (30.0, -20.0, 0.0),
        (-150.0, 60.0, 0.0),
    ])
    def test_tilt_recovers_roll_pitch(self, angles_deg):
        euler = np.radians(angles_deg)
        imu = IMU({"accel_noise_std": 0.0})
        roll, pitch = tilt_from_accel(imu.measure_accel(euler))
        assert_allclose([roll, pitch], euler[:2], atol=1e-12)

    def test_level_body_reads_minus_g(self):
        imu = IMU()
        assert_allclose(imu.measure_accel(np.zeros(3)), [0.0, 0.0, -imu.gravity])

    def test_gyro_adds_bias(self):
        imu = IMU({"gyro_bias": [0.01, 0.02, 0.03]})
        assert_allclose(imu.measure_gyro(np.array([0.1, 0.0, 0.0]), 0.01),
                        [0.11, 0.02, 0.03])

    def test_bias_random_walk_moves_bias(self):
        imu = IMU({"gyro_bias_random_walk": 0.01, "seed": 1})
        for _ in range(100):
            imu.measure_gyro(np.zeros(3), 0.01)
        assert np.linalg.norm(imu.gyro_bias) > 0.0

    def test_seeded_noise_is_reproducible(self, imu_config):
        a = IMU(imu_config).measure_gyro(np.zeros(3), 0.01)
        b = IMU(imu_config).measure_gyro(np.zeros(3), 0.01)
        assert_allclose(a, b)

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            IMU({"gyro_bias": [0.0, 0.0]})
        with pytest.raises(ValueError):
            IMU({"gyro_noise_std": -1.0})
        with pytest.raises(ValueError):
            HeadingReference({"yaw_noise_std_deg": -1.0})
        with pytest.raises(ValueError):
            IMU({"gyro_noise_std": None})
        with pytest.raises(ValueError):
            HeadingReference({"yaw_noise_std_deg": None})

    def test_attitude_sensor_noiseless(self):
        euler = np.radians([10.0, -5.0, 170.0])
        sensor = AttitudeSensor(IMU(), HeadingReference())
        assert_allclose(sensor.measure(euler), euler, atol=1e-12)


# =============================================================================
# Test: Scenario runner
# =============================================================================

class TestScenario:

    def test_history_columns(self, history):
        expected = {
            'time', 'roll_true', 'pitch_true', 'yaw_true',
            'roll_est', 'pitch_est', 'yaw_est',
            'bias_x_est', 'bias_y_est', 'bias_z_est',
            'bias_x_true', 'bias_y_true', 'bias_z_true',
            'quat_norm', 'trace_p', 'update_status', 'nis', 'attitude_error',
        }
        assert expected <= set(history.columns)
        assert len(history) == 500

    def test_unit_norm_throughout(self, history):
        assert_allclose(history['quat_norm'], 1.0, atol=1e-9)

    def test_converges(self, history):
        summary = summarize(history)
        assert summary['final_attitude_error_deg'] < 2.0
        assert summary['n_updates'] == 500
        assert summary['n_faults'] == 0
        assert np.isfinite(summary['mean_nis'])

    def test_skipped_updates(self, imu_config):
        scenario = ScenarioConfig(duration=1.0, dt=0.01, update_every=5)
        hist = run_scenario(FilterConfig(), scenario, imu_config=imu_config)
        counts = hist['update_status'].value_counts()
        assert counts['OK'] == 20
        assert counts['SKIPPED'] == 80
        assert hist.loc[hist['update_status'] == 'SKIPPED', 'nis'].isna().all()

    def test_scenario_config_from_dict(self):
        scenario = ScenarioConfig.from_dict({
            "duration": "2", "body_rates_deg_s": [0.0, 0.0, 90.0],
            "initial_angles_deg": [0.0, 45.0, 0.0],
        })
        assert scenario.duration == 2.0
        assert scenario.n_steps == 200
        assert_allclose(scenario.body_rates, [0.0, 0.0, np.pi / 2])
        assert_allclose(scenario.initial_angles, [0.0, np.pi / 4, 0.0])

    @pytest.mark.parametrize("kwargs", [
        {"dt": 0.0},
        {"duration": -1.0},
        {"update_every": 0},
        {"body_rates": [0.0, 0.0]},
    ])
    def test_scenario_config_validation(self, kwargs):
        with pytest.raises(ValueError):
            ScenarioConfig(**kwargs)

    @pytest.mark.parametrize("mapping", [
        {"dt": None},
        {"duration": "ten"},
        {"body_rates_deg_s": None},
        {"initial_angles_deg": ["a", 0, 0]},
        {"durration": 1.0},
    ])
    def test_scenario_from_dict_rejects_bad_values(self, mapping):
        with pytest.raises(ValueError):
            ScenarioConfig.from_dict(mapping)

    def test_summarize_empty(self):
        with pytest.raises(ValueError):
            summarize(pd.DataFrame())


# =============================================================================
# Test: Monte Carlo
# =============================================================================

class TestMonteCarlo:

    def test_sequential_runs(self, base_config):
        sim = MonteCarloSim(base_config, n_runs=3, seed=5)
        results = sim.run()
        assert list(results['run_id']) == [0, 1, 2]
        assert results['success'].all()
        assert (results['n_updates'] == 50).all()

        stats = sim.statistics()
        assert stats['success_rate'] == 1.0
        assert stats['total_faults'] == 0

        nis = sim.nis_consistency(alpha=0.05)
        assert 0.0 < nis['lower'] < nis['upper']
        assert 0.0 <= nis['fraction_inside'] <= 1.0
        assert len(nis['inside']) == 3

    def test_runs_are_dispersed_and_reproducible(self, base_config):
        first = MonteCarloSim(base_config, n_runs=2, seed=9).run()
        second = MonteCarloSim(base_config, n_runs=2, seed=9).run()
        assert_allclose(first['final_bias_error'], second['final_bias_error'])
        assert first['final_bias_error'][0] != first['final_bias_error'][1]

    def test_dispersion_does_not_mutate_base(self, base_config):
        sim = MonteCarloSim(base_config, n_runs=1)
        sim._dispersed_config(0)
        assert base_config['imu']['gyro_bias'] == [0.05, -0.02, 0.01]
        assert 'initial_angles_deg' in base_config['scenario']

    def test_failed_run_is_recorded(self, base_config):
        base_config['filter']['measurement_variance'] = -1.0
        sim = MonteCarloSim(base_config, n_runs=2)
        results = sim.run()
        assert not results['success'].any()
        assert results['error_message'].str.contains('measurement_variance').all()
        assert sim.statistics()['success_rate'] == 0.0

    def test_requires_run_first(self, base_config):
        sim = MonteCarloSim(base_config, n_runs=1)
        with pytest.raises(RuntimeError):
            sim.nis_consistency()
        with pytest.raises(RuntimeError):
            sim.statistics()

    def test_invalid_arguments(self, base_config):
        with pytest.raises(ValueError):
            MonteCarloSim(base_config, n_runs=0)
        with pytest.raises(ValueError):
            MonteCarloSim(base_config, n_runs=1, n_workers=0)


# =============================================================================
# Test: Plots
# =============================================================================

class TestPlots:

    def test_plots_written(self, history, tmp_path):
        attitude_png = plot_attitude_history(history, str(tmp_path / 'attitude.png'))
        bias_png = plot_bias_history(history, str(tmp_path / 'sub' / 'bias.png'))
        assert os.path.getsize(attitude_png) > 0
        assert os.path.getsize(bias_png) > 0


# =============================================================================
# Test: Command-line driver
# =============================================================================

class TestCli:

    def _write_config(self, config, tmp_path):
        path = tmp_path / 'config.yaml'
        with open(path, 'w') as f:
            yaml.safe_dump(config, f)
        return str(path)

    def test_load_default_config(self):
        config = cli.load_config()
        for section in ('filter', 'scenario', 'imu', 'heading', 'monte_carlo'):
            assert section in config
        FilterConfig.from_dict(config['filter']).validate()

    def test_default_config_is_package_data(self):
        """The default file ships inside the ahrs package, not the source tree."""
        resource = resources.files('ahrs').joinpath(cli.DEFAULT_CONFIG)
        assert resource.is_file()
        assert yaml.safe_load(resource.read_text())['filter']

    def test_null_section_becomes_empty(self, tmp_path):
        path = tmp_path / 'nulls.yaml'
        path.write_text('filter:\nscenario: null\n')
        config = cli.load_config(str(path))
        assert config['filter'] == {}
        assert config['scenario'] == {}

    def test_load_config_fills_sections(self, tmp_path):
        path = self._write_config({'filter': {'measurement_variance': 0.02}}, tmp_path)
        config = cli.load_config(path)
        assert config['scenario'] == {}
        assert config['filter']['measurement_variance'] == 0.02

    def test_load_config_rejects_non_mapping(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text('- just\n- a list\n')
        with pytest.raises(FilterConfigError):
            cli.load_config(str(path))

    def test_single_run(self, base_config, tmp_path):
        path = self._write_config(base_config, tmp_path)
        out = tmp_path / 'out'
        code = cli.main(['--config', path, '--duration', '0.2',
                         '--output', str(out), '--plot'])
        assert code == 0
        hist = pd.read_csv(out / 'history.csv')
        assert len(hist) == 20
        assert (out / 'attitude.png').exists()
        assert (out / 'bias.png').exists()

    def test_monte_carlo_run(self, base_config, tmp_path):
        path = self._write_config(base_config, tmp_path)
        out = tmp_path / 'mc'
        code = cli.main(['--config', path, '--duration', '0.2',
                         '--monte-carlo', '2', '--output', str(out)])
        assert code == 0
        results = pd.read_csv(out / 'monte_carlo.csv')
        assert len(results) == 2

    def test_bad_config_exit_code(self, base_config, tmp_path):
        base_config['filter']['quaternion_process_variance'] = 0.0
        path = self._write_config(base_config, tmp_path)
        assert cli.main(['--config', path, '--output', str(tmp_path)]) == 1

    def test_missing_config_exit_code(self, tmp_path):
        assert cli.main(['--config', str(tmp_path / 'nope.yaml'),
                         '--output', str(tmp_path)]) == 1

    @pytest.mark.parametrize("section,key", [
        ('filter', 'measurement_variance'),
        ('scenario', 'dt'),
        ('imu', 'accel_noise_std'),
    ])
    def test_null_value_exit_code(self, base_config, tmp_path, section, key):
        base_config[section][key] = None
        path = self._write_config(base_config, tmp_path)
        assert cli.main(['--config', path, '--output', str(tmp_path)]) == 1

    def test_null_monte_carlo_value_exit_code(self, base_config, tmp_path):
        base_config['monte_carlo']['seed'] = None
        path = self._write_config(base_config, tmp_path)
        assert cli.main(['--config', path, '--monte-carlo', '2',
                         '--output', str(tmp_path)]) == 1

    def test_runs_with_bundled_config(self, tmp_path):
        out = tmp_path / 'default'
        assert cli.main(['--duration', '0.2', '--output', str(out)]) == 0
        assert (out / 'history.csv').exists()
