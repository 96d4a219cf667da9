"""Smoke tests for configuration, the simulation driver, export and CLI.

These run a short seeded simulation end to end. Run these first to catch
obvious breakage.
"""

import json
import os
import sys

import pandas as pd
import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from conftest import MAX_TERM, small_config
from vepower.cli import main
from vepower.config.loader import load_config, parse_override
from vepower.config.schema import Config, EscrowParameters
from vepower.reporting.export import (
    accounts_frame,
    export_csv,
    export_json,
    locks_frame,
    metrics_frame,
    supply_history_frame,
)
from vepower.simulation.runner import SimulationResult, SimulationRunner
from vepower.validation.sanity_checks import validate_simulation_results

SMALL_YAML = f"""
escrow:
  epoch_length_seconds: 100
  max_term_seconds: {MAX_TERM}
  min_principal: {MAX_TERM}
simulation:
  num_owners: 4
  num_delegates: 2
  num_epochs: 12
  actions_per_epoch: 6
  random_seed: 3
  principal_range: [{MAX_TERM * 10}, {MAX_TERM * 100}]
"""


class TestConfigLoading:
    """Smoke tests for configuration loading."""

    def test_load_default_config(self):
        """Bundled defaults load and match the schema defaults."""
        config = load_config()
        assert isinstance(config, Config)
        assert config.escrow == EscrowParameters()
        assert config.escrow.max_term_epochs == 208

    def test_config_hash_is_deterministic(self):
        config1 = load_config()
        config2 = load_config()
        assert config1.compute_hash() == config2.compute_hash()
        assert small_config().compute_hash() != config1.compute_hash()

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "small.yaml"
        path.write_text(SMALL_YAML)
        config = load_config(str(path))
        assert config.escrow.epoch_length_seconds == 100
        assert config.simulation.principal_range == (MAX_TERM * 10, MAX_TERM * 100)
        assert config.simulation.action_weights.create == 4.0

    def test_max_term_must_be_whole_epochs(self):
        with pytest.raises(ValidationError):
            EscrowParameters(epoch_length_seconds=100, max_term_seconds=5250, min_principal=5250)

    def test_dust_floor_must_give_positive_slope(self):
        with pytest.raises(ValidationError):
            EscrowParameters(epoch_length_seconds=100, max_term_seconds=5200, min_principal=100)

    def test_empty_dict_gives_defaults(self):
        assert Config.from_dict({}) == Config()

    def test_dotted_overrides(self, tmp_path):
        """Overrides reach nested sections and are validated with the schema."""
        path = tmp_path / "small.yaml"
        path.write_text(SMALL_YAML)
        config = load_config(str(path), {
            'escrow.max_sync_epochs': 4,
            'simulation.action_weights.unlock': 0.0,
        })
        assert config.escrow.max_sync_epochs == 4
        assert config.simulation.action_weights.unlock == 0.0
        assert config.simulation.num_epochs == 12

    def test_unknown_override_rejected(self):
        with pytest.raises(KeyError):
            load_config(overrides={'escrow.epoch_length': 100})
        with pytest.raises(KeyError):
            load_config(overrides={'simulation.principal_range.low': 1})

    def test_invalid_override_rejected(self):
        with pytest.raises(ValidationError):
            load_config(overrides={'escrow.min_principal': 1})

    def test_parse_override(self):
        assert parse_override("escrow.max_sync_epochs=8") == ('escrow.max_sync_epochs', 8)
        assert parse_override("escrow.max_sync_epochs=null") == ('escrow.max_sync_epochs', None)
        assert parse_override("simulation.principal_range=[10, 20]") == (
            'simulation.principal_range', [10, 20]
        )
        with pytest.raises(ValueError):
            parse_override("escrow.max_sync_epochs")


class TestSimulation:
    """Seeded end-to-end runs."""

    def test_run_keeps_invariants(self):
        result = SimulationRunner(small_config()).run()
        assert isinstance(result, SimulationResult)
        assert result.invariant_errors == []
        assert len(result.metrics_over_time) == 30
        assert result.final_metrics['num_locks'] > 0
        assert result.final_metrics['num_events'] > result.final_metrics['num_locks']
        assert validate_simulation_results(
            result.config, result.escrow, result.metrics_over_time
        ) == []

    def test_run_is_reproducible(self):
        first = SimulationRunner(small_config()).run()
        second = SimulationRunner(small_config()).run()
        assert first.metrics_over_time == second.metrics_over_time
        assert first.rejections == second.rejections

    def test_idle_run_has_no_supply(self):
        result = SimulationRunner(small_config(idle_epoch_probability=1.0)).run()
        assert result.final_metrics['num_locks'] == 0
        assert result.final_metrics['peak_total_supply'] == 0

    def test_metrics_are_consistent(self):
        result = SimulationRunner(small_config()).run()
        for m in result.metrics_over_time:
            assert m['open_locks'] == (
                m['undelegated_locks'] + m['pending_locks'] + m['active_locks']
            )
            assert m['total_supply'] >= 0
        assert result.final_metrics['num_snapshots'] == 30


class TestExport:

    @pytest.fixture(scope="class")
    def result(self):
        return SimulationRunner(small_config(num_epochs=10)).run()

    def test_frames(self, result):
        metrics = metrics_frame(result)
        assert len(metrics) == 10
        assert 't_weeks' in metrics.columns
        assert list(supply_history_frame(result.escrow).columns) == [
            'epoch', 'epoch_start', 'total_supply'
        ]
        locks = locks_frame(result.escrow)
        assert len(locks) == result.final_metrics['num_locks']
        accounts = accounts_frame(result.escrow)
        assert (accounts['voting_power'] >= 0).all()
        assert accounts.iloc[0]['role'] == 'global'

    def test_export_csv(self, result, tmp_path):
        path = tmp_path / "metrics.csv"
        export_csv(result, str(path))
        df = pd.read_csv(path)
        assert len(df) == 10
        assert 'total_supply' in df.columns

    def test_export_json(self, result, tmp_path):
        path = tmp_path / "result.json"
        export_json(result, str(path))
        data = json.loads(path.read_text())
        assert data['config_hash'] == result.config.compute_hash()
        assert data['invariant_errors'] == []
        assert len(data['supply_history']) == result.final_metrics['num_snapshots']


class TestCli:

    def test_main_writes_outputs(self, tmp_path, capsys):
        config_path = tmp_path / "small.yaml"
        config_path.write_text(SMALL_YAML)
        csv_path = tmp_path / "out.csv"
        json_path = tmp_path / "out.json"

        code = main([
            "--config", str(config_path),
            "--epochs", "8",
            "--csv", str(csv_path),
            "--json", str(json_path),
        ])

        assert code == 0
        assert csv_path.exists()
        assert json_path.exists()
        assert len(pd.read_csv(csv_path)) == 8
        assert "Config hash" in capsys.readouterr().out

    def test_main_applies_overrides(self, tmp_path):
        config_path = tmp_path / "small.yaml"
        config_path.write_text(SMALL_YAML)
        json_path = tmp_path / "out.json"

        code = main([
            "--config", str(config_path),
            "--set", "simulation.num_epochs=5",
            "--set", "escrow.max_sync_epochs=2",
            "--seed", "11",
            "--json", str(json_path),
        ])

        assert code == 0
        data = json.loads(json_path.read_text())
        assert data['config']['escrow']['max_sync_epochs'] == 2
        assert data['config']['simulation']['random_seed'] == 11
        assert len(data['metrics_over_time']) == 5

    def test_main_rejects_bad_override(self, tmp_path):
        with pytest.raises(SystemExit):
            main(["--set", "escrow.nonsense=1"])
