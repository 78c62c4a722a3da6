"""
Tests for TrackerConfig and load_config().
"""

import os

import pytest
from pydantic import ValidationError

from combat_tracker.config import ENV_PREFIX, TrackerConfig, load_config


class TestTrackerConfig:

    def test_defaults(self):
        config = TrackerConfig()
        assert config.grid_type == "square"
        assert (config.grid_width, config.grid_height, config.cell_size_feet) == (40, 30, 5)
        assert config.death_threshold == -10
        assert config.stabilization_dc == 10
        assert config.spell_expiry_warning_rounds == 3
        assert config.skip_dead_combatants is False
        assert config.strict_invariants is True
        assert config.condition_table is None

    def test_grid_type_normalized(self):
        assert TrackerConfig(grid_type=" HEX ").grid_type == "hex"

    def test_invalid_grid_type(self):
        with pytest.raises(ValidationError, match="grid_type must be one of"):
            TrackerConfig(grid_type="octagon")

    def test_death_threshold_must_be_negative(self):
        with pytest.raises(ValidationError):
            TrackerConfig(death_threshold=0)

    def test_cell_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            TrackerConfig(cell_size_feet=0)


class TestLoadConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in TrackerConfig.model_fields:
            monkeypatch.delenv(f"{ENV_PREFIX}{name.upper()}", raising=False)

    def test_reads_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("COMBAT_TRACKER_GRID_TYPE", "hex")
        monkeypatch.setenv("COMBAT_TRACKER_SKIP_DEAD_COMBATANTS", "true")
        monkeypatch.setenv("COMBAT_TRACKER_STABILIZATION_DC", "12")

        config = load_config(env_file=str(tmp_path / "missing.env"))

        assert config.grid_type == "hex"
        assert config.skip_dead_combatants is True
        assert config.stabilization_dc == 12

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("COMBAT_TRACKER_GRID_WIDTH=60\n", encoding="utf-8")

        try:
            config = load_config(env_file=str(env_file))
        finally:
            os.environ.pop("COMBAT_TRACKER_GRID_WIDTH", None)

        assert config.grid_width == 60

    def test_overrides_win(self, monkeypatch, tmp_path):
        monkeypatch.setenv("COMBAT_TRACKER_DEATH_THRESHOLD", "-12")
        config = load_config(env_file=str(tmp_path / "missing.env"), death_threshold=-20)
        assert config.death_threshold == -20

    def test_invalid_environment_value(self, monkeypatch, tmp_path):
        monkeypatch.setenv("COMBAT_TRACKER_GRID_TYPE", "octagon")
        with pytest.raises(ValidationError):
            load_config(env_file=str(tmp_path / "missing.env"))
