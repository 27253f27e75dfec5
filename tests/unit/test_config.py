# -*- coding: utf-8 -*-
"""
Unit Tests for Configuration

Test coverage:
- Default configuration file
- Custom file merge and environment overrides
- Typed engine configuration
- Runtime updates with rollback
"""

import pytest
import yaml

from presence.exceptions import ConfigurationError
from presence.utils.config import ConfigManager, EngineConfig


class TestConfigManager:
    """Test layered configuration loading."""

    def test_default_values(self):
        """Test defaults come from the bundled YAML file."""
        manager = ConfigManager()

        assert manager.get("zones.ambient_threshold") == 30
        assert manager.get("zones.walkup_threshold") == 60
        assert manager.get("zones.stare_duration_ms") == 15000
        assert manager.get("tracker.max_frames_lost") == 15
        assert manager.get("missing.key", "fallback") == "fallback"
        assert manager.validate() is True

    def test_custom_file_is_merged(self, tmp_path):
        """Test a custom file overrides only the keys it names."""
        custom = tmp_path / "kiosk.yaml"
        custom.write_text(yaml.safe_dump({"zones": {"walkup_threshold": 50}}), encoding="utf-8")

        manager = ConfigManager(str(custom))

        assert manager.get("zones.walkup_threshold") == 50
        assert manager.get("zones.ambient_threshold") == 30

    def test_missing_custom_file(self, tmp_path):
        """Test a missing custom file falls back to defaults."""
        manager = ConfigManager(str(tmp_path / "absent.yaml"))
        assert manager.get("zones.walkup_threshold") == 60

    def test_environment_overrides(self, monkeypatch):
        """Test PRESENCE_* variables override file values."""
        monkeypatch.setenv("PRESENCE_TENANT_ID", "store-7")
        monkeypatch.setenv("PRESENCE_DETECTION_INTERVAL_MS", "250")

        config = ConfigManager().engine_config()

        assert config.sessions.tenant_id == "store-7"
        assert config.detection_interval_ms == 250.0

    def test_save_round_trip(self, tmp_path):
        """Test saved configuration can be loaded again."""
        path = tmp_path / "saved.yaml"
        manager = ConfigManager()
        manager.set("zones.stare_duration_ms", 8000)
        manager.save(str(path))

        assert ConfigManager(str(path)).get("zones.stare_duration_ms") == 8000


class TestEngineConfig:
    """Test the typed configuration."""

    def test_from_dict_ignores_unknown_keys(self):
        """Test unknown keys are dropped with a warning."""
        config = EngineConfig.from_dict({"zones": {"walkup_threshold": 55, "colour": "red"}})

        assert config.zones.walkup_threshold == 55
        assert not hasattr(config.zones, "colour")

    def test_from_dict_rejects_bad_ordering(self):
        """Test walkup below ambient is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_dict({"zones": {"ambient_threshold": 50, "walkup_threshold": 40}})

        assert exc_info.value.key == "zones"

    def test_filters_section(self):
        """Test the filters section is read and validated."""
        config = ConfigManager().engine_config()
        assert config.filters.enabled is False
        assert config.filters.min_confidence == 70

        with pytest.raises(ConfigurationError) as exc_info:
            EngineConfig.from_dict({"filters": {"min_intent_signals": 5}})
        assert exc_info.value.key == "filters.min_intent_signals"

    def test_to_dict_round_trip(self):
        """Test to_dict output builds the same configuration."""
        config = EngineConfig()
        config.zones.stare_threshold = 70

        assert EngineConfig.from_dict(config.to_dict()) == config


class TestRuntimeUpdate:
    """Test update() with dotted and flat keys."""

    def test_flat_and_dotted_keys(self):
        """Test both key forms reach the right section."""
        config = EngineConfig()
        config.update({"walkup_threshold": 50, "tracker.match_radius": 0.25})

        assert config.zones.walkup_threshold == 50
        assert config.tracker.match_radius == 0.25

    def test_section_references_stay_valid(self):
        """Test components holding a section see the change."""
        config = EngineConfig()
        zones = config.zones
        config.update({"stare_duration_ms": 5000})

        assert zones.stare_duration_ms == 5000

    def test_invalid_update_rolls_back(self):
        """Test a failed update leaves the configuration untouched."""
        config = EngineConfig()
        zones = config.zones

        with pytest.raises(ConfigurationError):
            config.update({"ambient_threshold": 20, "walkup_threshold": 10})

        assert zones.ambient_threshold == 30
        assert zones.walkup_threshold == 60
        assert config.zones is zones

    def test_unknown_key(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError):
            EngineConfig().update({"zones.colour": "red"})

    def test_ambiguous_flat_key(self):
        """Test a flat key present in several sections is rejected."""
        with pytest.raises(ConfigurationError):
            EngineConfig().update({"enabled": False})

    def test_string_values_are_coerced(self):
        """Test string values take the type of the field they replace."""
        config = EngineConfig()
        config.update({"walkup_threshold": "40", "stare_duration_ms": "8000", "sessions.enabled": "false"})

        assert config.zones.walkup_threshold == 40
        assert isinstance(config.zones.walkup_threshold, int)
        assert config.zones.stare_duration_ms == 8000.0
        assert isinstance(config.zones.stare_duration_ms, float)
        assert config.sessions.enabled is False

    @pytest.mark.parametrize("changes", [
        {"walkup_threshold": "abc"},
        {"walkup_threshold": 40.5},
        {"walkup_threshold": None},
        {"stare_duration_ms": "nan"},
        {"sessions.enabled": "maybe"},
        {"ambient_threshold": 20, "match_radius": [0.1]},
    ])
    def test_bad_values_roll_back(self, changes):
        """Test values of the wrong type raise and leave the configuration untouched."""
        config = EngineConfig()
        before = config.to_dict()

        with pytest.raises(ConfigurationError):
            config.update(changes)

        assert config.to_dict() == before
        assert isinstance(config.zones.walkup_threshold, int)
