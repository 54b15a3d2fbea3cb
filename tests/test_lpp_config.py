"""
Tests for decoder configuration loading.
"""

import pytest
import sys
from pathlib import Path

# Add tools to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'tools'))

from lpp_config import CONFIG_ENV_VAR, DecoderConfig, load_config


class TestDecoderConfig:
    """Tests for DecoderConfig."""

    def test_defaults(self):
        config = DecoderConfig()
        assert config.app_port == 210
        assert config.min_payload_len == 3
        assert config.utc_offset == 28800
        assert config.time_drift_threshold == 5
        assert config.clear_voice_cooldown == 60

    def test_from_dict_flat(self):
        config = DecoderConfig.from_dict({'app_port': 10, 'string_capacity': 64})
        assert config.app_port == 10
        assert config.string_capacity == 64
        assert config.min_payload_len == 3

    def test_from_dict_nested(self):
        config = DecoderConfig.from_dict({'decoder': {'utc_offset': -3600}})
        assert config.utc_offset == -3600

    def test_from_none(self):
        assert DecoderConfig.from_dict(None) == DecoderConfig()

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown config keys: app_prot"):
            DecoderConfig.from_dict({'app_prot': 10})

    @pytest.mark.parametrize("value", ["210", 2.5, True, None])
    def test_non_integer(self, value):
        with pytest.raises(ValueError, match="must be an integer"):
            DecoderConfig.from_dict({'app_port': value})

    def test_negative(self):
        with pytest.raises(ValueError, match="must not be negative"):
            DecoderConfig.from_dict({'clear_voice_cooldown': -1})


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_path(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_config() == DecoderConfig()

    def test_from_file(self, tmp_path):
        path = tmp_path / 'decoder.yaml'
        path.write_text("decoder:\n  app_port: 211\n  time_drift_threshold: 10\n")
        config = load_config(path)
        assert config.app_port == 211
        assert config.time_drift_threshold == 10

    def test_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / 'decoder.yaml'
        path.write_text("clear_voice_cooldown: 120\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().clear_voice_cooldown == 120

    def test_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text("")
        assert load_config(path) == DecoderConfig()

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(OSError):
            load_config(tmp_path / 'absent.yaml')
