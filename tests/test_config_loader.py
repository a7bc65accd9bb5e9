"""
Unit tests for configuration loading and validation.
"""

import pytest
import yaml

from blurry_filter.config_loader import DEFAULTS, apply_defaults, load_config, validate_config
from blurry_filter.exceptions import ConfigError


def write_config(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:
    """Loading YAML files."""

    def test_defaults_without_file(self):
        config = load_config()
        assert config['detection']['algorithm'] == 'composite'
        assert config['detection']['strategy'] == 'max-focus'
        assert config['detection']['patch_size'] == 8
        assert config['detection']['threshold'] is None
        assert config['processing']['num_workers'] == 4
        assert config['calibration']['min_samples'] == 50
        assert config['paths']['calibration_file'] == '.blurry-calibration.json'

    def test_partial_file(self, tmp_path):
        path = write_config(tmp_path, {'detection': {'algorithm': 'patch-based',
                                                     'strategy': 'peak-focus'}})
        config = load_config(str(path))
        assert config['detection']['algorithm'] == 'patch-based'
        assert config['detection']['strategy'] == 'peak-focus'
        assert config['detection']['patch_size'] == 8
        assert config['output']['action'] == 'none'

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("detection: [unclosed")
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_example_config_is_valid(self):
        from pathlib import Path

        example = Path(__file__).resolve().parent.parent / "config" / "config.example.yaml"
        config = load_config(str(example))
        assert config['output']['rename_suffix'] == 'blurry'

    def test_defaults_are_not_shared(self):
        first = apply_defaults({})
        first['detection']['algorithm'] = 'variance'
        assert DEFAULTS['detection']['algorithm'] == 'composite'
        assert apply_defaults({})['detection']['algorithm'] == 'composite'


class TestValidateConfig:
    """Rejected settings."""

    @pytest.mark.parametrize("section, key, value", [
        ('detection', 'algorithm', 'fft'),
        ('detection', 'strategy', 'min-focus'),
        ('detection', 'patch_size', 0),
        ('detection', 'patch_size', 2.5),
        ('detection', 'threshold', 'high'),
        ('processing', 'num_workers', 0),
        ('processing', 'error_handling', 'retry'),
        ('output', 'action', 'delete'),
        ('logging', 'console_level', 'LOUD'),
        ('calibration', 'min_samples', 0),
    ])
    def test_invalid_value(self, section, key, value):
        config = apply_defaults({})
        config[section][key] = value
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_copy_requires_target(self):
        config = apply_defaults({'output': {'action': 'copy'}})
        with pytest.raises(ConfigError):
            validate_config(config)

    def test_copy_with_target(self, tmp_path):
        config = apply_defaults({'output': {'action': 'move', 'target_dir': str(tmp_path)}})
        validate_config(config)

    def test_section_must_be_mapping(self):
        with pytest.raises(ConfigError):
            apply_defaults({'detection': 'composite'})

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            load_config("/nonexistent/config.yaml")
