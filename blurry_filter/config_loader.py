"""
Configuration loader and validator for the blur detection system.

Handles loading YAML configuration files, applying defaults, and validating settings.
"""

import copy
import logging
from numbers import Integral
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .calibration import DEFAULT_CALIBRATION_FILE
from .detector import Algorithm
from .exceptions import ConfigError
from .file_manager import ACTIONS
from .patch_analysis import DEFAULT_GRID_SIZE, Strategy

DEFAULTS: Dict[str, Dict[str, Any]] = {
    'paths': {
        'input': '.',
        'log_file': None,
        'calibration_file': DEFAULT_CALIBRATION_FILE
    },
    'detection': {
        'algorithm': 'composite',
        'strategy': 'max-focus',
        'patch_size': DEFAULT_GRID_SIZE,
        'threshold': None,
        'use_calibration': False
    },
    'processing': {
        'recursive': False,
        'format': None,
        'num_workers': 4,
        'error_handling': 'skip'
    },
    'output': {
        'action': 'none',
        'target_dir': None,
        'rename_suffix': 'blurry',
        'dry_run': False,
        'json_report': None,
        'scores_file': None
    },
    'logging': {
        'level': 'INFO',
        'console_level': 'WARNING',
        'file_level': 'DEBUG',
        'log_to_file': False,
        'show_progress': True,
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S'
    },
    'calibration': {
        'output': DEFAULT_CALIBRATION_FILE,
        'min_samples': 50,
        'patch_mode': False,
        'patch_size': DEFAULT_GRID_SIZE
    }
}

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation.

    Args:
        config_path: Path to the configuration YAML file; defaults only when None

    Returns:
        Configuration dictionary

    Raises:
        ConfigError: If the file is missing, malformed or invalid
    """
    config: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.is_file():
            raise ConfigError(
                f"Configuration file not found: {config_path}\n"
                f"Copy config/config.example.yaml and edit it."
            )

        try:
            with open(path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Configuration file is malformed: {e}") from e

        if loaded is None:
            raise ConfigError("Configuration file is empty")
        if not isinstance(loaded, dict):
            raise ConfigError("Configuration file must contain a mapping of sections")
        config = loaded

    config = apply_defaults(config)
    validate_config(config)

    return config


def apply_defaults(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply default values for missing configuration options.

    Args:
        config: Partial configuration dictionary

    Returns:
        Configuration dictionary with defaults applied
    """
    for section, section_defaults in DEFAULTS.items():
        if config.get(section) is None:
            config[section] = {}
        if not isinstance(config[section], dict):
            raise ConfigError(f"Configuration section '{section}' must be a mapping")
        for key, default_value in section_defaults.items():
            if key not in config[section]:
                config[section][key] = copy.deepcopy(default_value)

    return config


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, Integral) and not isinstance(value, bool) and value >= 1


def validate_config(config: Dict[str, Any]) -> None:
    """
    Validate configuration values.

    Args:
        config: Configuration dictionary to validate

    Raises:
        ConfigError: If configuration is invalid
    """
    detection = config['detection']
    Algorithm.from_name(detection['algorithm'])
    Strategy.from_name(detection['strategy'])

    if not _is_positive_int(detection['patch_size']):
        raise ConfigError("Patch grid size must be a positive integer")

    threshold = detection['threshold']
    if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, (int, float))):
        raise ConfigError("Threshold must be a number")

    processing = config['processing']
    if not _is_positive_int(processing['num_workers']):
        raise ConfigError("Number of workers must be at least 1")

    valid_error_handling = ['skip', 'stop']
    if processing['error_handling'] not in valid_error_handling:
        raise ConfigError(
            f"Error handling must be one of: {', '.join(valid_error_handling)}"
        )

    output = config['output']
    if output['action'] not in ACTIONS:
        raise ConfigError(f"Output action must be one of: {', '.join(ACTIONS)}")

    if output['action'] in ('copy', 'move') and not output['target_dir']:
        raise ConfigError(f"Output action '{output['action']}' requires a target directory")

    if output['action'] == 'rename' and not output['rename_suffix']:
        raise ConfigError("Rename suffix must not be empty")

    logging_config = config['logging']
    for key in ('level', 'console_level', 'file_level'):
        if str(logging_config[key]).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"Log level must be one of: {', '.join(VALID_LOG_LEVELS)}"
            )

    calibration = config['calibration']
    if not _is_positive_int(calibration['min_samples']):
        raise ConfigError("Calibration min_samples must be at least 1")

    if not _is_positive_int(calibration['patch_size']):
        raise ConfigError("Calibration patch grid size must be a positive integer")


def print_config_summary(config: Dict[str, Any], logger: logging.Logger) -> None:
    """
    Log a summary of key configuration settings.

    Args:
        config: Configuration dictionary
        logger: Logger instance
    """
    detection = config['detection']

    logger.info("=" * 70)
    logger.info("Configuration Summary")
    logger.info("=" * 70)

    logger.info(f"Input: {config['paths']['input']}")
    logger.info(f"Algorithm: {detection['algorithm']}")
    if detection['algorithm'] == 'patch-based':
        logger.info(f"Strategy: {detection['strategy']}")
        logger.info(f"Patch Grid: {detection['patch_size']}x{detection['patch_size']}")
    logger.info(f"Threshold: {detection['threshold'] if detection['threshold'] is not None else 'default'}")
    logger.info(f"Calibration: {config['paths']['calibration_file'] if detection['use_calibration'] else 'off'}")
    logger.info(f"Workers: {config['processing']['num_workers']}")
    logger.info(f"File Operation: {config['output']['action']}")

    if config['output']['dry_run']:
        logger.warning("DRY RUN MODE - Files will not be moved/copied/renamed")

    logger.info("=" * 70)
