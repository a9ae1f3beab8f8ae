"""
Shared helper functions and utilities.

Logging setup plus loading, profiling, validating and saving the nested
configuration dictionary consumed by the camera, detector, lifecycle
manager, TUIO bridge and debug viewer.
"""

import copy
import json
import logging
import os

PROFILES = {
    'default': {},
    'high_performance': {
        'video_fps': 60,
    },
    'low_latency': {
        'video_fps': 30,
        'lifecycle': {'marker_timeout_ms': 500},
    },
    'debug': {
        'video_fps': 15,
        'debug': {
            'enable_debug_logging': True,
            'statistics_interval_ms': 1000,
        },
    },
}


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger(__name__)
    logger.info("Logging initialized")


def default_config():
    """Return a fresh copy of the default configuration."""
    return {
        # Video settings
        'camera_id': 0,
        'video_width': 640,
        'video_height': 480,
        'video_fps': 30,
        'camera_backend_priority': None,
        'camera_init_attempts': 10,

        # Marker detection
        'detection': {
            'blur_kernel': 1,
            'contrast_alpha': 1.3,
            'brightness_beta': 20,
            'canny_low': 30,
            'canny_high': 100,
            'min_contour_area': 500,
            'max_contour_area': 100000,
            'min_contour_perimeter': 80,
            'approx_epsilon_ratio': 0.05,
            'min_aspect_ratio': 0.8,
            'max_aspect_ratio': 1.25,
            'min_marker_size': 40,
            'max_marker_size': 200,
            'luma_threshold': 70,
            'border_min_consistency': 0.4,
            'data_bits': 12,
            'min_confidence': 0.7,
        },

        # Marker lifecycle
        'lifecycle': {
            'marker_timeout_ms': 1000,
            'history_size': 10,
            'remove_on_absence': True,
        },

        # TUIO output
        'tuio': {
            'enabled': True,
            'host': 'localhost',
            'port': 3333,
            'max_markers': 100,
        },

        # Diagnostics
        'debug': {
            'enable_debug_logging': False,
            'statistics_interval_ms': 5000,
            'show_debug_view': False,
            'show_candidates': True,
            'display_width': 640,
            'display_height': 480,
        },
    }


def merge_config(base, overrides):
    """Merge ``overrides`` into ``base`` one section deep, in place.

    Args:
        base: Configuration dictionary to update
        overrides: Values to apply; dict values update the matching section

    Returns:
        dict: The updated ``base``
    """
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update(value)
        else:
            base[key] = value
    return base


def get_config(config_path=None, profile=None):
    """Load configuration from file or return defaults.

    Args:
        config_path: Path to JSON configuration file (optional)
        profile: Name of a profile in PROFILES to apply on top (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = default_config()

    # Load from file if provided
    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                loaded_config = json.load(f)
            merge_config(config, loaded_config)
            logging.info(f"Configuration loaded from {config_path}")
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config from {config_path}: {e}")
    elif config_path:
        logging.warning(f"Configuration file not found: {config_path}")

    if profile:
        if profile not in PROFILES:
            raise ValueError(
                f"Unknown profile '{profile}', expected one of {sorted(PROFILES)}"
            )
        merge_config(config, copy.deepcopy(PROFILES[profile]))
        config['profile'] = profile

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w') as f:
            json.dump(config, f, indent=4)
        logging.info(f"Configuration saved to {config_path}")
        return True
    except (OSError, TypeError) as e:
        logging.error(f"Failed to save config to {config_path}: {e}")
        return False


def get_validation_errors(config):
    """Collect every problem found in a configuration.

    Args:
        config: Configuration dictionary

    Returns:
        list: Human-readable error strings, empty when valid
    """
    errors = []

    for key in ('camera_id', 'video_width', 'video_height', 'video_fps'):
        if key not in config:
            errors.append(f"Missing required config key: {key}")
    if errors:
        return errors

    if config['video_width'] <= 0 or config['video_height'] <= 0:
        errors.append("Video dimensions must be positive")
    if not 1 <= config['video_fps'] <= 120:
        errors.append("video_fps must be between 1 and 120")

    tuio = config.get('tuio', {})
    if not tuio.get('host'):
        errors.append("TUIO host must not be empty")
    if not 1 <= tuio.get('port', 0) <= 65535:
        errors.append("TUIO port must be between 1 and 65535")
    if not 1 <= tuio.get('max_markers', 1) <= 100:
        errors.append("max_markers must be between 1 and 100")

    lifecycle = config.get('lifecycle', {})
    if lifecycle.get('marker_timeout_ms', 1000) < 100:
        errors.append("marker_timeout_ms must be at least 100")
    if lifecycle.get('history_size', 10) < 1:
        errors.append("history_size must be positive")

    detection = config.get('detection', {})
    if not 0.0 <= detection.get('min_confidence', 0.7) <= 1.0:
        errors.append("min_confidence must be between 0 and 1")
    if detection.get('min_marker_size', 40) > detection.get('max_marker_size', 200):
        errors.append("min_marker_size must not exceed max_marker_size")
    if detection.get('canny_low', 30) >= detection.get('canny_high', 100):
        errors.append("canny_low must be below canny_high")
    if detection.get('min_aspect_ratio', 0.8) > detection.get('max_aspect_ratio', 1.25):
        errors.append("min_aspect_ratio must not exceed max_aspect_ratio")
    if not 1 <= detection.get('data_bits', 12) <= 12:
        errors.append("data_bits must be between 1 and 12")

    return errors


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    errors = get_validation_errors(config)
    for error in errors:
        logging.error(error)

    if errors:
        return False

    logging.info("Configuration validated successfully")
    return True
