"""
Pipeline configuration.

Loaded from ``config/pipeline_config.yaml`` (or the file named by the
``RECEIPT_PIPELINE_CONFIG`` environment variable) and deep-merged over
``default_config()``, so a config file only needs the keys it changes.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from loguru import logger

from receipt_extraction.exceptions import ConfigurationError

CONFIG_ENV_VAR = "RECEIPT_PIPELINE_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "pipeline_config.yaml"


def default_config() -> Dict[str, Any]:
    """Return the built-in configuration."""
    return {
        'ocr': {
            'provider': 'paddle',
            'use_gpu': False,
            'use_angle_cls': True,
            'lang': 'en',
            'det_db_thresh': 0.15,
            'det_db_unclip_ratio': 1.2,
            'drop_score': 0.25,
            'det_limit_side_len': 2560,
            'timeout_seconds': 30,
            'credentials_path': None,
        },
        'retry': {
            'max_attempts': 3,
            'base_delay_seconds': 0.5,
            'max_delay_seconds': 4.0,
        },
        'sanitizer': {
            'max_length': 20000,
        },
        'detection': {
            'acceptance_threshold': 0.3,
        },
        'extraction': {
            'store_search_lines': 5,
            'template_confidence': 0.85,
            'generic_confidence': 0.6,
            'next_line_factor': 0.9,
            'assumed_quantity_penalty': 0.9,
        },
        'scoring': {
            'store_weight': 1.0,
            'totals_weight': 2.0,
            'ocr_weight': 0.5,
            'reconciliation_tolerance': 0.01,
            'reconciliation_penalty': 0.7,
            'missing_total_factor': 0.5,
        },
        'assembly': {
            'missing_totals_penalty': 0.8,
            'default_store_name': 'Unknown Store',
            'tax_rate_range': [1.0, 30.0],   # percent of subtotal; outside is flagged
        },
        'logging': {
            'level': 'INFO',
            'file': 'logs/receipt_extraction.log',
        },
        'templates': [],
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML, falling back to defaults.

    Args:
        config_path: Explicit file path. When omitted, the environment
                     variable and then the bundled config file are tried.

    Returns:
        Fully populated configuration dict.

    Raises:
        ConfigurationError: the file exists but is not valid YAML mapping.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH

    config_path = Path(config_path)
    if not config_path.exists():
        logger.warning(f"[Config] Config file not found: {config_path}, using defaults")
        return default_config()

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {config_path}", "Config", e)

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping", "Config")

    logger.debug(f"[Config] Loaded {config_path}")
    return _deep_merge(default_config(), loaded)
