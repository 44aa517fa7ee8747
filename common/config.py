"""
Configuration loading.
The service is configured by a JSON file merged over DEFAULT_CONFIG.
"""

import copy
import json
import os
from typing import Dict, Optional

from .constants import DEFAULT_CONFIG, BACKEND_MEMORY, BACKEND_FIRESTORE
from .exceptions import ConfigurationError
from .utils import deep_merge


def load_config(config_path: Optional[str] = None) -> Dict:
    """
    Load configuration from a JSON file.
    
    Args:
        config_path: Path to the configuration file. None returns the defaults.
    
    Returns:
        Configuration dictionary with every section present
    
    Raises:
        ConfigurationError: if the file is missing, unreadable or invalid
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    
    if not os.path.exists(config_path):
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            user_config = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load configuration {config_path}: {e}") from e
    
    if not isinstance(user_config, dict):
        raise ConfigurationError(f"Configuration root must be an object: {config_path}")
    
    config = deep_merge(copy.deepcopy(DEFAULT_CONFIG), user_config)
    validate_config(config)
    return config


def validate_config(config: Dict):
    """Check the values the service cannot run without"""
    backend = config['store'].get('backend')
    if backend not in (BACKEND_MEMORY, BACKEND_FIRESTORE):
        raise ConfigurationError(f"Unknown store backend: {backend}")
    
    max_attempts = config['store'].get('max_attempts')
    if not isinstance(max_attempts, int) or max_attempts < 1:
        raise ConfigurationError(f"store.max_attempts must be a positive integer, got {max_attempts!r}")
    
    workers = config['triggers'].get('workers')
    if not isinstance(workers, int) or workers < 1:
        raise ConfigurationError(f"triggers.workers must be a positive integer, got {workers!r}")
    
    redelivery = config['triggers'].get('redelivery_attempts')
    if not isinstance(redelivery, int) or redelivery < 0:
        raise ConfigurationError(
            f"triggers.redelivery_attempts must be a non-negative integer, got {redelivery!r}"
        )
