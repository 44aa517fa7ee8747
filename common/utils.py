"""
Common utilities for the enrollment trigger service.
"""

import json
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Any


def generate_id() -> str:
    """Generate a unique document ID"""
    return uuid.uuid4().hex[:20]


def timestamp() -> float:
    """Get current timestamp"""
    return time.time()


def utc_now() -> datetime:
    """Get current timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def load_json_file(file_path: str) -> Dict[str, Any]:
    """Load JSON data from a file, returning {} when the file is absent"""
    if os.path.exists(file_path):
        with open(file_path, 'r', encoding='utf-8') as file:
            return json.load(file)
    return {}


def save_json_file(data: Dict[str, Any], file_path: str):
    """Atomically save data to a JSON file (write temp file, then rename)"""
    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    
    temp_file = file_path + '.tmp'
    with open(temp_file, 'w', encoding='utf-8') as file:
        json.dump(data, file, indent=2)
    os.replace(temp_file, file_path)


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override merged in, recursing into dicts"""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged
