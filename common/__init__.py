# common/__init__.py
"""
Common utilities, constants and error types.
"""

from .logger import setup_logging, get_logger
from .constants import *
from .utils import *

__all__ = [
    'setup_logging',
    'get_logger'
]
