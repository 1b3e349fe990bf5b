"""Utility modules for GRBL Streamer."""

from .constants import *
from .exceptions import *
from .validation import *
from .config import ControllerConfig, DEFAULT_SETTINGS

__all__ = [
    # Config
    "ControllerConfig",
    "DEFAULT_SETTINGS",
]
