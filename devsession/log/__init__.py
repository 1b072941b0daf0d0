"""
Logging module for the launcher.
This module provides functionality to set up console and file logging.
"""

from .setup import setup_logging, set_console_level

__all__ = ["setup_logging", "set_console_level"]
