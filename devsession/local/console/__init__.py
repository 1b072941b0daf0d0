"""
This module initializes the console package, exposing command execution,
the prerequisite check and help output.
"""

from .process import execute_command
from .handler import display_check, enable_verbose_logging, print_help

__all__ = ["execute_command", "display_check", "enable_verbose_logging", "print_help"]
