"""
Local package for the development session launcher.

This package resolves the launcher configuration and hosts the supervisor,
toolchain and console subpackages.
"""

from .config import SessionConfig, load_config

__all__ = ["SessionConfig", "load_config"]
