"""
This module initializes the toolchain preparation system.
It imports the `ToolchainManager` class from the `external` module.
"""

from .external import ToolchainManager, load_shell_environment

__all__ = ["ToolchainManager", "load_shell_environment"]
