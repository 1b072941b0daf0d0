"""
Exception types raised while preparing or starting a development session.

Every fatal startup condition derives from StartupError so the launcher can
abort the session with a single handler.
"""


class ConfigurationError(ValueError):
    """An environment variable holds a value the launcher cannot use."""


class StartupError(RuntimeError):
    """Base class for failures that abort the whole session."""


class MissingPrerequisiteError(StartupError):
    """A directory the session depends on does not exist."""


class ToolchainError(StartupError):
    """A toolchain or dependency installation step failed."""


class LaunchError(StartupError):
    """A child process could not be spawned."""


class ReadinessError(StartupError):
    """The backend did not become ready before the frontend was due to start."""
