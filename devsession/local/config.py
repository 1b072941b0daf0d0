import os
import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import devsession.settings as default_settings
from devsession.local.errors import ConfigurationError

log = logging.getLogger(__name__)


def parse_bool(value: Optional[str], default: bool) -> bool:
    """Parses a boolean environment value, falling back to the default when unset or empty."""
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in default_settings.TRUTHY_VALUES

def parse_seconds(name: str, value: Optional[str], default: float) -> float:
    """Parses a non-negative duration in seconds."""
    if value is None or value.strip() == "":
        return default
    try:
        seconds = float(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number of seconds, got '{value}'.")
    if seconds < 0:
        raise ConfigurationError(f"{name} must not be negative, got '{value}'.")
    return seconds

def parse_bind_address(address: str) -> Tuple[str, int]:
    """
    Splits a RustFS bind address into a host and port that can be connected to.

    Accepts 'host:port', ':port' and '[v6]:port'. An empty or wildcard host is
    mapped to the matching loopback address.

    :param address: The bind address, e.g. ':9000'.
    :return: A (host, port) tuple.
    """
    host, sep, port_str = address.strip().rpartition(":")
    if not sep:
        raise ConfigurationError(f"Bind address '{address}' has no port.")
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigurationError(f"Bind address '{address}' has an invalid port '{port_str}'.")
    if not 0 < port < 65536:
        raise ConfigurationError(f"Bind address '{address}' has an out-of-range port {port}.")

    host = host.strip("[]")
    if host in ("", "0.0.0.0"):
        host = "127.0.0.1"
    elif host == "::":
        host = "::1"
    return host, port

def _resolve(base: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


class BackendConfig:
    """Resolved settings for the RustFS backend process."""

    def __init__(self, environ: Mapping[str, str], project_root: Path) -> None:
        self.project_root = project_root
        self.volumes = environ.get(default_settings.ENV_RUSTFS_VOLUMES) or default_settings.DEFAULT_RUSTFS_VOLUMES
        self.address = environ.get(default_settings.ENV_RUSTFS_ADDRESS) or default_settings.DEFAULT_RUSTFS_ADDRESS
        self.rust_log = environ.get(default_settings.ENV_RUST_LOG) or default_settings.DEFAULT_RUST_LOG
        self.env_script = _resolve(
            project_root,
            environ.get(default_settings.ENV_RUST_ENV_SCRIPT) or default_settings.DEFAULT_RUST_ENV_SCRIPT,
        )
        self.command = list(default_settings.BACKEND_COMMAND)

    @property
    def connect_address(self) -> Tuple[str, int]:
        return parse_bind_address(self.address)

    def build_environment(self, inherited: Mapping[str, str]) -> Dict[str, str]:
        """
        Returns the complete backend environment.

        Values already present in the inherited environment (for instance set
        by the toolchain script) are kept; unset ones get the resolved defaults.
        The embedded console is always disabled.
        """
        env = dict(inherited)
        env[default_settings.ENV_RUSTFS_VOLUMES] = inherited.get(default_settings.ENV_RUSTFS_VOLUMES) or self.volumes
        env[default_settings.ENV_RUSTFS_ADDRESS] = inherited.get(default_settings.ENV_RUSTFS_ADDRESS) or self.address
        env[default_settings.ENV_RUST_LOG] = inherited.get(default_settings.ENV_RUST_LOG) or self.rust_log
        # The console runs as a separate dev server
        env[default_settings.ENV_RUSTFS_CONSOLE_ENABLE] = "false"
        env[default_settings.ENV_RUSTFS_CONSOLE_ADDRESS] = ""
        return env


class FrontendConfig:
    """Resolved settings for the console dev server."""

    def __init__(self, environ: Mapping[str, str], project_root: Path) -> None:
        self.console_dir = _resolve(
            project_root,
            environ.get(default_settings.ENV_CONSOLE_DIR) or default_settings.DEFAULT_CONSOLE_DIR,
        )
        self.env_script = _resolve(
            self.console_dir,
            environ.get(default_settings.ENV_NODE_ENV_SCRIPT) or default_settings.DEFAULT_NODE_ENV_SCRIPT,
        )
        self.package_manager = default_settings.PACKAGE_MANAGER
        self.package_manager_install_command = list(default_settings.PACKAGE_MANAGER_INSTALL_COMMAND)
        self.dependency_install_command = list(default_settings.DEPENDENCY_INSTALL_COMMAND)
        self.command = list(default_settings.FRONTEND_COMMAND)
        self.display_address = default_settings.FRONTEND_DISPLAY_ADDRESS

    @property
    def dependency_cache_dir(self) -> Path:
        return self.console_dir / default_settings.DEPENDENCY_CACHE_DIR_NAME


class SessionConfig:
    """
    The complete launcher configuration, resolved once from an environment mapping.

    Nothing here reads or writes the process environment directly; the mapping
    is passed in so defaults can be checked against any dictionary.
    """

    def __init__(self, environ: Mapping[str, str], cwd: Path) -> None:
        self.environ: Dict[str, str] = dict(environ)

        root_value = environ.get(default_settings.ENV_PROJECT_ROOT)
        self.project_root = _resolve(cwd, root_value) if root_value else cwd
        self.project_root = Path(os.path.normpath(self.project_root))

        self.backend = BackendConfig(environ, self.project_root)
        self.frontend = FrontendConfig(environ, self.project_root)

        self.readiness = (environ.get(default_settings.ENV_READINESS) or default_settings.DEFAULT_READINESS).lower()
        if self.readiness not in default_settings.READINESS_MODES:
            raise ConfigurationError(
                f"{default_settings.ENV_READINESS} must be one of "
                f"{', '.join(default_settings.READINESS_MODES)}, got '{self.readiness}'."
            )
        self.health_url = environ.get(default_settings.ENV_HEALTH_URL, "")
        if self.readiness == "http" and not self.health_url:
            raise ConfigurationError(
                f"{default_settings.ENV_HEALTH_URL} is required when {default_settings.ENV_READINESS}=http."
            )

        self.grace_period = parse_seconds(
            default_settings.ENV_GRACE_PERIOD, environ.get(default_settings.ENV_GRACE_PERIOD), default_settings.GRACE_PERIOD
        )
        self.ready_timeout = parse_seconds(
            default_settings.ENV_READY_TIMEOUT, environ.get(default_settings.ENV_READY_TIMEOUT), default_settings.READY_TIMEOUT
        )
        self.shutdown_timeout = parse_seconds(
            default_settings.ENV_SHUTDOWN_TIMEOUT, environ.get(default_settings.ENV_SHUTDOWN_TIMEOUT), default_settings.SHUTDOWN_TIMEOUT
        )
        self.ready_poll_interval = default_settings.READY_POLL_INTERVAL
        self.kill_wait_timeout = default_settings.KILL_WAIT_TIMEOUT
        self.supervisor_sleep_interval = default_settings.SUPERVISOR_SLEEP_INTERVAL
        self.stop_on_child_exit = parse_bool(
            environ.get(default_settings.ENV_STOP_ON_CHILD_EXIT), default_settings.STOP_ON_CHILD_EXIT
        )


def load_config(environ: Optional[Mapping[str, str]] = None, cwd: Optional[Path] = None) -> SessionConfig:
    """
    Builds the session configuration.

    :param environ: The environment to read; defaults to a snapshot of os.environ.
    :param cwd: The directory relative paths are resolved against; defaults to the current directory.
    :return: The resolved SessionConfig.
    """
    if environ is None:
        environ = dict(os.environ)
    if cwd is None:
        cwd = Path.cwd()
    config = SessionConfig(environ, cwd)
    log.debug(
        f"Configuration resolved: project_root='{config.project_root}', "
        f"console_dir='{config.frontend.console_dir}', readiness='{config.readiness}'"
    )
    return config
