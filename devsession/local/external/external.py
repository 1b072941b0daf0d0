import sys
import json
import shutil
import logging
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Mapping, Optional
from devsession.local.config import parse_bind_address
from devsession.local.errors import ConfigurationError, MissingPrerequisiteError, ReadinessError, ToolchainError

if TYPE_CHECKING:
    from devsession.local.config import SessionConfig

log = logging.getLogger(__name__)

ENV_SCRIPT_TIMEOUT = 60  # seconds

# Sources the script, then dumps the resulting environment as JSON on stdout.
_ENV_DUMP_SCRIPT = '. "$1" >/dev/null 2>&1 || exit $?; exec "$2" -c "import json, os; print(json.dumps(dict(os.environ)))"'


def load_shell_environment(script: Path, base_env: Mapping[str, str], cwd: Optional[Path] = None) -> Dict[str, str]:
    """
    Sources a POSIX shell script and returns the environment it leaves behind.

    Used for the toolchain activation scripts ('use-rust*.sh', 'use-node*.sh')
    that sit next to the checkouts. A script that fails is reported and the
    base environment is returned unchanged.

    :param script: Path of the script to source.
    :param base_env: The environment the script starts from.
    :param cwd: The directory the script is sourced in; defaults to the script's own directory.
    :return: The resulting environment.
    """
    log.info(f"Loading toolchain environment from '{script}'...")
    try:
        result = subprocess.run(
            ["sh", "-c", _ENV_DUMP_SCRIPT, "sh", str(script), sys.executable],
            env=dict(base_env),
            cwd=str(cwd or script.parent),
            capture_output=True,
            timeout=ENV_SCRIPT_TIMEOUT,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.warning(f"Could not source '{script}': {e}. Continuing with the current environment.")
        return dict(base_env)

    if result.returncode != 0:
        log.warning(f"Sourcing '{script}' failed with exit code {result.returncode}. Continuing with the current environment.")
        return dict(base_env)

    try:
        env = json.loads(result.stdout.decode("utf-8", errors="replace").strip().splitlines()[-1])
    except (json.JSONDecodeError, IndexError) as e:
        log.warning(f"Could not read the environment produced by '{script}': {e}.")
        return dict(base_env)

    changed = sorted(key for key, value in env.items() if base_env.get(key) != value)
    log.debug(f"'{script.name}' changed: {', '.join(changed) or 'nothing'}")
    return env


class ToolchainManager:
    """Prepares the backend and frontend toolchains before their processes are launched."""

    def __init__(self, config: "SessionConfig"):
        self.config = config

    def _run(self, name: str, args: List[str], env: Mapping[str, str]) -> None:
        # Imported here, the supervisor package imports this module at load time.
        from devsession.local.supervisor.process_utils import ProcessDefinition, run_step
        run_step(ProcessDefinition(name, args, self.config.frontend.console_dir, env))

    def _base_environment(self, env_script: Path, cwd: Path) -> Dict[str, str]:
        env = dict(self.config.environ)
        if env_script.is_file():
            env = load_shell_environment(env_script, env, cwd)
        else:
            log.debug(f"No toolchain script at '{env_script}', using the current environment.")
        return env

    #* --- Backend ---
    def backend_environment(self) -> Dict[str, str]:
        """Builds the backend environment: inherited variables, toolchain script, then RustFS defaults."""
        backend = self.config.backend
        env = backend.build_environment(self._base_environment(backend.env_script, backend.project_root))
        # The readiness probe must target what the backend actually binds.
        backend.address = env["RUSTFS_ADDRESS"]
        return env

    def prepare_backend(self) -> Dict[str, str]:
        """
        Resolves the backend environment and announces where it will listen.

        :return: The environment the backend is started with.
        :raises ReadinessError: If the address cannot be probed in tcp readiness mode.
        """
        env = self.backend_environment()
        if self.config.readiness == "tcp":
            try:
                parse_bind_address(env["RUSTFS_ADDRESS"])
            except ConfigurationError as e:
                raise ReadinessError(f"Cannot wait for the backend: {e}") from e
        log.info("Backend settings:")
        log.info(f"   Address: {env['RUSTFS_ADDRESS']}")
        log.info(f"   Volumes: {env['RUSTFS_VOLUMES']}")
        log.info(f"   Log filter: {env['RUST_LOG']}")
        log.info("   Console: disabled (served by the separate frontend)")
        return env

    #* --- Frontend ---
    def check_console_dir(self) -> None:
        """
        Verifies that the console checkout exists.

        :raises MissingPrerequisiteError: If the directory is missing.
        """
        console_dir = self.config.frontend.console_dir
        if not console_dir.is_dir():
            raise MissingPrerequisiteError(f"Console project does not exist: {console_dir}")

    def has_package_manager(self, env: Mapping[str, str]) -> bool:
        return shutil.which(self.config.frontend.package_manager, path=env.get("PATH")) is not None

    def ensure_package_manager(self, env: Mapping[str, str]) -> bool:
        """
        Installs the package manager globally if it is not on PATH.

        :return: True if an installation was performed, False if it was already present.
        :raises ToolchainError: If the installation fails.
        """
        frontend = self.config.frontend
        if self.has_package_manager(env):
            return False

        log.warning(f"'{frontend.package_manager}' not found on PATH. Installing it...")
        self._run("npm", frontend.package_manager_install_command, env)
        if not self.has_package_manager(env):
            raise ToolchainError(
                f"'{frontend.package_manager}' is still not on PATH after installation. "
                "Check that the global npm bin directory is on PATH."
            )
        log.info(f"'{frontend.package_manager}' installed.")
        return True

    def ensure_dependencies(self, env: Mapping[str, str]) -> bool:
        """
        Installs the console's dependencies on first run.

        The dependency cache directory is the marker: when it exists, nothing is done.

        :return: True if an installation was performed, False if it was skipped.
        :raises ToolchainError: If the installation fails.
        """
        frontend = self.config.frontend
        if frontend.dependency_cache_dir.is_dir():
            log.debug(f"Dependencies already installed in '{frontend.dependency_cache_dir}'.")
            return False

        log.info("Installing console dependencies...")
        self._run(frontend.package_manager, frontend.dependency_install_command, env)
        log.info("Console dependencies installed.")
        return True

    def prepare_frontend(self) -> Dict[str, str]:
        """
        Checks and prepares everything the console dev server needs.

        :return: The environment the frontend is started with.
        :raises StartupError: If the console directory is missing or an install step fails.
        """
        self.check_console_dir()
        env = self._base_environment(self.config.frontend.env_script, self.config.frontend.console_dir)
        self.ensure_package_manager(env)
        self.ensure_dependencies(env)
        log.info(f"Console dev server will listen on {self.config.frontend.display_address}")
        return env
