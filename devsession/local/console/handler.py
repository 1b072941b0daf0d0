import shutil
import logging
from devsession.local.config import SessionConfig
from devsession.local.errors import ConfigurationError
from devsession.log import set_console_level

log = logging.getLogger(__name__)


def _status_line(label: str, ok: bool, detail: str) -> str:
    return f"  - {label:<22} : {'OK     ' if ok else 'MISSING'} | {detail}"

def display_check(config: SessionConfig) -> int:
    """
    Prints whether each prerequisite of a session is in place, without changing anything.

    :return: 0 if both processes could be started, 1 otherwise.
    """
    frontend = config.frontend
    backend = config.backend
    path = config.environ.get("PATH")

    cargo = shutil.which(backend.command[0], path=path)
    package_manager = shutil.which(frontend.package_manager, path=path)
    console_ok = frontend.console_dir.is_dir()

    print("\n--- Dev Session Check ---")
    print(_status_line("Project root", config.project_root.is_dir(), str(config.project_root)))
    print(_status_line("Cargo", cargo is not None, cargo or "not on PATH"))
    print(_status_line("Rust env script", backend.env_script.is_file(), str(backend.env_script)))
    print(_status_line("Console project", console_ok, str(frontend.console_dir)))
    print(_status_line("Node env script", frontend.env_script.is_file(), str(frontend.env_script)))
    print(_status_line(frontend.package_manager, package_manager is not None,
                       package_manager or "not on PATH (installed on first start)"))
    print(_status_line("Console dependencies", frontend.dependency_cache_dir.is_dir(),
                       "installed" if frontend.dependency_cache_dir.is_dir() else "installed on first start"))

    try:
        host, port = backend.connect_address
        address_ok = True
        address_detail = f"{backend.address} (probed at {host}:{port})"
    except ConfigurationError as e:
        address_ok = False
        address_detail = str(e)
    print(_status_line("Backend address", address_ok, address_detail))
    print(f"\nReadiness: {config.readiness} | Ready timeout: {config.ready_timeout:g}s | "
          f"Shutdown timeout: {config.shutdown_timeout:g}s")
    print("-" * 25 + "\n")

    return 0 if (config.project_root.is_dir() and cargo and console_ok and address_ok) else 1

def enable_verbose_logging() -> None:
    """Switches the console handler to DEBUG level."""
    if not set_console_level(logging.DEBUG):
        log.warning("Could not find console handler to modify level.")

def print_help() -> int:
    """Prints the main help text."""
    print("\nUsage: devsession <command> [--verbose]")
    print("\nAvailable commands:")
    print("  start-all              - Start the backend, wait until it is ready, then start the console.")
    print("  start-backend          - Start only the RustFS backend (embedded console disabled).")
    print("  start-frontend         - Start only the console dev server.")
    print("  check                  - Show which prerequisites are in place.")
    print("  help                   - Show this help message.")
    print("\nPress Ctrl+C to stop a running session. Settings are read from DEVSESSION_* and RUSTFS_* variables.")
    print()
    return 0
