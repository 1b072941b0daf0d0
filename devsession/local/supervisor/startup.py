import time
import socket
import logging
import requests
from typing import TYPE_CHECKING, Callable, List
from devsession.local.errors import ReadinessError
from devsession.local.supervisor import process_utils
from devsession.local.supervisor.process_utils import BACKEND, FRONTEND, ManagedProcess, ProcessDefinition

if TYPE_CHECKING:
    from .supervisor import SessionLauncher

log = logging.getLogger(__name__)


def prepare_processes(manager: "SessionLauncher") -> List[ProcessDefinition]:
    """
    Runs the prerequisite checks and install steps for every process of the session.

    All preparation happens before the first launch, so a missing console
    checkout is reported without a backend having been started.

    :param manager: The SessionLauncher instance.
    :return: The process definitions in launch order.
    :raises StartupError: If a prerequisite is missing or an install step fails.
    """
    prepare = {
        BACKEND: manager.toolchain.prepare_backend,
        FRONTEND: manager.toolchain.prepare_frontend,
    }
    definitions = []
    for name in manager.process_names:
        env = prepare[name]()
        definitions.append(process_utils.get_process_definition(name, manager.config, env))
    return definitions


def _probe_tcp(host: str, port: int) -> bool:
    try:
        with socket.create_connection((host, port), timeout=1):
            return True
    except OSError:
        return False


def _probe_http(url: str) -> bool:
    try:
        response = requests.get(url, timeout=2)
        return response.ok
    except requests.RequestException:
        return False


def _poll_until_ready(manager: "SessionLauncher", backend: ManagedProcess, probe: Callable[[], bool], target: str) -> bool:
    """
    Polls a readiness probe until it succeeds, the backend dies, a shutdown is requested or the timeout expires.

    :return: True when ready, False if a shutdown was requested while waiting.
    :raises ReadinessError: On timeout or if the backend exits while being waited on.
    """
    config = manager.config
    log.info(f"Waiting for the backend at {target} (timeout {config.ready_timeout:.0f}s)...")
    start_time = time.monotonic()
    while True:
        if probe():
            log.info(f"Backend is up at {target} after {time.monotonic() - start_time:.1f} seconds.")
            return True

        returncode = backend.poll()
        if returncode is not None:
            raise ReadinessError(
                f"Backend exited while starting up ({process_utils.describe_returncode(returncode)})."
            )
        if time.monotonic() - start_time >= config.ready_timeout:
            raise ReadinessError(
                f"Backend did not become available at {target} after {config.ready_timeout:.0f} seconds."
            )
        if manager.shutdown_signal_received.wait(config.ready_poll_interval):
            log.info("Shutdown requested while waiting for the backend.")
            return False


def wait_for_backend(manager: "SessionLauncher", backend: ManagedProcess) -> bool:
    """
    Suspends until the backend is ready for the frontend to connect to it.

    The readiness mode decides how: 'tcp' polls the bind address, 'http' polls
    a health URL, 'delay' waits a fixed grace period without checking anything.

    :param manager: The SessionLauncher instance.
    :param backend: The launched backend process.
    :return: True when the frontend may start, False if a shutdown was requested meanwhile.
    :raises ReadinessError: If the backend does not become ready.
    """
    config = manager.config
    if config.readiness == "delay":
        log.info(f"Waiting {config.grace_period:g} seconds for the backend to initialize...")
        return not manager.shutdown_signal_received.wait(config.grace_period)

    if config.readiness == "http":
        return _poll_until_ready(manager, backend, lambda: _probe_http(config.health_url), config.health_url)

    host, port = config.backend.connect_address
    return _poll_until_ready(manager, backend, lambda: _probe_tcp(host, port), f"{host}:{port}")


def start_all_processes(manager: "SessionLauncher", definitions: List[ProcessDefinition]) -> bool:
    """
    Starts all session processes in order, waiting for the backend before starting anything after it.

    :param manager: The SessionLauncher instance.
    :param definitions: The prepared process definitions in launch order.
    :return: True if every process was started, False if a shutdown was requested midway.
    :raises StartupError: If a launch or readiness check fails.
    """
    for index, definition in enumerate(definitions):
        if manager.shutdown_signal_received.is_set():
            return False

        managed = process_utils.launch_process(definition)
        manager.running_procs[definition.name] = managed

        has_followers = index < len(definitions) - 1
        if definition.name == BACKEND and has_followers and not wait_for_backend(manager, managed):
            return False
    return True
