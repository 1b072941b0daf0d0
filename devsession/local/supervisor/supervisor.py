import time
import signal
import logging
import threading
from enum import Enum
from typing import Dict, List, Optional, Sequence
import devsession.settings as default_settings
from devsession.local.config import SessionConfig
from devsession.local.errors import ConfigurationError, StartupError
from devsession.local.external import ToolchainManager
from devsession.local.supervisor import process_utils, shutdown, startup
from devsession.local.supervisor.process_utils import ManagedProcess

log = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SessionState(Enum):
    NOT_STARTED = "not started"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting down"
    STOPPED = "stopped"


class SessionLauncher:
    """
    Runs the development session's child processes and stops them together.

    The backend is started first; anything after it only starts once the
    backend is ready. SIGINT and SIGTERM end the session: the handler only
    records the signal, the control flow then runs the shutdown sequence.
    """

    def __init__(self, config: SessionConfig, process_names: Sequence[str]) -> None:
        """
        Initializes the launcher state.

        :param config: The resolved session configuration.
        :param process_names: The processes to run, in launch order.
        """
        self.config = config
        self.process_names: List[str] = list(process_names)
        self.toolchain = ToolchainManager(config)
        self.running_procs: Dict[str, ManagedProcess] = {}
        self.state = SessionState.NOT_STARTED
        self.received_signal: Optional[int] = None
        self.shutdown_signal_received = threading.Event()
        self.shutdown_complete = threading.Event()
        self.shutdown_report: Optional[shutdown.ShutdownReport] = None
        self.output_relays = []
        self._previous_handlers: Dict[int, object] = {}

    #* --- Signal Handling ---
    def _handle_signal(self, signum, frame) -> None:
        """Records the signal and wakes the control flow; the shutdown itself runs outside the handler."""
        self.received_signal = signum
        self.shutdown_signal_received.set()

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not on the main thread, signal handlers are not installed.")
            return
        for signum in SHUTDOWN_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            # None means the previous handler was not installed from Python.
            if handler is not None:
                signal.signal(signum, handler)
        self._previous_handlers.clear()

    def request_shutdown(self) -> None:
        """Asks a running session to stop, as if it had received SIGTERM."""
        self._handle_signal(signal.SIGTERM, None)

    #* --- Lifecycle ---
    def run(self) -> int:
        """
        Starts the session and blocks until it ends.

        :return: 0 after a signal-driven shutdown, 1 on a fatal startup error,
                 otherwise the exit status of the child that ended the session.
        """
        self._install_signal_handlers()
        try:
            return self._run()
        finally:
            self._restore_signal_handlers()

    def _run(self) -> int:
        log.info("=" * 20 + f" Dev Session Starting ({', '.join(self.process_names)}) " + "=" * 20)
        self.state = SessionState.STARTING
        start_time = time.time()

        try:
            definitions = startup.prepare_processes(self)
            started = startup.start_all_processes(self, definitions)
        except (StartupError, ConfigurationError) as e:
            log.critical(f"Startup failed: {e}")
            self.stop_all()
            return default_settings.EXIT_STARTUP_FAILURE
        except KeyboardInterrupt:
            log.info("Startup interrupted by user.")
            self.stop_all()
            return default_settings.EXIT_OK

        if not started:
            self.stop_all()
            return default_settings.EXIT_OK

        self.state = SessionState.RUNNING
        log.info(f"All processes started in {time.time() - start_time:.2f} seconds. Press Ctrl+C to stop.")
        return self.supervision_loop()

    def supervision_loop(self) -> int:
        """
        Blocks until a shutdown is requested or one of the children exits on its own.

        :return: The session's exit status.
        """
        while True:
            try:
                if self.shutdown_signal_received.wait(self.config.supervisor_sleep_interval):
                    self._log_received_signal()
                    self.stop_all()
                    return default_settings.EXIT_OK

                exited = process_utils.find_exited_process(self.running_procs.values())
                if exited is not None:
                    return self._handle_child_exit(exited)

            except KeyboardInterrupt:
                log.info("Supervisor loop interrupted by user.")
                self.stop_all()
                return default_settings.EXIT_OK

    def _log_received_signal(self) -> None:
        if self.received_signal is None:
            log.info("Shutdown requested. Stopping services...")
            return
        try:
            name = signal.Signals(self.received_signal).name
        except ValueError:
            name = str(self.received_signal)
        log.info(f"Received {name}. Stopping services...")

    def _handle_child_exit(self, exited: ManagedProcess) -> int:
        returncode = exited.poll()
        description = process_utils.describe_returncode(returncode)
        log.warning(f"Process '{exited.name}' (PID {exited.pid}) exited on its own with {description}.")
        self.running_procs.pop(exited.name, None)

        still_running = [p for p in self.running_procs.values() if p.poll() is None]
        if self.config.stop_on_child_exit:
            self.stop_all()
        else:
            for managed in still_running:
                log.warning(
                    f"Leaving '{managed.name}' (PID {managed.pid}) running. "
                    f"Set {default_settings.ENV_STOP_ON_CHILD_EXIT}=true to stop it together."
                )
                self.output_relays.extend(process_utils.detach_output(managed))
            self.state = SessionState.STOPPED
            self.shutdown_complete.set()
        return process_utils.exit_code_from_returncode(returncode)

    def stop_all(self) -> shutdown.ShutdownReport:
        """
        Stops every process of this session: SIGTERM, a bounded wait, then SIGKILL for stragglers.

        :return: The ShutdownReport, also kept on self.shutdown_report.
        """
        self.state = SessionState.SHUTTING_DOWN
        self.shutdown_signal_received.set()

        all_procs_to_stop = shutdown.identify_processes_to_stop(self.running_procs.values())
        if not all_procs_to_stop:
            log.info("No running session processes found to stop.")
            report = shutdown.ShutdownReport()
        else:
            log.info(f"Initiating graceful shutdown for {len(all_procs_to_stop)} total processes...")
            report = shutdown.graceful_shutdown_sequence(
                all_procs_to_stop, self.config.shutdown_timeout, self.config.kill_wait_timeout
            )

        # Reap the direct children so no zombies are left behind.
        for managed in self.running_procs.values():
            managed.poll()
        self.running_procs.clear()

        self.shutdown_report = report
        self.state = SessionState.STOPPED
        self.shutdown_complete.set()
        log.info(f"Dev session stopped. {report}")
        return report
