import psutil
import logging
from typing import Iterable, List, Set
from devsession.local.supervisor.process_utils import ManagedProcess

log = logging.getLogger(__name__)


class ShutdownReport:
    """
    The outcome of a shutdown sequence.

    terminated: PIDs that exited after the termination request.
    killed: PIDs that ignored it and were force-killed.
    survivors: PIDs still alive after the forced kill.
    """

    def __init__(self) -> None:
        self.terminated: List[int] = []
        self.killed: List[int] = []
        self.survivors: List[int] = []

    @property
    def clean(self) -> bool:
        return not self.killed and not self.survivors

    def __repr__(self) -> str:
        return f"ShutdownReport(terminated={self.terminated}, killed={self.killed}, survivors={self.survivors})"


def identify_processes_to_stop(managed: Iterable[ManagedProcess]) -> Set[psutil.Process]:
    """
    Identifies all launched processes and their descendants that need to be stopped.

    'cargo run' and 'pnpm dev' start the actual servers as children, so the
    whole tree is collected while the parents are still alive.

    :param managed: The processes launched by this session.
    :return: A set of psutil.Process objects to be stopped.
    """
    parent_procs: Set[psutil.Process] = set()
    for entry in managed:
        if entry.poll() is None:
            parent_procs.add(entry.proc)
        else:
            log.debug(f"Process {entry.name} (PID {entry.pid}) has already exited.")

    all_procs_to_stop: Set[psutil.Process] = set(parent_procs)
    for proc in parent_procs:
        try:
            all_procs_to_stop.update(proc.children(recursive=True))
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping children retrieval.")
            continue
    return all_procs_to_stop


def _describe(proc: psutil.Process) -> str:
    try:
        return f"{proc.name()} (PID {proc.pid})"
    except psutil.Error:
        return f"PID {proc.pid}"


def _terminate_processes(processes: Set[psutil.Process]) -> None:
    """Sends SIGTERM to all processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {_describe(proc)}")
            proc.terminate()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping termination.")
            continue
        except psutil.AccessDenied:
            log.warning(f"Access denied when terminating {_describe(proc)}.")


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {_describe(proc)}.")
            proc.kill()
        except psutil.NoSuchProcess:
            log.debug(f"Process {proc.pid} no longer exists, skipping forceful kill.")
            continue
        except psutil.AccessDenied:
            log.error(f"Access denied when killing {_describe(proc)}.")


def graceful_shutdown_sequence(processes: Set[psutil.Process], timeout: float, kill_timeout: float) -> ShutdownReport:
    """
    Runs the full graceful shutdown sequence for the given processes.

    :param processes: A set of psutil.Process objects to shut down.
    :param timeout: Seconds to wait after SIGTERM before escalating to SIGKILL.
    :param kill_timeout: Seconds to wait for confirmation after SIGKILL.
    :return: A ShutdownReport describing what happened to each PID.
    """
    report = ShutdownReport()
    if not processes:
        return report

    _terminate_processes(processes)

    # Wait and verify
    gone, alive = psutil.wait_procs(list(processes), timeout=timeout)
    report.terminated = sorted(p.pid for p in gone)

    # If any processes are still alive after the timeout, forcefully kill them.
    _forceful_kill(alive)
    if alive:
        gone, still_alive = psutil.wait_procs(alive, timeout=kill_timeout)
        report.killed = sorted(p.pid for p in gone)
        report.survivors = sorted(p.pid for p in still_alive)
        for proc in still_alive:
            log.error(f"{_describe(proc)} is still running after a forced kill. It must be stopped manually.")
    return report
