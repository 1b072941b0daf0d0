import sys
import signal
import psutil
import logging
import threading
import subprocess
from pathlib import Path
from devsession.local.errors import LaunchError, ToolchainError
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

if TYPE_CHECKING:
    from devsession.local.config import SessionConfig

log = logging.getLogger(__name__)

BACKEND = "backend"
FRONTEND = "frontend"


class ProcessDefinition:
    """Everything needed to spawn one child: its command line, working directory and environment."""

    def __init__(self, name: str, args: List[str], cwd: Path, env: Mapping[str, str]) -> None:
        self.name = name
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env)

    def __repr__(self) -> str:
        return f"ProcessDefinition(name={self.name!r}, args={self.args!r}, cwd='{self.cwd}')"


class ManagedProcess:
    """A launched child, tracked through both its Popen handle and a psutil view of it."""

    def __init__(self, name: str, popen: subprocess.Popen, proc: psutil.Process) -> None:
        self.name = name
        self.popen = popen
        self.proc = proc
        self.started_at = proc.create_time()

    @property
    def pid(self) -> int:
        return self.popen.pid

    def poll(self) -> Optional[int]:
        """Returns the exit code if the child has exited, reaping it, otherwise None."""
        return self.popen.poll()

    def is_running(self) -> bool:
        return self.poll() is None


#* --- Process Status ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking if needed."""
    return psutil.pid_exists(pid)

def exit_code_from_returncode(returncode: int) -> int:
    """Maps a Popen return code to a shell-style exit status (killed by signal N becomes 128 + N)."""
    if returncode < 0:
        return 128 + (-returncode)
    return returncode

def describe_returncode(returncode: int) -> str:
    """Gets a human readable description of a Popen return code."""
    if returncode < 0:
        try:
            return f"killed by {signal.Signals(-returncode).name}"
        except ValueError:
            return f"killed by signal {-returncode}"
    return f"exit code {returncode}"

def find_exited_process(processes: Iterable[ManagedProcess]) -> Optional[ManagedProcess]:
    """Returns the first managed process that has exited on its own, if any."""
    for managed in processes:
        if managed.poll() is not None:
            return managed
    return None


#* --- Process Definitions ---
def get_process_definition(name: str, config: "SessionConfig", env: Mapping[str, str]) -> ProcessDefinition:
    """
    Returns the command line, working directory and environment for a specific process.

    :param name: The logical name of the process, 'backend' or 'frontend'.
    :param config: The resolved session configuration.
    :param env: The prepared environment the child is started with.
    :raises ValueError: If the process name is unknown.
    """
    process_definitions = {
        BACKEND: (config.backend.command, config.project_root),
        FRONTEND: (config.frontend.command, config.frontend.console_dir),
    }

    if name in process_definitions:
        args, cwd = process_definitions[name]
        return ProcessDefinition(name, args, cwd, env)
    raise ValueError(f"Unknown process name '{name}'. No arguments defined.")


#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    # A new session keeps terminal signals away from the children;
    # the launcher forwards shutdown itself.
    return {"start_new_session": True}

def _read_pipe(pipe, process_name: str, level: int, line_handler: Optional[Callable] = None):
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if line_handler:
                line_handler(line)
            else:
                proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()

def log_process_output(process: subprocess.Popen, name: str, line_handler: Optional[Callable] = None) -> List[threading.Thread]:
    """Starts background threads to consume and log a process's stdout/stderr."""
    readers = []
    if process.stdout:
        readers.append(threading.Thread(
            target=_read_pipe, args=(process.stdout, name, logging.INFO, line_handler),
            daemon=True, name=f"{name}-stdout",
        ))
    if process.stderr:
        # Dev servers write progress and warnings to stderr as a matter of course.
        readers.append(threading.Thread(
            target=_read_pipe, args=(process.stderr, name, logging.WARNING, line_handler),
            daemon=True, name=f"{name}-stderr",
        ))
    for reader in readers:
        reader.start()
    return readers

def _spawn(definition: ProcessDefinition, **popen_kwargs) -> subprocess.Popen:
    try:
        return subprocess.Popen(
            definition.args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=str(definition.cwd),
            env=definition.env,
            **popen_kwargs
        )
    except OSError as e:
        raise LaunchError(f"Failed to start '{definition.name}' ({' '.join(definition.args)}): {e}") from e

def launch_process(definition: ProcessDefinition) -> ManagedProcess:
    """
    Launches a single long-running process without waiting for it.

    :param definition: The process to launch.
    :return: The ManagedProcess tracking the new child.
    :raises LaunchError: If the executable cannot be spawned.
    """
    log.info(f"Starting process: {definition.name} ({' '.join(definition.args)}) in '{definition.cwd}'...")
    p = _spawn(definition, **_get_popen_creation_flags())
    log_process_output(p, definition.name)
    try:
        proc = psutil.Process(p.pid)
    except psutil.NoSuchProcess as e:
        p.wait()
        raise LaunchError(f"'{definition.name}' exited immediately after launch ({describe_returncode(p.returncode)}).") from e
    log.info(f"{definition.name.capitalize()} started successfully with PID: {p.pid}")
    return ManagedProcess(definition.name, p, proc)

def run_step(definition: ProcessDefinition) -> None:
    """
    Runs a short-lived preparation command to completion, logging its output.

    :param definition: The command to run.
    :raises ToolchainError: If the command cannot be spawned or exits with a non-zero status.
    """
    log.info(f"Running: {' '.join(definition.args)} (in '{definition.cwd}')")
    try:
        p = _spawn(definition)
    except LaunchError as e:
        raise ToolchainError(str(e)) from e
    readers = log_process_output(p, definition.name)
    returncode = p.wait()
    for reader in readers:
        reader.join()
    if returncode != 0:
        raise ToolchainError(f"'{' '.join(definition.args)}' failed with {describe_returncode(returncode)}.")


#* --- Output Handoff ---
# Copies stdin to stdout until the writing end is closed.
_RELAY_CODE = (
    "import sys\n"
    "src, dst = sys.stdin.buffer, sys.stdout.buffer\n"
    "try:\n"
    "    for chunk in iter(lambda: src.read1(65536), b''):\n"
    "        dst.write(chunk)\n"
    "        dst.flush()\n"
    "except (BrokenPipeError, KeyboardInterrupt):\n"
    "    pass\n"
)

def detach_output(managed: ManagedProcess) -> List[subprocess.Popen]:
    """
    Hands a child's output pipes over to relay processes that outlive the launcher.

    The pipes are otherwise only read by this process's reader threads; once the
    launcher exits, the child's next write would fail. Each relay copies one
    pipe to the launcher's own stdout or stderr and ends when the child closes it.

    :param managed: The child that is left running.
    :return: The relay processes that were started.
    """
    relays = []
    for pipe, target_fd in ((managed.popen.stdout, 1), (managed.popen.stderr, 2)):
        if pipe is None or pipe.closed:
            continue
        try:
            relays.append(subprocess.Popen(
                [sys.executable, "-c", _RELAY_CODE],
                stdin=pipe,
                stdout=target_fd,
                **_get_popen_creation_flags()
            ))
        except (OSError, ValueError) as e:
            log.warning(f"Could not hand over the output of '{managed.name}' (PID {managed.pid}): {e}")
    if relays:
        log.debug(f"Output of '{managed.name}' now relayed by PIDs {[r.pid for r in relays]}.")
    return relays
