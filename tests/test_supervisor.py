import os
import json
import signal
import subprocess
import threading
import time
from pathlib import Path
from unittest.mock import patch

import psutil
import pytest

import devsession
from conftest import free_port, posix_only, python_command, signal_when, wait_for, write_executable
from devsession.local.supervisor import BACKEND, FRONTEND, SessionLauncher, SessionState
from devsession.local.supervisor import process_utils
from devsession.local.errors import ConfigurationError

pytestmark = posix_only

SLEEPER = "import time; time.sleep(60)"
LISTENING_BACKEND = (
    "import json, os, socket, sys, time\n"
    "with open(sys.argv[1], 'w') as f:\n"
    "    json.dump({k: v for k, v in os.environ.items() if k.startswith('RUST')}, f)\n"
    "host, _, port = os.environ['RUSTFS_ADDRESS'].rpartition(':')\n"
    "server = socket.socket()\n"
    "server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)\n"
    "server.bind((host or '127.0.0.1', int(port)))\n"
    "server.listen()\n"
    "time.sleep(60)\n"
)

TICKING_BACKEND = (
    "import os, sys, time\n"
    "with open(sys.argv[1], 'w') as f:\n"
    "    f.write(str(os.getpid()))\n"
    "while True:\n"
    "    print('tick', flush=True)\n"
    "    print('still compiling', file=sys.stderr, flush=True)\n"
    "    time.sleep(0.05)\n"
)
# Runs start-all in its own interpreter: argv is project root, PATH, pid file.
SESSION_DRIVER = (
    "import sys\n"
    "from pathlib import Path\n"
    "from devsession.local.config import load_config\n"
    "from devsession.local.supervisor import BACKEND, FRONTEND, SessionLauncher\n"
    "environ = {'PATH': sys.argv[2], 'DEVSESSION_READINESS': 'delay', 'DEVSESSION_GRACE_PERIOD': '0.2'}\n"
    "config = load_config(environ=environ, cwd=Path(sys.argv[1]))\n"
    f"config.backend.command = [sys.executable, '-c', {TICKING_BACKEND!r}, sys.argv[3]]\n"
    "config.frontend.command = [sys.executable, '-c', 'import time; time.sleep(0.5); raise SystemExit(3)']\n"
    "sys.exit(SessionLauncher(config, [BACKEND, FRONTEND]).run())\n"
)


@pytest.fixture
def ready_console(workspace):
    """A console checkout whose toolchain and dependencies are already in place."""
    write_executable(workspace["bin_dir"] / "pnpm")
    (workspace["console_dir"] / "node_modules").mkdir()
    return workspace["console_dir"]


@pytest.fixture
def launches():
    """Records every launched child with the moment it was started; kills leftovers afterwards."""
    records = []
    original = process_utils.launch_process

    def _spy(definition):
        managed = original(definition)
        records.append((time.monotonic(), managed))
        return managed

    with patch("devsession.local.supervisor.process_utils.launch_process", side_effect=_spy):
        yield records

    for _, managed in records:
        if managed.poll() is None:
            managed.popen.kill()
            managed.popen.wait()


@pytest.fixture
def make_launcher(make_config, ready_console):
    def _make(names, backend_cmd=None, frontend_cmd=None, **environ):
        config = make_config(**environ)
        config.backend.command = backend_cmd or python_command(SLEEPER)
        config.frontend.command = frontend_cmd or python_command(SLEEPER)
        return SessionLauncher(config, names)
    return _make


def _is_running(launcher):
    return lambda: launcher.state is SessionState.RUNNING


class TestStartAll:
    def test_backend_starts_a_grace_period_before_frontend_and_sigint_stops_both(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND], DEVSESSION_READINESS="delay", DEVSESSION_GRACE_PERIOD="0.5"
        )
        signal_when(_is_running(launcher), signal.SIGINT)

        assert launcher.run() == 0

        assert [managed.name for _, managed in launches] == [BACKEND, FRONTEND]
        (backend_at, backend), (frontend_at, frontend) = launches
        assert frontend_at - backend_at >= 0.5
        assert frontend.started_at >= backend.started_at

        report = launcher.shutdown_report
        assert {backend.pid, frontend.pid} <= set(report.terminated)
        assert not psutil.pid_exists(backend.pid)
        assert not psutil.pid_exists(frontend.pid)
        assert launcher.state is SessionState.STOPPED
        assert launcher.shutdown_complete.is_set()

    def test_tcp_readiness_waits_for_the_backend_and_passes_its_environment(self, make_launcher, launches, tmp_path):
        port = free_port()
        env_file = tmp_path / "backend-env.json"
        launcher = make_launcher(
            [BACKEND, FRONTEND],
            backend_cmd=python_command(LISTENING_BACKEND) + [str(env_file)],
            RUSTFS_ADDRESS=f":{port}",
            DEVSESSION_READY_TIMEOUT="20",
        )
        signal_when(_is_running(launcher), signal.SIGTERM)

        assert launcher.run() == 0
        assert len(launches) == 2

        backend_env = json.loads(env_file.read_text())
        assert backend_env["RUSTFS_ADDRESS"] == f":{port}"
        assert backend_env["RUSTFS_VOLUMES"] == "./deploy/data/dev{1...8}"
        assert backend_env["RUSTFS_CONSOLE_ENABLE"] == "false"
        assert backend_env["RUSTFS_CONSOLE_ADDRESS"] == ""
        assert backend_env["RUST_LOG"] == "rustfs=info"

    def test_signal_handlers_are_restored_after_the_session(self, make_launcher, launches):
        before = signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM)
        launcher = make_launcher([BACKEND, FRONTEND], DEVSESSION_READINESS="delay", DEVSESSION_GRACE_PERIOD="0")
        signal_when(_is_running(launcher), signal.SIGINT)

        launcher.run()

        assert (signal.getsignal(signal.SIGINT), signal.getsignal(signal.SIGTERM)) == before


class TestStartupFailures:
    def test_missing_console_dir_aborts_before_any_process_starts(self, make_launcher, launches, workspace):
        missing = str(workspace["ws"] / "no-console")

        assert make_launcher([FRONTEND], DEVSESSION_CONSOLE_DIR=missing).run() == 1
        assert make_launcher([BACKEND, FRONTEND], DEVSESSION_CONSOLE_DIR=missing).run() == 1
        assert launches == []

    def test_readiness_timeout_is_fatal_and_stops_the_backend(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND], RUSTFS_ADDRESS=f":{free_port()}", DEVSESSION_READY_TIMEOUT="0.5"
        )

        assert launcher.run() == 1

        assert [managed.name for _, managed in launches] == [BACKEND]
        backend = launches[0][1]
        assert backend.pid in launcher.shutdown_report.terminated
        assert not psutil.pid_exists(backend.pid)

    def test_backend_exiting_during_startup_is_fatal(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND],
            backend_cmd=python_command("raise SystemExit(4)"),
            RUSTFS_ADDRESS=f":{free_port()}",
            DEVSESSION_READY_TIMEOUT="20",
        )

        assert launcher.run() == 1
        assert [managed.name for _, managed in launches] == [BACKEND]

    def test_executable_not_found_is_fatal(self, make_launcher, launches):
        launcher = make_launcher([BACKEND], backend_cmd=["definitely-not-a-real-rustfs-binary"])

        assert launcher.run() == 1
        assert launches == []

    def test_signal_during_readiness_wait_stops_the_backend_cleanly(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND], RUSTFS_ADDRESS=f":{free_port()}", DEVSESSION_READY_TIMEOUT="30"
        )
        signal_when(lambda: len(launches) == 1, signal.SIGINT)

        assert launcher.run() == 0
        assert [managed.name for _, managed in launches] == [BACKEND]
        assert not psutil.pid_exists(launches[0][1].pid)

    def test_unusable_bind_address_aborts_before_any_process_starts(self, make_launcher, launches):
        launcher = make_launcher([BACKEND, FRONTEND], RUSTFS_ADDRESS="9000")

        assert launcher.run() == 1
        assert launches == []

    def test_configuration_error_after_launch_still_stops_the_backend(self, make_launcher, launches):
        launcher = make_launcher([BACKEND, FRONTEND])

        with patch(
            "devsession.local.supervisor.startup.wait_for_backend",
            side_effect=ConfigurationError("Bind address '9000' has no port."),
        ):
            assert launcher.run() == 1

        assert [managed.name for _, managed in launches] == [BACKEND]
        backend = launches[0][1]
        assert backend.pid in launcher.shutdown_report.terminated
        assert wait_for(lambda: not psutil.pid_exists(backend.pid))


class TestChildExit:
    def test_exit_code_of_a_failing_child_is_propagated_and_peer_left_running(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND],
            frontend_cmd=python_command("import time; time.sleep(0.3); raise SystemExit(3)"),
            DEVSESSION_READINESS="delay",
            DEVSESSION_GRACE_PERIOD="0",
        )

        assert launcher.run() == 3

        backend = launches[0][1]
        assert backend.poll() is None
        assert launcher.shutdown_report is None
        assert len(launcher.output_relays) == 2

    def test_peer_left_running_outlives_the_launcher_process(self, workspace, ready_console, base_environ, tmp_path):
        pid_file = tmp_path / "backend.pid"
        output_file = tmp_path / "session.log"
        env = dict(os.environ, PYTHONPATH=str(Path(devsession.__file__).resolve().parents[1]))

        with open(output_file, "wb") as output:
            driver = subprocess.run(
                python_command(SESSION_DRIVER) + [str(workspace["project_root"]), base_environ["PATH"], str(pid_file)],
                stdout=output, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL,
                cwd=str(tmp_path), env=env, timeout=60,
            )
        assert driver.returncode == 3

        backend = psutil.Process(int(pid_file.read_text()))
        try:
            time.sleep(1.0)
            assert backend.is_running() and backend.status() != psutil.STATUS_ZOMBIE
            size_after_exit = output_file.stat().st_size
            assert wait_for(lambda: output_file.stat().st_size > size_after_exit)
        finally:
            backend.kill()

    def test_peer_is_stopped_when_configured(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND, FRONTEND],
            frontend_cmd=python_command("import time; time.sleep(0.3); raise SystemExit(3)"),
            DEVSESSION_READINESS="delay",
            DEVSESSION_GRACE_PERIOD="0",
            DEVSESSION_STOP_ON_CHILD_EXIT="true",
        )

        assert launcher.run() == 3

        backend = launches[0][1]
        assert backend.pid in launcher.shutdown_report.terminated
        assert wait_for(lambda: not psutil.pid_exists(backend.pid))

    def test_child_killed_by_signal_maps_to_shell_status(self, make_launcher, launches):
        launcher = make_launcher(
            [BACKEND],
            backend_cmd=python_command("import os, signal, time; time.sleep(0.3); os.kill(os.getpid(), signal.SIGKILL)"),
        )

        assert launcher.run() == 128 + signal.SIGKILL


class TestSingleProcessSessions:
    def test_start_backend_alone_does_not_wait_for_readiness(self, make_launcher, launches):
        # Nothing listens on the port; a lone backend must still count as running.
        launcher = make_launcher([BACKEND], RUSTFS_ADDRESS=f":{free_port()}", DEVSESSION_READY_TIMEOUT="0.1")
        signal_when(_is_running(launcher), signal.SIGTERM)

        assert launcher.run() == 0
        assert [managed.name for _, managed in launches] == [BACKEND]

    def test_start_frontend_runs_in_the_console_dir(self, make_launcher, launches, ready_console):
        launcher = make_launcher([FRONTEND])
        signal_when(_is_running(launcher), signal.SIGINT)

        assert launcher.run() == 0
        frontend = launches[0][1]
        assert frontend.name == FRONTEND
        assert frontend.pid in launcher.shutdown_report.terminated

    def test_request_shutdown_stops_a_running_session(self, make_launcher, launches):
        launcher = make_launcher([BACKEND])

        threading.Thread(
            target=lambda: wait_for(_is_running(launcher)) and launcher.request_shutdown(), daemon=True
        ).start()

        assert launcher.run() == 0
        assert launcher.shutdown_complete.is_set()
