"""
Pytest Configuration and Shared Fixtures

Provides temporary RustFS/console checkouts and helpers for launching
short-lived Python children in place of cargo and pnpm.
"""

import os
import sys
import logging
import socket
import threading
import time
from pathlib import Path
from typing import Dict, List

import pytest

from devsession.local.config import load_config

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX signals and sh")


# ============================================================================
# Logging Isolation
# ============================================================================

@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging replaces the root handlers; put the test runner's back afterwards."""
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    for handler in root_logger.handlers:
        if handler not in handlers:
            handler.close()
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


# ============================================================================
# Workspace Fixtures
# ============================================================================

@pytest.fixture
def workspace(tmp_path) -> Dict[str, Path]:
    """
    Create a workspace laid out like a developer checkout:

        ws/RustFS/rustfs          (backend project root)
        ws/RustFS/rustfsconsole   (console project)
        ws/bin                    (fake tool directory for PATH)
    """
    ws = tmp_path / "ws"
    project_root = ws / "RustFS" / "rustfs"
    console_dir = ws / "RustFS" / "rustfsconsole"
    bin_dir = ws / "bin"
    for path in (project_root, console_dir, bin_dir):
        path.mkdir(parents=True)
    return {
        "ws": ws,
        "project_root": project_root,
        "console_dir": console_dir,
        "bin_dir": bin_dir,
    }


@pytest.fixture
def base_environ(workspace) -> Dict[str, str]:
    """A minimal environment whose PATH only holds the fake tool directory and the system basics."""
    return {"PATH": os.pathsep.join([str(workspace["bin_dir"]), "/usr/bin", "/bin"])}


@pytest.fixture
def make_config(workspace, base_environ):
    """Factory building a SessionConfig rooted at the temporary backend project."""
    def _make(**overrides):
        environ = dict(base_environ)
        environ.update(overrides)
        return load_config(environ=environ, cwd=workspace["project_root"])
    return _make


def write_executable(path: Path, body: str = "exit 0\n") -> Path:
    """Writes a small shell script and marks it executable."""
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


def python_command(code: str) -> List[str]:
    """A command line that runs a Python snippet in a fresh interpreter."""
    return [sys.executable, "-c", code]


def free_port() -> int:
    """Returns a TCP port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.05) -> bool:
    """Polls a predicate until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def signal_when(predicate, signum: int, timeout: float = 20.0) -> threading.Thread:
    """Sends a signal to this test process once the predicate holds."""
    def _worker():
        if wait_for(predicate, timeout):
            os.kill(os.getpid(), signum)
    thread = threading.Thread(target=_worker, daemon=True)
    thread.start()
    return thread
