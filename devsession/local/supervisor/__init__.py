"""
The Supervisor package.
Manages the lifecycle of the development session's child processes.

This package contains the central SessionLauncher class and its helper modules,
which together handle preparing, starting, supervising and stopping the
backend and frontend processes.
"""
from .supervisor import SessionLauncher, SessionState
from .process_utils import BACKEND, FRONTEND
from .shutdown import ShutdownReport

__all__ = ['SessionLauncher', 'SessionState', 'ShutdownReport', 'BACKEND', 'FRONTEND']
