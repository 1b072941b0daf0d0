"""
This module contains the default settings for the RustFS development session launcher.
It defines environment variable names, default paths, timeouts and toolchain commands.
Values here are defaults only; `devsession.local.config` resolves them against an environment mapping.
"""

from dotenv import load_dotenv

# Load environment variables from a .env file without clobbering the real environment
load_dotenv(override=False)

#* --- Process Titles ---
LAUNCHER_PROCESS_TITLE = "RustFS Dev - Launcher"

#* --- Launcher Environment Variables ---
ENV_PROJECT_ROOT = "DEVSESSION_PROJECT_ROOT"
ENV_CONSOLE_DIR = "DEVSESSION_CONSOLE_DIR"
ENV_RUST_ENV_SCRIPT = "DEVSESSION_RUST_ENV_SCRIPT"
ENV_NODE_ENV_SCRIPT = "DEVSESSION_NODE_ENV_SCRIPT"
ENV_READINESS = "DEVSESSION_READINESS"
ENV_HEALTH_URL = "DEVSESSION_HEALTH_URL"
ENV_GRACE_PERIOD = "DEVSESSION_GRACE_PERIOD"
ENV_READY_TIMEOUT = "DEVSESSION_READY_TIMEOUT"
ENV_SHUTDOWN_TIMEOUT = "DEVSESSION_SHUTDOWN_TIMEOUT"
ENV_STOP_ON_CHILD_EXIT = "DEVSESSION_STOP_ON_CHILD_EXIT"
ENV_LOG_LEVEL = "DEVSESSION_LOG_LEVEL"
ENV_LOG_FILE = "DEVSESSION_LOG_FILE"

#* --- Backend (RustFS) Environment ---
ENV_RUSTFS_VOLUMES = "RUSTFS_VOLUMES"
ENV_RUSTFS_ADDRESS = "RUSTFS_ADDRESS"
ENV_RUSTFS_CONSOLE_ENABLE = "RUSTFS_CONSOLE_ENABLE"
ENV_RUSTFS_CONSOLE_ADDRESS = "RUSTFS_CONSOLE_ADDRESS"
ENV_RUST_LOG = "RUST_LOG"

DEFAULT_RUSTFS_VOLUMES = "./deploy/data/dev{1...8}"
DEFAULT_RUSTFS_ADDRESS = ":9000"
DEFAULT_RUST_LOG = "rustfs=info"
BACKEND_BINARY = "rustfs"
BACKEND_COMMAND = ["cargo", "run", "--bin", BACKEND_BINARY]

# Paths are relative to the project root / console directory respectively
DEFAULT_CONSOLE_DIR = "../rustfsconsole"
DEFAULT_RUST_ENV_SCRIPT = "../../use-rust1.91.sh"
DEFAULT_NODE_ENV_SCRIPT = "../../FrontEnd/use-node24.sh"

#* --- Frontend (Console) Toolchain ---
PACKAGE_MANAGER = "pnpm"
PACKAGE_MANAGER_VERSION = "10.19.0"
PACKAGE_MANAGER_INSTALL_COMMAND = ["npm", "install", "-g", f"{PACKAGE_MANAGER}@{PACKAGE_MANAGER_VERSION}"]
DEPENDENCY_INSTALL_COMMAND = [PACKAGE_MANAGER, "install"]
DEPENDENCY_CACHE_DIR_NAME = "node_modules"
FRONTEND_COMMAND = [PACKAGE_MANAGER, "dev"]
FRONTEND_DISPLAY_ADDRESS = "http://0.0.0.0:3000"

#* --- Launcher Settings ---
READINESS_MODES = ("tcp", "http", "delay")
DEFAULT_READINESS = "tcp"
GRACE_PERIOD = 3.0             # seconds, 'delay' readiness mode
READY_TIMEOUT = 300.0          # seconds, 'cargo run' may compile first
READY_POLL_INTERVAL = 0.5      # seconds
SHUTDOWN_TIMEOUT = 10.0        # seconds before force-killing
KILL_WAIT_TIMEOUT = 3.0        # seconds to confirm a forced kill
SUPERVISOR_SLEEP_INTERVAL = 0.5
STOP_ON_CHILD_EXIT = False
DEFAULT_LOG_LEVEL = "INFO"

#* --- Exit Codes ---
EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1

TRUTHY_VALUES = ('true', '1', 't', 'yes', 'y', 'on')
