import logging
from typing import List, Optional
import devsession.settings as default_settings
from devsession.local.config import SessionConfig, load_config
from devsession.local.errors import ConfigurationError
from devsession.local.supervisor import BACKEND, FRONTEND, SessionLauncher
from devsession.local.console.handler import display_check, print_help

log = logging.getLogger(__name__)

SESSION_COMMANDS = {
    "start-all": [BACKEND, FRONTEND],
    "start-backend": [BACKEND],
    "start-frontend": [FRONTEND],
}


def execute_command(command: str, args: List[str], config: Optional[SessionConfig] = None) -> int:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start-all', 'check').
    :param args: A list of arguments for the command.
    :param config: A resolved configuration; loaded from the environment if omitted.
    :return int: The process exit status.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    if command in ("help", "--help", "-h"):
        return print_help()

    if command not in SESSION_COMMANDS and command != "check":
        log.error(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return 2

    if config is None:
        try:
            config = load_config()
        except ConfigurationError as e:
            log.critical(f"Invalid configuration: {e}")
            return default_settings.EXIT_STARTUP_FAILURE

    if command == "check":
        return display_check(config)

    launcher = SessionLauncher(config, SESSION_COMMANDS[command])
    return launcher.run()
