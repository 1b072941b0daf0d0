import os
import sys
import logging
from pathlib import Path
from typing import List, Optional

import setproctitle
import devsession.settings as default_settings
import devsession.local.console as console
from devsession.log.setup import setup_logging

log = logging.getLogger("console")


def _console_level() -> int:
    level_name = os.environ.get(default_settings.ENV_LOG_LEVEL, default_settings.DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO

def main(argv: Optional[List[str]] = None) -> int:
    """
    The main entry point for the launcher.

    :param argv: Command line arguments without the program name; defaults to sys.argv[1:].
    :return: The process exit status.
    """
    args = list(sys.argv[1:] if argv is None else argv)

    log_file = os.environ.get(default_settings.ENV_LOG_FILE)
    setup_logging(_console_level(), Path(log_file) if log_file else None)

    if "--verbose" in args:
        args.remove("--verbose")
        console.enable_verbose_logging()

    if not args:
        return console.print_help()

    command, command_args = args[0].lower(), args[1:]
    log.debug(f"Received command: {command}, args: {command_args}")
    return console.execute_command(command, command_args)

def main_cli() -> None:
    """Console script: 'devsession <command>'."""
    sys.exit(main())

def start_all() -> None:
    """Console script: start the backend and the console together."""
    setproctitle.setproctitle(default_settings.LAUNCHER_PROCESS_TITLE)
    sys.exit(main(["start-all"]))

def start_backend() -> None:
    """Console script: start only the backend."""
    sys.exit(main(["start-backend"]))

def start_frontend() -> None:
    """Console script: start only the console dev server."""
    sys.exit(main(["start-frontend"]))

if __name__ == "__main__":
    main_cli()
