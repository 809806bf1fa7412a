import logging
from typing import List

from src.local.console.handler import (
    display_status, handle_config_command, handle_logs_command, handle_reset_command,
    handle_reset_logs_command, handle_serve_command, handle_start_command, handle_stop_command,
    print_help, toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'reset').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "serve": handle_serve_command,
        "start": handle_start_command,
        "stop": handle_stop_command,
        "status": display_status,
        "logs": handle_logs_command,
        "reset": handle_reset_command,
        "reset-logs": handle_reset_logs_command,
        "config": handle_config_command,
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        return True
    if command in command_map:
        command_map[command](list(args))
    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
    return False
