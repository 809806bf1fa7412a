import sys
import logging

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import src.local.console as console
from src.log.setup import setup_logging
from src.local.config import effective_settings as config
from src.local.api_client import get_from_launcher


def main() -> None:
    """The main entry point for the console application."""

    setup_logging(logging.INFO)

    # Non-interactive mode for one-off commands
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            console.toggle_verbose_logging()
            args.remove("--verbose")

        console.execute_command(command, args)
        return

    # Interactive mode
    print("--- ComfyUI Launcher Console ---")
    print("Type 'help' for a list of commands.")

    response = get_from_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "status", timeout=3)
    if response is None:
        print("Launcher API is not running. Use 'serve' to start it.")
    else:
        print(f"ComfyUI is currently {'running' if response[1].get('running') else 'stopped'}.")

    while True:
        try:
            command_line_str = input("> ")
            if not command_line_str.strip():
                continue
            command_line = command_line_str.strip().split()
            command, args = command_line[0].lower(), command_line[1:]

            log.debug(f"Received command: {command}, args: {args}")

            if console.execute_command(command, args):
                break

        except (KeyboardInterrupt, EOFError):
            log.warning("\nExiting console due to KeyboardInterrupt.")
            break
        except Exception as e:
            log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)

if __name__ == "__main__":
    main()
    print("Exiting console application. See you next time!")
