import sys
import asyncio
import logging
from typing import Any, Dict, List, Optional

from src.local.config import effective_settings as config
from src.local.api_client import get_from_launcher, post_to_launcher

log = logging.getLogger(__name__)

VERBOSE_LOGGING = False


def _api_unreachable() -> None:
    print(f"\nERROR: The launcher API is not reachable on port {config.LAUNCHER_PORT}.")
    print("Run the 'serve' command (in another terminal) first.\n")

def _print_logs(logs: List[str]) -> None:
    for line in logs:
        print(f"  {line}")

def _print_result(body: Dict[str, Any]) -> None:
    marker = "OK" if body.get("success") else "FAILED"
    print(f"\n[{marker}] {body.get('message', '')}")

def _pop_option(args: List[str], name: str) -> Optional[str]:
    """Removes '--name value' from args and returns the value."""
    if name in args:
        index = args.index(name)
        if index + 1 < len(args):
            value = args[index + 1]
            del args[index:index + 2]
            return value
        args.remove(name)
    return None

def _language(args: List[str]) -> str:
    return _pop_option(args, "--lang") or config.DEFAULT_LANGUAGE


#* --- ComfyUI Commands ---
def handle_start_command(args: List[str]) -> None:
    """Asks the launcher to start ComfyUI and waits for the outcome."""
    lang = _language(args)
    print("Starting ComfyUI, this can take several minutes...")
    response = post_to_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "start", params={"lang": lang})
    if response is None:
        _api_unreachable()
        return
    _, body = response
    _print_result(body)
    if body.get("alreadyRunning"):
        print("ComfyUI was already running.")
    elif body.get("pid"):
        print(f"ComfyUI PID: {body['pid']}")
    if not body.get("success"):
        _print_logs(body.get("logs", [])[-20:])
    print()

def handle_stop_command(args: List[str]) -> None:
    lang = _language(args)
    response = post_to_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "stop", params={"lang": lang})
    if response is None:
        _api_unreachable()
        return
    _print_result(response[1])
    print()

def display_status(args: List[str]) -> None:
    """Shows whether ComfyUI is running, its PID, uptime and versions."""
    lang = _language(args)
    response = get_from_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "status", params={"lang": lang})
    if response is None:
        _api_unreachable()
        return
    status = response[1]
    versions = status.get("versions", {})
    print("\n--- ComfyUI Status ---")
    print(f"  State     : {'RUNNING' if status.get('running') else 'STOPPED'}")
    print(f"  PID       : {status.get('pid') or '-'}")
    print(f"  Uptime    : {status.get('uptime') or '-'}")
    print(f"  ComfyUI   : {versions.get('comfyui', 'unknown')}")
    print(f"  Frontend  : {versions.get('frontend', 'unknown')}")
    print(f"  Launcher  : {versions.get('app', 'unknown')}")
    print(f"  GPU mode  : {status.get('gpuMode', 'unknown')}")
    print("-" * 22 + "\n")

def handle_logs_command(args: List[str]) -> None:
    """Prints the log of the latest start attempt."""
    lang = _language(args)
    response = get_from_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "logs", params={"lang": lang})
    if response is None:
        _api_unreachable()
        return
    logs = response[1].get("logs", [])
    print(f"\n--- ComfyUI session log ({len(logs)} entries) ---")
    _print_logs(logs)
    print()

def handle_reset_command(args: List[str]) -> None:
    """
    Resets the ComfyUI directory. Asks for confirmation unless '--yes' is given.

    Usage: reset [hard] [--yes] [--lang LANG]
    """
    lang = _language(args)
    confirmed = "--yes" in args
    mode = "hard" if "hard" in (a.lower() for a in args) else "normal"

    if not confirmed:
        kept = "models" if mode == "hard" else "models, user, custom_nodes"
        print(f"\nWARNING: This deletes the ComfyUI installation except: {kept}, input, output.")
        answer = input("Type 'yes' to continue: ").strip().lower()
        if answer != "yes":
            print("Reset cancelled.\n")
            return

    print(f"Resetting ComfyUI ({mode} mode)...")
    response = post_to_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "reset",
                                payload={"lang": lang, "mode": mode})
    if response is None:
        _api_unreachable()
        return
    body = response[1]
    _print_logs(body.get("logs", []))
    _print_result(body)
    print()

def handle_reset_logs_command(args: List[str]) -> None:
    """Prints the log of the latest reset, also after a launcher restart."""
    lang = _language(args)
    response = get_from_launcher(config.LAUNCHER_HOST, config.LAUNCHER_PORT, "reset-logs", params={"lang": lang})
    if response is None:
        _api_unreachable()
        return
    body = response[1]
    print(f"\n--- {body.get('message', '')} ---")
    _print_logs(body.get("logs", []))
    print()


#* --- Server & Console Commands ---
def handle_serve_command(args: List[str]) -> None:
    """Runs the launcher API server in the foreground until interrupted."""
    from hypercorn.asyncio import serve
    from hypercorn.config import Config
    from src.web.setup import app

    hypercorn_config = Config()
    hypercorn_config.bind = [f"{config.LAUNCHER_HOST}:{config.LAUNCHER_PORT}"]
    # Supervisor state lives in process memory, so there must be exactly one worker.
    hypercorn_config.workers = 1
    hypercorn_config.accesslog = "-" if VERBOSE_LOGGING else None

    log.info(f"Serving launcher API on {config.LAUNCHER_HOST}:{config.LAUNCHER_PORT}")
    try:
        asyncio.run(serve(app, hypercorn_config))
    except KeyboardInterrupt:
        log.info("Launcher API server interrupted by user.")

def handle_config_command(args: List[str]) -> None:
    """
    Shows or changes the settings that can be overridden in overrides.json.

    Usage: config [show] | config set KEY VALUE
    """
    sub_command = args[0].lower() if args else "show"
    if sub_command == "show":
        print("\n--- Modifiable Settings ---")
        for key in sorted(config.MODIFIABLE_SETTINGS):
            print(f"  {key} = {getattr(config, key, 'N/A')}")
        print("Use 'config set <KEY> <VALUE>' to change a setting. Restart 'serve' to apply.\n")
    elif sub_command == "set" and len(args) >= 3:
        key, value = args[1].upper(), " ".join(args[2:])
        if key not in config.MODIFIABLE_SETTINGS:
            print(f"Error: '{key}' is not a modifiable setting.")
            return
        current = {k: getattr(config, k) for k in config.MODIFIABLE_SETTINGS}
        try:
            current[key] = type(current[key])(value)
        except (TypeError, ValueError) as e:
            print(f"Error: invalid value for '{key}': {e}")
            return
        config.save_overrides(current)
        setattr(config, key, current[key])
        print(f"'{key}' set to {current[key]}. Restart 'serve' to apply.")
    else:
        print("Usage: config [show] | config set <KEY> <VALUE>")

def toggle_verbose_logging(args: Optional[List[str]] = None) -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    global VERBOSE_LOGGING
    VERBOSE_LOGGING = not VERBOSE_LOGGING
    new_level = logging.DEBUG if VERBOSE_LOGGING else logging.INFO

    # Reconfigure the console handler's level directly
    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and getattr(handler, "stream", None) is sys.stdout:
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")

def print_help(args: Optional[List[str]] = None) -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  serve                  - Run the launcher API server (foreground).")
    print("  start                  - Start ComfyUI and wait until it is reachable.")
    print("  stop                   - Stop ComfyUI, forcing termination if needed.")
    print("  status                 - Show ComfyUI state, PID, uptime and versions.")
    print("  logs                   - Show the log of the latest start attempt.")
    print("  reset [hard] [--yes]   - Wipe the ComfyUI directory (hard keeps models, input, output).")
    print("  reset-logs             - Show the log of the latest reset.")
    print("  config <cmd>           - Show or set modifiable settings.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  exit                   - Exit the management console.")
    print("Most commands accept '--lang <code>' (e.g. en, zh).")
    print()
