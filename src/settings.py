"""
This module contains almost all the configuration settings for the ComfyUI Launcher.
It defines paths, supervisor timings, reset and recovery settings, and logging settings.
It is used throughout the application to ensure consistent settings and paths.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
SRC_DIR = BASE_DIR / "src"
LOGS_DIR = pathlib.Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs")))
LOCALES_DIR = SRC_DIR / "log" / "locales"

#* --- Application File Paths ---
RESET_LOG_PATH = LOGS_DIR / "comfyui-reset.log"
SYSTEM_LOG_PATH = LOGS_DIR / "launcher.log"
SYSTEM_LOG_MAX_BYTES = 5 * 1024 * 1024
SYSTEM_LOG_BACKUP_COUNT = 3
OVERRIDES_JSON_PATH = BASE_DIR / "overrides.json"

#* --- Managed Application (ComfyUI) ---
IS_DEV = os.getenv("NODE_ENV", os.getenv("LAUNCHER_ENV", "production")) != "production"
COMFYUI_PATH = pathlib.Path(os.getenv("COMFYUI_PATH") or (BASE_DIR / "comfyui" if IS_DEV else "/root/ComfyUI"))
DATA_DIR = pathlib.Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
# No cache directory unless explicitly configured
CACHE_DIR = pathlib.Path(os.environ["CACHE_DIR"]) if os.getenv("CACHE_DIR") else None
COMFYUI_HOST = os.getenv("COMFYUI_HOST", "127.0.0.1")
COMFYUI_PORT = int(os.getenv("COMFYUI_PORT", "8188"))
START_SCRIPT = pathlib.Path(os.getenv("COMFYUI_START_SCRIPT", "/runner-scripts/entrypoint.sh"))
PLUGINS_DIR_NAME = "custom_nodes"
DISABLED_PLUGINS_DIR_NAME = ".disabled"
APP_VERSION = "0.1.2"

#* --- Recovery Scripts (run after a reset) ---
UPGRADE_SCRIPT = pathlib.Path(os.getenv("COMFYUI_UPGRADE_SCRIPT", "/runner-scripts/up-version-cp.sh"))
SCRIPTS_SOURCE_DIR = pathlib.Path(os.getenv("RUNNER_SCRIPTS_SOURCE", "/runner-scripts"))
SCRIPTS_TARGET_DIR = pathlib.Path(os.getenv("RUNNER_SCRIPTS_TARGET", "/root/runner-scripts"))

#* --- Process Identification ---
INTERPRETER_NAME = "python"
# Matches the command line of the long-running ComfyUI interpreter process.
APP_PROCESS_PATTERN = r"python.*comfyui"
# Matches the PID announcement printed by the startup script.
PID_ANNOUNCE_PATTERN = r"ComfyUI.*(?:启动|start).*pid[:\s]+(\d+)"

#* --- Launcher API Server ---
LAUNCHER_HOST = os.getenv("LAUNCHER_HOST", "0.0.0.0")
LAUNCHER_PORT = int(os.getenv("PORT", "3000"))
PROCESS_TITLE = "ComfyUI Launcher - API Server"
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "zh")

#* --- Environment Inspection ---
GPU_MODE_ENV = "NVSHARE_MANAGED_MEMORY"
CLI_ARGS_ENV = "CLI_ARGS"

#* --- MODIFIABLE SETTINGS (Changeable via overrides.json) ---
MODIFIABLE_SETTINGS = {
    # Supervisor timings
    "LIVENESS_TIMEOUT", "START_POLL_INTERVAL", "START_MAX_RETRIES",
    "STOP_SETTLE_SECONDS", "FORCE_KILL_SETTLE_SECONDS",
    # Process heuristics
    "LARGE_PROCESS_RSS_KB",
    # Logging
    "MAX_LOG_ENTRIES", "VERSION_CACHE_TIMEOUT",
}

#* --- Default Values for Modifiable Settings ---
LIVENESS_TIMEOUT = 1.0           # seconds
START_POLL_INTERVAL = 5.0        # seconds between liveness probes while starting
START_MAX_RETRIES = 120          # ~10 minutes with the default interval
STOP_SETTLE_SECONDS = 2.0
FORCE_KILL_SETTLE_SECONDS = 1.0
LARGE_PROCESS_RSS_KB = 100000    # "large" interpreter processes are probably ComfyUI
MAX_LOG_ENTRIES = 10000
VERSION_CACHE_TIMEOUT = 600      # seconds

#* --- Application variables ---
VERBOSE_LOGGING = False
