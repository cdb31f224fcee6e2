import os
from pathlib import Path

from chatbridge.internal.constants import CONFIG_FILE_NAME, HOME_ENV_VAR, LOG_FILE_NAME


# ---------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------

def get_app_data_dir() -> Path:
    """
    Returns the application data directory.

    - CHATBRIDGE_HOME when set
    - Windows: %APPDATA%\\chatbridge
    - Linux/macOS: ~/.chatbridge
    """
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        path = Path(override)
    elif os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", str(Path.home()))
        path = Path(base) / "chatbridge"
    else:  # Linux / macOS
        path = Path.home() / ".chatbridge"

    path.mkdir(parents=True, exist_ok=True)
    return path


def get_logs_dir() -> Path:
    path = get_app_data_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# ---------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------

def get_log_file() -> Path:
    return get_logs_dir() / LOG_FILE_NAME


def get_default_config_file() -> Path:
    return get_app_data_dir() / CONFIG_FILE_NAME


def get_llama_server_log_file() -> Path:
    """
    Log file for a spawned llama-server's stderr/stdout.
    """
    return get_logs_dir() / "llama-server.log"
