"""
Configuration constants for pvetunnel
"""
import os
from pathlib import Path
from typing import Optional

import yaml

from .errors import ConfigError

# ══════════════════════════════════════════════════════════════════════════════
#  DEFAULTS  ── overridden by YAML config, apply_profile() or CLI arguments
# ══════════════════════════════════════════════════════════════════════════════

SOURCE_HOST: Optional[str] = None
DESTINATION_HOST: Optional[str] = None
SSH_USER = "root"
# Path to your private key, or a password; exactly one of the two
SSH_KEY_PATH: Optional[str] = None
SSH_PASSWORD: Optional[str] = None

# Local end of the tunnel, and the SSH port used on both Proxmox hosts
LOCAL_PORT = 22222
REMOTE_PORT = 22
BIND_ADDRESS = "127.0.0.1"

# Optional Proxmox API token (format: user@pam!token)
TOKEN_NAME: Optional[str] = None
TOKEN_VALUE: Optional[str] = None

# Migration monitoring: 30 polls x 10s ≈ 5 minutes
POLL_INTERVAL = 10.0
MAX_ATTEMPTS = 30
COMPLETION_MARKERS = ['"status":"stopped"', "not found"]

# Seconds
CONNECT_TIMEOUT = 20
COMMAND_TIMEOUT: Optional[float] = None  # None: wait for the remote process

PROJECT_FILE = ".pvetunnel"


# ══════════════════════════════════════════════════════════════════════════════
#  GLOBAL CONFIG FILE  ── $XDG_CONFIG_HOME/pvetunnel/config.yaml
# ══════════════════════════════════════════════════════════════════════════════

def get_global_config_dir() -> Path:
    """Return the global config directory for pvetunnel."""
    xdg = os.environ.get("XDG_CONFIG_HOME", "")
    if xdg:
        return Path(xdg) / "pvetunnel"
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        if appdata:
            return Path(appdata) / "pvetunnel"
    return Path.home() / ".config" / "pvetunnel"


def load_global_config() -> dict:
    """Load global config from the pvetunnel config directory ({} when absent)."""
    cfg_path = get_global_config_dir() / "config.yaml"
    if not cfg_path.is_file():
        return {}
    return load_config_file(cfg_path)


# ══════════════════════════════════════════════════════════════════════════════
#  PROJECT CONFIG FILE  ── .pvetunnel (searched upward)
# ══════════════════════════════════════════════════════════════════════════════

def find_project_file(start: Optional[Path] = None) -> Optional[Path]:
    """
    Search upward from *start* (default: cwd) for a .pvetunnel YAML file.
    Returns the Path if found, or None if no .pvetunnel exists in any parent.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / PROJECT_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config_file(path: Path) -> dict:
    """Parse a YAML config file and return its contents as a dict."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def get_profile(data: dict, profile_name: str = "default") -> dict:
    """
    Extract a named profile from a .pvetunnel or config.yaml data dict.
    Falls back to the first profile if the named one is not found.
    Returns a flat profile dict merged with top-level defaults.
    """
    defaults = data.get("defaults", {}) or {}
    profiles = data.get("profiles", []) or []
    if not profiles:
        return defaults.copy()
    profile = next((p for p in profiles if p.get("name") == profile_name), None)
    if profile is None:
        profile = profiles[0]
    merged = defaults.copy()
    merged.update(profile)
    return merged


# ══════════════════════════════════════════════════════════════════════════════
#  APPLY PROFILE  ── mutates module-level variables
# ══════════════════════════════════════════════════════════════════════════════

def _opt_str(value) -> Optional[str]:
    return str(value) if value else None


def apply_profile(profile: dict):
    """
    Apply a profile dict to the module-level config variables.
    Supports keys: source, destination, user/username, ssh_key, ssh_password,
                   local_port, remote_port, bind_address, token_name,
                   token_value, poll_interval, max_attempts,
                   completion_markers, connect_timeout, command_timeout.
    """
    global SOURCE_HOST, DESTINATION_HOST, SSH_USER, SSH_KEY_PATH, SSH_PASSWORD
    global LOCAL_PORT, REMOTE_PORT, BIND_ADDRESS, TOKEN_NAME, TOKEN_VALUE
    global POLL_INTERVAL, MAX_ATTEMPTS, COMPLETION_MARKERS
    global CONNECT_TIMEOUT, COMMAND_TIMEOUT

    if "source" in profile:
        SOURCE_HOST = _opt_str(profile["source"])
    if "destination" in profile:
        DESTINATION_HOST = _opt_str(profile["destination"])
    if "user" in profile:
        SSH_USER = str(profile["user"])
    elif "username" in profile:
        SSH_USER = str(profile["username"])
    if "ssh_key" in profile:
        SSH_KEY_PATH = str(Path(profile["ssh_key"]).expanduser()) if profile["ssh_key"] else None
    if "ssh_password" in profile:
        SSH_PASSWORD = _opt_str(profile["ssh_password"])
    if "local_port" in profile:
        LOCAL_PORT = int(profile["local_port"])
    if "remote_port" in profile:
        REMOTE_PORT = int(profile["remote_port"])
    if "bind_address" in profile:
        BIND_ADDRESS = str(profile["bind_address"])
    if "token_name" in profile:
        TOKEN_NAME = _opt_str(profile["token_name"])
    if "token_value" in profile:
        TOKEN_VALUE = _opt_str(profile["token_value"])
    if "poll_interval" in profile:
        POLL_INTERVAL = float(profile["poll_interval"])
    if "max_attempts" in profile:
        MAX_ATTEMPTS = int(profile["max_attempts"])
    if "completion_markers" in profile:
        markers = profile["completion_markers"]
        if isinstance(markers, str):
            markers = [markers]
        markers = [str(m) for m in markers or [] if m]
        if not markers:
            raise ConfigError("completion_markers must list at least one marker")
        COMPLETION_MARKERS = markers
    if "connect_timeout" in profile:
        CONNECT_TIMEOUT = float(profile["connect_timeout"])
    if "command_timeout" in profile:
        ct = profile["command_timeout"]
        COMMAND_TIMEOUT = float(ct) if ct else None
