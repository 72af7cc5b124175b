"""
Logging utilities for pvetunnel
"""
import re
from datetime import datetime

_verbose = False
_secrets: set[str] = set()
_patterns: list = []

MIN_SECRET_LENGTH = 4  # shorter values would mask ordinary words


def set_verbose(verbose: bool):
    """Set the verbose flag"""
    global _verbose
    _verbose = verbose


def is_verbose() -> bool:
    return _verbose


def register_secret(value: str):
    """Mask *value* in every line written through this module."""
    global _patterns
    if not value or len(value) < MIN_SECRET_LENGTH or value in _secrets:
        return
    _secrets.add(value)
    # Longest first so a header containing a token is masked as a whole
    _patterns = [re.compile(re.escape(v)) for v in sorted(_secrets, key=len, reverse=True)]


def clear_secrets():
    global _patterns
    _secrets.clear()
    _patterns = []


def redact(text: str) -> str:
    """Replace registered secret values with '***'."""
    for pattern in _patterns:
        text = pattern.sub("***", text)
    return text


def log(msg: str):
    """Log a message with timestamp"""
    ts = datetime.now().strftime("%H:%M:%S")
    print(f"[{ts}] {redact(str(msg))}", flush=True)


def vlog(msg: str):
    """Log a verbose message (only if verbose mode is enabled)"""
    if _verbose:
        log(msg)


def warn(msg: str):
    """Log a warning message"""
    log(f"⚠  {msg}")
