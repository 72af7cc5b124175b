"""Utilities (logging, secret redaction)"""
from .logging import log, vlog, warn, set_verbose, register_secret, redact

__all__ = [
    "log", "vlog", "warn", "set_verbose",
    "register_secret", "redact",
]
