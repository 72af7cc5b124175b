"""Operations (remote command templates)"""
from .migration import auth_header, build_migrate_command, build_status_command

__all__ = [
    "auth_header",
    "build_migrate_command", "build_status_command",
]
