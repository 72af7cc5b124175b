"""
Value types shared by the session, runner, monitor and orchestrator
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .errors import ConfigError, RemoteCommandFailure

DEFAULT_LOCAL_PORT = 22222
DEFAULT_REMOTE_PORT = 22
DEFAULT_BIND_ADDRESS = "127.0.0.1"
DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_MAX_ATTEMPTS = 30


def _check_port(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        raise ConfigError(f"{name} must be an integer in 1-65535, got {value!r}")


@dataclass
class ConnectionParameters:
    """Where to connect and how to authenticate (exactly one credential form)."""

    host: str
    username: str
    port: int = DEFAULT_REMOTE_PORT
    password: Optional[str] = field(default=None, repr=False)
    key_filename: Optional[str] = None

    def validate(self) -> None:
        if not self.host or not str(self.host).strip():
            raise ConfigError("remote host is required")
        if not self.username:
            raise ConfigError("username is required")
        _check_port("remote port", self.port)
        if not self.password and not self.key_filename:
            raise ConfigError("either a password or a key file must be provided")
        if self.password and self.key_filename:
            raise ConfigError("provide either a password or a key file, not both")

    @property
    def auth_method(self) -> str:
        return "key" if self.key_filename else "password"


@dataclass(frozen=True)
class ForwardingSpec:
    """local bind_address:local_port -> dest_host:dest_port through the session."""

    dest_host: str
    dest_port: int = DEFAULT_REMOTE_PORT
    local_port: int = DEFAULT_LOCAL_PORT
    bind_address: str = DEFAULT_BIND_ADDRESS

    def validate(self) -> None:
        if not self.dest_host:
            raise ConfigError("forward destination host is required")
        _check_port("local port", self.local_port)
        _check_port("destination port", self.dest_port)

    def describe(self) -> str:
        return f"{self.bind_address}:{self.local_port} -> {self.dest_host}:{self.dest_port}"


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one remote command."""

    command: str
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stdout followed by stderr, for checks that must see both."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    def check(self) -> "CommandResult":
        """Return self, or raise RemoteCommandFailure on non-zero exit."""
        if not self.ok:
            raise RemoteCommandFailure(self)
        return self


@dataclass(frozen=True)
class OperationDescriptor:
    """The VM migration being launched and monitored."""

    vm_id: int
    source_node: str
    destination_node: str
    token_name: Optional[str] = None
    token_value: Optional[str] = field(default=None, repr=False)

    @property
    def has_token(self) -> bool:
        return bool(self.token_name) and bool(self.token_value)


@dataclass(frozen=True)
class MonitorSettings:
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ConfigError(f"max attempts must be at least 1, got {self.max_attempts}")
        if self.poll_interval < 0:
            raise ConfigError(f"poll interval must not be negative, got {self.poll_interval}")


class MonitorStatus(Enum):
    POLLING = "polling"
    COMPLETED = "completed"
    TIMED_OUT = "timed out"
    CANCELLED = "cancelled"


@dataclass
class MonitorState:
    max_attempts: int
    poll_interval: float
    attempt: int = 0
    completed: bool = False
    status: MonitorStatus = MonitorStatus.POLLING
    last_output: str = ""

    @property
    def finished(self) -> bool:
        return self.status is not MonitorStatus.POLLING
