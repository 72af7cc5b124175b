"""
Exception hierarchy for pvetunnel

Connection-stage errors abort a run; a non-zero remote exit status is
normally returned as a CommandResult and only becomes RemoteCommandFailure
when a caller asks for it with CommandResult.check().
"""


class TunnelError(Exception):
    """Base class for every error raised by pvetunnel."""


class ConfigError(TunnelError):
    """Missing, ambiguous or out-of-range configuration."""


class AuthenticationError(TunnelError):
    """The remote host rejected the supplied credentials."""


class ConnectivityError(TunnelError):
    """Host unreachable or SSH handshake failed."""


class BindError(TunnelError):
    """The local forwarding endpoint could not be bound."""


class ForwardingError(TunnelError):
    """The session cannot establish the forwarding relay."""


class ExecutionError(TunnelError):
    """A command was issued on a session that is not usable."""


class RemoteCommandFailure(TunnelError):
    """A remote command exited with a non-zero status."""

    def __init__(self, result):
        self.result = result
        detail = result.stderr.strip()
        super().__init__(
            f"remote command exited {result.exit_status}"
            + (f": {detail}" if detail else "")
        )
