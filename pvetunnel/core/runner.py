"""
Remote command execution over an established TransportSession
"""
import socket
import time
from typing import Optional

import paramiko

from ..errors import ExecutionError
from ..utils.logging import vlog, redact
from ..types import CommandResult

READ_CHUNK = 65536


class RemoteCommandRunner:
    """
    Runs one command per SSH channel and captures (exit status, stdout, stderr).
    A non-zero exit status is returned, not raised.
    """

    def __init__(self, session, timeout: Optional[float] = None):
        self._session = session
        self._timeout = timeout

    def execute(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        timeout = timeout if timeout is not None else self._timeout
        transport = self._session.transport  # raises ExecutionError when down
        try:
            chan = transport.open_session()
        except (paramiko.SSHException, OSError) as exc:
            raise ExecutionError(f"cannot open command channel: {exc}") from exc

        vlog(f"[exec] {redact(command)}")
        try:
            chan.exec_command(command)
            chan.shutdown_write()
            stdout, stderr = _drain(chan, timeout)
            exit_status = chan.recv_exit_status()
        except socket.timeout as exc:
            raise ExecutionError(f"command timed out after {timeout}s") from exc
        except paramiko.SSHException as exc:
            raise ExecutionError(f"command channel failed: {exc}") from exc
        finally:
            chan.close()

        vlog(f"[exec] exit status {exit_status}")
        return CommandResult(
            command=command,
            exit_status=exit_status,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )


def _drain(chan: paramiko.Channel, timeout: Optional[float]) -> tuple[bytes, bytes]:
    """Read stdout and stderr together so neither buffer can stall the other."""
    deadline = time.monotonic() + timeout if timeout is not None else None
    out: list[bytes] = []
    err: list[bytes] = []
    while True:
        if deadline is not None and time.monotonic() >= deadline:
            raise socket.timeout()
        busy = False
        if chan.recv_ready():
            out.append(chan.recv(READ_CHUNK))
            busy = True
        if chan.recv_stderr_ready():
            err.append(chan.recv_stderr(READ_CHUNK))
            busy = True
        if busy:
            continue
        if chan.exit_status_ready() and not chan.recv_ready() and not chan.recv_stderr_ready():
            break
        chan.status_event.wait(0.1)
    # Data that arrived together with the exit status
    while chan.recv_ready():
        out.append(chan.recv(READ_CHUNK))
    while chan.recv_stderr_ready():
        err.append(chan.recv_stderr(READ_CHUNK))
    return b"".join(out), b"".join(err)
