"""
SSH transport session: one authenticated connection plus its port forwards
"""
from typing import Optional

import paramiko

from .. import config as _cfg
from ..errors import AuthenticationError, ConnectivityError, ExecutionError
from ..utils.logging import log, vlog, register_secret
from .forwarder import PortForwarder
from ..types import ConnectionParameters, ForwardingSpec


class TransportSession:
    """
    Wraps a paramiko SSHClient.
    Command channels and forwarding channels are multiplexed over the same
    transport; disconnect() tears both down.
    """

    def __init__(self, connect_timeout: Optional[float] = None):
        self._ssh: Optional[paramiko.SSHClient] = None
        self._params: Optional[ConnectionParameters] = None
        self._forwarders: list[PortForwarder] = []
        self._connect_timeout = connect_timeout or _cfg.CONNECT_TIMEOUT

    # ── connection ─────────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        if self._ssh is None:
            return False
        transport = self._ssh.get_transport()
        return transport is not None and transport.is_active()

    @property
    def params(self) -> Optional[ConnectionParameters]:
        return self._params

    def connect(self, params: ConnectionParameters):
        params.validate()
        if self.is_connected:
            return

        if params.password:
            register_secret(params.password)
        log(f"[SSH] connecting to {params.username}@{params.host}:{params.port} …")
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        kw: dict = dict(hostname=params.host, port=params.port, username=params.username,
                        timeout=self._connect_timeout, banner_timeout=30, auth_timeout=30,
                        allow_agent=False, look_for_keys=False)
        if params.key_filename:
            kw["key_filename"] = params.key_filename
            vlog(f"[SSH] using key file authentication: {params.key_filename}")
        else:
            kw["password"] = params.password
            vlog("[SSH] using password authentication")

        try:
            client.connect(**kw)
        except paramiko.AuthenticationException as exc:
            client.close()
            raise AuthenticationError(
                f"authentication failed for {params.username}@{params.host}: {exc}") from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise ConnectivityError(
                f"cannot connect to {params.host}:{params.port}: {exc}") from exc

        # Keep-alive: send a NOP every 30s
        client.get_transport().set_keepalive(30)

        self._ssh = client
        self._params = params
        log("[SSH] connected ✓")

    def disconnect(self):
        if self._ssh is None and not self._forwarders:
            return
        for fwd in self._forwarders:
            fwd.stop()
        self._forwarders.clear()
        if self._ssh is not None:
            self._ssh.close()
            self._ssh = None
            log("[SSH] disconnected.")

    # ── channels ────────────────────────────────────────────────────────────

    @property
    def transport(self) -> paramiko.Transport:
        """The active transport; raises ExecutionError when the session is down."""
        if not self.is_connected:
            raise ExecutionError("SSH session is not connected")
        return self._ssh.get_transport()

    def forward(self, spec: ForwardingSpec) -> PortForwarder:
        """Start a local port forward owned by this session."""
        fwd = PortForwarder(self, spec)
        fwd.start()
        self._forwarders.append(fwd)
        return fwd

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.disconnect()
