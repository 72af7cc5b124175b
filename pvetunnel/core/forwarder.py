"""
Local port forwarding over an SSH session (direct-tcpip channels)
"""
import select
import socket
import socketserver
import threading
from typing import Optional

import paramiko

from ..errors import BindError, ExecutionError, ForwardingError
from ..utils.logging import log, vlog, warn
from ..types import ForwardingSpec

CHUNK_SIZE = 16384
SELECT_TIMEOUT = 1.0  # seconds; bounds how long a relay takes to notice stop()


class _ThreadedTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True


class PortForwarder:
    """
    Listens on spec.bind_address:spec.local_port and relays every accepted
    connection to spec.dest_host:spec.dest_port through the remote side of
    the session. Relays run on daemon threads and never touch command
    channels.
    """

    def __init__(self, session, spec: ForwardingSpec):
        self._session = session
        self.spec = spec
        self.local_port = spec.local_port
        self._stop_event = threading.Event()
        self._server: Optional[_ThreadedTCPServer] = None
        self._acceptor: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._server is not None

    def start(self):
        self.spec.validate()
        if self._server is not None:
            return
        try:
            transport = self._session.transport
        except ExecutionError as exc:
            raise ForwardingError(f"cannot forward {self.spec.describe()}: {exc}") from exc
        if not transport.is_active():
            raise ForwardingError(f"cannot forward {self.spec.describe()}: transport is closed")

        forwarder = self

        class ForwardHandler(socketserver.BaseRequestHandler):
            def handle(self):
                try:
                    chan = transport.open_channel(
                        "direct-tcpip",
                        (forwarder.spec.dest_host, forwarder.spec.dest_port),
                        self.request.getpeername(),
                    )
                except Exception as exc:
                    warn(f"[tunnel] could not open channel to "
                         f"{forwarder.spec.dest_host}:{forwarder.spec.dest_port}: {exc}")
                    return
                if chan is None:
                    warn("[tunnel] remote side rejected the forwarding request")
                    return
                vlog(f"[tunnel] relaying {self.client_address[0]}:{self.client_address[1]}")
                try:
                    _relay(self.request, chan, forwarder._stop_event)
                finally:
                    chan.close()

        try:
            server = _ThreadedTCPServer((self.spec.bind_address, self.spec.local_port), ForwardHandler)
        except OSError as exc:
            raise BindError(
                f"cannot bind {self.spec.bind_address}:{self.spec.local_port}: {exc}") from exc

        self._stop_event.clear()
        self._server = server
        self.local_port = server.server_address[1]
        self._acceptor = threading.Thread(
            target=server.serve_forever,
            name=f"ssh-tunnel-{self.local_port}",
            daemon=True,
        )
        self._acceptor.start()
        log(f"[tunnel] listening: {self.spec.describe()}")

    def stop(self):
        if self._server is None:
            return
        self._stop_event.set()
        server, self._server = self._server, None
        server.shutdown()
        server.server_close()
        if self._acceptor:
            self._acceptor.join(timeout=3.0)
            self._acceptor = None
        log(f"[tunnel] closed {self.spec.bind_address}:{self.local_port}")

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()


def _relay(sock: socket.socket, chan, stop_event: threading.Event):
    """Copy bytes both ways between a local socket and an SSH channel until EOF."""
    try:
        while not stop_event.is_set():
            r, _, _ = select.select([sock, chan], [], [], SELECT_TIMEOUT)
            if sock in r:
                data = sock.recv(CHUNK_SIZE)
                if not data:
                    break
                chan.sendall(data)
            if chan in r:
                data = chan.recv(CHUNK_SIZE)
                if not data:
                    break
                sock.sendall(data)
    except (OSError, paramiko.SSHException) as exc:
        vlog(f"[tunnel] relay ended: {exc}")
