from __future__ import annotations

import logging
import socket
import threading
from concurrent.futures import Future
from typing import List, Optional

from matchlink.model.session import ConnectDescriptor, Endpoint

from .base import TAG_ADDRESS_PORT, TAG_BROADCAST, TransportBackend
from .errors import DescriptorNotSupported, TransportOpenError
from .udp_broadcast import DEFAULT_BROADCAST_ADDRESS, UdpBroadcastChannel


class TcpTransport(TransportBackend):
    """
    Plain address:port transport over TCP sockets.

    Only connection establishment is handled here; the game's byte stream is
    handed to `on_data` untouched.
    """

    name = "tcp"
    tags = frozenset({TAG_ADDRESS_PORT, TAG_BROADCAST})

    def __init__(
        self,
        *,
        bind_host: str = "0.0.0.0",
        connect_timeout: float = 5.0,
        broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
        logger: Optional[logging.Logger] = None,
    ):
        self.bind_host = bind_host
        self.connect_timeout = connect_timeout
        self.broadcast_address = broadcast_address
        self.on_closed = None
        self.on_data = None
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._server: Optional[socket.socket] = None
        self._peers: List[socket.socket] = []
        self._client: Optional[socket.socket] = None
        self._attempt = 0  # bumped by disconnect() to orphan in-flight connects

    # --- hooks ---
    def activate(self) -> None:
        self._log.debug("TCP_ACTIVATE")

    def deactivate(self) -> None:
        self.disconnect()

    def open_broadcast(self, port: int) -> UdpBroadcastChannel:
        return UdpBroadcastChannel(port, broadcast_address=self.broadcast_address, logger=self._log)

    # --- state ---
    def is_listening(self) -> bool:
        with self._lock:
            return self._server is not None

    def is_connected(self) -> bool:
        with self._lock:
            return self._client is not None

    @property
    def listen_port(self) -> Optional[int]:
        with self._lock:
            if self._server is None:
                return None
            return int(self._server.getsockname()[1])

    # --- host ---
    def listen(self, port: int) -> None:
        with self._lock:
            if self._server is not None:
                return
            srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            try:
                srv.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                srv.bind((self.bind_host, int(port)))
                srv.listen()
            except OSError as e:
                srv.close()
                raise TransportOpenError(f"TCP listen on {self.bind_host}:{port} failed: {e}") from None
            self._server = srv

        threading.Thread(target=self._accept_loop, args=(srv,), daemon=True, name="tcp-accept").start()
        self._log.info("TCP_LISTEN host=%s port=%d", self.bind_host, int(port))

    def _accept_loop(self, srv: socket.socket) -> None:
        while True:
            try:
                conn, addr = srv.accept()
            except OSError:
                with self._lock:
                    lost = self._server is srv
                    if lost:
                        self._server = None
                if lost:
                    self._log.warning("TCP_HOST_LOST")
                    self._notify_closed("host_lost")
                return

            with self._lock:
                if self._server is not srv:
                    conn.close()
                    return
                self._peers.append(conn)
            self._log.info("TCP_PEER_ACCEPTED peer=%s:%d", addr[0], addr[1])
            threading.Thread(target=self._read_loop, args=(conn, False), daemon=True, name="tcp-peer").start()

    # --- client ---
    def connect(self, descriptor: ConnectDescriptor) -> "Future[ConnectDescriptor]":
        if not isinstance(descriptor, Endpoint):
            raise DescriptorNotSupported(f"TCP transport cannot resolve {descriptor!r}")

        fut: "Future[ConnectDescriptor]" = Future()
        with self._lock:
            self._attempt += 1
            attempt = self._attempt

        threading.Thread(
            target=self._connect_worker,
            args=(descriptor, attempt, fut),
            daemon=True,
            name="tcp-connect",
        ).start()
        return fut

    def _connect_worker(self, ep: Endpoint, attempt: int, fut: Future) -> None:
        try:
            sock = socket.create_connection((ep.host, int(ep.port)), timeout=self.connect_timeout)
        except OSError as e:
            fut.set_exception(TransportOpenError(f"TCP connect to {ep} failed: {e}"))
            return

        with self._lock:
            orphaned = attempt != self._attempt
            if not orphaned:
                sock.settimeout(None)
                self._client = sock

        if orphaned:
            sock.close()
            fut.set_exception(TransportOpenError(f"TCP connect to {ep} cancelled"))
            return

        fut.set_result(ep)
        self._read_loop(sock, True)

    def _read_loop(self, sock: socket.socket, is_client: bool) -> None:
        while True:
            try:
                chunk = sock.recv(4096)
            except OSError:
                chunk = b""
            if not chunk:
                break
            cb = self.on_data
            if cb is not None:
                try:
                    cb(chunk)
                except Exception:
                    self._log.exception("TCP_DATA_CALLBACK_ERROR")

        with self._lock:
            if is_client:
                lost = self._client is sock
                if lost:
                    self._client = None
            else:
                lost = False
                if sock in self._peers:
                    self._peers.remove(sock)
        _close_quietly(sock)
        if lost:
            self._log.warning("TCP_CONNECTION_LOST")
            self._notify_closed("connection_lost")

    # --- teardown ---
    def disconnect(self) -> None:
        with self._lock:
            self._attempt += 1
            server, self._server = self._server, None
            client, self._client = self._client, None
            peers, self._peers = self._peers, []

        for s in [client, server, *peers]:
            if s is not None:
                _close_quietly(s)


def _close_quietly(sock: socket.socket) -> None:
    # shutdown() wakes threads blocked in accept()/recv() before close()
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
