from __future__ import annotations

import logging
import socket
from typing import Optional, Tuple

from .base import BroadcastChannel
from .errors import TransportIOError, TransportOpenError
from ._internal.datagram_worker import DatagramWorker

DEFAULT_BROADCAST_ADDRESS = "255.255.255.255"


class UdpBroadcastChannel(BroadcastChannel):
    """
    Client-side discovery channel over a UDP socket with SO_BROADCAST.

    The socket binds an ephemeral port; responders answer to it directly,
    so many browsers can run on one machine.
    """

    def __init__(
        self,
        port: int,
        *,
        broadcast_address: str = DEFAULT_BROADCAST_ADDRESS,
        bind_host: str = "",
        recv_timeout: float = 0.2,
        logger: Optional[logging.Logger] = None,
    ):
        self.port = int(port)
        self.broadcast_address = broadcast_address
        self.bind_host = bind_host
        self.recv_timeout = recv_timeout
        self.on_datagram = None
        self._log = logger or logging.getLogger(__name__)
        self._sock: Optional[socket.socket] = None
        self._worker: Optional[DatagramWorker] = None

    def open(self) -> None:
        if self._sock is not None:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_host, 0))
            sock.settimeout(self.recv_timeout)
        except OSError as e:
            sock.close()
            raise TransportOpenError(f"UDP broadcast open failed: {e}") from None

        self._sock = sock
        self._worker = DatagramWorker(sock, self._on_datagram, logger=self._log, name="broadcast-rx")
        self._worker.start()
        self._log.debug("BROADCAST_CHANNEL_OPEN local=%s port=%d", sock.getsockname(), self.port)

    def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop()
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            finally:
                if worker is not None and worker.is_alive():
                    worker.join(timeout=self.recv_timeout * 2)

    def is_open(self) -> bool:
        return self._sock is not None

    @property
    def local_address(self) -> Optional[Tuple[str, int]]:
        if self._sock is None:
            return None
        return self._sock.getsockname()

    def send(self, data: bytes, address: Optional[str] = None) -> None:
        if self._sock is None:
            raise TransportIOError("send while broadcast channel not open")

        target = address or self.broadcast_address
        try:
            self._sock.sendto(data, (target, self.port))
        except OSError as e:
            raise TransportIOError(f"UDP send to {target}:{self.port} failed: {e}") from None

    def _on_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        cb = self.on_datagram
        if cb is not None:
            cb(data, addr)
