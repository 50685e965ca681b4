# matchlink/discovery/advertiser.py
from __future__ import annotations

import logging
import random
import socket
from typing import Optional, Tuple

from matchlink.transport._internal.datagram_worker import DatagramWorker
from matchlink.transport.errors import TransportOpenError

from .protocol import DEFAULT_DISCOVERY_PORT, DiscoverRequest, decode, encode_announce


def new_server_id() -> int:
    """Random positive 63-bit id, stable for one hosting session."""
    return random.getrandbits(63) or 1


class BroadcastAdvertiser:
    """
    Host-side responder: listens on the discovery port and answers every
    DISCOVER with a matching handshake by an ANNOUNCE sent back to the asker.
    """

    def __init__(
        self,
        *,
        handshake: int,
        game_port: int,
        name: Optional[str] = None,
        server_id: Optional[int] = None,
        discovery_port: int = DEFAULT_DISCOVERY_PORT,
        bind_host: str = "",
        recv_timeout: float = 0.2,
        logger: Optional[logging.Logger] = None,
    ):
        self.handshake = int(handshake)
        self.game_port = int(game_port)
        self.name = name
        self.server_id = int(server_id) if server_id is not None else new_server_id()
        self.discovery_port = int(discovery_port)
        self.bind_host = bind_host
        self.recv_timeout = recv_timeout
        self._log = logger or logging.getLogger(__name__)

        self._sock: Optional[socket.socket] = None
        self._worker: Optional[DatagramWorker] = None
        self.answered = 0

    def start(self) -> None:
        if self._sock is not None:
            return
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self.bind_host, self.discovery_port))
            sock.settimeout(self.recv_timeout)
        except OSError as e:
            sock.close()
            raise TransportOpenError(f"Cannot bind discovery port {self.discovery_port}: {e}") from None

        self._sock = sock
        self._worker = DatagramWorker(sock, self._on_datagram, logger=self._log, name="advertiser-rx")
        self._worker.start()
        self._log.info(
            "ADVERTISER_STARTED port=%d server_id=%d game_port=%d",
            self.discovery_port,
            self.server_id,
            self.game_port,
        )

    def stop(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.stop()
        sock, self._sock = self._sock, None
        if sock is None:
            return
        sock.close()
        if worker is not None and worker.is_alive():
            worker.join(timeout=self.recv_timeout * 2)
        self._log.info("ADVERTISER_STOPPED answered=%d", self.answered)

    def is_running(self) -> bool:
        return self._sock is not None

    def __enter__(self) -> "BroadcastAdvertiser":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _on_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        msg = decode(data)
        if not isinstance(msg, DiscoverRequest) or msg.handshake != self.handshake:
            return

        sock = self._sock
        if sock is None:
            return
        reply = encode_announce(self.handshake, self.server_id, self.game_port, self.name)
        try:
            sock.sendto(reply, addr)
        except OSError as e:
            self._log.warning("ADVERTISER_REPLY_FAILED to=%s err=%s", addr, e)
            return
        self.answered += 1
