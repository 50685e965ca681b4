from __future__ import annotations

import logging
import socket
import threading
from typing import Callable, Tuple

MAX_DATAGRAM = 4096


class DatagramWorker(threading.Thread):
    """Thread that continuously reads datagrams from a UDP socket and hands them to a callback."""

    def __init__(
        self,
        sock: socket.socket,
        deliver: Callable[[bytes, Tuple[str, int]], None],
        *,
        logger: logging.Logger,
        name: str = "datagram-rx",
    ):
        super().__init__(daemon=True, name=name)
        self._sock = sock
        self._deliver = deliver
        self._log = logger
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                data, addr = self._sock.recvfrom(MAX_DATAGRAM)
            except socket.timeout:
                continue
            except OSError:
                if self._stop_event.is_set():
                    break
                self._log.exception("DATAGRAM_RECV_ERROR")
                self._stop_event.wait(0.05)
                continue

            try:
                self._deliver(data, (str(addr[0]), int(addr[1])))
            except Exception:
                self._log.exception("DATAGRAM_CALLBACK_ERROR sender=%s", addr)

    def stop(self) -> None:
        self._stop_event.set()
