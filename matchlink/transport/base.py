from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, FrozenSet, Optional, Tuple

from matchlink.model.session import ConnectDescriptor

from .errors import TransportError

# Capability tags used for preference matching by the arbitrator.
TAG_ADDRESS_PORT = "address_port"   # resolves Endpoint(host, port)
TAG_LOBBY_TOKEN = "lobby_token"     # resolves LobbyToken(host_id)
TAG_BROADCAST = "broadcast"         # can open a local-network broadcast channel

DatagramCallback = Callable[[bytes, Tuple[str, int]], None]
ClosedCallback = Callable[[str], None]


class BroadcastChannel(ABC):
    """
    Datagram channel used to solicit discovery responses on the local network.

    Contract:
      - open()/close() manage the socket and its receive thread.
      - send(data, address) sends one datagram to `address` (or the persistent
        broadcast target when None) without changing the persistent target.
      - received datagrams are delivered to `on_datagram(data, (ip, port))`.
    """

    broadcast_address: str
    port: int
    on_datagram: Optional[DatagramCallback] = None

    @abstractmethod
    def open(self) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    @abstractmethod
    def is_open(self) -> bool: ...

    @abstractmethod
    def send(self, data: bytes, address: Optional[str] = None) -> None: ...

    def __enter__(self) -> "BroadcastChannel":
        self.open()
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.close()


class TransportBackend(ABC):
    """
    Abstract session transport (TCP, relay through a lobby service, etc.).

    Contract:
      - activate()/deactivate() are hooks; only the arbitrator calls them.
      - listen(port) starts hosting; raises TransportOpenError on failure.
      - connect(descriptor) starts a connect attempt and returns a Future that
        resolves to the descriptor on success or raises on failure.
      - disconnect() tears down any host or client connection; safe to repeat.
      - on_closed(reason) is invoked when a connection ends without disconnect().
    """

    name: str = "transport"
    tags: FrozenSet[str] = frozenset()

    on_closed: Optional[ClosedCallback] = None

    def activate(self) -> None:
        return None

    def deactivate(self) -> None:
        return None

    def is_available(self) -> bool:
        return True

    def supports_broadcast(self) -> bool:
        return TAG_BROADCAST in self.tags

    def supports_lobby_connect_token(self) -> bool:
        return TAG_LOBBY_TOKEN in self.tags

    def supports_address_port(self) -> bool:
        return TAG_ADDRESS_PORT in self.tags

    def open_broadcast(self, port: int) -> BroadcastChannel:
        raise TransportError(f"Transport '{self.name}' has no broadcast capability")

    @abstractmethod
    def connect(self, descriptor: ConnectDescriptor) -> "Future[ConnectDescriptor]": ...

    @abstractmethod
    def listen(self, port: int) -> None: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def is_listening(self) -> bool: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    def _notify_closed(self, reason: str) -> None:
        cb = self.on_closed
        if cb is not None:
            cb(reason)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name='{self.name}', tags={sorted(self.tags)})"
