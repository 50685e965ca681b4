from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union


class DiscoverySource(str, Enum):
    """Where a session was discovered. Session ids are scoped per source."""
    BROADCAST = "broadcast"
    LOBBY_SERVICE = "lobby_service"


class SessionMode(str, Enum):
    """Which family of transport a host/join uses."""
    LOCAL_NETWORK = "local"
    LOBBY_SERVICE = "lobby"

    @classmethod
    def for_source(cls, source: DiscoverySource) -> "SessionMode":
        if source is DiscoverySource.LOBBY_SERVICE:
            return cls.LOBBY_SERVICE
        return cls.LOCAL_NETWORK


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Plain network endpoint (address + port)."""
    host: str
    port: int

    def to_uri(self) -> str:
        return f"tcp4://{self.host}:{int(self.port)}"

    def __str__(self) -> str:
        return f"{self.host}:{int(self.port)}"


@dataclass(frozen=True, slots=True)
class LobbyToken:
    """
    Opaque reverse-connect token published by a lobby host.
    Only lobby-capable backends can resolve it.
    """
    host_id: str

    def to_uri(self) -> str:
        return f"lobby://{self.host_id}"

    def __str__(self) -> str:
        return self.to_uri()


ConnectDescriptor = Union[Endpoint, LobbyToken]
SessionKey = Tuple[DiscoverySource, int]


@dataclass(frozen=True, slots=True)
class DiscoveryEvent:
    """
    A single (re)discovery of a session, as reported by one adapter.

    seen_at: monotonic timestamp; None means "now" on the registry clock.
    """
    source: DiscoverySource
    session_id: int
    descriptor: ConnectDescriptor
    display_name: Optional[str] = None
    seen_at: Optional[float] = None

    @property
    def key(self) -> SessionKey:
        return (self.source, int(self.session_id))


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """One discovered, joinable session as exposed to presentation."""
    session_id: int
    source: DiscoverySource
    descriptor: ConnectDescriptor
    last_seen: float
    display_name: Optional[str] = None

    @property
    def key(self) -> SessionKey:
        return (self.source, self.session_id)

    @property
    def mode(self) -> SessionMode:
        return SessionMode.for_source(self.source)

    def label(self) -> str:
        return self.display_name or str(self.descriptor)

    def as_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "source": self.source.value,
            "display_name": self.display_name,
            "uri": self.descriptor.to_uri(),
            "last_seen": self.last_seen,
        }
