from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class SessionSettings:
    display_name: str = ""
    capacity: int = 8
    port: int = 7777


@dataclass(frozen=True)
class DiscoverySettings:
    port: int = 47777
    stale_timeout_s: float = 6.0     # drop sessions not refreshed within this window
    prune_interval_s: float = 1.5
    probe_interval_s: float = 3.0    # 0 disables periodic probing
    search_localhost: bool = True
    search_subnets: bool = True
    advertise_on_host: bool = True
    hide_local_in_lobby_mode: bool = True


@dataclass(frozen=True)
class LobbySettings:
    enabled: bool = True
    friends_only: bool = False
    max_results: int = 200
    min_open_slots: int = 1          # 0 lists full lobbies too
    open_invite_on_host: bool = False


@dataclass(frozen=True)
class TransportSettings:
    preference: Tuple[str, ...] = ("tcp",)
    fallback: Optional[str] = "tcp"
    connect_timeout_s: float = 5.0


@dataclass(frozen=True)
class Settings:
    """
    Static configuration of a MatchLink process.

    mode: "auto" | "local" | "lobby"
    """
    app_name: str = "MatchLink"
    mode: str = "auto"
    session: SessionSettings = field(default_factory=SessionSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    lobby: LobbySettings = field(default_factory=LobbySettings)
    transports: TransportSettings = field(default_factory=TransportSettings)

    @property
    def display_name(self) -> str:
        return self.session.display_name or self.app_name
