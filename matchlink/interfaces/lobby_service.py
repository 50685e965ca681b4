# matchlink/interfaces/lobby_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Protocol, Sequence


class LobbyVisibility(str, Enum):
    PUBLIC = "public"
    FRIENDS_ONLY = "friends_only"


# Metadata keys written on the host's lobby and read back by browsers.
KEY_NAME = "name"
KEY_HANDSHAKE = "handshake"
KEY_HOST_ADDRESS = "host_address"

# Presence keys published for the hosting user while the lobby exists.
# "connect" is what a friend's join request hands back to join_connect_string().
PRESENCE_CONNECT = "connect"
PRESENCE_GROUP = "group"
PRESENCE_GROUP_SIZE = "group_size"
PRESENCE_STATUS = "status"


@dataclass(frozen=True, slots=True)
class LobbyEntry:
    """
    One lobby as returned by a directory listing or an invite.
    Keep this small + stable; service-specific data goes into metadata.
    """
    lobby_id: int
    metadata: Mapping[str, str] = field(default_factory=dict)
    owner_id: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get(KEY_NAME) or None

    @property
    def host_address(self) -> Optional[str]:
        return self.metadata.get(KEY_HOST_ADDRESS) or None


class LobbyService(Protocol):
    """
    External lobby/matchmaking directory.

    Implementations may raise on any call; the lobby adapter treats the
    whole service as optional and contains every failure.

    query_lobbies(min_open_slots=0) lists full lobbies too.
    """

    def is_available(self) -> bool: ...
    def create_lobby(self, visibility: LobbyVisibility, capacity: int) -> int: ...
    def update_lobby_metadata(self, lobby_id: int, key: str, value: str) -> None: ...
    def query_lobbies(self, filter_tag: str, *, max_results: int, min_open_slots: int) -> Sequence[LobbyEntry]: ...
    def leave_lobby(self, lobby_id: int) -> None: ...
    def local_user_id(self) -> str: ...

    # presence of the local user, shown to friends
    def set_presence(self, key: str, value: str) -> None: ...
    def clear_presence(self) -> None: ...

    def open_invite_dialog(self, lobby_id: int) -> None: ...
