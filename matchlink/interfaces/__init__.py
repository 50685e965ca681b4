from .discovery_sink import DiscoverySink
from .lobby_service import LobbyEntry, LobbyService, LobbyVisibility

__all__ = ["DiscoverySink", "LobbyEntry", "LobbyService", "LobbyVisibility"]
