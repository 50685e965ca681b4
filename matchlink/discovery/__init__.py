from .advertiser import BroadcastAdvertiser
from .broadcast import BroadcastDiscovery
from .lobby import LobbyDiscovery, LobbyHandle

__all__ = [
    "BroadcastAdvertiser",
    "BroadcastDiscovery",
    "LobbyDiscovery",
    "LobbyHandle",
]
