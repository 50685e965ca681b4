from .session import (
    DiscoveryEvent,
    DiscoverySource,
    Endpoint,
    LobbyToken,
    SessionMode,
    SessionRecord,
)
from .settings import Settings
from .loader import ConfigLoader

__all__ = ["DiscoveryEvent",
           "DiscoverySource",
           "Endpoint",
           "LobbyToken",
           "SessionMode",
           "SessionRecord",
           "Settings",
           "ConfigLoader"]
