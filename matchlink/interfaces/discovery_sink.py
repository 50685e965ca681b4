# matchlink/interfaces/discovery_sink.py
from typing import Protocol

from matchlink.model.session import DiscoveryEvent, DiscoverySource


class DiscoverySink(Protocol):
    def record_discovery(self, event: DiscoveryEvent) -> None: ...
    def remove_explicit(self, source: DiscoverySource, session_id: int) -> bool: ...
