from __future__ import annotations

import logging
from importlib.metadata import entry_points
from typing import Dict, Iterable, List, Optional

from .base import TransportBackend
from .errors import TransportError
from .tcp import TcpTransport

ENTRY_POINT_GROUP = "matchlink.transports"


class TransportBackendRegistry:
    """
    Capability registry: backends register themselves (and their tags) here.

    An optional backend that is not installed is simply not registered;
    nothing is looked up by type name.
    """

    def __init__(self, backends: Iterable[TransportBackend] = (), *, logger: Optional[logging.Logger] = None):
        self._log = logger or logging.getLogger(__name__)
        # insertion-ordered, keys normalized to be case-insensitive
        self._backends: Dict[str, TransportBackend] = {}
        for b in backends:
            self.register(b)

    @classmethod
    def default(cls, *, connect_timeout: float = 5.0) -> "TransportBackendRegistry":
        return cls(backends=[TcpTransport(connect_timeout=connect_timeout)])

    def register(self, backend: TransportBackend, *, replace: bool = False) -> None:
        key = backend.name.lower()
        if key in self._backends and not replace:
            raise TransportError(f"Transport backend '{backend.name}' already registered")
        self._backends[key] = backend
        self._log.debug("TRANSPORT_REGISTERED name=%s tags=%s", key, sorted(backend.tags))

    def unregister(self, name: str) -> bool:
        return self._backends.pop(name.lower(), None) is not None

    def has(self, name: str) -> bool:
        return name.lower() in self._backends

    def get(self, name: str) -> TransportBackend:
        key = name.lower()
        if key not in self._backends:
            raise TransportError(f"Transport backend '{name}' not registered")
        return self._backends[key]

    def backends(self) -> List[TransportBackend]:
        return list(self._backends.values())

    def tagged(self, tag: str) -> List[TransportBackend]:
        return [b for b in self._backends.values() if tag in b.tags]

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """
        Register plugin backends declared under an entry-point group.

        Each entry point must resolve to a zero-argument callable returning a
        TransportBackend (a class works). Broken plugins are logged and skipped.
        """
        loaded = 0
        for ep in entry_points(group=group):
            try:
                factory = ep.load()
                backend = factory()
                if not isinstance(backend, TransportBackend):
                    raise TypeError(f"entry point returned {type(backend).__name__}, not a TransportBackend")
                self.register(backend)
            except Exception:
                self._log.exception("TRANSPORT_PLUGIN_LOAD_FAILED entry_point=%s", ep.name)
                continue
            loaded += 1
        return loaded

    def __len__(self) -> int:
        return len(self._backends)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)
