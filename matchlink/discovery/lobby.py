# matchlink/discovery/lobby.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Set

from matchlink.core.errors import LobbyServiceUnavailable
from matchlink.interfaces.discovery_sink import DiscoverySink
from matchlink.interfaces.lobby_service import (
    KEY_HANDSHAKE,
    KEY_HOST_ADDRESS,
    KEY_NAME,
    PRESENCE_CONNECT,
    PRESENCE_GROUP,
    PRESENCE_GROUP_SIZE,
    PRESENCE_STATUS,
    LobbyEntry,
    LobbyService,
    LobbyVisibility,
)
from matchlink.model.session import DiscoveryEvent, DiscoverySource, LobbyToken

DEFAULT_MAX_RESULTS = 200
DEFAULT_MIN_OPEN_SLOTS = 1

PRESENCE_STATUS_HOSTING = "In Lobby"


@dataclass
class LobbyHandle:
    """The local host's advertised lobby. Invalidated (never reused) on teardown."""
    lobby_id: int
    valid: bool = True


def parse_connect_string(connect: Optional[str]) -> Optional[LobbyToken]:
    """
    Host token from a presence "connect" string.

    Accepts the bare host id we publish and the "<scheme>://<host id>" form
    some overlays hand back. None when nothing usable remains.
    """
    if not connect:
        return None
    text = connect.strip()
    _, sep, rest = text.partition("://")
    if sep:
        text = rest
    text = text.strip().strip("/")
    if not text or any(c.isspace() for c in text):
        return None
    return LobbyToken(text)


class LobbyDiscovery:
    """
    Lobby-service adapter: browses lobbies tagged with our handshake and
    manages the one lobby advertising the local host.

    The service is optional. Every call degrades to False / an empty result
    when it is missing, unavailable or raising; nothing propagates.
    """

    def __init__(
        self,
        service: Optional[LobbyService],
        sink: DiscoverySink,
        *,
        handshake: int,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_open_slots: int = DEFAULT_MIN_OPEN_SLOTS,
        executor: Optional[Executor] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._service = service
        self._sink = sink
        self.handshake = int(handshake)
        self.max_results = int(max_results)
        self.min_open_slots = max(0, int(min_open_slots))
        self._log = logger or logging.getLogger(__name__)

        self._own_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="lobby-query")

        # RLock: sink callbacks may re-enter (e.g. a subscriber issuing a new query)
        self._lock = threading.RLock()
        self._handle: Optional[LobbyHandle] = None
        self._issued_seq = 0
        self._applied_seq = 0
        self._listed: Set[int] = set()

    # --- availability ---
    def is_available(self) -> bool:
        if self._service is None:
            return False
        try:
            return bool(self._service.is_available())
        except Exception:
            self._log.exception("LOBBY_AVAILABILITY_ERROR")
            return False

    @property
    def handle(self) -> Optional[LobbyHandle]:
        with self._lock:
            return self._handle

    def owns_lobby(self) -> bool:
        with self._lock:
            return self._handle is not None and self._handle.valid

    # --- browsing ---
    def query_lobbies(self, filter_tag: Optional[int] = None) -> "Future[Optional[List[int]]]":
        """
        Start one full listing; returns immediately.

        The future resolves to the lobby ids applied to the sink, [] when the
        service is unusable, or None when a newer listing was applied first.
        """
        if not self.is_available():
            self._unavailable("query")
            fut: Future = Future()
            fut.set_result([])
            return fut

        tag = str(self.handshake if filter_tag is None else int(filter_tag))
        with self._lock:
            self._issued_seq += 1
            seq = self._issued_seq

        self._log.debug("LOBBY_QUERY_ISSUED seq=%d tag=%s", seq, tag)
        try:
            return self._executor.submit(self._run_query, seq, tag)
        except RuntimeError:
            # executor already shut down by close()
            fut = Future()
            fut.set_result([])
            return fut

    def _run_query(self, seq: int, tag: str) -> Optional[List[int]]:
        try:
            entries = list(
                self._service.query_lobbies(tag, max_results=self.max_results, min_open_slots=self.min_open_slots)
            )
        except Exception as e:
            self._unavailable("query", e)
            return []
        return self._apply_listing(seq, tag, entries)

    def _apply_listing(self, seq: int, tag: str, entries: Sequence[LobbyEntry]) -> Optional[List[int]]:
        with self._lock:
            if seq < self._applied_seq:
                self._log.debug("LOBBY_QUERY_STALE seq=%d applied=%d", seq, self._applied_seq)
                return None
            self._applied_seq = seq

            current: Dict[int, DiscoveryEvent] = {}
            for entry in entries:
                # services without server-side filters may return foreign lobbies
                theirs = entry.metadata.get(KEY_HANDSHAKE)
                if theirs is not None and theirs != tag:
                    continue
                ev = self._event_for(entry, allow_owner=False)
                if ev is not None:
                    current[ev.session_id] = ev

            gone = self._listed - current.keys()
            self._listed = set(current)

            for ev in current.values():
                self._sink.record_discovery(ev)
            for lobby_id in sorted(gone):
                self._sink.remove_explicit(DiscoverySource.LOBBY_SERVICE, lobby_id)

        self._log.info("LOBBY_QUERY_APPLIED seq=%d found=%d removed=%d", seq, len(current), len(gone))
        return list(current)

    def resolve_invite(self, entry: LobbyEntry) -> Optional[DiscoveryEvent]:
        """
        Turn an invite (or a single lobby entry) into a joinable event.
        Falls back to the lobby owner when the host address is not published.
        """
        ev = self._event_for(entry, allow_owner=True)
        if ev is None:
            self._log.warning("LOBBY_INVITE_UNRESOLVED lobby=%d", entry.lobby_id)
        return ev

    @staticmethod
    def _event_for(entry: LobbyEntry, *, allow_owner: bool) -> Optional[DiscoveryEvent]:
        host = entry.host_address
        if not host and allow_owner:
            host = entry.owner_id
        if not host:
            return None
        return DiscoveryEvent(
            source=DiscoverySource.LOBBY_SERVICE,
            session_id=int(entry.lobby_id),
            descriptor=LobbyToken(str(host)),
            display_name=entry.name,
        )

    # --- hosting ---
    def create_or_update_lobby(
        self,
        handshake: int,
        display_name: str,
        capacity: int,
        visibility: LobbyVisibility = LobbyVisibility.PUBLIC,
    ) -> bool:
        if not self.is_available():
            self._unavailable("create")
            return False

        service = self._service
        with self._lock:
            handle = self._handle if self._handle is not None and self._handle.valid else None
            op = "create" if handle is None else "update"
            created = False
            try:
                if handle is None:
                    lobby_id = int(service.create_lobby(visibility, int(capacity)))
                    handle = LobbyHandle(lobby_id)
                    self._handle = handle
                    created = True

                host_id = str(service.local_user_id())
                service.update_lobby_metadata(handle.lobby_id, KEY_NAME, display_name)
                service.update_lobby_metadata(handle.lobby_id, KEY_HANDSHAKE, str(int(handshake)))
                service.update_lobby_metadata(handle.lobby_id, KEY_HOST_ADDRESS, host_id)
            except Exception as e:
                self._unavailable(op, e)
                return False

            self._set_presence(
                {
                    PRESENCE_CONNECT: host_id,
                    PRESENCE_GROUP: str(handle.lobby_id),
                    PRESENCE_GROUP_SIZE: "1",
                    PRESENCE_STATUS: PRESENCE_STATUS_HOSTING,
                }
            )

        self._log.info(
            "LOBBY_%s id=%d name=%s visibility=%s capacity=%d",
            "CREATED" if created else "UPDATED",
            handle.lobby_id,
            display_name,
            visibility.value,
            int(capacity),
        )
        return True

    def destroy_lobby(self) -> bool:
        with self._lock:
            handle, self._handle = self._handle, None
            if handle is None or not handle.valid:
                return True
            handle.valid = False

        if self._service is None:
            return True
        left = True
        try:
            self._service.leave_lobby(handle.lobby_id)
        except Exception as e:
            # handle stays invalid; the service expires abandoned lobbies itself
            self._unavailable("leave", e)
            left = False

        try:
            self._service.clear_presence()
        except Exception as e:
            self._unavailable("presence", e)

        if left:
            self._log.info("LOBBY_DESTROYED id=%d", handle.lobby_id)
        return left

    def open_invite_dialog(self) -> bool:
        """Show the service's invite UI for our lobby. False without an owned lobby."""
        with self._lock:
            handle = self._handle if self._handle is not None and self._handle.valid else None
        if handle is None:
            self._log.debug("LOBBY_INVITE_DIALOG_SKIPPED reason=no_lobby")
            return False
        if not self.is_available():
            self._unavailable("invite_dialog")
            return False
        try:
            self._service.open_invite_dialog(handle.lobby_id)
        except Exception as e:
            self._unavailable("invite_dialog", e)
            return False

        self._log.info("LOBBY_INVITE_DIALOG id=%d", handle.lobby_id)
        return True

    def close(self) -> None:
        self.destroy_lobby()
        if self._own_executor:
            self._executor.shutdown(wait=False)

    # --- internals ---
    def _set_presence(self, values: Dict[str, str]) -> None:
        # presence is cosmetic; a failure here never fails the lobby itself
        try:
            for key, value in values.items():
                self._service.set_presence(key, value)
        except Exception as e:
            self._unavailable("presence", e)

    def _unavailable(self, op: str, exc: Optional[BaseException] = None) -> None:
        err = LobbyServiceUnavailable(
            f"Lobby service {op} failed." if exc is not None else f"Lobby service unavailable; {op} skipped.",
            hint=str(exc) if exc is not None else None,
        )
        if exc is None:
            self._log.debug("LOBBY_SERVICE_UNAVAILABLE op=%s msg=%s", op, err.message)
        else:
            self._log.warning("LOBBY_SERVICE_UNAVAILABLE op=%s msg=%s err=%s", op, err.message, err.hint)
