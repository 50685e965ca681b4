# matchlink/runtime/lobby_lifecycle.py
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from matchlink.discovery.lobby import LobbyDiscovery, LobbyHandle
from matchlink.interfaces.lobby_service import LobbyVisibility
from matchlink.model.session import SessionMode
from matchlink.runtime.state import ConnectionState, StateTransition
from matchlink.utils.hashing import handshake_tag


class LobbyLifecycleManager:
    """
    Ties the external lobby advertisement to local hosting.

    - HOSTING entered in lobby mode: create (or refresh) the lobby.
    - HOSTING left, by stop() or by a lost host: destroy it exactly once.
    - open_invite_on_host: show the service invite dialog once the lobby exists.

    Transitions normally arrive through attach(); poll() is the fallback for
    hosts that end without producing a transition. A create that completes
    after its session already closed is destroyed on return.
    """

    def __init__(
        self,
        lobby: LobbyDiscovery,
        *,
        app_name: str,
        display_name: str,
        capacity: int,
        visibility: LobbyVisibility = LobbyVisibility.PUBLIC,
        open_invite_on_host: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self._lobby = lobby
        self.app_name = app_name
        self.display_name = display_name
        self.capacity = int(capacity)
        self.visibility = visibility
        self.open_invite_on_host = bool(open_invite_on_host)
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._session_open = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._state_fn: Optional[Callable[[], ConnectionState]] = None

    @property
    def handle(self) -> Optional[LobbyHandle]:
        return self._lobby.handle

    def attach(self, controller) -> None:
        """Subscribe to a ConnectionController's transitions."""
        self.detach()
        self._unsubscribe = controller.subscribe(self.on_transition)
        self._state_fn = lambda: controller.state

    def detach(self) -> None:
        unsub, self._unsubscribe = self._unsubscribe, None
        if unsub is not None:
            unsub()

    def on_transition(self, ev: StateTransition) -> None:
        if ev.current is ConnectionState.HOSTING:
            if ev.mode is SessionMode.LOBBY_SERVICE:
                self._open_session()
        elif ev.previous is ConnectionState.HOSTING:
            self._close_session(ev.reason)

    def poll(self, state: Optional[ConnectionState] = None) -> None:
        """
        Destroy the lobby if the host ended without a transition reaching us.

        Without `state`, the attached controller is read under our lock so a
        session opened concurrently is never mistaken for an ended one.
        """
        with self._lock:
            if not self._session_open:
                return
            if state is None:
                if self._state_fn is None:
                    return
                state = self._state_fn()
            if state is ConnectionState.HOSTING:
                return
        self._close_session("poll")

    def close(self) -> None:
        self.detach()
        self._close_session("shutdown")

    # --- internals ---
    def _open_session(self) -> None:
        with self._lock:
            self._session_open = True

        ok = self._lobby.create_or_update_lobby(
            handshake_tag(self.app_name),
            self.display_name,
            self.capacity,
            self.visibility,
        )
        if not ok:
            self._log.warning("LOBBY_ADVERTISE_SKIPPED reason=lobby_service_unavailable")

        # hosting may have ended while the service call ran; the teardown then
        # found no handle, so the lobby created just now is ours to destroy.
        # Held under our lock so a newer session cannot open in between.
        with self._lock:
            if not self._session_open:
                if self._lobby.owns_lobby():
                    self._log.info("LOBBY_TEARDOWN reason=ended_during_create")
                    self._lobby.destroy_lobby()
                return

        if ok and self.open_invite_on_host:
            self._lobby.open_invite_dialog()

    def _close_session(self, reason: str) -> None:
        with self._lock:
            if not self._session_open:
                return
            self._session_open = False

        self._log.info("LOBBY_TEARDOWN reason=%s", reason)
        self._lobby.destroy_lobby()
