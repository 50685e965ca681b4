from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Optional, Sequence

from matchlink.core.errors import InvalidStateTransition, TransportUnavailable
from matchlink.model.session import SessionMode
from matchlink.runtime.state import ConnectionState

from .base import TransportBackend
from .registry import TransportBackendRegistry

StateGetter = Callable[[], ConnectionState]


class TransportArbitrator:
    """
    Picks the one active transport backend for a session mode.

    Resolution order:
      - LOBBY_SERVICE: active lobby-token backend, else first available one.
        Never falls back to an address:port backend.
      - LOCAL_NETWORK: active address:port backend, else the preference list,
        else the configured fallback.

    The arbitrator is the only writer of the active backend. It only runs
    while the connection state is IDLE.
    """

    def __init__(
        self,
        registry: TransportBackendRegistry,
        *,
        preference: Sequence[str] = (),
        fallback: Optional[str] = None,
        state_fn: Optional[StateGetter] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._registry = registry
        self._preference = tuple(p.lower() for p in preference)
        self._fallback = fallback.lower() if fallback else None
        self._state_fn = state_fn
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._active: Optional[TransportBackend] = None

    @property
    def registry(self) -> TransportBackendRegistry:
        return self._registry

    @property
    def active(self) -> Optional[TransportBackend]:
        with self._lock:
            return self._active

    def bind_state(self, state_fn: StateGetter) -> None:
        self._state_fn = state_fn

    def select_and_activate(
        self,
        mode: SessionMode,
        available: Optional[Iterable[TransportBackend]] = None,
    ) -> TransportBackend:
        state = self._state_fn() if self._state_fn is not None else ConnectionState.IDLE
        if state is not ConnectionState.IDLE:
            raise InvalidStateTransition(
                f"Cannot select a transport while {state.value}.",
                hint="Stop the current session first.",
                details={"state": state.value, "mode": mode.value},
            )

        candidates = list(available) if available is not None else self._registry.backends()

        with self._lock:
            if mode is SessionMode.LOBBY_SERVICE:
                chosen = self._resolve_lobby(candidates)
            else:
                chosen = self._resolve_local(candidates)

            if chosen is None:
                raise TransportUnavailable(
                    f"No transport backend available for {mode.value} mode.",
                    hint=self._hint_for(mode),
                    details={"mode": mode.value, "candidates": [b.name for b in candidates]},
                )

            if chosen is self._active:
                return chosen

            previous = self._active
            if previous is not None:
                try:
                    previous.deactivate()
                except Exception:
                    self._log.exception("TRANSPORT_DEACTIVATE_ERROR name=%s", previous.name)

            chosen.activate()
            self._active = chosen

        self._log.info(
            "TRANSPORT_SELECTED mode=%s backend=%s previous=%s",
            mode.value,
            chosen.name,
            previous.name if previous is not None else "-",
        )
        return chosen

    def release(self) -> None:
        with self._lock:
            previous, self._active = self._active, None
        if previous is not None:
            try:
                previous.deactivate()
            except Exception:
                self._log.exception("TRANSPORT_DEACTIVATE_ERROR name=%s", previous.name)
            self._log.info("TRANSPORT_RELEASED backend=%s", previous.name)

    # --- resolution ---
    def _resolve_lobby(self, candidates: Sequence[TransportBackend]) -> Optional[TransportBackend]:
        active = self._active
        if active is not None and active in candidates and _usable_for_lobby(active):
            return active
        for b in candidates:
            if _usable_for_lobby(b):
                return b
        return None

    def _resolve_local(self, candidates: Sequence[TransportBackend]) -> Optional[TransportBackend]:
        active = self._active
        if active is not None and active in candidates and _usable_for_local(active):
            return active

        by_name = {b.name.lower(): b for b in candidates}
        for name in self._preference:
            b = by_name.get(name)
            if b is not None and _usable_for_local(b):
                return b

        if self._fallback is not None:
            b = by_name.get(self._fallback)
            if b is not None and b.supports_address_port():
                return b
        return None

    def _hint_for(self, mode: SessionMode) -> str:
        if mode is SessionMode.LOBBY_SERVICE:
            return "Register a backend tagged 'lobby_token' (lobby-service relay transport)."
        return f"Check transports.preference {list(self._preference)} and transports.fallback."


def _usable_for_lobby(b: TransportBackend) -> bool:
    return b.supports_lobby_connect_token() and b.is_available()


def _usable_for_local(b: TransportBackend) -> bool:
    return b.supports_address_port() and b.is_available()
