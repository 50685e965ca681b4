# matchlink/runtime/connection.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable, List, Optional, Union

from matchlink.core.errors import (
    ConnectError,
    HostStartError,
    InvalidStateTransition,
    MatchLinkError,
    SessionTemplateMissing,
)
from matchlink.core.result import OpResult
from matchlink.model.session import ConnectDescriptor, LobbyToken, SessionMode, SessionRecord
from matchlink.runtime.state import ConnectionState, ConnectionStatus, StateTransition
from matchlink.transport.arbitrator import TransportArbitrator
from matchlink.transport.base import TransportBackend
from matchlink.transport.errors import TransportError

TransitionCallback = Callable[[StateTransition], None]
TemplateCheck = Callable[[], bool]
JoinTarget = Union[SessionRecord, ConnectDescriptor]

DEFAULT_GAME_PORT = 7777


class ConnectionController:
    """
    State machine gating host/join/stop: IDLE -> HOSTING | CONNECTING -> CONNECTED.

    - host()/join() only run from IDLE and only one at a time; anything else
      is answered with InvalidStateTransition and leaves the state untouched.
    - stop() is the single cancellation primitive, valid from every non-IDLE
      state (including mid-connect) and a no-op when already IDLE.
    - Every transition is published to subscribers after the state changed.
    """

    def __init__(
        self,
        arbitrator: TransportArbitrator,
        *,
        template_check: Optional[TemplateCheck] = None,
        default_port: int = DEFAULT_GAME_PORT,
        logger: Optional[logging.Logger] = None,
    ):
        self._arbitrator = arbitrator
        self._template_check = template_check
        self._default_port = int(default_port)
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._state = ConnectionState.IDLE
        self._mode: Optional[SessionMode] = None
        self._backend: Optional[TransportBackend] = None
        self._target: Optional[str] = None
        self._last_error: Optional[str] = None
        self._busy = False
        # bumped on every session start and teardown; late callbacks from an
        # older generation are ignored
        self._generation = 0

        self._subscribers: List[TransitionCallback] = []

        arbitrator.bind_state(lambda: self.state)

    # --- state ---
    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def mode(self) -> Optional[SessionMode]:
        with self._lock:
            return self._mode

    @property
    def backend(self) -> Optional[TransportBackend]:
        with self._lock:
            return self._backend

    def status(self) -> ConnectionStatus:
        with self._lock:
            return ConnectionStatus(
                state=self._state,
                mode=self._mode,
                backend=self._backend.name if self._backend is not None else None,
                target=self._target,
                last_error=self._last_error,
            )

    # --- operations ---
    def host(self, mode: SessionMode, *, port: Optional[int] = None) -> OpResult:
        refused = self._begin("host")
        if refused is not None:
            return refused

        try:
            if self._template_check is not None and not self._template_check():
                return self._fail(
                    SessionTemplateMissing(
                        "No session/player template configured; refusing to host.",
                        hint="Assign a player template before hosting.",
                    )
                )

            try:
                backend = self._arbitrator.select_and_activate(mode)
            except MatchLinkError as e:
                return self._fail(e)

            port = self._default_port if port is None else int(port)
            with self._lock:
                self._generation += 1
                gen = self._generation
            backend.on_closed = lambda reason: self._on_backend_closed(gen, reason)

            try:
                backend.listen(port)
            except TransportError as e:
                backend.on_closed = None
                return self._fail(
                    HostStartError(
                        f"Transport '{backend.name}' could not start hosting.",
                        hint=str(e),
                        details={"backend": backend.name, "port": port},
                    )
                )

            with self._lock:
                self._state = ConnectionState.HOSTING
                self._mode = mode
                self._backend = backend
                self._target = f"*:{port}"
                self._last_error = None

            self._log.info("SESSION_HOST_STARTED mode=%s backend=%s port=%d", mode.value, backend.name, port)
            self._publish(StateTransition(ConnectionState.IDLE, ConnectionState.HOSTING, mode, "host"))
            return OpResult.success(backend.name)
        finally:
            self._end()

    def join(self, target: JoinTarget, mode: Optional[SessionMode] = None) -> OpResult:
        if isinstance(target, SessionRecord):
            descriptor: ConnectDescriptor = target.descriptor
            mode = mode or target.mode
        else:
            descriptor = target
            if mode is None:
                mode = SessionMode.LOBBY_SERVICE if isinstance(target, LobbyToken) else SessionMode.LOCAL_NETWORK

        refused = self._begin("join")
        if refused is not None:
            return refused

        try:
            try:
                backend = self._arbitrator.select_and_activate(mode)
            except MatchLinkError as e:
                return self._fail(e)

            with self._lock:
                self._generation += 1
                gen = self._generation
                self._state = ConnectionState.CONNECTING
                self._mode = mode
                self._backend = backend
                self._target = descriptor.to_uri()
                self._last_error = None

            self._log.info("SESSION_JOIN target=%s mode=%s backend=%s", descriptor.to_uri(), mode.value, backend.name)
            self._publish(StateTransition(ConnectionState.IDLE, ConnectionState.CONNECTING, mode, "join"))

            backend.on_closed = lambda reason: self._on_backend_closed(gen, reason)
            try:
                fut = backend.connect(descriptor)
            except TransportError as e:
                self._connect_failed(gen, str(e))
                return OpResult.failure(
                    ConnectError(
                        f"Transport '{backend.name}' rejected the connect request.",
                        hint=str(e),
                        details={"target": descriptor.to_uri()},
                    )
                )

            fut.add_done_callback(lambda f: self._on_connect_done(gen, f))

            # backends that resolve synchronously report failure right away
            if fut.done() and (fut.cancelled() or fut.exception() is not None):
                return OpResult.failure(
                    ConnectError(
                        f"Could not connect to {descriptor.to_uri()}.",
                        hint=self.status().last_error,
                        details={"target": descriptor.to_uri()},
                    )
                )
            return OpResult.success(backend.name)
        finally:
            self._end()

    def stop(self, reason: str = "stopped") -> OpResult:
        with self._lock:
            gen = self._generation
        self._to_idle(gen, reason, teardown=True)
        return OpResult.success()

    def poll(self) -> None:
        """
        Detect a host or connection that ended without a stop() call.

        Fallback for backends that cannot push on_closed notifications.
        """
        with self._lock:
            state, backend, gen = self._state, self._backend, self._generation
        if backend is None:
            return

        if state is ConnectionState.HOSTING and not backend.is_listening():
            self._to_idle(gen, "host_lost", teardown=True)
        elif state is ConnectionState.CONNECTED and not backend.is_connected():
            self._to_idle(gen, "connection_lost", teardown=True)

    # --- subscriptions ---
    def subscribe(self, cb: TransitionCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(cb)

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._subscribers:
                    self._subscribers.remove(cb)

        return _unsubscribe

    # --- internals ---
    def _begin(self, op: str) -> Optional[OpResult]:
        with self._lock:
            if self._busy or self._state is not ConnectionState.IDLE:
                state = self._state
                err = InvalidStateTransition(
                    f"Cannot {op} while {state.value}{' (operation in flight)' if self._busy else ''}.",
                    hint="Stop the current session first.",
                    details={"op": op, "state": state.value},
                )
            else:
                self._busy = True
                return None

        self._log.warning("INVALID_STATE_TRANSITION op=%s state=%s", op, state.value)
        return OpResult.failure(err)

    def _end(self) -> None:
        with self._lock:
            self._busy = False

    def _fail(self, err: MatchLinkError) -> OpResult:
        with self._lock:
            self._last_error = err.message
        self._log.warning("SESSION_OP_FAILED code=%s msg=%s", err.code, err.message)
        return OpResult.failure(err)

    def _on_connect_done(self, gen: int, fut: "Future[ConnectDescriptor]") -> None:
        if fut.cancelled():
            self._connect_failed(gen, "connect cancelled")
            return

        exc = fut.exception()
        if exc is not None:
            self._connect_failed(gen, str(exc))
            return

        with self._lock:
            if gen != self._generation or self._state is not ConnectionState.CONNECTING:
                return
            self._state = ConnectionState.CONNECTED
            mode = self._mode

        self._log.info("SESSION_CONNECTED target=%s", self._target)
        self._publish(StateTransition(ConnectionState.CONNECTING, ConnectionState.CONNECTED, mode, "connected"))

    def _connect_failed(self, gen: int, message: str) -> None:
        with self._lock:
            if gen != self._generation or self._state is not ConnectionState.CONNECTING:
                return
            self._last_error = message
        self._log.warning("SESSION_CONNECT_FAILED err=%s", message)
        self._to_idle(gen, "connect_failed", teardown=True)

    def _on_backend_closed(self, gen: int, reason: str) -> None:
        self._to_idle(gen, reason, teardown=False)

    def _to_idle(self, gen: int, reason: str, *, teardown: bool) -> None:
        with self._lock:
            if gen != self._generation or self._state is ConnectionState.IDLE:
                return
            previous, mode, backend = self._state, self._mode, self._backend
            self._generation += 1
            self._state = ConnectionState.IDLE
            self._mode = None
            self._backend = None
            self._target = None

        if backend is not None:
            backend.on_closed = None
            if teardown:
                try:
                    backend.disconnect()
                except Exception:
                    self._log.exception("TRANSPORT_DISCONNECT_ERROR backend=%s", backend.name)

        self._log.info("SESSION_IDLE previous=%s reason=%s", previous.value, reason)
        self._publish(StateTransition(previous, ConnectionState.IDLE, mode, reason))

    def _publish(self, ev: StateTransition) -> None:
        with self._lock:
            cbs = list(self._subscribers)

        for cb in cbs:
            try:
                cb(ev)
            except Exception:
                self._log.exception("TRANSITION_CALLBACK_ERROR")
