# matchlink/app/controller.py
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from matchlink.app.config import MatchLinkConfig
from matchlink.core.context import Context
from matchlink.core.errors import ConnectError, LobbyServiceUnavailable
from matchlink.core.result import OpResult
from matchlink.discovery.advertiser import BroadcastAdvertiser
from matchlink.discovery.broadcast import BroadcastDiscovery, InterfaceLister
from matchlink.discovery.lobby import LobbyDiscovery, parse_connect_string
from matchlink.interfaces.lobby_service import LobbyEntry, LobbyVisibility
from matchlink.model.session import Endpoint, SessionMode, SessionRecord
from matchlink.model.settings import Settings
from matchlink.runtime._internal.periodic import PeriodicWorker
from matchlink.runtime.connection import ConnectionController, JoinTarget, TemplateCheck
from matchlink.runtime.lobby_lifecycle import LobbyLifecycleManager
from matchlink.runtime.session_registry import SessionRegistry
from matchlink.runtime.state import ConnectionState, ConnectionStatus, StateTransition
from matchlink.transport.base import TAG_BROADCAST, TransportBackend
from matchlink.transport.errors import TransportError


class MatchLinkController:
    """
    App-level controller for MatchLink.

    Owns the session registry, both discovery adapters, the connection state
    machine and the lobby lifecycle manager, and drives the periodic prune
    and probe cadence.
    """

    def __init__(
        self,
        config: MatchLinkConfig,
        *,
        context: Context,
        template_check: Optional[TemplateCheck] = None,
        interfaces: Optional[InterfaceLister] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._config = config
        self._context = context
        self._log = logger or logging.getLogger(__name__)

        s = context.settings
        self._registry = SessionRegistry(stale_timeout_s=s.discovery.stale_timeout_s, logger=self._log)
        self._broadcast = BroadcastDiscovery(
            self._registry,
            handshake=context.handshake,
            port=s.discovery.port,
            search_localhost=s.discovery.search_localhost,
            search_subnets=s.discovery.search_subnets,
            interfaces=interfaces,
            logger=self._log,
        )
        self._lobby = LobbyDiscovery(
            context.lobby_service if s.lobby.enabled else None,
            self._registry,
            handshake=context.handshake,
            max_results=s.lobby.max_results,
            min_open_slots=s.lobby.min_open_slots,
            logger=self._log,
        )
        self._connection = ConnectionController(
            context.arbitrator,
            template_check=template_check,
            default_port=s.session.port,
            logger=self._log,
        )
        self._lobby_lifecycle = LobbyLifecycleManager(
            self._lobby,
            app_name=s.app_name,
            display_name=s.display_name,
            capacity=s.session.capacity,
            visibility=LobbyVisibility.FRIENDS_ONLY if s.lobby.friends_only else LobbyVisibility.PUBLIC,
            open_invite_on_host=s.lobby.open_invite_on_host,
            logger=self._log,
        )

        self._lock = threading.RLock()
        self._advertiser: Optional[BroadcastAdvertiser] = None
        self._host_port: Optional[int] = None
        self._workers: List[PeriodicWorker] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._started = False

    # --- accessors ---
    @property
    def context(self) -> Context:
        return self._context

    @property
    def config(self) -> MatchLinkConfig:
        return self._config

    @property
    def settings(self) -> Settings:
        return self._context.settings

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def connection(self) -> ConnectionController:
        return self._connection

    @property
    def broadcast(self) -> BroadcastDiscovery:
        return self._broadcast

    @property
    def lobby(self) -> LobbyDiscovery:
        return self._lobby

    @property
    def lobby_lifecycle(self) -> LobbyLifecycleManager:
        return self._lobby_lifecycle

    @property
    def advertiser(self) -> Optional[BroadcastAdvertiser]:
        with self._lock:
            return self._advertiser

    # --- lifecycle ---
    def start(self, *, background: bool = True) -> None:
        """
        Begin discovery. With `background`, prune/probe run on worker threads;
        otherwise the caller drives tick() and refresh() itself.
        """
        with self._lock:
            if self._started:
                return
            self._started = True

        self._lobby_lifecycle.attach(self._connection)
        self._unsubscribe = self._connection.subscribe(self._on_transition)

        try:
            self._start_discovery()
            if background:
                self._start_workers()
            self.refresh()
        except Exception:
            try:
                self.stop()
            except Exception:
                self._log.exception("CONTROLLER_STOP_AFTER_START_FAIL")
            raise

        self._log.info("CONTROLLER_STARTED mode=%s handshake=%d", self.resolve_mode().value, self._context.handshake)

    def stop(self) -> None:
        with self._lock:
            self._started = False

        for w in self._workers:
            w.stop()
        for w in self._workers:
            if w.is_alive():
                w.join(timeout=w.interval_s + 1.0)
        self._workers.clear()

        try:
            self._connection.stop("stopped")
        except Exception:
            self._log.exception("SESSION_STOP_ERROR")

        if self._unsubscribe:
            try:
                self._unsubscribe()
            finally:
                self._unsubscribe = None

        self._lobby_lifecycle.close()
        self._stop_advertiser()
        self._broadcast.stop_discovery()
        self._lobby.close()
        self._context.arbitrator.release()

    def __enter__(self) -> "MatchLinkController":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # --- mode ---
    def resolve_mode(self) -> SessionMode:
        mode = self.settings.mode
        if mode == "local":
            return SessionMode.LOCAL_NETWORK
        if mode == "lobby":
            return SessionMode.LOBBY_SERVICE
        # auto: prefer the lobby service whenever it is reachable
        if self._lobby.is_available():
            return SessionMode.LOBBY_SERVICE
        return SessionMode.LOCAL_NETWORK

    def _hide_local(self, mode: SessionMode) -> bool:
        return mode is SessionMode.LOBBY_SERVICE and self.settings.discovery.hide_local_in_lobby_mode

    # --- browsing ---
    def refresh(self) -> OpResult:
        """One discovery cycle on both adapters. The result value is the number of broadcast probes sent."""
        mode = self.resolve_mode()
        sent = 0
        if not self._hide_local(mode):
            sent = self._broadcast.probe()
        if self._lobby.is_available():
            self._lobby.query_lobbies()
        return OpResult.success(sent)

    def tick(self) -> None:
        """Prune stale sessions and run the polling fallbacks."""
        self._registry.prune()
        self._connection.poll()
        self._lobby_lifecycle.poll()

    def snapshot(self) -> List[SessionRecord]:
        return self._registry.snapshot()

    def status(self) -> ConnectionStatus:
        return self._connection.status()

    # --- session ops ---
    def host(self, mode: Optional[SessionMode] = None, *, port: Optional[int] = None) -> OpResult:
        mode = mode or self.resolve_mode()
        port = self.settings.session.port if port is None else int(port)

        # the advertiser needs the discovery port the browser holds
        paused = False
        if self._advertises(mode) and self._connection.state is ConnectionState.IDLE and self._broadcast.is_running():
            self._broadcast.stop_discovery()
            paused = True

        with self._lock:
            self._host_port = port
        res = self._connection.host(mode, port=port)
        if not res.ok and paused:
            self._start_discovery()
        return res

    def join(self, target: JoinTarget, mode: Optional[SessionMode] = None) -> OpResult:
        return self._connection.join(target, mode)

    def join_address(self, host: str, port: Optional[int] = None) -> OpResult:
        port = self.settings.session.port if port is None else int(port)
        return self._connection.join(Endpoint(host, port), SessionMode.LOCAL_NETWORK)

    def join_invite(self, entry: LobbyEntry) -> OpResult:
        ev = self._lobby.resolve_invite(entry)
        if ev is None:
            return OpResult.failure(
                ConnectError(
                    f"Lobby {entry.lobby_id} has no host to connect to.",
                    hint="The host may have left; refresh the lobby list.",
                    details={"lobby_id": entry.lobby_id},
                )
            )
        return self._connection.join(ev.descriptor, SessionMode.LOBBY_SERVICE)

    def join_connect_string(self, connect: str) -> OpResult:
        """Join from the presence "connect" string a friend's join request carries."""
        token = parse_connect_string(connect)
        if token is None:
            return OpResult.failure(
                ConnectError(
                    "Join request carries no host to connect to.",
                    hint="Ask the host to send a fresh invite.",
                    details={"connect": connect},
                )
            )
        return self._connection.join(token, SessionMode.LOBBY_SERVICE)

    def open_invite_dialog(self) -> OpResult:
        if not self._lobby.open_invite_dialog():
            return OpResult.failure(
                LobbyServiceUnavailable(
                    "Cannot open the invite dialog.",
                    hint="Host a lobby session first; the lobby service must be available.",
                )
            )
        return OpResult.success()

    def stop_session(self, reason: str = "stopped") -> OpResult:
        return self._connection.stop(reason)

    # --- internals ---
    def _advertises(self, mode: SessionMode) -> bool:
        return mode is SessionMode.LOCAL_NETWORK and self.settings.discovery.advertise_on_host

    def _broadcast_backend(self) -> Optional[TransportBackend]:
        active = self._context.arbitrator.active
        if active is not None and active.supports_broadcast() and active.is_available():
            return active
        for b in self._context.backends.tagged(TAG_BROADCAST):
            if b.is_available():
                return b
        return None

    def _start_discovery(self) -> bool:
        mode = self.resolve_mode()
        if self._hide_local(mode):
            self._log.info("DISCOVERY_LOCAL_HIDDEN mode=%s", mode.value)
            return False

        backend = self._broadcast_backend()
        if backend is None:
            self._log.warning("DISCOVERY_NO_BROADCAST_BACKEND")
            return False
        return self._broadcast.start_discovery(backend)

    def _start_workers(self) -> None:
        d = self.settings.discovery
        self._workers.append(PeriodicWorker(self.tick, d.prune_interval_s, logger=self._log, name="matchlink-prune"))
        if d.probe_interval_s > 0:
            self._workers.append(PeriodicWorker(self.refresh, d.probe_interval_s, logger=self._log, name="matchlink-probe"))
        for w in self._workers:
            w.start()

    def _on_transition(self, ev: StateTransition) -> None:
        if ev.current is ConnectionState.HOSTING and self._advertises(ev.mode):
            self._start_advertiser()
        elif ev.previous is ConnectionState.HOSTING and ev.current is ConnectionState.IDLE:
            self._stop_advertiser()
            with self._lock:
                resume = self._started
            if resume and not self._broadcast.is_running():
                self._start_discovery()

    def _start_advertiser(self) -> None:
        backend = self._connection.backend
        port = getattr(backend, "listen_port", None) or self._host_port or self.settings.session.port

        adv = BroadcastAdvertiser(
            handshake=self._context.handshake,
            game_port=port,
            name=self.settings.display_name,
            discovery_port=self.settings.discovery.port,
            logger=self._log,
        )
        try:
            adv.start()
        except TransportError as e:
            self._log.warning("ADVERTISER_START_FAILED err=%s", e)
            return

        with self._lock:
            previous, self._advertiser = self._advertiser, adv
        if previous is not None:
            previous.stop()

    def _stop_advertiser(self) -> None:
        with self._lock:
            adv, self._advertiser = self._advertiser, None
        if adv is None:
            return
        try:
            adv.stop()
        except Exception:
            self._log.exception("ADVERTISER_STOP_ERROR")
