# matchlink/discovery/broadcast.py
from __future__ import annotations

import ipaddress
import logging
import socket
import threading
from typing import Callable, Iterable, List, Optional, Tuple

import psutil

from matchlink.core.errors import DiscoveryProbeFailed
from matchlink.interfaces.discovery_sink import DiscoverySink
from matchlink.model.session import DiscoveryEvent, DiscoverySource, Endpoint
from matchlink.transport.base import BroadcastChannel, TransportBackend
from matchlink.transport.errors import TransportError

from .protocol import DEFAULT_DISCOVERY_PORT, Announcement, decode, encode_discover

LOOPBACK_ADDRESS = "127.0.0.1"
LIMITED_BROADCAST = "255.255.255.255"

# (ipv4 address, netmask) of every interface that is up
InterfaceLister = Callable[[], Iterable[Tuple[str, str]]]


def list_ipv4_interfaces() -> List[Tuple[str, str]]:
    stats = psutil.net_if_stats()
    out: List[Tuple[str, str]] = []
    for name, addrs in psutil.net_if_addrs().items():
        st = stats.get(name)
        if st is None or not st.isup:
            continue
        for a in addrs:
            if a.family == socket.AF_INET and a.address and a.netmask:
                out.append((a.address, a.netmask))
    return out


def subnet_broadcast(address: str, netmask: str) -> Optional[str]:
    """`address | ~mask`, or None if either part is not a valid IPv4 value."""
    try:
        addr = int(ipaddress.IPv4Address(address))
        mask = int(ipaddress.IPv4Address(netmask))
    except ValueError:
        return None
    return str(ipaddress.IPv4Address(addr | (~mask & 0xFFFFFFFF)))


class BroadcastDiscovery:
    """
    Local-network discovery over the active transport's broadcast channel.

    probe() sends DISCOVER to the channel's default target, then as one-off
    overrides to loopback and to every up interface's subnet broadcast address.
    ANNOUNCE replies with a matching handshake go to the sink.
    """

    def __init__(
        self,
        sink: DiscoverySink,
        *,
        handshake: int,
        port: int = DEFAULT_DISCOVERY_PORT,
        search_localhost: bool = True,
        search_subnets: bool = True,
        interfaces: Optional[InterfaceLister] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self._sink = sink
        self.handshake = int(handshake)
        self.port = int(port)
        self.search_localhost = search_localhost
        self.search_subnets = search_subnets
        self._interfaces = interfaces or list_ipv4_interfaces
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._channel: Optional[BroadcastChannel] = None

    def is_running(self) -> bool:
        with self._lock:
            return self._channel is not None

    def start_discovery(self, transport: TransportBackend) -> bool:
        self.stop_discovery()

        if not transport.supports_broadcast():
            self._log.warning("DISCOVERY_UNSUPPORTED backend=%s", transport.name)
            return False

        try:
            channel = transport.open_broadcast(self.port)
            channel.on_datagram = self._on_datagram
            channel.open()
        except TransportError as e:
            self._log.warning("DISCOVERY_START_FAILED backend=%s err=%s", transport.name, e)
            return False

        with self._lock:
            self._channel = channel
        self._log.info("DISCOVERY_STARTED backend=%s port=%d handshake=%d", transport.name, self.port, self.handshake)
        return True

    def stop_discovery(self) -> None:
        with self._lock:
            channel, self._channel = self._channel, None
        if channel is None:
            return

        channel.on_datagram = None
        try:
            channel.close()
        except Exception:
            self._log.exception("DISCOVERY_CLOSE_ERROR")
        self._log.info("DISCOVERY_STOPPED")

    def probe(self) -> int:
        with self._lock:
            channel = self._channel
        if channel is None:
            self._log.debug("DISCOVERY_PROBE_SKIPPED reason=not_started")
            return 0

        payload = encode_discover(self.handshake)
        sent = 0
        for target in [None] + self._extra_targets():
            try:
                channel.send(payload, target)
                sent += 1
            except TransportError as e:
                dest = target or channel.broadcast_address
                err = DiscoveryProbeFailed(f"Discovery probe to {dest}:{self.port} failed.", hint=str(e))
                self._log.warning("DISCOVERY_PROBE_FAILED msg=%s err=%s", err.message, err.hint)

        self._log.debug("DISCOVERY_PROBE sent=%d", sent)
        return sent

    def local_broadcast_addresses(self) -> List[str]:
        return _broadcasts_for(self._list_interfaces())

    # --- internals ---
    def _extra_targets(self) -> List[str]:
        interfaces = self._list_interfaces()
        if not interfaces:
            return []

        targets: List[str] = []
        if self.search_localhost:
            targets.append(LOOPBACK_ADDRESS)
        if self.search_subnets:
            for b in _broadcasts_for(interfaces):
                if b not in targets:
                    targets.append(b)
        return targets

    def _list_interfaces(self) -> List[Tuple[str, str]]:
        try:
            return list(self._interfaces())
        except Exception:
            self._log.exception("INTERFACE_ENUM_ERROR")
            return []

    def _on_datagram(self, data: bytes, addr: Tuple[str, int]) -> None:
        msg = decode(data)
        if not isinstance(msg, Announcement):
            return
        if msg.handshake != self.handshake:
            self._log.debug("DISCOVERY_HANDSHAKE_MISMATCH sender=%s got=%d", addr[0], msg.handshake)
            return

        self._sink.record_discovery(
            DiscoveryEvent(
                source=DiscoverySource.BROADCAST,
                session_id=msg.server_id,
                descriptor=Endpoint(addr[0], msg.port),
                display_name=msg.name,
            )
        )


def _broadcasts_for(interfaces: Iterable[Tuple[str, str]]) -> List[str]:
    out: List[str] = []
    for address, netmask in interfaces:
        b = subnet_broadcast(address, netmask)
        # the default target already covers the limited broadcast address
        if b is None or b == LIMITED_BROADCAST or b in out:
            continue
        out.append(b)
    return out
