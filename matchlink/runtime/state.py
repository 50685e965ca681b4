# matchlink/runtime/state.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from matchlink.model.session import SessionMode


class ConnectionState(str, Enum):
    IDLE = "idle"
    HOSTING = "hosting"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class StateTransition:
    """
    One change of connection state, as delivered to subscribers.

    reason: "host" | "join" | "connected" | "connect_failed" | "stopped"
            | "host_lost" | "connection_lost"
    """
    previous: ConnectionState
    current: ConnectionState
    mode: Optional[SessionMode]
    reason: str


@dataclass(frozen=True)
class ConnectionStatus:
    """
    A snapshot of the connection controller, safe to share across threads.
    """
    state: ConnectionState
    mode: Optional[SessionMode] = None
    backend: Optional[str] = None
    target: Optional[str] = None
    last_error: Optional[str] = None
