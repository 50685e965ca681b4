# matchlink/discovery/protocol.py
"""
Broadcast discovery datagrams.

UTF-8 JSON, one message per datagram:
  DISCOVER  {"type": "DISCOVER", "handshake": <int>}
  ANNOUNCE  {"type": "ANNOUNCE", "handshake": <int>, "server_id": <int>,
             "name": <str>, "port": <int>}

Browsers send DISCOVER to a broadcast address; hosts answer with ANNOUNCE
straight to the sender. The handshake keeps unrelated applications on the
same discovery port apart.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Union

MSG_DISCOVER = "DISCOVER"
MSG_ANNOUNCE = "ANNOUNCE"

DEFAULT_DISCOVERY_PORT = 47777


@dataclass(frozen=True)
class DiscoverRequest:
    handshake: int


@dataclass(frozen=True)
class Announcement:
    handshake: int
    server_id: int
    port: int
    name: Optional[str] = None


Message = Union[DiscoverRequest, Announcement]


def encode_discover(handshake: int) -> bytes:
    return _dump({"type": MSG_DISCOVER, "handshake": int(handshake)})


def encode_announce(handshake: int, server_id: int, port: int, name: Optional[str] = None) -> bytes:
    msg = {
        "type": MSG_ANNOUNCE,
        "handshake": int(handshake),
        "server_id": int(server_id),
        "port": int(port),
    }
    if name:
        msg["name"] = str(name)
    return _dump(msg)


def decode(data: bytes) -> Optional[Message]:
    """Parse one datagram. Returns None for anything malformed or unknown."""
    try:
        msg = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None
    if not isinstance(msg, dict):
        return None

    kind = msg.get("type")
    handshake = _int_field(msg, "handshake")
    if handshake is None:
        return None

    if kind == MSG_DISCOVER:
        return DiscoverRequest(handshake=handshake)

    if kind == MSG_ANNOUNCE:
        server_id = _int_field(msg, "server_id")
        port = _int_field(msg, "port")
        if server_id is None or port is None or not (0 < port < 65536):
            return None
        name = msg.get("name")
        return Announcement(
            handshake=handshake,
            server_id=server_id,
            port=port,
            name=name if isinstance(name, str) and name else None,
        )

    return None


def _int_field(msg: dict, key: str) -> Optional[int]:
    v = msg.get(key)
    # bool is an int subclass; a flag is never a valid number here
    if isinstance(v, bool) or not isinstance(v, int):
        return None
    return v


def _dump(msg: dict) -> bytes:
    return json.dumps(msg, separators=(",", ":")).encode("utf-8")
