from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from matchlink.utils.hashing import sha256_file
from .settings import (
    DiscoverySettings,
    LobbySettings,
    SessionSettings,
    Settings,
    TransportSettings,
)

VALID_MODES = ("auto", "local", "lobby")

# Stale timeout must span several prune passes so one missed broadcast never
# makes a row flicker.
MIN_TIMEOUT_TO_PRUNE_RATIO = 4.0


class ConfigLoader:
    """
    Loads matchlink.yml into typed settings dataclasses.

    All sections are optional; missing keys keep their defaults.

    After calling load(), exposes:
        self.settings  : Settings
        self.file_hash : sha256 of the file (None when loading defaults)
    """

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path) if path is not None else None
        self.settings: Settings = Settings()
        self.file_hash: Optional[str] = None

    # ---------------------------------------------------------------------
    # YAML utility
    # ---------------------------------------------------------------------
    def _load_yaml(self) -> dict:
        assert self.path is not None
        if not self.path.exists():
            raise FileNotFoundError(f"Missing config file: {self.path}")

        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.path.name} root must be a mapping")
        return data

    # ---------------------------------------------------------------------
    # Public entry point
    # ---------------------------------------------------------------------
    def load(self) -> Settings:
        if self.path is None:
            self.settings = Settings()
            self.file_hash = None
            return self.settings

        data = self._load_yaml()
        self.file_hash = sha256_file(self.path)

        mode = str(data.get("mode", "auto")).strip().lower()
        if mode not in VALID_MODES:
            raise ValueError(f"Unknown mode '{mode}' (expected one of {', '.join(VALID_MODES)})")

        app_name = data.get("app_name", Settings.app_name)
        if not isinstance(app_name, str) or not app_name.strip():
            raise ValueError("app_name must be a non-empty string")

        self.settings = Settings(
            app_name=app_name,
            mode=mode,
            session=self._load_session(self._section(data, "session")),
            discovery=self._load_discovery(self._section(data, "discovery")),
            lobby=self._load_lobby(self._section(data, "lobby")),
            transports=self._load_transports(self._section(data, "transports")),
        )
        return self.settings

    # ---------------------------------------------------------------------
    # Sections
    # ---------------------------------------------------------------------
    @staticmethod
    def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
        node = data.get(name)
        if node is None:
            return {}
        if not isinstance(node, dict):
            raise ValueError(f"'{name}' section must be a mapping")
        return node

    def _load_session(self, node: Dict[str, Any]) -> SessionSettings:
        d = SessionSettings()
        capacity = _as_int(node, "capacity", d.capacity)
        if capacity < 1:
            raise ValueError("session.capacity must be >= 1")
        return SessionSettings(
            display_name=str(node.get("display_name", d.display_name) or ""),
            capacity=capacity,
            port=_as_port(node, "port", d.port),
        )

    def _load_discovery(self, node: Dict[str, Any]) -> DiscoverySettings:
        d = DiscoverySettings()
        stale = _as_float(node, "stale_timeout_s", d.stale_timeout_s)
        prune = _as_float(node, "prune_interval_s", d.prune_interval_s)
        if prune <= 0:
            raise ValueError("discovery.prune_interval_s must be > 0")
        if stale < prune * MIN_TIMEOUT_TO_PRUNE_RATIO:
            raise ValueError(
                f"discovery.stale_timeout_s ({stale}) must be at least "
                f"{MIN_TIMEOUT_TO_PRUNE_RATIO:g}x prune_interval_s ({prune})"
            )
        probe = _as_float(node, "probe_interval_s", d.probe_interval_s)
        if probe < 0:
            raise ValueError("discovery.probe_interval_s must be >= 0")

        return DiscoverySettings(
            port=_as_port(node, "port", d.port),
            stale_timeout_s=stale,
            prune_interval_s=prune,
            probe_interval_s=probe,
            search_localhost=_as_bool(node, "search_localhost", d.search_localhost),
            search_subnets=_as_bool(node, "search_subnets", d.search_subnets),
            advertise_on_host=_as_bool(node, "advertise_on_host", d.advertise_on_host),
            hide_local_in_lobby_mode=_as_bool(node, "hide_local_in_lobby_mode", d.hide_local_in_lobby_mode),
        )

    def _load_lobby(self, node: Dict[str, Any]) -> LobbySettings:
        d = LobbySettings()
        max_results = _as_int(node, "max_results", d.max_results)
        if max_results < 1:
            raise ValueError("lobby.max_results must be >= 1")
        min_open_slots = _as_int(node, "min_open_slots", d.min_open_slots)
        if min_open_slots < 0:
            raise ValueError("lobby.min_open_slots must be >= 0")
        return LobbySettings(
            enabled=_as_bool(node, "enabled", d.enabled),
            friends_only=_as_bool(node, "friends_only", d.friends_only),
            max_results=max_results,
            min_open_slots=min_open_slots,
            open_invite_on_host=_as_bool(node, "open_invite_on_host", d.open_invite_on_host),
        )

    def _load_transports(self, node: Dict[str, Any]) -> TransportSettings:
        d = TransportSettings()

        pref_raw = node.get("preference", list(d.preference))
        if isinstance(pref_raw, str):
            pref_raw = [pref_raw]
        if not isinstance(pref_raw, list):
            raise ValueError("transports.preference must be a list of backend names")
        preference = []
        for name in pref_raw:
            key = str(name).strip().lower()
            if not key:
                raise ValueError("transports.preference contains an empty backend name")
            preference.append(key)

        fallback_raw = node.get("fallback", d.fallback)
        fallback = str(fallback_raw).strip().lower() if fallback_raw else None

        timeout = _as_float(node, "connect_timeout_s", d.connect_timeout_s)
        if timeout <= 0:
            raise ValueError("transports.connect_timeout_s must be > 0")

        return TransportSettings(
            preference=tuple(preference),
            fallback=fallback,
            connect_timeout_s=timeout,
        )


# -------------------------------------------------------------------------
# Scalar casts (strict: YAML already gives us typed values)
# -------------------------------------------------------------------------

def _as_int(node: Dict[str, Any], key: str, default: int) -> int:
    value = node.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {type(value).__name__}")
    return value


def _as_float(node: Dict[str, Any], key: str, default: float) -> float:
    value = node.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number, got {type(value).__name__}")
    return float(value)


def _as_bool(node: Dict[str, Any], key: str, default: bool) -> bool:
    value = node.get(key, default)
    if isinstance(value, bool):
        return value
    # accept 0/1 int
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValueError(f"'{key}' must be a bool, got {type(value).__name__}")


def _as_port(node: Dict[str, Any], key: str, default: int) -> int:
    port = _as_int(node, key, default)
    if not 0 <= port <= 65535:
        raise ValueError(f"'{key}' must be a port number (0-65535), got {port}")
    return port
