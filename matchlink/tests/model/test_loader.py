from __future__ import annotations

from pathlib import Path
import textwrap

import pytest

from matchlink.model.loader import ConfigLoader
from matchlink.model.settings import Settings
from matchlink.utils.hashing import sha256_file


def _write(p: Path, text: str) -> Path:
    path = p / "matchlink.yml"
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
    return path


def test_no_path_loads_defaults() -> None:
    loader = ConfigLoader()
    s = loader.load()

    assert s == Settings()
    assert loader.file_hash is None
    assert s.display_name == "MatchLink"


def test_empty_file_keeps_defaults_and_hashes(tmp_path: Path) -> None:
    path = _write(tmp_path, "")
    loader = ConfigLoader(path)

    assert loader.load() == Settings()
    assert loader.file_hash == sha256_file(path)


def test_full_file_populates_sections(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
        app_name: SpaceGame
        mode: LOBBY
        session:
          display_name: Alice's room
          capacity: 4
          port: 9000
        discovery:
          port: 48000
          stale_timeout_s: 10
          prune_interval_s: 2.5
          probe_interval_s: 0
          search_localhost: false
          search_subnets: 1
        lobby:
          friends_only: true
          max_results: 50
          min_open_slots: 0
          open_invite_on_host: true
        transports:
          preference: [KCP, tcp]
          fallback: TCP
          connect_timeout_s: 3
        """,
    )

    s = ConfigLoader(path).load()

    assert s.app_name == "SpaceGame"
    assert s.mode == "lobby"
    assert s.display_name == "Alice's room"
    assert (s.session.capacity, s.session.port) == (4, 9000)
    assert s.discovery.port == 48000
    assert s.discovery.stale_timeout_s == 10.0
    assert s.discovery.probe_interval_s == 0.0
    assert s.discovery.search_localhost is False
    assert s.discovery.search_subnets is True
    assert s.lobby.friends_only is True and s.lobby.enabled is True
    assert s.lobby.max_results == 50
    assert s.lobby.min_open_slots == 0 and s.lobby.open_invite_on_host is True
    assert s.transports.preference == ("kcp", "tcp")
    assert s.transports.fallback == "tcp"
    assert s.transports.connect_timeout_s == 3.0


def test_single_preference_string_and_null_fallback(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
        transports:
          preference: relay
          fallback: null
        """,
    )

    t = ConfigLoader(path).load().transports
    assert t.preference == ("relay",)
    assert t.fallback is None


def test_missing_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ConfigLoader(tmp_path / "nope.yml").load()


@pytest.mark.parametrize(
    "text, match",
    [
        ("- just\n- a list\n", "root must be a mapping"),
        ("mode: p2p\n", "Unknown mode"),
        ("app_name: ''\n", "app_name"),
        ("session: 3\n", "'session' section"),
        ("session:\n  capacity: 0\n", "capacity"),
        ("session:\n  port: 70000\n", "port number"),
        ("session:\n  capacity: true\n", "must be an integer"),
        ("discovery:\n  prune_interval_s: 0\n", "prune_interval_s must be > 0"),
        ("discovery:\n  stale_timeout_s: 5\n  prune_interval_s: 2\n", "at least 4x"),
        ("discovery:\n  probe_interval_s: -1\n", "probe_interval_s"),
        ("discovery:\n  search_subnets: 'yes'\n", "must be a bool"),
        ("lobby:\n  max_results: 0\n", "max_results"),
        ("lobby:\n  min_open_slots: -1\n", "min_open_slots"),
        ("transports:\n  preference: {tcp: 1}\n", "must be a list"),
        ("transports:\n  preference: ['']\n", "empty backend name"),
        ("transports:\n  connect_timeout_s: 0\n", "connect_timeout_s"),
    ],
)
def test_invalid_values_raise(tmp_path: Path, text: str, match: str) -> None:
    path = tmp_path / "matchlink.yml"
    path.write_text(text, encoding="utf-8")

    with pytest.raises(ValueError, match=match):
        ConfigLoader(path).load()


def test_stale_timeout_exactly_four_prunes_is_accepted(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        """
        discovery:
          stale_timeout_s: 8
          prune_interval_s: 2
        """,
    )
    assert ConfigLoader(path).load().discovery.stale_timeout_s == 8.0
