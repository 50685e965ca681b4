from __future__ import annotations

from concurrent.futures import Executor, Future

from matchlink.discovery.lobby import LobbyDiscovery, parse_connect_string
from matchlink.interfaces.lobby_service import LobbyEntry, LobbyVisibility
from matchlink.model.session import DiscoverySource, LobbyToken
from matchlink.runtime.session_registry import SessionRegistry

TAG = 4242


class InlineExecutor(Executor):
    def submit(self, fn, *args, **kwargs):
        fut = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except BaseException as e:
            fut.set_exception(e)
        return fut


class DeferredExecutor(Executor):
    """Queues work so tests can complete queries in any order."""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        fut = Future()
        self.jobs.append((fut, fn, args))
        return fut

    def run(self, index: int) -> None:
        fut, fn, args = self.jobs[index]
        fut.set_result(fn(*args))


class FakeLobbyService:
    def __init__(self, *, available=True):
        self.available = available
        self.listing = []
        self.created = []
        self.metadata = {}
        self.left = []
        self.queries = []
        self.fail_create = False
        self.fail_query = False
        self.fail_presence = False
        self.fail_invite = False
        self.presence = {}
        self.invites = []
        self._next_id = 1000

    def is_available(self) -> bool:
        return self.available

    def create_lobby(self, visibility, capacity):
        if self.fail_create:
            raise RuntimeError("create rejected")
        self._next_id += 1
        self.created.append((self._next_id, visibility, capacity))
        return self._next_id

    def update_lobby_metadata(self, lobby_id, key, value):
        self.metadata.setdefault(lobby_id, {})[key] = value

    def query_lobbies(self, filter_tag, *, max_results, min_open_slots):
        self.queries.append((filter_tag, max_results, min_open_slots))
        if self.fail_query:
            raise ConnectionError("service offline")
        return list(self.listing)

    def leave_lobby(self, lobby_id):
        self.left.append(lobby_id)

    def local_user_id(self):
        return "76561198000000001"

    def set_presence(self, key, value):
        if self.fail_presence:
            raise RuntimeError("presence rejected")
        self.presence[key] = value

    def clear_presence(self):
        self.presence.clear()

    def open_invite_dialog(self, lobby_id):
        if self.fail_invite:
            raise RuntimeError("overlay disabled")
        self.invites.append(lobby_id)


def _entry(lobby_id: int, *, host="host", name=None, handshake=str(TAG)) -> LobbyEntry:
    md = {"handshake": handshake}
    if host:
        md["host_address"] = f"{host}-{lobby_id}"
    if name:
        md["name"] = name
    return LobbyEntry(lobby_id=lobby_id, metadata=md, owner_id=f"owner-{lobby_id}")


def _ids(reg: SessionRegistry):
    return sorted(r.session_id for r in reg.snapshot())


def test_listing_diff_removes_vanished_lobbies_without_timeout():
    svc = FakeLobbyService()
    reg = SessionRegistry()
    lobby = LobbyDiscovery(svc, reg, handshake=TAG, executor=InlineExecutor())

    svc.listing = [_entry(1), _entry(2)]
    assert sorted(lobby.query_lobbies().result()) == [1, 2]
    assert _ids(reg) == [1, 2]

    svc.listing = [_entry(2), _entry(3)]
    lobby.query_lobbies().result()

    assert _ids(reg) == [2, 3]
    rec = reg.get(DiscoverySource.LOBBY_SERVICE, 3)
    assert rec.descriptor == LobbyToken("host-3")


def test_query_uses_handshake_filter_and_max_results():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, max_results=50, executor=InlineExecutor())

    lobby.query_lobbies().result()
    lobby.query_lobbies(filter_tag=7).result()

    assert svc.queries == [(str(TAG), 50, 1), ("7", 50, 1)]


def test_listing_skips_foreign_and_hostless_lobbies():
    svc = FakeLobbyService()
    reg = SessionRegistry()
    lobby = LobbyDiscovery(svc, reg, handshake=TAG, executor=InlineExecutor())
    svc.listing = [_entry(1), _entry(2, handshake="999"), _entry(3, host=None)]

    lobby.query_lobbies().result()

    assert _ids(reg) == [1]


def test_stale_completion_is_discarded_whole():
    svc = FakeLobbyService()
    reg = SessionRegistry()
    ex = DeferredExecutor()
    lobby = LobbyDiscovery(svc, reg, handshake=TAG, executor=ex)

    svc.listing = [_entry(1), _entry(2)]
    older = lobby.query_lobbies()
    newer = lobby.query_lobbies()

    # the newer listing arrives first
    ex.run(1)
    svc.listing = [_entry(9)]
    ex.run(0)

    assert sorted(newer.result()) == [1, 2]
    assert older.result() is None
    assert _ids(reg) == [1, 2]


def test_query_failure_is_contained_and_keeps_records():
    svc = FakeLobbyService()
    reg = SessionRegistry()
    lobby = LobbyDiscovery(svc, reg, handshake=TAG, executor=InlineExecutor())
    svc.listing = [_entry(1)]
    lobby.query_lobbies().result()

    svc.fail_query = True
    assert lobby.query_lobbies().result() == []
    assert _ids(reg) == [1]


def test_unavailable_service_degrades_everywhere():
    svc = FakeLobbyService(available=False)
    reg = SessionRegistry()
    lobby = LobbyDiscovery(svc, reg, handshake=TAG, executor=InlineExecutor())

    assert lobby.query_lobbies().result() == []
    assert lobby.create_or_update_lobby(TAG, "Room", 4) is False
    assert lobby.destroy_lobby() is True
    assert svc.queries == [] and svc.created == []


def test_missing_service_degrades_everywhere():
    lobby = LobbyDiscovery(None, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.is_available() is False
    assert lobby.query_lobbies().result() == []
    assert lobby.create_or_update_lobby(TAG, "Room", 4) is False
    assert lobby.destroy_lobby() is True


def test_create_then_update_reuses_owned_lobby():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.create_or_update_lobby(TAG, "Room", 4, LobbyVisibility.FRIENDS_ONLY) is True
    assert lobby.create_or_update_lobby(TAG, "Room 2", 4, LobbyVisibility.FRIENDS_ONLY) is True

    assert len(svc.created) == 1
    lobby_id, visibility, capacity = svc.created[0]
    assert visibility is LobbyVisibility.FRIENDS_ONLY and capacity == 4
    assert svc.metadata[lobby_id] == {
        "name": "Room 2",
        "handshake": str(TAG),
        "host_address": "76561198000000001",
    }
    assert lobby.handle.lobby_id == lobby_id and lobby.handle.valid


def test_create_failure_is_reported_not_raised():
    svc = FakeLobbyService()
    svc.fail_create = True
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.create_or_update_lobby(TAG, "Room", 4) is False
    assert lobby.handle is None


def test_destroy_invalidates_handle_and_is_idempotent():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())
    lobby.create_or_update_lobby(TAG, "Room", 4)
    handle = lobby.handle

    assert lobby.destroy_lobby() is True
    assert handle.valid is False
    assert lobby.handle is None
    assert svc.left == [handle.lobby_id]

    assert lobby.destroy_lobby() is True
    assert svc.left == [handle.lobby_id]


def test_destroy_without_lobby_has_no_effect():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.destroy_lobby() is True
    assert svc.left == []


def test_resolve_invite_falls_back_to_owner():
    lobby = LobbyDiscovery(None, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    ev = lobby.resolve_invite(_entry(5, host=None, name="Friend"))
    assert ev.descriptor == LobbyToken("owner-5")
    assert ev.display_name == "Friend"

    ev = lobby.resolve_invite(_entry(6))
    assert ev.descriptor == LobbyToken("host-6")

    assert lobby.resolve_invite(LobbyEntry(lobby_id=7)) is None


def test_open_slots_filter_is_passed_through():
    svc = FakeLobbyService()
    LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, min_open_slots=0, executor=InlineExecutor()).query_lobbies()
    LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, min_open_slots=-3, executor=InlineExecutor()).query_lobbies()

    assert [q[2] for q in svc.queries] == [0, 0]


def test_hosting_publishes_presence_for_friends():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    lobby.create_or_update_lobby(TAG, "Room", 4)

    assert svc.presence == {
        "connect": "76561198000000001",
        "group": str(lobby.handle.lobby_id),
        "group_size": "1",
        "status": "In Lobby",
    }
    # presence lives on the user, not in the lobby metadata
    assert "connect" not in svc.metadata[lobby.handle.lobby_id]

    lobby.destroy_lobby()
    assert svc.presence == {}


def test_presence_failure_keeps_the_lobby():
    svc = FakeLobbyService()
    svc.fail_presence = True
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.create_or_update_lobby(TAG, "Room", 4) is True
    assert lobby.owns_lobby()


def test_invite_dialog_needs_an_owned_lobby():
    svc = FakeLobbyService()
    lobby = LobbyDiscovery(svc, SessionRegistry(), handshake=TAG, executor=InlineExecutor())

    assert lobby.open_invite_dialog() is False

    lobby.create_or_update_lobby(TAG, "Room", 4)
    lobby_id = lobby.handle.lobby_id
    assert lobby.open_invite_dialog() is True
    assert svc.invites == [lobby_id]

    svc.fail_invite = True
    assert lobby.open_invite_dialog() is False

    lobby.destroy_lobby()
    svc.fail_invite = False
    assert lobby.open_invite_dialog() is False
    assert svc.invites == [lobby_id]


def test_invite_dialog_without_service():
    lobby = LobbyDiscovery(None, SessionRegistry(), handshake=TAG, executor=InlineExecutor())
    assert lobby.open_invite_dialog() is False


def test_parse_connect_string():
    assert parse_connect_string("76561198000000001") == LobbyToken("76561198000000001")
    assert parse_connect_string(" steam://76561198000000001/ ") == LobbyToken("76561198000000001")
    assert parse_connect_string("lobby://friend") == LobbyToken("friend")
    assert parse_connect_string("") is None
    assert parse_connect_string(None) is None
    assert parse_connect_string("lobby://") is None
    assert parse_connect_string("two words") is None
