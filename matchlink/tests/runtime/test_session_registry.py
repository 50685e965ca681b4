from __future__ import annotations

import threading

from matchlink.model.session import DiscoveryEvent, DiscoverySource, Endpoint, LobbyToken
from matchlink.runtime.session_registry import SessionRegistry


class FakeClock:
    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


def _bcast(sid: int, *, seen_at=None, name=None, host="10.0.0.5", port=7777) -> DiscoveryEvent:
    return DiscoveryEvent(
        source=DiscoverySource.BROADCAST,
        session_id=sid,
        descriptor=Endpoint(host, port),
        display_name=name,
        seen_at=seen_at,
    )


def _lobby(sid: int, *, seen_at=None) -> DiscoveryEvent:
    return DiscoveryEvent(
        source=DiscoverySource.LOBBY_SERVICE,
        session_id=sid,
        descriptor=LobbyToken("765611980000"),
        seen_at=seen_at,
    )


def test_repeated_discovery_keeps_one_record_with_latest_time():
    reg = SessionRegistry(clock=FakeClock())

    reg.record_discovery(_bcast(1, seen_at=10.0, name="a"))
    reg.record_discovery(_bcast(1, seen_at=12.0, name="b"))
    reg.record_discovery(_bcast(1, seen_at=11.0, name="c"))  # out of order

    snap = reg.snapshot()
    assert len(snap) == 1
    assert snap[0].last_seen == 12.0
    assert snap[0].display_name == "c"  # fields still overwritten


def test_record_without_timestamp_uses_registry_clock():
    clock = FakeClock(42.0)
    reg = SessionRegistry(clock=clock)

    reg.record_discovery(_bcast(7))
    assert reg.get(DiscoverySource.BROADCAST, 7).last_seen == 42.0


def test_same_id_from_different_sources_are_distinct():
    reg = SessionRegistry(clock=FakeClock())

    reg.record_discovery(_bcast(5))
    reg.record_discovery(_lobby(5))

    assert len(reg) == 2
    assert {r.source for r in reg.snapshot()} == {DiscoverySource.BROADCAST, DiscoverySource.LOBBY_SERVICE}


def test_prune_removes_only_strictly_older_than_timeout():
    reg = SessionRegistry(clock=FakeClock())
    reg.record_discovery(_bcast(1, seen_at=0.0))
    reg.record_discovery(_bcast(2, seen_at=4.0))
    reg.record_discovery(_bcast(3, seen_at=5.0))

    removed = reg.prune(now=10.0, stale_timeout=6.0)

    assert removed == [(DiscoverySource.BROADCAST, 1)]
    # exactly at the timeout is retained
    assert [r.session_id for r in reg.snapshot()] == [2, 3]


def test_prune_defaults_to_clock_and_configured_timeout():
    clock = FakeClock(0.0)
    reg = SessionRegistry(stale_timeout_s=6.0, clock=clock)
    reg.record_discovery(_bcast(1))

    clock.t = 6.0
    assert reg.prune() == []
    clock.t = 6.5
    assert reg.prune() == [(DiscoverySource.BROADCAST, 1)]
    assert reg.snapshot() == []


def test_remove_explicit_ignores_timeout():
    reg = SessionRegistry(clock=FakeClock())
    reg.record_discovery(_lobby(9))

    assert reg.remove_explicit(DiscoverySource.LOBBY_SERVICE, 9) is True
    assert reg.snapshot() == []
    assert reg.remove_explicit(DiscoverySource.LOBBY_SERVICE, 9) is False


def test_snapshot_is_insertion_ordered_copy():
    reg = SessionRegistry(clock=FakeClock())
    for sid in (3, 1, 2):
        reg.record_discovery(_bcast(sid))

    snap = reg.snapshot()
    snap.clear()
    assert [r.session_id for r in reg.snapshot()] == [3, 1, 2]


def test_subscribers_get_snapshots_and_errors_are_contained():
    reg = SessionRegistry(clock=FakeClock())
    seen = []

    def bad(_snap):
        raise RuntimeError("boom")

    reg.subscribe(bad)
    unsubscribe = reg.subscribe(lambda snap: seen.append([r.session_id for r in snap]))

    reg.record_discovery(_bcast(1))
    reg.record_discovery(_bcast(2))
    reg.remove_explicit(DiscoverySource.BROADCAST, 1)

    assert seen == [[1], [1, 2], [2]]

    unsubscribe()
    reg.record_discovery(_bcast(3))
    assert len(seen) == 3


def test_clear_empties_registry():
    reg = SessionRegistry(clock=FakeClock())
    reg.record_discovery(_bcast(1))
    reg.clear()
    assert len(reg) == 0


def test_concurrent_mutation_and_prune_keep_one_record_per_key():
    reg = SessionRegistry(clock=FakeClock(0.0))
    stop = threading.Event()

    def writer(offset: int):
        i = 0
        while not stop.is_set() and i < 2000:
            reg.record_discovery(_bcast(i % 10, seen_at=float(offset + i)))
            i += 1

    def pruner():
        while not stop.is_set():
            reg.prune(now=0.0, stale_timeout=1e9)
            reg.snapshot()

    threads = [threading.Thread(target=writer, args=(k * 10_000,)) for k in range(3)]
    threads.append(threading.Thread(target=pruner))
    for t in threads:
        t.start()
    for t in threads[:-1]:
        t.join(timeout=5.0)
    stop.set()
    threads[-1].join(timeout=5.0)

    snap = reg.snapshot()
    assert sorted(r.session_id for r in snap) == list(range(10))


def test_snapshot_overtaken_by_newer_delivery_is_dropped():
    reg = SessionRegistry(clock=FakeClock())
    seen = []
    reg.subscribe(lambda snap: seen.append(sorted(r.session_id for r in snap)))

    reg.record_discovery(_bcast(1))
    # a publisher that took its snapshot, then lost the race to the next change
    late = reg._take_snapshot()
    reg.record_discovery(_bcast(2))
    reg._deliver(*late)

    assert seen == [[1], [1, 2]]


def test_callback_mutating_registry_sees_newest_view_last():
    reg = SessionRegistry(clock=FakeClock())
    seen = []

    def follow_up(snap):
        seen.append(sorted(r.session_id for r in snap))
        if len(seen) == 1:
            reg.record_discovery(_bcast(2))

    other = []
    reg.subscribe(follow_up)
    reg.subscribe(lambda snap: other.append(sorted(r.session_id for r in snap)))

    reg.record_discovery(_bcast(1))

    assert seen == [[1], [1, 2]]
    # the first snapshot was superseded before reaching the second subscriber
    assert other == [[1, 2]]


def test_concurrent_publishers_deliver_in_order():
    reg = SessionRegistry(clock=FakeClock())
    sizes = []
    reg.subscribe(lambda snap: sizes.append(len(snap)))

    def writer(base: int):
        for i in range(200):
            reg.record_discovery(_bcast(base + i))

    threads = [threading.Thread(target=writer, args=(k * 1000,)) for k in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5.0)

    assert sizes == sorted(sizes)
    assert sizes[-1] == 800
