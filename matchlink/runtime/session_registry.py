# matchlink/runtime/session_registry.py
from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from matchlink.model.session import DiscoveryEvent, DiscoverySource, SessionKey, SessionRecord

SnapshotCallback = Callable[[List[SessionRecord]], None]
Clock = Callable[[], float]

DEFAULT_STALE_TIMEOUT_S = 6.0


class SessionRegistry:
    """
    Merge point for discovery events from every adapter.

    - Keyed by (source, session_id): ids are only unique within a source.
    - Repeated discovery of a key overwrites fields and refreshes last_seen;
      it never adds a second record.
    - All mutations and snapshot() are serialized by one lock, so adapter
      callbacks, the prune timer and presentation reads may interleave freely.
    """

    def __init__(
        self,
        *,
        stale_timeout_s: float = DEFAULT_STALE_TIMEOUT_S,
        clock: Clock = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self._stale_timeout_s = float(stale_timeout_s)
        self._clock = clock
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._records: Dict[SessionKey, SessionRecord] = {}
        self._subscribers: List[SnapshotCallback] = []

        # RLock: a callback mutating the registry delivers its newer snapshot re-entrantly
        self._deliver_lock = threading.RLock()
        self._snapshot_seq = 0
        self._delivered_seq = 0

    @property
    def stale_timeout_s(self) -> float:
        return self._stale_timeout_s

    def now(self) -> float:
        return self._clock()

    # --- mutations ---
    def record_discovery(self, event: DiscoveryEvent) -> None:
        seen_at = event.seen_at if event.seen_at is not None else self._clock()
        key = event.key

        with self._lock:
            prev = self._records.get(key)
            if prev is not None:
                # out-of-order delivery must not move last_seen backwards
                seen_at = max(prev.last_seen, seen_at)
            self._records[key] = SessionRecord(
                session_id=int(event.session_id),
                source=event.source,
                descriptor=event.descriptor,
                last_seen=seen_at,
                display_name=event.display_name,
            )

        if prev is None:
            self._log.info(
                "SESSION_DISCOVERED source=%s id=%d target=%s",
                event.source.value,
                int(event.session_id),
                event.descriptor,
            )
        self._publish()

    def remove_explicit(self, source: DiscoverySource, session_id: int) -> bool:
        with self._lock:
            removed = self._records.pop((source, int(session_id)), None)

        if removed is None:
            return False
        self._log.info("SESSION_REMOVED source=%s id=%d", source.value, int(session_id))
        self._publish()
        return True

    def prune(self, now: Optional[float] = None, stale_timeout: Optional[float] = None) -> List[SessionKey]:
        now = self._clock() if now is None else float(now)
        timeout = self._stale_timeout_s if stale_timeout is None else float(stale_timeout)

        with self._lock:
            stale = [k for k, r in self._records.items() if now - r.last_seen > timeout]
            for k in stale:
                del self._records[k]

        if stale:
            for source, sid in stale:
                self._log.info("SESSION_STALE source=%s id=%d timeout_s=%.1f", source.value, sid, timeout)
            self._publish()
        return stale

    def clear(self) -> None:
        with self._lock:
            had = bool(self._records)
            self._records.clear()
        if had:
            self._publish()

    # --- reads ---
    def snapshot(self) -> List[SessionRecord]:
        with self._lock:
            return list(self._records.values())

    def get(self, source: DiscoverySource, session_id: int) -> Optional[SessionRecord]:
        with self._lock:
            return self._records.get((source, int(session_id)))

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # --- change notifications ---
    def subscribe(self, cb: SnapshotCallback) -> Callable[[], None]:
        """
        Call `cb` with a full snapshot after every change.

        Snapshots are numbered when taken and delivered one at a time in that
        order; one overtaken by a newer delivery is dropped, so a subscriber
        never sees an older view after a newer one. Callbacks may mutate the
        registry, but must not wait on another thread that does.
        """
        with self._lock:
            self._subscribers.append(cb)

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._subscribers:
                    self._subscribers.remove(cb)

        return _unsubscribe

    def _publish(self) -> None:
        taken = self._take_snapshot()
        if taken is not None:
            self._deliver(*taken)

    def _take_snapshot(self) -> Optional[Tuple[int, List[SessionRecord], List[SnapshotCallback]]]:
        with self._lock:
            cbs = list(self._subscribers)
            if not cbs:
                return None
            self._snapshot_seq += 1
            return self._snapshot_seq, list(self._records.values()), cbs

    def _deliver(self, seq: int, snap: List[SessionRecord], cbs: List[SnapshotCallback]) -> None:
        with self._deliver_lock:
            if seq <= self._delivered_seq:
                self._log.debug("SNAPSHOT_SUPERSEDED seq=%d delivered=%d", seq, self._delivered_seq)
                return
            self._delivered_seq = seq

            for cb in cbs:
                try:
                    cb(snap)
                except Exception:
                    self._log.exception("SNAPSHOT_CALLBACK_ERROR")
                if self._delivered_seq != seq:
                    # a callback changed the registry; the newer snapshot already went out
                    return
