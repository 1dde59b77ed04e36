"""The full routing table built from a network crawl."""

from __future__ import annotations

import heapq
import threading
import time
from typing import Callable, Hashable, Mapping, Sequence

from kaddht.netsize import convert_key, xor_distance


class CrawlTable:
    """Peers found by the last crawl, their addresses and their keyspace keys."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._key_to_peer: dict[bytes, Hashable] = {}
        self._peer_addrs: dict[Hashable, list] = {}
        self.last_crawl_time: float | None = None

    def replace(self, peer_addrs: Mapping[Hashable, Sequence]) -> None:
        """Replace the whole table with the result of a crawl."""
        addrs = {peer: list(a) for peer, a in peer_addrs.items()}
        key_map = {convert_key(peer): peer for peer in addrs}
        with self._lock:
            self._peer_addrs = addrs
            self._key_to_peer = key_map
            self.last_crawl_time = self._clock()

    def closest_peers(self, key: bytes | str, count: int) -> list[Hashable]:
        """Up to ``count`` peers closest to ``key`` by XOR distance, closest first."""
        target = convert_key(key)
        with self._lock:
            keys = list(self._key_to_peer)
            closest = heapq.nsmallest(max(count, 0), keys, key=lambda k: xor_distance(k, target))
            return [self._key_to_peer[k] for k in closest]

    def stat(self) -> dict[bytes, Hashable]:
        """A copy of the keyspace key to peer mapping."""
        with self._lock:
            return dict(self._key_to_peer)

    def ready(self, interval: float, bootstrap_count: int) -> bool:
        """Whether a crawl finished within ``interval`` seconds and found enough peers."""
        with self._lock:
            last = self.last_crawl_time
            size = len(self._key_to_peer)
        if last is None or self._clock() - last > interval:
            return False
        return size > bootstrap_count + 1

    def addrs(self, peer: Hashable) -> list:
        """The addresses known for ``peer``; empty if unknown."""
        with self._lock:
            return list(self._peer_addrs.get(peer, ()))

    def peer_count(self) -> int:
        """Number of peers in the table."""
        with self._lock:
            return len(self._key_to_peer)

    def peer_addrs(self) -> dict[Hashable, list]:
        """A copy of the peer to addresses mapping."""
        with self._lock:
            return {peer: list(a) for peer, a in self._peer_addrs.items()}