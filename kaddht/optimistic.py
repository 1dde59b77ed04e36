"""Optimistic provide: store provider records early with peers that are close enough."""

from __future__ import annotations

import logging
import math
import queue
import threading
from enum import IntEnum
from typing import Callable, Hashable, Iterable, Sequence

from scipy.special import gammaincinv

from kaddht.netsize import convert_key

logger = logging.getLogger("kaddht.optimistic")

INDIVIDUAL_THRESHOLD_CERTAINTY = 0.9
SET_THRESHOLD_STRICTNESS = 0.1
RETURN_RATIO = 0.75
JOBS_POOL_SIZE = 60

_KEYSPACE_MAX = (1 << 256) - 1
_POLL_INTERVAL = 0.01


class RPCState(IntEnum):
    """State of an ADD_PROVIDER RPC to one peer."""

    SCHEDULED = 1
    SUCCESS = 2
    FAILURE = 3


def compute_thresholds(bucket_size: int, network_size: int) -> tuple[float, float, int]:
    """Individual distance threshold, set distance threshold and return threshold."""
    individual = float(
        gammaincinv(float(bucket_size), 1 - INDIVIDUAL_THRESHOLD_CERTAINTY) / network_size
    )
    set_threshold = float(
        gammaincinv(bucket_size / 2.0 + 1, 1 - SET_THRESHOLD_STRICTNESS) / network_size
    )
    return_threshold = math.ceil(bucket_size * RETURN_RATIO)
    return individual, set_threshold, return_threshold


def _normed_distance(peer: Hashable, target: bytes) -> float:
    a = int.from_bytes(convert_key(peer), "big")
    b = int.from_bytes(target, "big")
    return (a ^ b) / _KEYSPACE_MAX


class OptimisticState:
    """Bookkeeping of one optimistic provide.

    ``put_provider(peer)`` stores the provider record with ``peer`` and raises on
    failure; it runs in a background thread per peer.
    """

    def __init__(
        self,
        key: bytes | str,
        bucket_size: int,
        network_size: int,
        put_provider: Callable[[Hashable], object],
        jobs_pool: threading.Semaphore | None = None,
    ) -> None:
        if network_size <= 0:
            raise ValueError(f"network size must be positive; got: {network_size}")
        self.key = key
        self.bucket_size = bucket_size
        self.network_size = network_size
        self.ks_key = convert_key(key)
        (
            self.individual_threshold,
            self.set_threshold,
            self.return_threshold,
        ) = compute_thresholds(bucket_size, network_size)
        self.jobs_pool = (
            threading.BoundedSemaphore(JOBS_POOL_SIZE) if jobs_pool is None else jobs_pool
        )
        self._put_provider = put_provider
        self._states: dict[Hashable, RPCState] = {}
        self._lock = threading.Lock()
        self._done: queue.Queue = queue.Queue()
        self._completed = 0
        self._count_lock = threading.Lock()

    @property
    def states(self) -> dict[Hashable, RPCState]:
        """A copy of the RPC state of every contacted peer."""
        with self._lock:
            return dict(self._states)

    @property
    def completed(self) -> int:
        """Number of ADD_PROVIDER RPCs counted as finished."""
        with self._count_lock:
            return self._completed

    def _add_done(self) -> int:
        with self._count_lock:
            self._completed += 1
            return self._completed

    def _schedule(self, peer: Hashable) -> None:
        # caller holds self._lock
        self._states[peer] = RPCState.SCHEDULED
        threading.Thread(target=self._put_provider_record, args=(peer,), daemon=True).start()

    def _put_provider_record(self, peer: Hashable) -> None:
        try:
            self._put_provider(peer)
        except Exception as err:
            logger.debug("storing provider record with %r failed: %s", peer, err)
            state = RPCState.FAILURE
        else:
            state = RPCState.SUCCESS
        with self._lock:
            self._states[peer] = state
        self._done.put(None)

    def stop(self, closest: Sequence[Hashable]) -> bool:
        """Decide whether the lookup can stop, given the closest peers known so far.

        Peers within the individual threshold get the record right away.
        """
        with self._lock:
            distances = [0.0] * self.bucket_size
            for i, peer in enumerate(closest[: self.bucket_size]):
                distances[i] = _normed_distance(peer, self.ks_key)
                if peer in self._states:
                    continue
                if distances[i] > self.individual_threshold:
                    continue
                self._schedule(peer)

            pending_or_ok = sum(
                1 for s in self._states.values() if s in (RPCState.SCHEDULED, RPCState.SUCCESS)
            )
        if pending_or_ok >= self.bucket_size:
            return True
        if not distances:
            return False
        return sum(distances) / len(distances) < self.set_threshold

    def schedule_remaining(self, peers: Iterable[Hashable]) -> None:
        """Store the record with every peer not contacted yet."""
        with self._lock:
            for peer in peers:
                if peer not in self._states:
                    self._schedule(peer)

    def wait_for_rpcs(self) -> None:
        """Wait until enough RPCs finished; leave the rest to run under the jobs pool."""
        with self._lock:
            rpc_count = len(self._states)
        self.return_threshold = min(self.return_threshold, rpc_count)

        if self.return_threshold > 0:
            while True:
                self._done.get()
                if self._add_done() >= self.return_threshold:
                    break

        remaining = rpc_count - self.completed
        for _ in range(remaining):
            while True:
                if self.jobs_pool.acquire(blocking=False):
                    threading.Thread(target=self._consume_done, daemon=True).start()
                    break
                try:
                    self._done.get(timeout=_POLL_INTERVAL)
                except queue.Empty:
                    continue
                self._add_done()
                break

    def _consume_done(self) -> None:
        self._done.get()
        self.jobs_pool.release()
        self._add_done()