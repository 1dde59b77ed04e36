"""Network size estimation from the distances of the closest peers to lookup keys."""

from __future__ import annotations

import bisect
import hashlib
import logging
import math
import threading
import time
from operator import attrgetter
from typing import Any, Callable, NamedTuple, Sequence

logger = logging.getLogger("kaddht.netsize")

MAX_MEASUREMENT_AGE = 2 * 60 * 60.0
MIN_MEASUREMENTS_THRESHOLD = 5
MAX_MEASUREMENTS_THRESHOLD = 150
KEYSPACE_MAX = (1 << 256) - 1


class NotEnoughDataError(RuntimeError):
    """Raised when there are too few measurements for an estimate."""

    def __init__(self, message: str = "not enough data") -> None:
        super().__init__(message)


class WrongNumOfPeersError(ValueError):
    """Raised when the tracked peer list is not one bucket long."""

    def __init__(self, message: str = "expected bucket size number of peers") -> None:
        super().__init__(message)


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def convert_key(key: bytes | str) -> bytes:
    """Map a key or peer ID into the Kademlia keyspace (SHA-256)."""
    return hashlib.sha256(_as_bytes(key)).digest()


def _check_lengths(a: bytes, b: bytes) -> None:
    if len(a) != len(b):
        raise ValueError("keys must have the same length")


def xor_distance(a: bytes, b: bytes) -> int:
    """XOR distance of two keyspace keys as an integer."""
    _check_lengths(a, b)
    return int.from_bytes(a, "big") ^ int.from_bytes(b, "big")


def common_prefix_len(a: bytes, b: bytes) -> int:
    """Number of leading bits the two keys share."""
    return len(a) * 8 - xor_distance(a, b).bit_length()


def normed_distance(peer: bytes | str, key: bytes) -> float:
    """XOR distance between a peer and a keyspace key, normed to [0, 1]."""
    return xor_distance(convert_key(peer), key) / KEYSPACE_MAX


class _Measurement(NamedTuple):
    distance: float
    weight: float
    timestamp: float


_timestamp = attrgetter("timestamp")


class Estimator:
    """Estimates the network size from tracked closest-peer lists.

    ``routing_table`` must provide ``n_peers_for_cpl(cpl)``.
    """

    def __init__(
        self,
        local_id: bytes | str,
        routing_table: Any,
        bucket_size: int,
        *,
        max_measurement_age: float = MAX_MEASUREMENT_AGE,
        min_measurements: int = MIN_MEASUREMENTS_THRESHOLD,
        max_measurements: int = MAX_MEASUREMENTS_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.local_id = convert_key(local_id)
        self.routing_table = routing_table
        self.bucket_size = bucket_size
        self.measurements: dict[int, list[_Measurement]] = {i: [] for i in range(bucket_size)}
        self._max_age = max_measurement_age
        self._min_measurements = min_measurements
        self._max_measurements = max_measurements
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: int | None = None

    def track(self, key: bytes | str, peers: Sequence[bytes | str]) -> None:
        """Record the sorted closest peers to ``key`` for the next estimate."""
        with self._lock:
            if len(peers) != self.bucket_size:
                raise WrongNumOfPeersError()
            logger.debug("tracking peers for key %r", key)
            now = self._clock()
            self._cache = None
            weight = self._calc_weight(key, peers)
            ks_key = convert_key(key)
            cutoff = now - self._max_age
            for i, peer in enumerate(peers):
                series = self.measurements[i] + [
                    _Measurement(normed_distance(peer, ks_key), weight, now)
                ]
                first_valid = bisect.bisect_right(series, cutoff, key=_timestamp)
                series = series[first_valid:]
                if len(series) > self._max_measurements:
                    series = series[-self._max_measurements :]
                self.measurements[i] = series

    def network_size(self) -> int:
        """Current network size estimate; raises NotEnoughDataError without enough data."""
        cached = self._cache
        if cached is not None:
            return cached
        with self._lock:
            if self._cache is not None:
                return self._cache
            self._garbage_collect()

            xy_sum = 0.0
            x2_sum = 0.0
            for i in range(self.bucket_size):
                series = self.measurements[i]
                count = len(series)
                if count < self._min_measurements:
                    raise NotEnoughDataError()
                sum_weights = sum(m.weight for m in series)
                avg = sum(m.weight * m.distance for m in series) / sum_weights
                weighted_diffs = sum(m.weight * (m.distance - avg) ** 2 for m in series)
                try:
                    variance = weighted_diffs / ((count - 1) / count * sum_weights)
                except ZeroDivisionError:
                    raise NotEnoughDataError() from None
                std = math.sqrt(variance)
                x = float(i + 1)
                xy_sum += std * x * avg
                x2_sum += std * x * x

            if x2_sum == 0 or xy_sum == 0:
                raise NotEnoughDataError()
            slope = xy_sum / x2_sum
            estimate = int(1 / slope - 1)
            self._cache = estimate
            logger.debug("new network size estimation: %d", estimate)
            return estimate

    def _calc_weight(self, key: bytes | str, peers: Sequence[bytes | str]) -> float:
        cpl = common_prefix_len(convert_key(key), self.local_id)
        bucket_level = self.routing_table.n_peers_for_cpl(cpl)
        if bucket_level < self.bucket_size:
            peer_level = sum(
                1 for p in peers if common_prefix_len(convert_key(p), self.local_id) == cpl
            )
            if peer_level > bucket_level:
                return 2.0 ** (peer_level - self.bucket_size)
        return 2.0 ** (bucket_level - self.bucket_size)

    def _garbage_collect(self) -> None:
        cutoff = self._clock() - self._max_age
        for i, series in self.measurements.items():
            first_valid = bisect.bisect_right(series, cutoff, key=_timestamp)
            if first_valid:
                self.measurements[i] = series[first_valid:]