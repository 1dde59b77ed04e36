import threading
import time

import pytest
from scipy.special import gammainc

from kaddht.optimistic import (
    RETURN_RATIO,
    OptimisticState,
    RPCState,
    compute_thresholds,
)


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class Recorder:
    def __init__(self, failing=(), delay=0.0):
        self.calls = []
        self.failing = set(failing)
        self.delay = delay
        self._lock = threading.Lock()

    def __call__(self, peer):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append(peer)
        if peer in self.failing:
            raise ConnectionError("unreachable")


PEERS = [f"peer-{i}" for i in range(20)]


def test_return_threshold_for_default_bucket():
    assert compute_thresholds(20, 1000)[2] == 15


def test_thresholds_invert_regularized_gamma():
    individual, set_threshold, _ = compute_thresholds(20, 500)
    assert gammainc(20, individual * 500) == pytest.approx(0.1)
    assert gammainc(11, set_threshold * 500) == pytest.approx(0.9)


def test_thresholds_scale_with_network_size():
    small = compute_thresholds(20, 100)
    large = compute_thresholds(20, 200)
    assert small[0] == pytest.approx(2 * large[0])
    assert small[1] == pytest.approx(2 * large[1])
    assert small[2] == large[2]


def test_nonpositive_network_size_rejected():
    with pytest.raises(ValueError):
        OptimisticState(b"key", 20, 0, Recorder())


def test_stop_schedules_close_peers_and_stops():
    recorder = Recorder()
    state = OptimisticState(b"key", 20, 1, recorder)
    assert state.stop(PEERS) is True
    state.wait_for_rpcs()
    assert wait_until(lambda: len(recorder.calls) == 20)
    assert set(recorder.calls) == set(PEERS)


def test_stop_in_huge_network_keeps_going():
    recorder = Recorder()
    state = OptimisticState(b"key", 20, 10**12, recorder)
    assert state.stop(PEERS) is False
    assert state.states == {}
    assert recorder.calls == []


def test_schedule_remaining_skips_known_peers():
    recorder = Recorder()
    state = OptimisticState(b"key", 20, 1, recorder)
    state.stop(PEERS[:3])
    state.schedule_remaining(PEERS[:5])
    state.wait_for_rpcs()
    assert wait_until(lambda: state.completed == 5)
    assert sorted(recorder.calls) == sorted(PEERS[:5])


def test_wait_returns_after_threshold_and_all_finish():
    pool = threading.BoundedSemaphore(60)
    state = OptimisticState(b"key", 20, 1000, Recorder(delay=0.01), jobs_pool=pool)
    state.schedule_remaining(PEERS)
    state.wait_for_rpcs()
    assert state.completed >= state.return_threshold
    assert state.return_threshold == int(20 * RETURN_RATIO)
    assert wait_until(lambda: state.completed == 20)
    assert all(s is RPCState.SUCCESS for s in state.states.values())
    assert all(pool.acquire(blocking=False) for _ in range(60))


def test_failed_rpcs_are_marked_failure():
    failing = set(PEERS[:4])
    state = OptimisticState(b"key", 20, 1000, Recorder(failing=failing))
    state.schedule_remaining(PEERS)
    state.wait_for_rpcs()
    assert wait_until(lambda: state.completed == 20)
    states = state.states
    assert {p for p, s in states.items() if s is RPCState.FAILURE} == failing
    assert sum(1 for s in states.values() if s is RPCState.SUCCESS) == 16


def test_small_pool_still_drains():
    pool = threading.BoundedSemaphore(1)
    state = OptimisticState(b"key", 20, 1000, Recorder(delay=0.005), jobs_pool=pool)
    state.schedule_remaining(PEERS)
    state.wait_for_rpcs()
    assert wait_until(lambda: state.completed == 20)
    assert pool.acquire(blocking=False) is True


def test_wait_without_rpcs_returns_immediately():
    state = OptimisticState(b"key", 20, 1000, Recorder())
    state.wait_for_rpcs()
    assert state.completed == 0
    assert state.return_threshold == 0