import pytest

from kaddht.netsize import (
    Estimator,
    NotEnoughDataError,
    WrongNumOfPeersError,
    common_prefix_len,
    convert_key,
    normed_distance,
    xor_distance,
)


class FullTable:
    def __init__(self, level):
        self.level = level

    def n_peers_for_cpl(self, cpl):
        return self.level


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def closest(peers, key, count):
    ks_key = convert_key(key)
    return sorted(peers, key=lambda p: normed_distance(p, ks_key))[:count]


def test_new_estimator():
    rt = FullTable(20)
    e = Estimator(b"local-peer", rt, 20)
    assert e.routing_table is rt
    assert e.local_id == convert_key(b"local-peer")
    assert len(e.measurements) == 20
    with pytest.raises(NotEnoughDataError):
        e.network_size()


def test_normed_distance():
    pid = b"peer-one"
    assert normed_distance(pid, convert_key(pid)) == 0
    dist = normed_distance(pid, convert_key(b"peer-two"))
    assert 0.0 < dist < 1.0


def test_prefix_and_distance():
    a = convert_key(b"x")
    assert common_prefix_len(a, a) == 256
    assert common_prefix_len(b"\x80\x00", b"\x00\x00") == 0
    assert common_prefix_len(b"\x00\x01", b"\x00\x00") == 15
    assert xor_distance(b"\x0f", b"\xf0") == 0xFF
    with pytest.raises(ValueError):
        xor_distance(b"\x00", b"\x00\x00")


def test_track_wrong_number_of_peers():
    e = Estimator(b"local", FullTable(20), 20)
    with pytest.raises(WrongNumOfPeersError):
        e.track("key", [b"a", b"b", b"c"])


def test_estimate_is_close_to_network_size():
    network = [f"peer-{i}".encode() for i in range(500)]
    e = Estimator(b"local", FullTable(20), 20)
    for i in range(30):
        key = f"key-{i}"
        e.track(key, closest(network, key, 20))
    estimate = e.network_size()
    assert 250 < estimate < 1000


def test_not_enough_measurements():
    network = [f"peer-{i}".encode() for i in range(100)]
    e = Estimator(b"local", FullTable(5), 5)
    for i in range(4):
        e.track(f"k{i}", closest(network, f"k{i}", 5))
    with pytest.raises(NotEnoughDataError):
        e.network_size()


def test_old_measurements_are_dropped():
    clock = FakeClock()
    network = [f"peer-{i}".encode() for i in range(100)]
    e = Estimator(b"local", FullTable(5), 5, clock=clock)
    for i in range(6):
        e.track(f"k{i}", closest(network, f"k{i}", 5))
    clock.now += 3 * 60 * 60
    with pytest.raises(NotEnoughDataError):
        e.network_size()
    assert all(series == [] for series in e.measurements.values())


def test_cached_estimate_until_next_track():
    clock = FakeClock()
    network = [f"peer-{i}".encode() for i in range(200)]
    e = Estimator(b"local", FullTable(5), 5, clock=clock)
    for i in range(10):
        e.track(f"k{i}", closest(network, f"k{i}", 5))
    first = e.network_size()
    clock.now += 3 * 60 * 60
    assert e.network_size() == first
    e.track("fresh", closest(network, "fresh", 5))
    with pytest.raises(NotEnoughDataError):
        e.network_size()


def test_measurements_are_capped():
    network = [f"peer-{i}".encode() for i in range(50)]
    e = Estimator(b"local", FullTable(3), 3, max_measurements=4)
    for i in range(7):
        e.track(f"k{i}", closest(network, f"k{i}", 3))
    assert [len(s) for s in e.measurements.values()] == [4, 4, 4]