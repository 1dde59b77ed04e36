from kaddht.netsize import convert_key, xor_distance
from kaddht.routing_table import CrawlTable


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_peers(n):
    return {f"peer-{i}".encode(): [f"/ip4/10.0.0.{i}/tcp/4001"] for i in range(n)}


def test_closest_peers_sorted_and_bounded():
    table = CrawlTable()
    peers = make_peers(30)
    table.replace(peers)
    result = table.closest_peers(b"some key", 20)
    assert len(result) == 20
    assert set(result) <= set(peers)
    target = convert_key(b"some key")
    distances = [xor_distance(convert_key(p), target) for p in result]
    assert distances == sorted(distances)
    farthest = max(distances)
    others = set(peers) - set(result)
    assert all(xor_distance(convert_key(p), target) > farthest for p in others)


def test_closest_peer_to_own_id_is_itself():
    table = CrawlTable()
    peers = make_peers(10)
    table.replace(peers)
    assert table.closest_peers(b"peer-3", 1) == [b"peer-3"]


def test_closest_peers_fewer_than_count():
    table = CrawlTable()
    table.replace(make_peers(4))
    assert sorted(table.closest_peers(b"x", 20)) == sorted(make_peers(4))


def test_empty_table_has_no_peers():
    table = CrawlTable()
    assert table.closest_peers(b"x", 20) == []
    assert table.peer_count() == 0


def test_stat_maps_keyspace_keys():
    table = CrawlTable()
    peers = make_peers(5)
    table.replace(peers)
    stat = table.stat()
    assert stat == {convert_key(p): p for p in peers}
    stat.clear()
    assert table.peer_count() == 5


def test_addrs_known_and_unknown():
    table = CrawlTable()
    peers = make_peers(3)
    table.replace(peers)
    assert table.addrs(b"peer-1") == peers[b"peer-1"]
    assert table.addrs(b"stranger") == []


def test_replace_discards_previous():
    table = CrawlTable()
    table.replace(make_peers(5))
    table.replace({b"only": []})
    assert table.peer_count() == 1
    assert table.addrs(b"peer-1") == []
    assert table.closest_peers(b"peer-1", 5) == [b"only"]


def test_not_ready_before_first_crawl():
    table = CrawlTable(clock=FakeClock())
    assert table.ready(3600.0, 0) is False


def test_ready_after_crawl_with_enough_peers():
    clock = FakeClock()
    table = CrawlTable(clock=clock)
    table.replace(make_peers(5))
    assert table.ready(3600.0, 2) is True
    assert table.ready(3600.0, 3) is False


def test_not_ready_once_crawl_is_stale():
    clock = FakeClock()
    table = CrawlTable(clock=clock)
    table.replace(make_peers(5))
    clock.now += 3601.0
    assert table.ready(3600.0, 0) is False