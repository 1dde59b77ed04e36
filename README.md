# kaddht

Building blocks for a Kademlia distributed hash table client.

## Modules

- `kaddht.netsize` has `Estimator`, which estimates the network size from
  the distances of the closest peers found in completed lookups. It also has
  the keyspace helpers `convert_key` (SHA-256), `xor_distance`,
  `common_prefix_len` and `normed_distance`.
- `kaddht.optimistic` has `OptimisticState`, `RPCState` and
  `compute_thresholds`. Together they implement optimistic provide:
  provider records are stored early with peers that are very likely among
  the closest, and the walk ends once the closest set is close enough.
- `kaddht.routing_table` has `CrawlTable`, a table of the peers found by a
  network crawl. It holds their addresses and keyspace keys, and answers
  closest-peer queries by XOR distance.
- `kaddht.exec_many` has `exec_on_many`. It runs a function on many peers,
  each in its own thread, and stops waiting once enough of them succeed.
- `kaddht.message_sender` has `MessageSender` and `PeerMessageSender`. They
  reuse one stream per peer for varint length-delimited requests and
  messages, retry once, and give up on a read after a timeout
  (`ReadTimeoutError`). The module also has `write_msg`, `read_msg` and a
  releasable `CtxMutex`.
- `kaddht.fullrt_options` has `FullRTConfig` and its options
  (`dht_option`, `with_crawler`, `with_crawl_interval`,
  `with_success_wait_fraction`, `with_bulk_send_parallelism`,
  `with_timeout_per_operation`, `with_provider_manager_options`). It also
  has the routing options `quorum` and `get_quorum`.
- `kaddht.loggable` gives readable forms of record and provider keys for
  logs, using multibase base32. It also has base58 helpers, multihash and
  CID checks, and `key_as_attribute` for tracing attributes.

## Installation

```
pip install kaddht
```

Running the tests needs the `test` extra:

```
pip install "kaddht[test]"
```

## Examples

Configure a full-routing-table client:

```python
from kaddht.fullrt_options import (
    FullRTConfig,
    with_success_wait_fraction,
    with_bulk_send_parallelism,
)

config = FullRTConfig()
config.apply(with_success_wait_fraction(0.5), with_bulk_send_parallelism(10))
```

An invalid option raises `kaddht.fullrt_options.OptionError`, and the
message names the option's index. One example is a wait fraction outside
the range (0, 1].

Set and read a quorum:

```python
from kaddht.fullrt_options import quorum, get_quorum

options = {}
quorum(3)(options)
get_quorum(options)   # 3; 0 when no quorum is set
```

Format a record key for logging:

```python
from kaddht.loggable import loggable_record_key

loggable_record_key("/pk/abc")   # "/pk/bmfrgg"
loggable_record_key("")          # "LoggableRecordKey is empty"
```

Find the closest peers in a crawl table:

```python
from kaddht.routing_table import CrawlTable

table = CrawlTable()
table.replace({"peer-a": ["/ip4/10.0.0.1/tcp/4001"], "peer-b": []})
table.closest_peers("some key", 1)
```

Run an operation on many peers:

```python
from kaddht.exec_many import exec_on_many

def ping(cancel, peer):
    ...  # raise to report failure; watch the cancel event

successes = exec_on_many(ping, ["a", "b", "c"], wait_fraction=0.3,
                         timeout=5.0, sloppy_exit=True)
```

Estimate the network size:

```python
from kaddht.netsize import Estimator, NotEnoughDataError
```

The `Estimator` takes a routing table object that has an
`n_peers_for_cpl(cpl)` method. `Estimator.track(key, peers)` takes exactly
one bucket of peers, sorted closest first. Otherwise it raises
`WrongNumOfPeersError`. `Estimator.network_size()` raises
`NotEnoughDataError` until enough lookups have been tracked.

## What this package does not do

The package does not contain a complete DHT client or server. Several
things are left to the caller:

- No network transport. `MessageSender` needs a host object that opens
  streams (`new_stream(peer, protocols)`) and records latency
  (`record_latency(peer, seconds)`).
- No crawler. `CrawlTable` only stores what a crawl found.
- No record storage and no wire message format. Messages are passed
  through the `encode` and `decode` callables you supply.
- No command-line program.