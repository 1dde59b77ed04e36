"""Kademlia DHT components: network size estimation, optimistic provide, a crawl routing table, a stream-reusing message sender, client options and loggable keys."""

__version__ = "0.1.0"