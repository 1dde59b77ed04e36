"""Per-peer message senders that reuse streams for DHT requests."""

from __future__ import annotations

import contextlib
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Protocol, Sequence

logger = logging.getLogger("kaddht.net")

READ_MESSAGE_TIMEOUT = 10.0
MESSAGE_SIZE_MAX = 4 << 20
STREAM_REUSE_TRIES = 3
_MAX_VARINT_LEN = 10
_STREAM_ERRORS = (OSError, EOFError, ValueError)


class ReadTimeoutError(TimeoutError):
    """Raised when no response is read within the timeout period."""

    def __init__(self, message: str = "timed out reading response") -> None:
        super().__init__(message)


class Writer(Protocol):
    def write(self, data: bytes) -> object: ...


class Reader(Protocol):
    def read(self, size: int) -> bytes: ...


class Stream(Writer, Reader, Protocol):
    def reset(self) -> object: ...

    def close(self) -> object: ...


class Host(Protocol):
    def new_stream(self, peer: Hashable, protocols: Sequence[str]) -> Stream: ...

    def record_latency(self, peer: Hashable, seconds: float) -> object: ...


class CtxMutex:
    """A mutex that may be released from any thread and can give up waiting."""

    def __init__(self, timeout: float | None = None) -> None:
        self._lock = threading.Lock()
        self._timeout = timeout

    def lock(self) -> None:
        """Acquire the mutex; raise TimeoutError if the wait runs out."""
        if self._timeout is None:
            self._lock.acquire()
            return
        if not self._lock.acquire(timeout=self._timeout):
            raise TimeoutError("timed out waiting for lock")

    def unlock(self) -> None:
        """Release the mutex; raise RuntimeError if it is not held."""
        try:
            self._lock.release()
        except RuntimeError:
            raise RuntimeError("not locked") from None

    def __enter__(self) -> CtxMutex:
        self.lock()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.unlock()


def _encode_uvarint(value: int) -> bytes:
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def _read_exact(reader: Reader, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = reader.read(size - len(buf))
        if not chunk:
            raise EOFError("unexpected end of stream")
        buf += chunk
    return bytes(buf)


def write_msg(writer: Writer, message: bytes) -> None:
    """Write one varint length-delimited message in a single write."""
    data = bytes(message)
    writer.write(_encode_uvarint(len(data)) + data)


def read_msg(reader: Reader) -> bytes:
    """Read one varint length-delimited message."""
    length = 0
    for shift in range(0, 7 * _MAX_VARINT_LEN, 7):
        byte = _read_exact(reader, 1)[0]
        length |= (byte & 0x7F) << shift
        if byte < 0x80:
            break
    else:
        raise ValueError("varint overflows a 64-bit integer")
    if length > MESSAGE_SIZE_MAX:
        raise ValueError(f"message too large: {length} bytes")
    return _read_exact(reader, length)


@dataclass
class SenderStats:
    """Counters for outgoing requests and messages."""

    requests: int = 0
    request_errors: int = 0
    messages: int = 0
    message_errors: int = 0
    bytes_sent: int = 0
    latencies: list[float] = field(default_factory=list)


def _reset_quietly(stream: Stream) -> None:
    try:
        stream.reset()
    except Exception as err:  # the stream is being dropped either way
        logger.debug("error resetting stream: %s", err)


class PeerMessageSender:
    """Sends requests and messages to one peer over a reused stream."""

    def __init__(self, manager: MessageSender, peer: Hashable) -> None:
        self.peer = peer
        self.invalid = False
        self._manager = manager
        self._lock = CtxMutex()
        self._stream: Stream | None = None
        self._single_mes = 0

    def invalidate(self) -> None:
        """Mark the sender unusable and drop its stream."""
        self.invalid = True
        if self._stream is not None:
            _reset_quietly(self._stream)
            self._stream = None

    def _prep_or_invalidate(self) -> None:
        with self._lock:
            try:
                self._prep()
            except Exception:
                self.invalidate()
                raise

    def _prep(self) -> Stream:
        if self.invalid:
            raise RuntimeError("message sender has been invalidated")
        if self._stream is None:
            self._stream = self._manager.host.new_stream(self.peer, self._manager.protocols)
        return self._stream

    def _drop_stream(self) -> None:
        if self._stream is not None:
            _reset_quietly(self._stream)
            self._stream = None

    def _finish(self, retried: bool) -> None:
        if self._single_mes > STREAM_REUSE_TRIES:
            stream, self._stream = self._stream, None
            if stream is not None:
                stream.close()
        elif retried:
            self._single_mes += 1

    def send_message(self, message: Any) -> None:
        """Send a message that expects no response."""
        payload = self._manager.encode(message)
        with self._lock:
            retried = False
            while True:
                stream = self._prep()
                try:
                    write_msg(stream, payload)
                except _STREAM_ERRORS as err:
                    self._drop_stream()
                    if retried:
                        logger.debug("error writing message: %s", err)
                        raise
                    logger.debug("error writing message, retrying: %s", err)
                    retried = True
                    continue
                self._finish(retried)
                return

    def send_request(self, message: Any) -> Any:
        """Send a request and return the decoded response."""
        payload = self._manager.encode(message)
        with self._lock:
            retried = False
            while True:
                stream = self._prep()
                try:
                    write_msg(stream, payload)
                except _STREAM_ERRORS as err:
                    self._drop_stream()
                    if retried:
                        logger.debug("error writing message: %s", err)
                        raise
                    logger.debug("error writing message, retrying: %s", err)
                    retried = True
                    continue
                try:
                    response = self._read_response(stream)
                except _STREAM_ERRORS as err:
                    self._drop_stream()
                    if retried:
                        logger.debug("error reading message: %s", err)
                        raise
                    logger.debug("error reading message, retrying: %s", err)
                    retried = True
                    continue
                self._finish(retried)
                return response

    def _read_response(self, stream: Stream) -> Any:
        results: queue.Queue[tuple[bytes | None, Exception | None]] = queue.Queue(maxsize=1)

        def reader() -> None:
            try:
                results.put((read_msg(stream), None))
            except Exception as err:
                results.put((None, err))

        threading.Thread(target=reader, daemon=True).start()
        try:
            data, err = results.get(timeout=self._manager.read_timeout)
        except queue.Empty:
            raise ReadTimeoutError() from None
        if err is not None:
            raise err
        return self._manager.decode(data)


class MessageSender:
    """Sends requests and messages to peers, keeping one sender per peer."""

    def __init__(
        self,
        host: Host,
        protocols: Sequence[str],
        *,
        encode: Callable[[Any], bytes] = bytes,
        decode: Callable[[bytes], Any] = bytes,
        read_timeout: float = READ_MESSAGE_TIMEOUT,
    ) -> None:
        self.host = host
        self.protocols = tuple(protocols)
        self.encode = encode
        self.decode = decode
        self.read_timeout = read_timeout
        self.stats = SenderStats()
        self._senders: dict[Hashable, PeerMessageSender] = {}
        self._map_lock = threading.Lock()
        self._stats_lock = threading.Lock()

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._senders)

    def __contains__(self, peer: object) -> bool:
        with self._map_lock:
            return peer in self._senders

    def on_disconnect(self, peer: Hashable) -> None:
        """Forget the sender for ``peer`` and invalidate it in the background."""
        with self._map_lock:
            sender = self._senders.pop(peer, None)
        if sender is None:
            return

        def invalidate() -> None:
            try:
                sender._lock.lock()
            except TimeoutError:
                return
            try:
                sender.invalidate()
            finally:
                sender._lock.unlock()

        threading.Thread(target=invalidate, daemon=True).start()

    def sender_for_peer(self, peer: Hashable) -> PeerMessageSender:
        """Return a ready sender for ``peer``, opening a stream if needed."""
        with self._map_lock:
            sender = self._senders.get(peer)
            if sender is not None:
                return sender
            sender = PeerMessageSender(self, peer)
            self._senders[peer] = sender
        try:
            sender._prep_or_invalidate()
        except Exception:
            with self._map_lock:
                current = self._senders.get(peer)
                if current is not None:
                    if current is not sender:
                        return current
                    del self._senders[peer]
            raise
        return sender

    def _count(self, *, request: bool, error: bool, size: int = 0) -> None:
        with self._stats_lock:
            if request:
                self.stats.requests += 1
                self.stats.request_errors += error
            else:
                self.stats.messages += 1
                self.stats.message_errors += error
            self.stats.bytes_sent += size

    def send_request(self, peer: Hashable, message: Any) -> Any:
        """Send a request to ``peer`` and return its response; records latency."""
        try:
            sender = self.sender_for_peer(peer)
        except Exception as err:
            self._count(request=True, error=True)
            logger.debug("request failed to open message sender to %r: %s", peer, err)
            raise
        start = time.monotonic()
        try:
            response = sender.send_request(message)
        except Exception as err:
            self._count(request=True, error=True)
            logger.debug("request to %r failed: %s", peer, err)
            raise
        elapsed = time.monotonic() - start
        self._count(request=True, error=False, size=len(self.encode(message)))
        with self._stats_lock:
            self.stats.latencies.append(elapsed)
        self.host.record_latency(peer, elapsed)
        return response

    def send_message(self, peer: Hashable, message: Any) -> None:
        """Send a message to ``peer`` without waiting for a response."""
        try:
            sender = self.sender_for_peer(peer)
        except Exception as err:
            self._count(request=False, error=True)
            logger.debug("message failed to open message sender to %r: %s", peer, err)
            raise
        try:
            sender.send_message(message)
        except Exception as err:
            self._count(request=False, error=True)
            logger.debug("message to %r failed: %s", peer, err)
            raise
        self._count(request=False, error=False, size=len(self.encode(message)))


__all__ = [
    "CtxMutex",
    "MessageSender",
    "PeerMessageSender",
    "ReadTimeoutError",
    "SenderStats",
    "read_msg",
    "write_msg",
]

with contextlib.suppress(NameError):
    del contextlib