"""Human readable renderings of DHT keys for logs and tracing attributes."""

from __future__ import annotations

import base64

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {ch: i for i, ch in enumerate(_B58_ALPHABET)}
_MAX_VARINT_LEN = 9
_MAX_DIGEST_LEN = 2**31 - 1
_SHA2_256 = 0x12
_DAG_PB = 0x70


class LoggableKeyError(ValueError):
    """Raised when a key cannot be given a loggable form."""


def _as_bytes(data: bytes | bytearray | str) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def multibase_b32_encode(data: bytes | str) -> str:
    """Encode bytes as multibase base32 (lower case, unpadded, prefix ``b``)."""
    encoded = base64.b32encode(_as_bytes(data)).decode("ascii")
    return "b" + encoded.rstrip("=").lower()


def base58_encode(data: bytes | str) -> str:
    """Encode bytes with the Bitcoin base58 alphabet."""
    raw = _as_bytes(data)
    number = int.from_bytes(raw, "big")
    digits = []
    while number:
        number, rem = divmod(number, 58)
        digits.append(_B58_ALPHABET[rem])
    leading = len(raw) - len(raw.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(digits))


def base58_decode(text: str) -> bytes:
    """Decode a Bitcoin base58 string."""
    number = 0
    for ch in text:
        try:
            number = number * 58 + _B58_INDEX[ch]
        except KeyError:
            raise ValueError(f"invalid base58 character: {ch!r}") from None
    leading = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    return b"\x00" * leading + body


def _read_uvarint(data: bytes, offset: int) -> tuple[int, int]:
    value = 0
    for count, byte in enumerate(data[offset : offset + _MAX_VARINT_LEN], start=1):
        value |= (byte & 0x7F) << (7 * (count - 1))
        if byte < 0x80:
            if byte == 0 and count > 1:
                raise ValueError("varint not minimally encoded")
            return value, offset + count
    raise ValueError("truncated or overlong varint")


def _parse_multihash(data: bytes) -> tuple[int, bytes, int]:
    code, pos = _read_uvarint(data, 0)
    length, pos = _read_uvarint(data, pos)
    if length > _MAX_DIGEST_LEN:
        raise ValueError("digest too long")
    if len(data) - pos < length:
        raise ValueError("length greater than remaining number of bytes in buffer")
    return code, data[pos : pos + length], pos + length


def cast_multihash(data: bytes | str) -> tuple[int, bytes]:
    """Check that ``data`` is exactly one multihash; return its code and digest."""
    raw = _as_bytes(data)
    code, digest, consumed = _parse_multihash(raw)
    if consumed != len(raw):
        raise ValueError("multihash length inconsistent")
    return code, digest


def cast_cid(data: bytes | str) -> tuple[int, int, bytes]:
    """Check that ``data`` is exactly one CID; return version, codec and multihash."""
    raw = _as_bytes(data)
    if len(raw) == 34 and raw[0] == _SHA2_256 and raw[1] == 32:
        return 0, _DAG_PB, raw
    version, pos = _read_uvarint(raw, 0)
    if version != 1:
        raise ValueError(f"expected 1 as the cid version number, got: {version}")
    codec, pos = _read_uvarint(raw, pos)
    _, _, consumed = _parse_multihash(raw[pos:])
    if pos + consumed != len(raw):
        raise ValueError("trailing bytes in cid")
    return version, codec, raw[pos:]


def format_loggable_record_key(key: bytes | str) -> str:
    """Render a ``/namespace/key`` record key with the key part in base32."""
    raw = _as_bytes(key)
    if not raw:
        raise LoggableKeyError("LoggableRecordKey is empty")
    if raw[:1] == b"/":
        proto_end = raw.find(b"/", 1)
        if proto_end < 0:
            raise LoggableKeyError(
                "LoggableRecordKey starts with '/' but is not a path: "
                + multibase_b32_encode(raw)
            )
        proto = raw[1:proto_end].decode("utf-8", errors="replace")
        rest = raw[proto_end + 1 :]
        return f"/{proto}/{multibase_b32_encode(rest)}"
    raise LoggableKeyError("LoggableRecordKey is not a path: " + multibase_b32_encode(b""))


def format_loggable_provider_key(key: bytes | str) -> str:
    """Render a provider key (a multihash, or a CID) in multibase base32."""
    raw = _as_bytes(key)
    if not raw:
        raise LoggableKeyError("LoggableProviderKey is empty")
    encoded = multibase_b32_encode(raw)
    for cast in (cast_cid, cast_multihash):
        try:
            cast(raw)
        except ValueError:
            continue
        return encoded
    raise LoggableKeyError(f"LoggableProviderKey is not a Multihash or CID: {encoded}")


def loggable_record_key(key: bytes | str) -> str:
    """Loggable form of a record key, or the reason it has none."""
    try:
        return format_loggable_record_key(key)
    except LoggableKeyError as err:
        return str(err)


def loggable_provider_key(key: bytes | str) -> str:
    """Loggable form of a provider key, or the reason it has none."""
    try:
        return format_loggable_provider_key(key)
    except LoggableKeyError as err:
        return str(err)


def key_as_attribute(name: str, key: bytes | str) -> tuple[str, str]:
    """A tracing attribute for a key: as text if valid UTF-8, else base58btc multibase."""
    if isinstance(key, str):
        return name, key
    raw = bytes(key)
    try:
        return name, raw.decode("utf-8")
    except UnicodeDecodeError:
        return name, "z" + base58_encode(raw)