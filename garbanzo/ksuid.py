"""K-sortable unique identifiers: 27 base62 characters over a time-prefixed 20-byte value."""

from __future__ import annotations

import os
import time
from datetime import datetime, timezone

EPOCH = 1_400_000_000

_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_INDEX = {char: value for value, char in enumerate(_ALPHABET)}
_ENCODED_LENGTH = 27
_PAYLOAD_LENGTH = 16
_TIMESTAMP_LENGTH = 4
_MAX_VALUE = (1 << ((_TIMESTAMP_LENGTH + _PAYLOAD_LENGTH) * 8)) - 1


def _seconds(timestamp: datetime | int | float | None) -> int:
    if timestamp is None:
        return int(time.time())
    if isinstance(timestamp, datetime):
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return int(timestamp.timestamp())
    return int(timestamp)


def _encode(value: int) -> str:
    digits = []
    while value:
        value, remainder = divmod(value, 62)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits)).rjust(_ENCODED_LENGTH, "0")


def generate(
    timestamp: datetime | int | float | None = None, payload: bytes | None = None
) -> str:
    """Encode an identifier from a timestamp (unix seconds or datetime) and 16 payload bytes."""
    offset = _seconds(timestamp) - EPOCH
    if not 0 <= offset < 1 << (_TIMESTAMP_LENGTH * 8):
        raise ValueError("timestamp outside the representable range")
    if payload is None:
        payload = os.urandom(_PAYLOAD_LENGTH)
    payload = bytes(payload)
    if len(payload) != _PAYLOAD_LENGTH:
        raise ValueError(f"payload must be {_PAYLOAD_LENGTH} bytes, got {len(payload)}")
    raw = offset.to_bytes(_TIMESTAMP_LENGTH, "big") + payload
    return _encode(int.from_bytes(raw, "big"))


def new() -> str:
    """Return a fresh identifier for the current time with a random payload."""
    return generate()


def parse(text: str) -> tuple[datetime, bytes]:
    """Decode an identifier into its UTC timestamp and payload."""
    if len(text) != _ENCODED_LENGTH:
        raise ValueError(f"identifier must be {_ENCODED_LENGTH} characters")
    value = 0
    for char in text:
        try:
            value = value * 62 + _INDEX[char]
        except KeyError:
            raise ValueError(f"invalid character {char!r} in identifier") from None
    if value > _MAX_VALUE:
        raise ValueError("identifier value out of range")
    raw = value.to_bytes(_TIMESTAMP_LENGTH + _PAYLOAD_LENGTH, "big")
    offset = int.from_bytes(raw[:_TIMESTAMP_LENGTH], "big")
    moment = datetime.fromtimestamp(EPOCH + offset, tz=timezone.utc)
    return moment, raw[_TIMESTAMP_LENGTH:]