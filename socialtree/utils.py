"""Utility functions for SocialTree.

This module provides helpers for timestamps, push-key generation, tag
normalization and nested dictionary access.
"""

import re
import secrets
import threading
import time
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from typing import Any

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
"""Push-key alphabet, in ASCII order so keys sort by creation time."""

# Forbidden in hosted store keys, plus "%" which starts an escape
ESCAPED_KEY_CHARS = re.compile(r"[.$#\[\]/%\x00-\x1f\x7f]")
KEY_ESCAPE = re.compile(r"%([0-9A-F]{2})")


def now_ms() -> int:
    """Get the current time as epoch milliseconds.

    Example:
        >>> now_ms() > 1_600_000_000_000
        True
    """
    return int(time.time() * 1000)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def format_timestamp(ms: int | None) -> str | None:
    """Format epoch milliseconds as an ISO8601 string with 'Z' suffix.

    Args:
        ms: Epoch milliseconds or None

    Returns:
        ISO8601 formatted string or None if input is None

    Example:
        >>> format_timestamp(0)
        '1970-01-01T00:00:00Z'
    """
    if ms is None:
        return None
    dt = datetime.fromtimestamp(ms / 1000, tz=UTC)
    return dt.isoformat(timespec="seconds").replace("+00:00", "Z")


class PushKeyGenerator:
    """Generate 20-character keys that sort in creation order.

    The first 8 characters encode the millisecond timestamp, the remaining
    12 are random. When two keys are generated in the same millisecond (or
    the clock steps backwards) the random suffix of the previous key is
    incremented instead, so keys from one generator are strictly increasing.

    Example:
        >>> gen = PushKeyGenerator()
        >>> a, b = gen(), gen()
        >>> len(a), a < b
        (20, True)
    """

    def __init__(self) -> None:
        self._last_ts = 0
        self._last_rand = [0] * 12
        self._lock = threading.Lock()

    def __call__(self, timestamp_ms: int | None = None) -> str:
        with self._lock:
            now = now_ms() if timestamp_ms is None else timestamp_ms
            duplicate = now <= self._last_ts
            if duplicate:
                now = self._last_ts
            self._last_ts = now

            ts_chars = []
            for _ in range(8):
                ts_chars.append(PUSH_CHARS[now % 64])
                now //= 64
            key = "".join(reversed(ts_chars))

            if not duplicate:
                self._last_rand = [secrets.randbelow(64) for _ in range(12)]
            else:
                i = 11
                while i >= 0 and self._last_rand[i] == 63:
                    self._last_rand[i] = 0
                    i -= 1
                if i >= 0:
                    self._last_rand[i] += 1

            return key + "".join(PUSH_CHARS[n] for n in self._last_rand)


push_key = PushKeyGenerator()
"""Process-wide push-key generator."""


def encode_key(key: str) -> str:
    """Escape characters the hosted store forbids in keys as ``%XX``.

    The mapping is reversible, so distinct inputs never share a key.

    Example:
        >>> encode_key("c++/c#")
        'c++%2Fc%23'
    """
    return ESCAPED_KEY_CHARS.sub(lambda m: f"%{ord(m.group()):02X}", key)


def decode_key(key: str) -> str:
    """Inverse of :func:`encode_key`.

    Example:
        >>> decode_key("node%2Ejs")
        'node.js'
    """
    return KEY_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), key)


def as_mapping(value: Any) -> dict[str, Any]:
    """View a keyed collection read from the store as a dict.

    The store reads maps whose keys are exactly ``0..n-1`` back as lists, so
    a collection keyed by user ID or tag can arrive as one. Anything that is
    neither a dict nor a list is an empty collection.

    Example:
        >>> as_mapping([True])
        {'0': True}
        >>> as_mapping(None)
        {}
    """
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {str(i): v for i, v in enumerate(value) if v is not None}
    return {}


def normalize_tags(tags: str | Iterable[str] | None) -> list[str]:
    """Normalize user-entered tags.

    Accepts a comma-separated string or an iterable of strings. Each tag is
    trimmed, empty entries are dropped, a leading ``#`` is added when
    missing and duplicates are removed keeping first-seen order.

    Args:
        tags: Raw tag input

    Returns:
        List of ``#``-prefixed tags

    Example:
        >>> normalize_tags("design, #dev,, design")
        ['#design', '#dev']
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")

    seen: list[str] = []
    for raw in tags:
        tag = str(raw).strip()
        if not tag.lstrip("#"):
            continue
        if not tag.startswith("#"):
            tag = f"#{tag}"
        if tag not in seen:
            seen.append(tag)
    return seen


def tag_key(tag: str) -> str:
    """Map a ``#tag`` to its key under ``tags/``.

    Example:
        >>> tag_key("#node.js")
        'node%2Ejs'
        >>> tag_key("#node_js")
        'node_js'
    """
    return encode_key(tag.lstrip("#"))


def chunk_bytes(data: bytes, chunk_size: int) -> Iterator[bytes]:
    """Split a byte string into chunks of at most ``chunk_size`` bytes.

    Example:
        >>> list(chunk_bytes(b"abcde", 2))
        [b'ab', b'cd', b'e']
    """
    for i in range(0, len(data), chunk_size):
        yield data[i : i + chunk_size]


def safe_get(data: Any, *keys: str, default: Any = None) -> Any:
    """Safely navigate nested dictionary structure.

    Args:
        data: Dictionary to navigate
        *keys: Sequence of keys to traverse
        default: Default value if key path doesn't exist

    Returns:
        Value at key path or default if not found

    Example:
        >>> data = {"a": {"b": {"c": 123}}}
        >>> safe_get(data, "a", "b", "c")
        123
        >>> safe_get(data, "a", "x", "y", default=0)
        0
    """
    for key in keys:
        if isinstance(data, dict):
            data = data.get(key)
            if data is None:
                return default
        else:
            return default
    return data


def excerpt(text: str, length: int = 50) -> str:
    """Shorten text for notification messages.

    Example:
        >>> excerpt("hello world", 5)
        'hello...'
    """
    text = text.strip()
    return text if len(text) <= length else f"{text[:length]}..."
