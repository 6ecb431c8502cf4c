"""
Assignment Epochs
=================

Mints the identifier that scopes one assignment generation of a case.

Ids use the UUIDv7 layout: a 48-bit Unix millisecond timestamp followed by
random bits, so string order equals mint order. Ids written before event
sourcing (random UUIDv4) remain valid for equality checks but carry no time.
"""

import os
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

_lock = threading.Lock()
_last_ms = 0
_last_rand = 0

_RAND_BITS = 74
_RAND_MASK = (1 << _RAND_BITS) - 1


def _mint(unix_ms: int, rand: int) -> uuid.UUID:
    rand_a = (rand >> 62) & 0xFFF
    rand_b = rand & ((1 << 62) - 1)
    value = (unix_ms & ((1 << 48) - 1)) << 80
    value |= 0x7 << 76
    value |= rand_a << 64
    value |= 0b10 << 62
    value |= rand_b
    return uuid.UUID(int=value)


def new_epoch_id() -> str:
    """
    Return a globally unique, time-ordered epoch id.

    Within one process, ids minted in the same millisecond (or after the
    wall clock stepped backwards) still sort strictly after the previous id.
    """
    global _last_ms, _last_rand

    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _last_rand = int.from_bytes(os.urandom(10), "big") & _RAND_MASK
            # Leave headroom for increments within the same millisecond
            _last_rand >>= 1
        else:
            _last_rand += 1
            if _last_rand > _RAND_MASK:
                _last_ms += 1
                _last_rand = 0
        return str(_mint(_last_ms, _last_rand))


def epoch_timestamp(epoch_id: str) -> Optional[datetime]:
    """Recover the mint time of a time-ordered id; None for legacy or malformed ids."""
    try:
        parsed = uuid.UUID(epoch_id)
    except (TypeError, ValueError, AttributeError):
        return None
    if parsed.version != 7:
        return None
    unix_ms = parsed.int >> 80
    return datetime.fromtimestamp(unix_ms / 1000, tz=timezone.utc)


def epoch_sort_key(epoch_id: Optional[str]) -> tuple:
    """
    Recency key for tie-breaking events that share a timestamp.

    Time-ordered ids sort by their embedded time and bits; legacy ids sort
    before any time-ordered id.
    """
    if not epoch_id:
        return (0, "")
    if epoch_timestamp(epoch_id) is None:
        return (0, epoch_id)
    return (1, epoch_id.lower())
