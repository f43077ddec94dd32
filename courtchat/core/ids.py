"""Time-ordered identifiers for rows whose id order must follow insertion order."""

import os
import threading
import time
import uuid

_lock = threading.Lock()
_last_ms = 0
_counter = 0

_COUNTER_MAX = 0xFFF
_RAND_B_MASK = (1 << 62) - 1


def time_ordered_uuid() -> uuid.UUID:
    """
    Return a version 7 UUID.

    The top 48 bits hold the unix time in milliseconds and the 12 bits after
    the version nibble hold a per-process counter, so ids created later in the
    same process always compare greater, even within one millisecond.
    """
    global _last_ms, _counter

    with _lock:
        now_ms = time.time_ns() // 1_000_000
        if now_ms > _last_ms:
            _last_ms = now_ms
            _counter = 0
        else:
            # Same millisecond or the clock went backwards: keep counting
            _counter += 1
            if _counter > _COUNTER_MAX:
                _last_ms += 1
                _counter = 0
        timestamp_ms = _last_ms
        counter = _counter

    rand_b = int.from_bytes(os.urandom(8), "big") & _RAND_B_MASK
    value = (
        (timestamp_ms << 80)
        | (0x7 << 76)
        | (counter << 64)
        | (0b10 << 62)
        | rand_b
    )
    return uuid.UUID(int=value)
