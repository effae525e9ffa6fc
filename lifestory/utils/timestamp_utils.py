"""
Timestamp utilities for consistent time handling across the system.
"""

import time


def now_millis() -> int:
    """Current time as Unix milliseconds, the chat log's timestamp unit."""
    return int(time.time() * 1000)

