# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_rp

"""
Registry of pending login attempts, keyed by their anti-CSRF state.
"""

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Protocol

from coreason_rp.models import PendingAuthorization
from coreason_rp.utils.logger import logger


class StateStoreProtocol(Protocol):
    """Protocol for storage of pending login attempts."""

    def add(self, pending: PendingAuthorization) -> None: ...

    def consume(self, state: str) -> PendingAuthorization | None:
        """
        Removes and returns the pending attempt for `state`.
        Returns None if it is unknown or expired. An entry can be consumed at most once.
        """
        ...


class PendingStateRegistry:
    """
    In-memory implementation of StateStoreProtocol.

    A lock-guarded ordered map with lazy expiry cleanup. The oldest entries are evicted
    once `max_entries` is reached. Not shared between processes.
    """

    def __init__(self, max_entries: int = 10_000, clock: Callable[[], float] = time.time) -> None:
        self.max_entries = max_entries
        self.clock = clock
        self._entries: OrderedDict[str, PendingAuthorization] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, pending: PendingAuthorization) -> None:
        with self._lock:
            self._purge_expired_locked(self.clock())
            while len(self._entries) >= self.max_entries:
                self._entries.popitem(last=False)
                logger.warning("Pending login registry full, evicting oldest attempt")
            self._entries[pending.state] = pending

    def consume(self, state: str) -> PendingAuthorization | None:
        with self._lock:
            pending = self._entries.pop(state, None)
        if pending is None or pending.is_expired(self.clock()):
            return None
        return pending

    def purge_expired(self) -> int:
        """Drops expired entries and returns how many were removed."""
        with self._lock:
            return self._purge_expired_locked(self.clock())

    def _purge_expired_locked(self, now: float) -> int:
        # With a fixed TTL insertion order is expiry order; consume() re-checks expiry anyway
        removed = 0
        while self._entries:
            state, pending = next(iter(self._entries.items()))
            if not pending.is_expired(now):
                break
            del self._entries[state]
            removed += 1
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, state: object) -> bool:
        with self._lock:
            return state in self._entries
