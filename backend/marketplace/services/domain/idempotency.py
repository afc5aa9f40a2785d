"""
Client message id map.

Maps a client-supplied submission id to the server message id so retried
sends converge on one stored message. Process-local; expired entries are
swept lazily, at most once per sweep interval.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


@dataclass
class IdempotencyEntry:
    """Server message id recorded for a client submission id."""

    message_id: str
    inserted_at: float


class IdempotencyMap:
    """
    TTL map from clientMsgId to message id.

    Lookups never return an entry older than the TTL, even if the periodic
    sweep has not yet removed it.

    Usage:
        ids = IdempotencyMap(ttl_seconds=6 * 3600, sweep_interval=60)
        ids.sweep_if_due()
        message_id = ids.lookup(client_msg_id)
    """

    def __init__(
        self,
        ttl_seconds: float = 6 * 60 * 60,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, IdempotencyEntry] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, client_msg_id: str) -> str | None:
        entry = self._entries.get(client_msg_id)
        if entry is None:
            return None
        if self._clock() - entry.inserted_at > self._ttl:
            del self._entries[client_msg_id]
            return None
        return entry.message_id

    def record(self, client_msg_id: str, message_id: str) -> None:
        self._entries[client_msg_id] = IdempotencyEntry(message_id, self._clock())

    def forget(self, client_msg_id: str) -> None:
        self._entries.pop(client_msg_id, None)

    def sweep_if_due(self) -> int:
        """
        Drop expired entries if the sweep interval has elapsed.

        Returns:
            Number of entries removed (0 when the sweep was skipped).
        """
        now = self._clock()
        if now - self._last_sweep < self._sweep_interval:
            return 0
        self._last_sweep = now

        expired = [k for k, e in self._entries.items() if now - e.inserted_at > self._ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
