"""Per-address exponential backoff for failed heartbeat authentication."""
from __future__ import annotations

import ipaddress
import threading
from typing import NamedTuple, Optional

INITIAL_PERIOD = 5 * 60
PERIOD_FACTOR = 2


class RateLimitEntry(NamedTuple):
    period: int  # seconds the block lasts
    expires_at: int  # unix seconds when the block lifts


class Decision(NamedTuple):
    allowed: bool
    retry_after: int = 0
    # period of the entry seen at check time, expired or not
    previous_period: Optional[int] = None


def normalize_address(address: str) -> str:
    """Canonical IP text for a client address; ports are never part of the key."""
    try:
        return str(ipaddress.ip_address(address))
    except ValueError:
        return address


class RateLimiter:
    """Address -> RateLimitEntry table behind a single lock.

    Entries are created on the first failure, doubled on each later failure
    and removed on success. Nothing expires them in the background.
    """

    def __init__(self, *, initial_period: int = INITIAL_PERIOD, factor: int = PERIOD_FACTOR) -> None:
        self._initial = int(initial_period)
        self._factor = int(factor)
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def check(self, address: str, now: int) -> Decision:
        key = normalize_address(address)
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return Decision(True)
        if now < entry.expires_at:
            return Decision(False, entry.expires_at - now, entry.period)
        return Decision(True, 0, entry.period)

    def retry_after(self, address: str, now: int) -> int:
        """Seconds until *address* may try again; 0 when not blocked."""
        decision = self.check(address, now)
        return 0 if decision.allowed else decision.retry_after

    def penalize(self, address: str, now: int, previous_period: Optional[int]) -> int:
        """Record a failed attempt and return the new block period.

        *previous_period* is the one returned by check() for the same request,
        so two racing failures store the same entry rather than doubling twice.
        An entry cleared by a success since then starts over at the initial
        period.
        """
        key = normalize_address(address)
        with self._lock:
            if previous_period is None or key not in self._entries:
                period = self._initial
            else:
                period = previous_period * self._factor
            self._entries[key] = RateLimitEntry(period=period, expires_at=now + period)
        return period

    def clear(self, address: str) -> None:
        key = normalize_address(address)
        with self._lock:
            self._entries.pop(key, None)

    def get(self, address: str) -> Optional[RateLimitEntry]:
        with self._lock:
            return self._entries.get(normalize_address(address))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
