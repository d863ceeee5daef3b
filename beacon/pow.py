"""
Proof-of-work challenges for the heartbeat endpoint.

Challenges are never stored. A seed is sha256(secret + timestamp_ms), so the
server can re-derive it from the timestamp a client sends back, while nobody
without the secret can predict the next one. Solutions are bound to the
client address: sha256(address + seed + nonce) must start with N zero hex
digits.
"""
from __future__ import annotations

import hashlib
import json
import logging
import queue
import threading
import time
from typing import NamedTuple, Optional

log = logging.getLogger(__name__)

# milliseconds between broadcast challenges
CHALLENGE_INTERVAL = 500
# milliseconds a challenge stays solvable
CHALLENGE_VALID_PERIOD = 10000
# seconds before a challenge stream is closed and the client reconnects
STREAM_LIFETIME = 30
# open challenge streams at once; keep below the worker thread count
MAX_STREAMS = 4

MAX_NONCE = 2 ** 64 - 1


def difficulty_threshold(tier: int) -> int:
    """128-bit target for tier 1..5, i.e. 0x0fff..., 0x00ff..., and so on."""
    return (1 << (128 - 4 * tier)) - 1


DIFFICULTIES = tuple(
    (difficulty_threshold(tier), "0" * tier) for tier in range(1, 6)
)


class Challenge(NamedTuple):
    seed: str
    difficulty: str  # 32 hex digits, zero padded
    timestamp_ms: int

    def to_message(self, user_address: str) -> str:
        return json.dumps({
            "user_address": user_address,
            "seed": self.seed,
            "difficulty": self.difficulty,
            "timestamp": self.timestamp_ms,
        })


class PowSolution(NamedTuple):
    nonce: int
    hash: str
    timestamp_ms: int

    @classmethod
    def from_json(cls, data) -> "PowSolution":
        if not isinstance(data, dict):
            raise ValueError("pow must be an object")
        nonce = data.get("nonce")
        hash_ = data.get("hash")
        ts = data.get("timestamp_ms")
        if not isinstance(nonce, int) or isinstance(nonce, bool) or not 0 <= nonce <= MAX_NONCE:
            raise ValueError("pow.nonce must be an unsigned 64-bit integer")
        if not isinstance(hash_, str):
            raise ValueError("pow.hash must be a string")
        if not isinstance(ts, int) or isinstance(ts, bool) or ts < 0:
            raise ValueError("pow.timestamp_ms must be a non-negative integer")
        return cls(nonce=nonce, hash=hash_, timestamp_ms=ts)


def current_timestamp_ms() -> int:
    return int(time.time() * 1000)


def sha256_hex(message: str) -> str:
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def generate_seed(secret: str, timestamp_ms: int) -> str:
    return sha256_hex(f"{secret}{timestamp_ms}")


def solution_hash(address: str, seed: str, nonce: int) -> str:
    return sha256_hex(f"{address}{seed}{nonce}")


class PowEngine:
    """Generates and verifies challenges for a fixed secret and difficulty tier."""

    def __init__(self, secret: str, difficulty: int, *, valid_period: int = CHALLENGE_VALID_PERIOD):
        if not 1 <= difficulty <= 5:
            raise ValueError("difficulty tier must be 1..5")
        self._secret = secret
        self.difficulty = difficulty
        self.threshold, self.prefix = DIFFICULTIES[difficulty - 1]
        self.valid_period = valid_period

    def challenge(self, timestamp_ms: Optional[int] = None) -> Challenge:
        if timestamp_ms is None:
            timestamp_ms = current_timestamp_ms()
        return Challenge(
            seed=generate_seed(self._secret, timestamp_ms),
            difficulty=format(self.threshold, "032x"),
            timestamp_ms=timestamp_ms,
        )

    def verify(self, address: str, solution: PowSolution, now_ms: Optional[int] = None) -> bool:
        if now_ms is None:
            now_ms = current_timestamp_ms()

        age = now_ms - solution.timestamp_ms
        if age < 0 or age > self.valid_period:
            return False

        seed = generate_seed(self._secret, solution.timestamp_ms)
        expected = solution_hash(address, seed, solution.nonce)

        if solution.hash.lower() != expected:
            return False
        return expected.startswith(self.prefix)


class ChallengeHub:
    """Fan-out of challenge messages to stream subscribers.

    Each subscriber gets a bounded queue; one that falls behind is dropped
    instead of slowing the publisher down.
    """

    def __init__(self, *, max_queue: int = 16, max_subscribers: Optional[int] = None) -> None:
        self._max_queue = max(2, int(max_queue))
        self._max_subscribers = max_subscribers
        self._lock = threading.Lock()
        self._subscribers: set[queue.Queue] = set()

    def subscribe(self) -> Optional[queue.Queue]:
        """New subscriber queue, or None when the hub is at capacity."""
        subscriber: queue.Queue = queue.Queue(maxsize=self._max_queue)
        with self._lock:
            if self._max_subscribers is not None and len(self._subscribers) >= self._max_subscribers:
                return None
            self._subscribers.add(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(subscriber)

    def is_subscribed(self, subscriber: queue.Queue) -> bool:
        with self._lock:
            return subscriber in self._subscribers

    def publish(self, challenge: Challenge) -> int:
        """Hand *challenge* to every subscriber; returns how many got it."""
        stale: list[queue.Queue] = []
        delivered = 0
        with self._lock:
            for subscriber in self._subscribers:
                try:
                    subscriber.put_nowait(challenge)
                    delivered += 1
                except queue.Full:
                    stale.append(subscriber)
            for subscriber in stale:
                self._subscribers.discard(subscriber)
        if stale:
            log.debug("dropped %d slow challenge subscriber(s)", len(stale))
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


def stream_challenges(hub: ChallengeHub, subscriber: queue.Queue, user_address: str, *,
                      first: Optional[Challenge] = None, keepalive: float = 15.0,
                      lifetime: float = STREAM_LIFETIME, clock=time.monotonic):
    """Server-sent event generator for one connected client.

    *first* is sent straight away so a new client can start solving without
    waiting for the next broadcast. The stream ends after *lifetime* seconds
    and the browser's EventSource reconnects, so no connection holds a worker
    thread for long.
    """
    deadline = clock() + lifetime
    try:
        if first is not None:
            yield f"data: {first.to_message(user_address)}\n\n"
        while hub.is_subscribed(subscriber):
            remaining = deadline - clock()
            if remaining <= 0:
                break
            try:
                challenge = subscriber.get(timeout=min(keepalive, remaining))
            except queue.Empty:
                yield ": keep-alive\n\n"
                continue
            yield f"data: {challenge.to_message(user_address)}\n\n"
    finally:
        hub.unsubscribe(subscriber)
