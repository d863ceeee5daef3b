"""
Process-wide server context.

Every piece of mutable shared state lives here behind its own lock, so a rate
limit lookup never waits on a status read and vice versa. Locks are held for
one read or one write; nothing here holds a lock across I/O.
"""
from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

from . import database
from .errors import FutureHeartbeatError
from .guarded import GuardedValue
from .liveness import HeartbeatDisplay, LifeState, Limits, next_state, suppressed_by_uptime
from .pow import MAX_STREAMS, ChallengeHub, PowEngine
from .ratelimit import RateLimiter

log = logging.getLogger(__name__)

MAX_DISPLAYED_HEARTBEATS = database.MAX_DISPLAYED_HEARTBEATS


class ServerContext:
    def __init__(self, config, initial, *, clock: Callable[[], float] = time.time,
                 start_time: Optional[int] = None, notifier=None, persist: bool = True):
        self.config = config
        self.clock = clock
        self.password_hash = config.heartbeat_auth_hash
        self.limits = Limits(
            uncertain=config.seconds_until_uncertain,
            missing=config.seconds_until_missing,
            minimum_uptime=config.minimum_uptime_seconds,
        )
        boot = int(clock()) if start_time is None else int(start_time)
        self.server_start_time = GuardedValue(boot)

        self._state_lock = threading.Lock()
        self._state = GuardedValue(initial.state)

        self._heartbeat_lock = threading.Lock()
        self._last_heartbeat = GuardedValue(int(initial.last_heartbeat))

        self._note_lock = threading.Lock()
        self._note = initial.note

        self._display_lock = threading.Lock()
        self._display = deque(initial.heartbeat_display, maxlen=MAX_DISPLAYED_HEARTBEATS)
        while len(self._display) < MAX_DISPLAYED_HEARTBEATS:
            self._display.append(HeartbeatDisplay())

        self._baked_lock = threading.Lock()
        self._baked = ""

        self.rate_limiter = RateLimiter()
        self.pow = PowEngine(config.pow_secret, config.pow_difficulty)
        self.hub = ChallengeHub(max_subscribers=MAX_STREAMS)
        self.notifier = notifier
        self.db_path = config.db_path if persist else None

    # -- clock -------------------------------------------------------------

    def now(self) -> int:
        return int(self.clock())

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def uptime(self, now: int) -> int:
        return now - self.server_start_time.get()

    # -- reads ---------------------------------------------------------------

    def current_state(self) -> LifeState:
        with self._state_lock:
            return self._state.get()

    def last_heartbeat(self) -> int:
        with self._heartbeat_lock:
            return self._last_heartbeat.get()

    def current_note(self) -> Optional[str]:
        with self._note_lock:
            return self._note

    def displayed_heartbeats(self) -> list:
        with self._display_lock:
            return list(self._display)

    # -- writes (admission pipeline and ticker only) -------------------------

    def set_state(self, state: LifeState) -> None:
        with self._state_lock:
            self._state.set(state)

    def apply_note(self, remove_current: bool, updated: str) -> None:
        with self._note_lock:
            if remove_current:
                self._note = None
            elif updated:
                self._note = updated

    def commit_heartbeat(self) -> int:
        """Move the last heartbeat to the current time and return that time.

        The clock is read under the lock so concurrent commits stay ordered.
        """
        with self._heartbeat_lock:
            previous = self._last_heartbeat.get()
            now = self.now()
            if previous > now:
                raise FutureHeartbeatError(
                    f"last heartbeat {previous} is later than now {now}")
            self._last_heartbeat.set(now)
        return now

    def push_display(self, entry: HeartbeatDisplay) -> None:
        with self._display_lock:
            # maxlen drops the oldest entry off the right end
            self._display.appendleft(entry)

    # -- state machine -------------------------------------------------------

    def update(self, now: Optional[int] = None) -> Optional[LifeState]:
        """Re-evaluate the liveness state; returns the new state if it changed.

        Called by the ticker, by status reads and after every accepted
        heartbeat. Without *now* the clock is read after the last heartbeat,
        so a heartbeat landing concurrently can't appear to be in the future.
        """
        last_seen = self.last_heartbeat()
        if now is None:
            now = self.now()
        if last_seen > now:
            raise FutureHeartbeatError(
                f"last heartbeat {last_seen} happened after now {now}")
        elapsed = now - last_seen

        with self._state_lock:
            current = self._state.get()
            candidate = next_state(current, elapsed, self.limits)
            if candidate is None:
                return None
            if suppressed_by_uptime(candidate, self.uptime(now), self.limits):
                log.info("holding back %s -> %s, server too young", current.name, candidate.name)
                return None
            self._state.set(candidate)

        log.info("state %s -> %s (%ds since last heartbeat)", current.name, candidate.name, elapsed)
        self.bake_status()
        if self.db_path:
            database.record_state(self.db_path, candidate, now)
        if self.notifier is not None:
            self.notifier.state_changed(current, candidate, last_seen, now)
        return candidate

    # -- response cache ------------------------------------------------------

    def bake_status(self) -> str:
        """Serialize the status payload once and keep it for every reader."""
        body = json.dumps({
            "status": self.current_state().title,
            "last_heartbeat": self.last_heartbeat(),
            "active_note": self.current_note() or "",
        })
        with self._baked_lock:
            self._baked = body
        return body

    def status_json(self) -> str:
        with self._baked_lock:
            baked = self._baked
        if not baked:
            # nothing changed since boot yet
            baked = self.bake_status()
        return baked
