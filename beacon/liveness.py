"""Liveness states and the silence-driven transition rules."""
from __future__ import annotations

import enum
from typing import NamedTuple, Optional


class LifeState(enum.Enum):
    ALIVE = 0
    # no heartbeat for time_until_uncertain hours
    PROBABLY_ALIVE = 1
    # no heartbeat for time_until_missing hours
    MISSING_OR_DEAD = 2
    # set by a trusted party
    INCAPACITATED = 3
    # set by a trusted party
    DEAD = 4

    @property
    def title(self) -> str:
        return _TITLES[self]

    @property
    def code(self) -> str:
        return str(self.value)

    @classmethod
    def from_code(cls, code) -> "LifeState":
        """Parse the stored numeric code ("0".."4"); anything else is a ValueError."""
        try:
            return cls(int(str(code).strip()))
        except ValueError:
            raise ValueError(f"'{code}' does not represent a valid state") from None

    @classmethod
    def from_name(cls, name: str) -> "LifeState":
        key = name.strip().upper().replace("-", "_").replace(" ", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"unknown state '{name}'") from None

    def __str__(self):
        return self.title


_TITLES = {
    LifeState.ALIVE: "ALIVE",
    LifeState.PROBABLY_ALIVE: "PROBABLY ALIVE",
    LifeState.MISSING_OR_DEAD: "MISSING OR DEAD",
    LifeState.INCAPACITATED: "ALIVE BUT INCAPACITATED",
    LifeState.DEAD: "DEAD",
}

# states the timer may move into; the uptime guard applies to these only
SILENCE_STATES = frozenset({LifeState.PROBABLY_ALIVE, LifeState.MISSING_OR_DEAD})


class Limits(NamedTuple):
    uncertain: int  # seconds
    missing: int  # seconds
    minimum_uptime: int  # seconds


def next_state(current: LifeState, elapsed: int, limits: Limits) -> Optional[LifeState]:
    """Return the state *current* should move to after *elapsed* seconds of silence.

    None means no transition. At most one step is taken per evaluation.
    """
    if current is LifeState.ALIVE:
        if elapsed > limits.uncertain:
            return LifeState.PROBABLY_ALIVE
        return None

    if current is LifeState.PROBABLY_ALIVE:
        new = None
        if elapsed > limits.missing:
            new = LifeState.MISSING_OR_DEAD
        # a fresh heartbeat wins over everything else
        if elapsed < limits.uncertain:
            new = LifeState.ALIVE
        return new

    # MISSING_OR_DEAD, INCAPACITATED, DEAD
    if elapsed < limits.uncertain:
        return LifeState.ALIVE
    return None


def suppressed_by_uptime(candidate: LifeState, uptime: int, limits: Limits) -> bool:
    """True when a young server must not escalate into *candidate* yet."""
    return candidate in SILENCE_STATES and uptime < limits.minimum_uptime


class HeartbeatDisplay(NamedTuple):
    timestamp: str = "N/A"
    message: str = "N/A"


class HeartbeatLog(NamedTuple):
    timestamp: int
    from_address: str
    message: str
