"""
Heartbeat admission pipeline.

    rate limit -> proof of work -> password -> mutate state -> rebuild cache

Each gate short-circuits, so a rejected request never touches the note, the
last heartbeat, the display ring or the store. Rejections are ordinary return
values; only invariant violations escape as exceptions.
"""
from __future__ import annotations

import logging
from typing import NamedTuple, Optional

from werkzeug.security import check_password_hash

from . import database
from .liveness import HeartbeatDisplay, HeartbeatLog
from .pow import PowSolution
from .presentation import format_timestamp

log = logging.getLogger(__name__)

ACCEPTED = 200
BAD_REQUEST = 400
AUTH_FAILED = 401
RATE_LIMITED = 403
POW_INVALID = 406


class HeartbeatRequest(NamedTuple):
    remove_current_note: bool
    updated_note: str
    message: str
    password: str
    pow: PowSolution

    @classmethod
    def from_json(cls, data) -> "HeartbeatRequest":
        """Validate a decoded JSON body; raises ValueError on anything malformed."""
        if not isinstance(data, dict):
            raise ValueError("body must be a JSON object")
        remove = data.get("remove_current_note", False)
        if not isinstance(remove, bool):
            raise ValueError("remove_current_note must be a boolean")
        fields = {}
        for key in ("updated_note", "message", "password"):
            value = data.get(key, "")
            if not isinstance(value, str):
                raise ValueError(f"{key} must be a string")
            fields[key] = value
        return cls(
            remove_current_note=remove,
            updated_note=fields["updated_note"].strip(),
            message=fields["message"].strip(),
            password=fields["password"],
            pow=PowSolution.from_json(data.get("pow")),
        )


class Admission(NamedTuple):
    status: int
    retry_after: Optional[int] = None
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED


def admit(ctx, request: HeartbeatRequest, address: str) -> Admission:
    now = ctx.now()

    decision = ctx.rate_limiter.check(address, now)
    if not decision.allowed:
        return Admission(RATE_LIMITED, decision.retry_after, "rate limited")

    # cheap filter; failing it costs nothing but a new challenge
    if not ctx.pow.verify(address, request.pow, ctx.now_ms()):
        return Admission(POW_INVALID, None, "invalid proof of work")

    if not check_password_hash(ctx.password_hash, request.password):
        period = ctx.rate_limiter.penalize(address, now, decision.previous_period)
        log.info("heartbeat from %s rejected: bad password, blocked for %ds", address, period)
        return Admission(AUTH_FAILED, period, "authentication failed")

    ctx.rate_limiter.clear(address)
    ctx.apply_note(request.remove_current_note, request.updated_note)
    at = ctx.commit_heartbeat()
    ctx.push_display(HeartbeatDisplay(
        timestamp=format_timestamp(at, ctx.config.utc_offset),
        message=request.message or "N/A",
    ))
    if ctx.db_path:
        database.record_heartbeat(
            ctx.db_path, HeartbeatLog(at, address, request.message), ctx.current_note())

    ctx.update()
    # last heartbeat and note changed even if the state didn't
    ctx.bake_status()
    log.info("heartbeat accepted from %s", address)
    return Admission(ACCEPTED, None, "ok")
