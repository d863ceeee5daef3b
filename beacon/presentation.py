"""Values handed to the page templates."""
import random
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

from .errors import FutureHeartbeatError
from .liveness import LifeState

HIDE_CSS_ID = "hidden"
DEAD_CSS_ID = "dead"

STATE_COLORS = {
    LifeState.ALIVE: "#00cd00",
    LifeState.PROBABLY_ALIVE: "#b1d000",
    LifeState.MISSING_OR_DEAD: "#d80000",
    LifeState.INCAPACITATED: "#515cef",
    LifeState.DEAD: "#828282",
}

# config section holding the images/messages for each state
APPEARANCE_KEYS = {
    LifeState.ALIVE: "alive",
    LifeState.PROBABLY_ALIVE: "uncertain",
    LifeState.MISSING_OR_DEAD: "missing",
    LifeState.INCAPACITATED: "incapacitated",
    LifeState.DEAD: "dead",
}

# states whose message mentions how long it has been
ELAPSED_STATES = frozenset({
    LifeState.PROBABLY_ALIVE,
    LifeState.MISSING_OR_DEAD,
    LifeState.INCAPACITATED,
})


def format_timestamp(unix_seconds, utc_offset=0):
    """RFC 2822 date for *unix_seconds* in a fixed UTC offset (hours)."""
    tz = timezone(timedelta(hours=utc_offset))
    return format_datetime(datetime.fromtimestamp(int(unix_seconds), tz))


def display_name(config, state):
    # short name while alive, full name for anything worse
    return config.name if state is LifeState.ALIVE else config.full_name


def elapsed_hours(last_heartbeat, now):
    if last_heartbeat > now:
        raise FutureHeartbeatError(
            f"last heartbeat {last_heartbeat} is after now {now}")
    hours = int((now - last_heartbeat) / 3600 + 0.5)
    # never say "0 hours ago"
    return max(hours, 1)


def format_message(template, name, hours=None):
    """Fill {0} name, {1} hours and {2} plural suffix into a configured message."""
    text = template.replace("{0}", name)
    if hours is not None:
        text = text.replace("{1}", str(hours))
        text = text.replace("{2}", "s" if hours > 1 else "")
    return text


def status_view(ctx, now=None, rng=None):
    """Everything the index template needs, read from *ctx* one field at a time.

    Without *now* the clock is read after the last heartbeat, so a heartbeat
    accepted meanwhile on another thread is never later than "now".
    """
    rng = rng or random.SystemRandom()
    config = ctx.config
    state = ctx.current_state()
    appearance = config.appearance[APPEARANCE_KEYS[state]]
    name = display_name(config, state)

    hours = None
    if state in ELAPSED_STATES:
        last_seen = ctx.last_heartbeat()
        if now is None:
            now = ctx.now()
        hours = elapsed_hours(last_seen, now)

    note = ctx.current_note()
    return {
        "name": name,
        "status_title": state.title,
        "status_color": STATE_COLORS[state],
        "status_image": rng.choice(appearance.images),
        "status_message": format_message(rng.choice(appearance.messages), name, hours),
        "heartbeats": ctx.displayed_heartbeats(),
        "show_note": "" if note else HIDE_CSS_ID,
        "note_message": note or "",
        "is_dead": DEAD_CSS_ID if state in (LifeState.DEAD, LifeState.MISSING_OR_DEAD) else "",
    }


def heartbeat_view(ctx):
    state = ctx.current_state()
    note = ctx.current_note()
    return {
        "name": display_name(ctx.config, state),
        "show_note": "" if note else HIDE_CSS_ID,
        "note_message": note or "",
    }
