"""
Background threads.

The ticker re-evaluates the liveness state so the timeout fires even when
nobody visits the page. The broadcaster publishes a fresh PoW challenge every
CHALLENGE_INTERVAL milliseconds.
"""
import logging
import threading

from .errors import InvariantViolation, fatal
from .pow import CHALLENGE_INTERVAL

log = logging.getLogger(__name__)


def tick_once(ctx):
    try:
        return ctx.update()
    except InvariantViolation as e:
        fatal(e)


def ticker_loop(ctx, stop: threading.Event, interval=None):
    interval = interval if interval is not None else ctx.config.tick_interval * 60
    log.info("ticker: starting (every %ss)", interval)
    while not stop.wait(interval):
        log.debug("ticker: updating state")
        tick_once(ctx)


def broadcast_once(ctx):
    challenge = ctx.pow.challenge(ctx.now_ms())
    return ctx.hub.publish(challenge)


def broadcaster_loop(ctx, stop: threading.Event, interval=CHALLENGE_INTERVAL / 1000):
    log.info("pow broadcaster: starting (every %sms)", int(interval * 1000))
    while not stop.wait(interval):
        broadcast_once(ctx)


def start_background_tasks(ctx):
    """Start both daemon threads; setting the returned event stops them."""
    stop = threading.Event()
    threads = [
        threading.Thread(target=ticker_loop, args=(ctx, stop), name="state_ticker", daemon=True),
        threading.Thread(target=broadcaster_loop, args=(ctx, stop), name="pow_broadcaster", daemon=True),
    ]
    for t in threads:
        t.start()
    return stop, threads
