"""
Flask application: routes, error handlers and startup wiring.

Routes are thin; all decisions are made in beacon.admission, beacon.context
and beacon.pow.
"""
import logging
import os
import sys
import time

from flask import Blueprint, Flask, Response, current_app, render_template, request
from werkzeug.middleware.proxy_fix import ProxyFix

from . import database
from .admission import BAD_REQUEST, RATE_LIMITED, HeartbeatRequest, admit
from .config import load_config
from .context import ServerContext
from .errors import InvariantViolation, fatal
from .notify import StateNotifier
from .pow import stream_challenges
from .presentation import heartbeat_view, status_view
from .tasks import start_background_tasks

log = logging.getLogger(__name__)

bp = Blueprint("beacon", __name__)

SERVICE_UNAVAILABLE = 503
# seconds; open streams end within pow.STREAM_LIFETIME
STREAM_RETRY_AFTER = 5


def configure_logging():
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        stream=sys.stdout,
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_ctx() -> ServerContext:
    return current_app.extensions["beacon"]


def client_address():
    return request.remote_addr or "unknown"


def empty_response(status, retry_after=None):
    resp = Response("", status=status)
    if retry_after is not None:
        resp.headers["Retry-After"] = str(retry_after)
    return resp


# -------------------------
# Pages
# -------------------------
@bp.route("/")
def index():
    ctx = get_ctx()
    ctx.update()
    return render_template("index.html", **status_view(ctx))


@bp.route("/heartbeat", methods=["GET"])
def heartbeat_page():
    return render_template("heartbeat.html", **heartbeat_view(get_ctx()))


# -------------------------
# API
# -------------------------
@bp.route("/status", methods=["GET"])
def status():
    ctx = get_ctx()
    ctx.update()
    return Response(ctx.status_json(), status=200, mimetype="application/json")


@bp.route("/heartbeat", methods=["POST"])
def heartbeat():
    payload = request.get_json(silent=True)
    try:
        hb = HeartbeatRequest.from_json(payload)
    except ValueError as e:
        log.info("malformed heartbeat from %s: %s", client_address(), e)
        return empty_response(BAD_REQUEST)

    result = admit(get_ctx(), hb, client_address())
    return empty_response(result.status, result.retry_after)


@bp.route("/pow", methods=["GET"])
def pow_stream():
    ctx = get_ctx()
    address = client_address()

    # same address-keyed block as the heartbeat endpoint
    wait = ctx.rate_limiter.retry_after(address, ctx.now())
    if wait:
        return empty_response(RATE_LIMITED, wait)

    subscriber = ctx.hub.subscribe()
    if subscriber is None:
        log.info("challenge stream refused for %s: too many open streams", address)
        return empty_response(SERVICE_UNAVAILABLE, STREAM_RETRY_AFTER)
    events = stream_challenges(ctx.hub, subscriber, address, first=ctx.pow.challenge(ctx.now_ms()))
    response = Response(events, mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@bp.app_errorhandler(InvariantViolation)
def invariant_violation(e):
    fatal(e)
    # only reached when fatal() has been replaced, e.g. under test
    return empty_response(500)


# -------------------------
# App factory
# -------------------------
def create_app(config=None, *, clock=time.time, start_tasks=True, notifier=None):
    """Build the app. Configuration or store problems raise ConfigError here."""
    configure_logging()
    config = config or load_config()

    initial = database.load_initial_state(config.db_path, config.utc_offset, now=clock())
    log.info("loaded %r", initial)

    if notifier is None:
        notifier = StateNotifier(config.notify_url, config.notify_token)

    ctx = ServerContext(config, initial, clock=clock, notifier=notifier)

    app = Flask(__name__)
    app.extensions["beacon"] = ctx
    if config.trust_proxy:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1)
    app.register_blueprint(bp)

    if start_tasks:
        stop, _ = start_background_tasks(ctx)
        app.extensions["beacon.stop"] = stop
    else:
        log.info("background tasks disabled")
    return app
