#!/usr/bin/env python3
"""
Entry point for the liveness beacon.

- GET  /           public status page
- GET  /heartbeat  heartbeat form
- POST /heartbeat  authenticated heartbeat (proof of work + password)
- GET  /status     JSON status
- GET  /pow        proof-of-work challenge stream (server-sent events)

State is held in memory by a single process, so run exactly one worker, with
more threads than the open challenge streams allowed (pow.MAX_STREAMS):

    gunicorn -w 1 --threads 8 -b 0.0.0.0:3000 'app:create_app()'

Configuration is read from $BEACON_CONFIG (default ./config.toml), the store
from $BEACON_DB (default ./beacon.db).
"""
import os

from beacon.errors import ConfigError
from beacon.web import create_app

__all__ = ["create_app"]

# -------------------------
# Run
# -------------------------
if __name__ == "__main__":
    # In production, use gunicorn as above. This runs a dev server when executed directly.
    try:
        app = create_app()
    except ConfigError as e:
        raise SystemExit(f"Cannot start: {e}")
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 3000)), threaded=True)
