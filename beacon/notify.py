"""
Optional outbound webhook fired when the liveness state changes.

Set [notify] url in config.toml (and token, or BEACON_NOTIFY_TOKEN) to have
every committed transition POSTed as JSON. Delivery is best-effort and runs on
its own thread so a slow receiver never holds up a heartbeat or a tick.
"""
import logging
import threading

import requests

log = logging.getLogger(__name__)

NOTIFY_TIMEOUT = 10


class StateNotifier:
    def __init__(self, url, token="", session=None):
        self.url = url
        self.token = token
        self.session = session or requests.Session()

    @property
    def enabled(self):
        return bool(self.url)

    def payload(self, previous, state, last_heartbeat, now):
        return {
            "from": previous.title,
            "status": state.title,
            "last_heartbeat": last_heartbeat,
            "changed_at": now,
        }

    def send(self, payload):
        headers = {}
        if self.token:
            headers["X-PULSE-TOKEN"] = self.token
        try:
            r = self.session.post(self.url, json=payload, headers=headers, timeout=NOTIFY_TIMEOUT)
            log.info("notify: POST %s -> %s", self.url, r.status_code)
            return r.ok
        except requests.RequestException as e:
            log.warning("notify: POST %s failed: %s", self.url, e)
            return False

    def state_changed(self, previous, state, last_heartbeat, now):
        if not self.enabled:
            return None
        t = threading.Thread(
            target=self.send,
            args=(self.payload(previous, state, last_heartbeat, now),),
            name="state_notifier",
            daemon=True,
        )
        t.start()
        return t
