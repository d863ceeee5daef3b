"""HTTP-level tests through Flask's test client."""
import json

import pytest

from beacon import web
from beacon.liveness import LifeState
from beacon.pow import MAX_STREAMS
from beacon.tasks import broadcast_once
from conftest import HOUR, PASSWORD, make_config, solve

ADDR = "127.0.0.1"  # test client default remote address


@pytest.fixture
def app(db_path, clock):
    app = web.create_app(make_config(db_path), clock=clock, start_tasks=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    return app.extensions["beacon"]


def body(ctx, password=PASSWORD, **extra):
    data = {
        "remove_current_note": False,
        "updated_note": "",
        "message": "hi",
        "password": password,
        "pow": solve("test-secret", ADDR, ctx.now_ms()),
    }
    data.update(extra)
    return data


class TestStatus:

    def test_fresh_server(self, client, clock):
        resp = client.get("/status")
        assert resp.status_code == 200
        assert resp.mimetype == "application/json"
        assert resp.get_json() == {
            "status": "ALIVE", "last_heartbeat": int(clock()), "active_note": ""}

    def test_rechecks_state_before_answering(self, client, clock):
        client.get("/status")
        clock.advance(2 * HOUR)
        assert client.get("/status").get_json()["status"] == "PROBABLY ALIVE"


class TestHeartbeat:

    def test_accepted(self, client, ctx, clock):
        clock.advance(30)
        resp = client.post("/heartbeat", json=body(ctx, updated_note="hello"))
        assert resp.status_code == 200
        assert resp.data == b""
        status = client.get("/status").get_json()
        assert status["last_heartbeat"] == int(clock())
        assert status["active_note"] == "hello"

    def test_wrong_password(self, client, ctx):
        resp = client.post("/heartbeat", json=body(ctx, password="nope"))
        assert resp.status_code == 401
        assert resp.headers["Retry-After"] == "300"

    def test_rate_limited(self, client, ctx, clock):
        client.post("/heartbeat", json=body(ctx, password="nope"))
        clock.advance(60)
        resp = client.post("/heartbeat", json=body(ctx))
        assert resp.status_code == 403
        assert resp.headers["Retry-After"] == "240"

    def test_invalid_pow(self, client, ctx):
        data = body(ctx)
        data["pow"]["hash"] = "f" * 64
        resp = client.post("/heartbeat", json=data)
        assert resp.status_code == 406
        assert "Retry-After" not in resp.headers

    @pytest.mark.parametrize("payload", [{"password": PASSWORD}, [], "x"])
    def test_malformed_body(self, client, payload):
        assert client.post("/heartbeat", json=payload).status_code == 400

    def test_not_json(self, client):
        resp = client.post("/heartbeat", data="hello", content_type="text/plain")
        assert resp.status_code == 400


class TestChallengeStream:

    def test_streams_challenges(self, client, ctx):
        resp = client.get("/pow", buffered=False)
        assert resp.status_code == 200
        assert resp.mimetype == "text/event-stream"
        events = resp.iter_encoded()

        # a challenge is sent as soon as the client connects
        first = json.loads(next(events).decode()[len("data: "):])
        assert first["user_address"] == ADDR
        assert first["difficulty"] == "0" + "f" * 31
        assert first["timestamp"] == ctx.now_ms()

        assert broadcast_once(ctx) == 1
        second = json.loads(next(events).decode()[len("data: "):])
        assert second["seed"] == first["seed"]  # the fake clock stood still
        resp.close()

    def test_blocked_address_cannot_connect(self, client, ctx):
        client.post("/heartbeat", json=body(ctx, password="nope"))
        resp = client.get("/pow")
        assert resp.status_code == 403
        assert resp.headers["Retry-After"] == "300"
        assert len(ctx.hub) == 0

    def test_refused_when_streams_are_full(self, client, ctx):
        held = [ctx.hub.subscribe() for _ in range(MAX_STREAMS)]
        resp = client.get("/pow")
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "5"
        assert len(ctx.hub) == len(held)


class TestPages:

    def test_index(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"ALIVE" in resp.data

    def test_heartbeat_form(self, client):
        resp = client.get("/heartbeat")
        assert resp.status_code == 200
        assert b"send-heartbeat-form" in resp.data


class TestInvariantViolation:

    def test_corruption_aborts(self, client, ctx, monkeypatch):
        aborted = []
        monkeypatch.setattr(web, "fatal", aborted.append)
        ctx._state._c = LifeState.DEAD
        resp = client.get("/status")
        assert resp.status_code == 500
        assert len(aborted) == 1
