"""Tests for beacon.presentation."""
import random

import pytest

from beacon.admission import HeartbeatRequest, admit
from beacon.errors import FutureHeartbeatError
from beacon.liveness import LifeState
from beacon.presentation import (
    DEAD_CSS_ID,
    HIDE_CSS_ID,
    elapsed_hours,
    format_message,
    format_timestamp,
    heartbeat_view,
    status_view,
)
from conftest import HOUR, PASSWORD, solve

TEMPLATE = "The last heartbeat received from {0} was {1} hour{2} ago."
OTHER_ADDR = "198.51.100.4"


def test_format_timestamp_rfc2822():
    assert format_timestamp(0) == "Thu, 01 Jan 1970 00:00:00 +0000"
    assert format_timestamp(0, -5) == "Wed, 31 Dec 1969 19:00:00 -0500"


@pytest.mark.parametrize("seconds,hours", [
    (0, 1), (10 * 60, 1), (90 * 60 - 1, 1), (90 * 60, 2), (5 * HOUR, 5),
])
def test_elapsed_hours_rounds_with_floor_of_one(seconds, hours):
    assert elapsed_hours(1000, 1000 + seconds) == hours


def test_elapsed_hours_future_is_fatal():
    with pytest.raises(FutureHeartbeatError):
        elapsed_hours(2000, 1000)


def test_format_message_plural():
    assert format_message(TEMPLATE, "Max", 1) == "The last heartbeat received from Max was 1 hour ago."
    assert format_message(TEMPLATE, "Max", 3) == "The last heartbeat received from Max was 3 hours ago."


def test_format_message_without_hours_leaves_placeholders():
    assert format_message("{0} is fine {1}", "Max") == "Max is fine {1}"


class TestStatusView:

    def test_alive_uses_short_name(self, ctx, clock):
        view = status_view(ctx, int(clock()), random.Random(1))
        assert view["name"] == "Max"
        assert view["status_title"] == "ALIVE"
        assert view["status_color"] == "#00cd00"
        assert view["show_note"] == HIDE_CSS_ID
        assert view["is_dead"] == ""
        assert len(view["heartbeats"]) == 5

    def test_uncertain_uses_full_name_and_hours(self, ctx, clock):
        clock.advance(3 * HOUR)
        ctx.update()
        view = status_view(ctx, int(clock()), random.Random(1))
        assert view["name"] == "Max Example"
        assert view["status_message"] == (
            "The last heartbeat received from Max Example was 3 hours ago.")

    def test_heartbeat_accepted_mid_render_is_not_in_the_future(self, ctx, clock, monkeypatch):
        clock.advance(3 * HOUR)
        ctx.update()
        read_state = ctx.current_state
        pending = [True]

        def state_then_heartbeat():
            state = read_state()
            if pending:
                pending.pop()
                # another thread lands a heartbeat in the next second
                clock.advance(1)
                request = HeartbeatRequest.from_json({
                    "password": PASSWORD,
                    "pow": solve("test-secret", OTHER_ADDR, ctx.now_ms()),
                })
                assert admit(ctx, request, OTHER_ADDR).accepted
            return state

        monkeypatch.setattr(ctx, "current_state", state_then_heartbeat)
        view = status_view(ctx, rng=random.Random(1))
        assert view["status_title"] == "PROBABLY ALIVE"
        assert view["status_message"] == (
            "The last heartbeat received from Max Example was 1 hour ago.")

    def test_dead_greys_out(self, ctx, clock):
        ctx.set_state(LifeState.DEAD)
        view = status_view(ctx, int(clock()))
        assert view["is_dead"] == DEAD_CSS_ID
        assert view["status_color"] == "#828282"

    def test_note_visible(self, ctx):
        ctx.apply_note(False, "on holiday")
        assert status_view(ctx, ctx.now())["note_message"] == "on holiday"
        assert heartbeat_view(ctx) == {"name": "Max", "show_note": "", "note_message": "on holiday"}
