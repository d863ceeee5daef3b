import pytest
from werkzeug.security import generate_password_hash

from beacon import database
from beacon.config import parse_config
from beacon.context import ServerContext
from beacon.pow import generate_seed, solution_hash

PASSWORD = "correct horse battery staple"
# cheap hash so the suite stays fast
PASSWORD_HASH = generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")

START = 1_700_000_000
HOUR = 60 * 60


class FakeClock:
    """Callable wall clock that only moves when told to."""

    def __init__(self, t=START):
        self.t = float(t)

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds
        return self.t


def config_data(**state_overrides):
    state = {
        "tick_interval": 5,
        "time_until_uncertain": 1,
        "time_until_missing": 24,
        "minimum_uptime": 0,
    }
    state.update(state_overrides)
    return {
        "global": {
            "name": "Max",
            "full_name": "Max Example",
            "utc_offset": 0,
            "heartbeat_auth_hash": PASSWORD_HASH,
        },
        "pow": {"secret": "test-secret", "difficulty": 1},
        "state": state,
    }


def make_config(db_path, **state_overrides):
    return parse_config(config_data(**state_overrides), db_path=str(db_path))


def solve(secret, address, timestamp_ms, prefix="0"):
    """Brute-force a nonce the way a browser would."""
    seed = generate_seed(secret, timestamp_ms)
    nonce = 0
    while True:
        digest = solution_hash(address, seed, nonce)
        if digest.startswith(prefix):
            return {"nonce": nonce, "hash": digest, "timestamp_ms": timestamp_ms}
        nonce += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "beacon.db"


@pytest.fixture
def make_ctx(db_path, clock):
    def _make(persist=True, notifier=None, **state_overrides):
        config = make_config(db_path, **state_overrides)
        initial = database.load_initial_state(str(db_path), config.utc_offset, now=clock())
        return ServerContext(config, initial, clock=clock, start_time=int(clock()),
                             notifier=notifier, persist=persist)
    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()
