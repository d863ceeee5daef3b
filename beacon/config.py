"""
Configuration: config.toml plus a few environment overrides.

Paths come from the environment (BEACON_CONFIG, BEACON_DB) so a container can
mount them anywhere; everything else lives in the TOML file.
"""
from __future__ import annotations

import os
import tomllib
from typing import NamedTuple

from werkzeug.security import check_password_hash

from .errors import ConfigError

DEFAULT_CONFIG_PATH = "./config.toml"
DEFAULT_DB_PATH = "./beacon.db"

DEFAULT_IMAGES = ("https://placehold.co/400",)
DEFAULT_MESSAGES = ("The last heartbeat received from {0} was {1} hour{2} ago.",)

STATE_SECTIONS = ("alive", "uncertain", "missing", "incapacitated", "dead")


class StateAppearance(NamedTuple):
    images: tuple
    messages: tuple


class ServerConfig(NamedTuple):
    name: str
    full_name: str
    utc_offset: int
    heartbeat_auth_hash: str
    pow_secret: str
    pow_difficulty: int
    tick_interval: int  # minutes
    time_until_uncertain: int  # hours
    time_until_missing: int  # hours
    minimum_uptime: int  # minutes
    appearance: dict
    db_path: str = DEFAULT_DB_PATH
    trust_proxy: bool = False
    notify_url: str = ""
    notify_token: str = ""

    @property
    def seconds_until_uncertain(self) -> int:
        return self.time_until_uncertain * 60 * 60

    @property
    def seconds_until_missing(self) -> int:
        return self.time_until_missing * 60 * 60

    @property
    def minimum_uptime_seconds(self) -> int:
        return self.minimum_uptime * 60


def _table(data, key):
    table = data.get(key, {})
    if not isinstance(table, dict):
        raise ConfigError(f"[{key}] must be a table")
    return table


def _appearance(section, where) -> StateAppearance:
    if not isinstance(section, dict):
        raise ConfigError(f"[{where}] must be a table")
    images = section.get("images") or DEFAULT_IMAGES
    messages = section.get("messages") or DEFAULT_MESSAGES
    for key, values in (("images", images), ("messages", messages)):
        if not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values):
            raise ConfigError(f"'{key}' in [{where}] must be a list of strings")
    return StateAppearance(images=tuple(images), messages=tuple(messages))


def _require(table, key, where):
    if key not in table:
        raise ConfigError(f"missing '{key}' in [{where}]")
    return table[key]


def _non_negative_int(table, key, where):
    value = _require(table, key, where)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ConfigError(f"'{key}' in [{where}] must be a non-negative integer")
    return value


def validate_password_hash(pwhash: str) -> None:
    if not isinstance(pwhash, str):
        raise ConfigError("heartbeat_auth_hash must be a string")
    if not pwhash:
        raise ConfigError("heartbeat_auth_hash is empty; run `python -m beacon hash-password`")
    if pwhash.count("$") < 2:
        raise ConfigError("heartbeat_auth_hash must look like method$salt$hash")
    try:
        # werkzeug raises ValueError for unknown methods or malformed params
        check_password_hash(pwhash, "")
    except ValueError as e:
        raise ConfigError(f"heartbeat_auth_hash is not a usable hash: {e}") from e


def parse_config(data: dict, db_path: str = DEFAULT_DB_PATH) -> ServerConfig:
    """Build a validated ServerConfig from an already-parsed TOML mapping."""
    g = _table(data, "global")
    p = _table(data, "pow")
    s = _table(data, "state")
    server = _table(data, "server")
    notify = _table(data, "notify")

    pwhash = _require(g, "heartbeat_auth_hash", "global")
    validate_password_hash(pwhash)

    difficulty = _require(p, "difficulty", "pow")
    if not isinstance(difficulty, int) or isinstance(difficulty, bool) or not 1 <= difficulty <= 5:
        raise ConfigError("[pow] difficulty must be an integer from 1 to 5")
    secret = _require(p, "secret", "pow")
    if not secret:
        raise ConfigError("[pow] secret must not be empty")

    tick_interval = _non_negative_int(s, "tick_interval", "state")
    if tick_interval == 0:
        raise ConfigError("[state] tick_interval must be at least 1 minute")

    utc_offset = g.get("utc_offset", 0)
    if not isinstance(utc_offset, int) or isinstance(utc_offset, bool) or not -12 <= utc_offset <= 14:
        raise ConfigError("[global] utc_offset must be a whole number of hours from -12 to 14")

    appearance = {key: _appearance(s.get(key, {}), f"state.{key}") for key in STATE_SECTIONS}

    return ServerConfig(
        name=str(_require(g, "name", "global")),
        full_name=str(g.get("full_name") or g["name"]),
        utc_offset=utc_offset,
        heartbeat_auth_hash=pwhash,
        pow_secret=str(secret),
        pow_difficulty=difficulty,
        tick_interval=tick_interval,
        time_until_uncertain=_non_negative_int(s, "time_until_uncertain", "state"),
        time_until_missing=_non_negative_int(s, "time_until_missing", "state"),
        minimum_uptime=_non_negative_int(s, "minimum_uptime", "state"),
        appearance=appearance,
        db_path=db_path,
        trust_proxy=bool(server.get("trust_proxy", False)),
        notify_url=str(notify.get("url", "")),
        notify_token=os.environ.get("BEACON_NOTIFY_TOKEN", str(notify.get("token", ""))),
    )


def load_config(path: str | None = None, db_path: str | None = None) -> ServerConfig:
    """Load config.toml; any problem is a ConfigError, the server must not start."""
    path = path or os.environ.get("BEACON_CONFIG", DEFAULT_CONFIG_PATH)
    db_path = db_path or os.environ.get("BEACON_DB", DEFAULT_DB_PATH)
    if not os.path.exists(path):
        raise ConfigError(f"configuration file is missing or not accessible at: {path}")
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"could not parse {path}: {e}") from e
    return parse_config(data, db_path=db_path)
