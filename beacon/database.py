"""
sqlite store for the beacon.

One single-row `beacon` table (state, last heartbeat, note) and an append-only
`heartbeats` log. The in-memory ServerContext is the authority while the
process runs; this store is only read at boot and written best-effort.
"""
import logging
import sqlite3
import time
from contextlib import closing

from .errors import ConfigError
from .liveness import HeartbeatDisplay, HeartbeatLog, LifeState
from .presentation import format_timestamp

log = logging.getLogger(__name__)

MAX_DISPLAYED_HEARTBEATS = 5


class InitialState:
    def __init__(self, state, last_heartbeat, note, heartbeat_display):
        self.state = state
        self.last_heartbeat = last_heartbeat
        self.note = note
        self.heartbeat_display = heartbeat_display

    def __repr__(self):
        return "InitialState(state=%s, last_heartbeat=%d, note=%r)" % (
            self.state.name, self.last_heartbeat, self.note)


def connect(path):
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def table_columns(db, table):
    cur = db.execute(f"PRAGMA table_info({table})")
    return {row["name"] for row in cur.fetchall()}


def add_column_if_missing(db, table, column_def):
    col_name, sql_def = column_def
    if col_name not in table_columns(db, table):
        db.execute(f"ALTER TABLE {table} ADD COLUMN {col_name} {sql_def}")
        db.commit()


def init_db_and_migrate(path, now=None):
    """Create tables if needed and seed the single beacon row.

    A brand new store starts ALIVE with the first heartbeat at *now*, so a
    fresh install doesn't open by declaring its owner missing.
    """
    now = int(time.time()) if now is None else int(now)
    with closing(connect(path)) as db:
        db.execute("""
            CREATE TABLE IF NOT EXISTS beacon (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                state TEXT NOT NULL,
                last_heartbeat INTEGER NOT NULL,
                note TEXT
            )
        """)
        db.execute("""
            CREATE TABLE IF NOT EXISTS heartbeats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                from_address TEXT,
                message TEXT
            )
        """)
        db.commit()

        add_column_if_missing(db, "beacon", ("state_changed_at", "INTEGER DEFAULT NULL"))

        r = db.execute("SELECT COUNT(*) AS c FROM beacon").fetchone()
        if not r or r["c"] == 0:
            db.execute(
                "INSERT INTO beacon (id, state, last_heartbeat, note) VALUES (1, ?, ?, NULL)",
                (LifeState.ALIVE.code, now),
            )
            db.commit()


def load_initial_state(path, utc_offset=0, now=None):
    """Read everything the core needs at boot. Bad stored data is a ConfigError."""
    init_db_and_migrate(path, now=now)
    with closing(connect(path)) as db:
        row = db.execute("SELECT state, last_heartbeat, note FROM beacon WHERE id = 1").fetchone()
        recent = db.execute(
            "SELECT timestamp, message FROM heartbeats ORDER BY timestamp DESC, id DESC LIMIT ?",
            (MAX_DISPLAYED_HEARTBEATS,),
        ).fetchall()

    try:
        state = LifeState.from_code(row["state"])
    except ValueError as e:
        raise ConfigError(f"stored state is invalid: {e}") from e
    try:
        last_heartbeat = int(row["last_heartbeat"])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"stored last heartbeat is invalid: {row['last_heartbeat']!r}") from e
    if last_heartbeat < 0:
        raise ConfigError(f"stored last heartbeat is negative: {last_heartbeat}")

    display = [
        HeartbeatDisplay(
            timestamp=format_timestamp(r["timestamp"], utc_offset),
            message=r["message"] or "N/A",
        )
        for r in recent
    ]
    while len(display) < MAX_DISPLAYED_HEARTBEATS:
        display.append(HeartbeatDisplay())

    return InitialState(
        state=state,
        last_heartbeat=last_heartbeat,
        note=row["note"] or None,
        heartbeat_display=display,
    )


def record_heartbeat(path, entry: HeartbeatLog, note):
    """Append *entry* to the log and update the beacon row. Best-effort."""
    try:
        with closing(connect(path)) as db:
            db.execute(
                "INSERT INTO heartbeats (timestamp, from_address, message) VALUES (?, ?, ?)",
                (entry.timestamp, entry.from_address, entry.message),
            )
            db.execute(
                "UPDATE beacon SET last_heartbeat = ?, note = ? WHERE id = 1",
                (entry.timestamp, note),
            )
            db.commit()
        return True
    except sqlite3.Error:
        log.exception("failed to persist heartbeat from %s", entry.from_address)
        return False


def record_state(path, state: LifeState, now=None):
    now = int(time.time()) if now is None else int(now)
    try:
        with closing(connect(path)) as db:
            db.execute(
                "UPDATE beacon SET state = ?, state_changed_at = ? WHERE id = 1",
                (state.code, now),
            )
            db.commit()
        return True
    except sqlite3.Error:
        log.exception("failed to persist state %s", state.name)
        return False


def heartbeat_history(path, limit=50):
    with closing(connect(path)) as db:
        rows = db.execute(
            "SELECT timestamp, from_address, message FROM heartbeats ORDER BY id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [HeartbeatLog(r["timestamp"], r["from_address"], r["message"]) for r in rows]
