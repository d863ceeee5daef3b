"""Operator commands: `python -m beacon <command>`."""
import os

import click
from werkzeug.security import generate_password_hash

from . import database
from .config import DEFAULT_DB_PATH
from .liveness import LifeState
from .presentation import format_timestamp


def _db_path(value):
    return value or os.environ.get("BEACON_DB", DEFAULT_DB_PATH)


@click.group()
def main():
    """Liveness beacon administration."""


@main.command("hash-password")
@click.password_option()
def hash_password(password):
    """Print a heartbeat_auth_hash value for config.toml."""
    click.echo(generate_password_hash(password))


@main.command("set-state")
@click.argument("state")
@click.option("--db", "db_path", default=None, help="Store path (default $BEACON_DB or ./beacon.db).")
def set_state(state, db_path):
    """Record a manual STATE (e.g. dead, incapacitated, alive).

    The running server keeps its in-memory state; the new value is loaded at
    the next start. A fresh heartbeat always brings the state back to alive.
    """
    try:
        new_state = LifeState.from_name(state)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="STATE")
    path = _db_path(db_path)
    database.init_db_and_migrate(path)
    if not database.record_state(path, new_state):
        raise click.ClickException(f"could not write {path}")
    click.echo(f"state set to {new_state.title}")


@main.command("history")
@click.option("--db", "db_path", default=None)
@click.option("-n", "limit", default=20, show_default=True)
@click.option("--utc-offset", default=0, show_default=True)
def history(db_path, limit, utc_offset):
    """Show the latest accepted heartbeats."""
    path = _db_path(db_path)
    if not os.path.exists(path):
        raise click.ClickException(f"no store at {path}")
    for entry in database.heartbeat_history(path, limit):
        click.echo(f"{format_timestamp(entry.timestamp, utc_offset)}  {entry.from_address}  {entry.message or '-'}")


@main.command("serve")
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=lambda: int(os.environ.get("PORT", 3000)), show_default="$PORT or 3000")
def serve(host, port):
    """Run the development server (use gunicorn in production)."""
    from .web import create_app

    app = create_app()
    app.run(host=host, port=port, threaded=True)
