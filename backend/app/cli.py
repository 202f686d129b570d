"""
cli.py — `flask ledger` maintenance commands.

  flask --app "backend.app:create_app('development')" ledger reconcile-dirty
      Retries reconciliation for every trip whose last pass failed
      (trips.ledger_dirty = true). Exits non-zero if any trip still fails.
"""

from __future__ import annotations

import click
from flask.cli import AppGroup

from backend.app.extensions import db
from backend.app.routes import ledger_policy
from backend.app.services import transfer_service

ledger_cli = AppGroup("ledger", help="Ledger maintenance commands.")


@ledger_cli.command("reconcile-dirty")
def reconcile_dirty_command() -> None:
    """Rebuild pending transfers for every trip flagged ledger_dirty."""
    healed, failed = transfer_service.reconcile_dirty_trips(db.session, policy=ledger_policy())
    click.echo(f"Reconciled {healed} dirty trip(s); {failed} failed.")
    if failed:
        raise SystemExit(1)
