"""
routes — Flask blueprints. Parse, validate, call ONE service, commit, respond.
"""

from __future__ import annotations

from flask import current_app

from backend.app.services.balance_service import LedgerPolicy


def ledger_policy() -> LedgerPolicy:
    """The ledger policy configured on the running app."""
    return LedgerPolicy.from_config(current_app.config)
