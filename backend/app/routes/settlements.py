"""
routes/settlements.py — Settlement and spending view handlers.

Both views are read-only and compute transfers fresh from the expenses;
neither reads nor writes the persisted pending transfers.

Endpoints (base url_prefix=/api/v1/trips):
  GET /trips/:id/settlements  → 200  balances + transfers + summary
  GET /trips/:id/spending     → 200  summary + per-user / per-category spend
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.routes import ledger_policy
from backend.app.services import settlement_service

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/<int:trip_id>/settlements", methods=["GET"])
@require_auth
def get_settlements(trip_id: int):
    """GET /trips/:id/settlements — Who owes whom, computed from current expenses."""
    result = settlement_service.get_settlement_response(
        trip_id=trip_id,
        actor=g.username,
        session=db.session,
        policy=ledger_policy(),
    )
    return jsonify({"data": result, "warnings": []}), 200


@settlements_bp.route("/<int:trip_id>/spending", methods=["GET"])
@require_auth
def get_spending(trip_id: int):
    """GET /trips/:id/spending — Spending summary of counted expenses."""
    result = settlement_service.get_spending_response(
        trip_id=trip_id,
        actor=g.username,
        session=db.session,
        policy=ledger_policy(),
    )
    return jsonify({"data": result, "warnings": []}), 200
