"""
routes/balances.py — Balance route handler.

Layer rules:
  - Call ONE service, return envelope. No business logic. No DB queries.

Endpoints (base url_prefix=/api/v1/trips):
  GET /trips/:id/balances  → 200  {member: {paid, owes, net}} + balance_sum
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.routes import ledger_policy
from backend.app.services import settlement_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:trip_id>/balances", methods=["GET"])
@require_auth
def get_balances(trip_id: int):
    """
    GET /trips/:id/balances

    Balances of current trip members with completed transfers netted in.
    `balance_sum` is "0.00" for every consistent trip.
    """
    result = settlement_service.get_balance_response(
        trip_id=trip_id,
        actor=g.username,
        session=db.session,
        policy=ledger_policy(),
    )
    return jsonify({"data": result, "warnings": []}), 200
