"""
routes/transfers.py — Transfer route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
trip-scoped paths (/trips/:id/transfers) and /transfers/:id/complete.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - Completion commits first, then reconciles best-effort: a failed refresh
    is reported in `warnings` and never undoes the completion.

Endpoints:
  GET   /trips/:id/transfers        → 200  refresh pending set, list all
  POST  /trips/:id/transfers        → 201  manual pending transfer
  POST  /trips/:id/transfers/reset  → 200  soft / hard reconciliation
  PATCH /transfers/:id/complete     → 200  receiver confirms payment
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.transfer import Transfer
from backend.app.routes import ledger_policy
from backend.app.schemas.transfer_schema import CreateTransferSchema, ResetTransfersSchema
from backend.app.services import transfer_service

transfers_bp = Blueprint("transfers", __name__)


def _serialize_transfer(t: Transfer) -> dict:
    """Converts a Transfer ORM object to a plain dict for JSON output."""
    return {
        "id": t.id,
        "trip_id": t.trip_id,
        "from_username": t.from_username,
        "to_username": t.to_username,
        "amount": str(t.amount),  # Decimal → string
        "status": t.status.value,
        "created_by": t.created_by,
        "created_at": t.created_at.isoformat(),
        "completed_at": t.completed_at.isoformat() if t.completed_at else None,
    }


@transfers_bp.route("/trips/<int:trip_id>/transfers", methods=["GET"])
@require_auth
def list_transfers(trip_id: int):
    """GET /trips/:id/transfers — Pending and completed transfers, newest first."""
    transfers, warnings = transfer_service.list_transfers(
        trip_id=trip_id,
        actor=g.username,
        session=db.session,
        policy=ledger_policy(),
    )
    return jsonify({
        "data": [_serialize_transfer(t) for t in transfers],
        "warnings": warnings,
    }), 200


@transfers_bp.route("/trips/<int:trip_id>/transfers", methods=["POST"])
@require_auth
def create_transfer(trip_id: int):
    """POST /trips/:id/transfers — File a manual pending transfer."""
    data = CreateTransferSchema().load(request.get_json(force=True) or {})
    transfer = transfer_service.create_transfer(
        trip_id=trip_id,
        actor=g.username,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": _serialize_transfer(transfer), "warnings": []}), 201


@transfers_bp.route("/trips/<int:trip_id>/transfers/reset", methods=["POST"])
@require_auth
def reset_transfers(trip_id: int):
    """
    POST /trips/:id/transfers/reset — Rebuild pending transfers now.

    Body: {"mode": "soft" | "hard"} (default soft). Hard also clears
    completed transfers.
    """
    data = ResetTransfersSchema().load(request.get_json(silent=True) or {})
    result = transfer_service.reset_transfers(
        trip_id=trip_id,
        actor=g.username,
        mode=data["mode"],
        session=db.session,
        policy=ledger_policy(),
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@transfers_bp.route("/transfers/<int:transfer_id>/complete", methods=["PATCH"])
@require_auth
def complete_transfer(transfer_id: int):
    """PATCH /transfers/:id/complete — Receiver confirms the money arrived."""
    transfer = transfer_service.complete_transfer(
        transfer_id=transfer_id,
        actor=g.username,
        session=db.session,
    )
    db.session.commit()
    payload = _serialize_transfer(transfer)

    warnings = transfer_service.reconcile_best_effort(
        transfer.trip_id, g.username, db.session, policy=ledger_policy(),
    )
    return jsonify({"data": payload, "warnings": warnings}), 200
