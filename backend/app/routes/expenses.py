"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 because this blueprint owns both the
trip-scoped paths (/trips/:id/expenses) and the expense-ID path
(/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries.

Reconciliation: create and delete commit first, then refresh the trip's
pending transfers with transfer_service.reconcile_best_effort(). A failed
refresh shows up in `warnings`; the expense change itself still succeeds.

Endpoints:
  POST   /trips/:id/expenses   → 201  create expense
  GET    /trips/:id/expenses   → 200  list expenses
  DELETE /expenses/:id         → 200  delete expense
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.expense import Expense
from backend.app.routes import ledger_policy
from backend.app.schemas.expense_schema import CreateExpenseSchema
from backend.app.services import expense_service, transfer_service

expenses_bp = Blueprint("expenses", __name__)


def _serialize_expense(expense: Expense) -> dict:
    """Converts an Expense ORM object to a plain dict for JSON output."""
    return {
        "id": expense.id,
        "trip_id": expense.trip_id,
        "payer_username": expense.payer_username,
        "amount": str(expense.amount),  # Decimal → string
        "description": expense.description,
        "category": expense.category,
        "participants": list(expense.participants or []),
        "created_at": expense.created_at.isoformat(),
    }


@expenses_bp.route("/trips/<int:trip_id>/expenses", methods=["POST"])
@require_auth
def create_expense(trip_id: int):
    """POST /trips/:id/expenses — Record an expense paid by the caller."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        trip_id=trip_id,
        caller=g.username,
        data=data,
        session=db.session,
    )
    db.session.commit()
    payload = _serialize_expense(expense)

    warnings = transfer_service.reconcile_best_effort(
        trip_id, g.username, db.session, policy=ledger_policy(),
    )
    return jsonify({"data": payload, "warnings": warnings}), 201


@expenses_bp.route("/trips/<int:trip_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(trip_id: int):
    """GET /trips/:id/expenses — List a trip's expenses, newest first."""
    expenses = expense_service.list_expenses(
        trip_id=trip_id,
        caller=g.username,
        session=db.session,
    )
    return jsonify({
        "data": [_serialize_expense(e) for e in expenses],
        "warnings": [],
    }), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Delete an expense (payer only)."""
    trip_id = expense_service.delete_expense(
        expense_id=expense_id,
        caller=g.username,
        session=db.session,
    )
    db.session.commit()

    warnings = transfer_service.reconcile_best_effort(
        trip_id, g.username, db.session, policy=ledger_policy(),
    )
    return jsonify({
        "data": {
            "deleted": True,
            "expense_id": expense_id,
        },
        "warnings": warnings,
    }), 200
