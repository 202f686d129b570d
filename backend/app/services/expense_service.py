"""
services/expense_service.py — Expense business logic.

Rules enforced here:
  FORBIDDEN (403)              — caller must be a member of the trip's group
  PAYER_NOT_MEMBER (422)       — the payer (the caller) must be a trip member
  PARTICIPANT_NOT_MEMBER (422) — every participant must be a trip member
  FORBIDDEN (403)              — only the payer may delete an expense

Shares are always equal: each participant owes amount / len(participants).
The share itself is never stored; balance_service derives it on every read.

Every successful create or delete changes the ideal transfer list, so the
route follows the commit with transfer_service.reconcile_best_effort().

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives plain values and dicts; returns ORM objects or raises AppError.
  - Services only flush; the route commits.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.expense import Expense
from backend.app.services import trip_service


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise AppError(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
            404,
        )
    return expense


def _validate_payer_is_member(payer: str, trip_id: int, members: set[str]) -> None:
    if payer not in members:
        raise AppError(
            ErrorCode.PAYER_NOT_MEMBER,
            f"User {payer!r} is not a member of trip {trip_id}.",
            422,
        )


def _validate_participants_are_members(
        participants: list[str],
        trip_id: int,
        members: set[str],
) -> None:
    """Raises PARTICIPANT_NOT_MEMBER (422) naming every non-member participant."""
    invalid = [p for p in participants if p not in members]
    if invalid:
        raise AppError(
            ErrorCode.PARTICIPANT_NOT_MEMBER,
            f"Not members of trip {trip_id}: {', '.join(invalid)}.",
            422,
            field="participants",
        )


# ── Public service functions ───────────────────────────────────────────────

def create_expense(
        trip_id: int,
        caller: str,
        data: dict,
        session: Session,
) -> Expense:
    """
    Records a new expense paid by the caller.

    Args:
        trip_id: The trip this expense belongs to.
        caller:  Authenticated username (from flask.g); becomes the payer.
        data:    Validated dict from CreateExpenseSchema. Keys: amount
                 (Decimal), participants (de-duplicated list of usernames),
                 description and category (optional).

    Returns:
        The newly created Expense.
    """
    trip_service.require_trip_access(trip_id, caller, session)

    members = trip_service.get_trip_member_set(trip_id, session)
    _validate_payer_is_member(caller, trip_id, members)

    participants: list[str] = data["participants"]
    _validate_participants_are_members(participants, trip_id, members)

    expense = Expense(
        trip_id=trip_id,
        payer_username=caller,
        amount=data["amount"],
        description=data.get("description"),
        category=data.get("category"),
        participants=participants,
    )
    session.add(expense)
    session.flush()
    session.refresh(expense)
    return expense


def list_expenses(
        trip_id: int,
        caller: str,
        session: Session,
) -> list[Expense]:
    """Returns every expense of the trip, newest first."""
    trip_service.require_trip_access(trip_id, caller, session)

    stmt = (
        select(Expense)
        .where(Expense.trip_id == trip_id)
        .order_by(Expense.created_at.desc(), Expense.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def delete_expense(
        expense_id: int,
        caller: str,
        session: Session,
) -> int:
    """
    Deletes an expense. Only its payer may delete it.

    Returns:
        The trip_id of the deleted expense, so the route can reconcile it.

    Raises:
        AppError(EXPENSE_NOT_FOUND, 404)
        AppError(FORBIDDEN, 403) -- caller has no trip access or is not the payer.
    """
    expense = _get_expense_or_404(expense_id, session)
    trip_id = expense.trip_id

    trip_service.require_trip_access(trip_id, caller, session)

    if expense.payer_username != caller:
        raise AppError(
            ErrorCode.FORBIDDEN,
            "Only the payer can delete this expense.",
            403,
        )

    session.delete(expense)
    session.flush()
    return trip_id
