"""
services/settlement_service.py — Read-only settlement and spending views.

Builds response payloads from balance_service.build_ledger(). The transfer
list in these views is always recomputed from the current expenses and
completed transfers, never read from persisted pending rows, so a view is
correct even when the last reconciliation pass failed.

Nothing here writes to the database.

Layer rules:
  - No Flask imports. Receives plain values and a SQLAlchemy session.
  - Amounts leave this module as 2-decimal strings (quantized by the policy).
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from backend.app.services import trip_service
from backend.app.services.balance_service import (
    DEFAULT_POLICY,
    ZERO,
    IdealTransfer,
    Ledger,
    LedgerExpense,
    LedgerPolicy,
    MemberBalance,
    balance_sum,
    build_ledger,
)

UNCATEGORIZED = "Uncategorized"


@dataclass(frozen=True)
class Summary:
    total: Decimal
    count: int
    average: Decimal


@dataclass(frozen=True)
class SettlementView:
    balances: dict[str, MemberBalance]
    transfers: list[IdealTransfer]
    summary: Summary


# ── Builders ───────────────────────────────────────────────────────────────

def summarize(
        expenses: tuple[LedgerExpense, ...] | list[LedgerExpense],
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> Summary:
    """Total, count and average of the counted expenses. All zero when empty."""
    total = sum((e.amount for e in expenses), ZERO)
    count = len(expenses)
    average = total / count if count else ZERO
    return Summary(
        total=policy.quantize(total),
        count=count,
        average=policy.quantize(average),
    )


def settlement_view(ledger: Ledger, policy: LedgerPolicy = DEFAULT_POLICY) -> SettlementView:
    return SettlementView(
        balances=ledger.balances,
        transfers=ledger.transfers,
        summary=summarize(ledger.expenses, policy),
    )


def compute_settlement(
        trip_id: int,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> SettlementView:
    """
    Balances (with completed transfers netted in), a freshly simplified
    transfer list, and a summary of counted expenses.

    A trip with no members yields empty balances, no transfers and a zero
    summary.
    """
    return settlement_view(build_ledger(trip_id, session, policy=policy), policy)


# ── Serialization ──────────────────────────────────────────────────────────

def _money(value: Decimal, policy: LedgerPolicy) -> str:
    quantized = policy.quantize(value)
    # Division residue can quantize to "-0.00".
    if quantized.is_zero():
        quantized = abs(quantized)
    return str(quantized)


def serialize_balances(
        balances: dict[str, MemberBalance],
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> dict[str, dict]:
    return {
        member: {
            "paid": _money(balance.paid, policy),
            "owes": _money(balance.owes, policy),
            "net":  _money(balance.net, policy),
        }
        for member, balance in balances.items()
    }


def serialize_transfers(transfers: list[IdealTransfer]) -> list[dict]:
    return [
        {
            "from": t.from_username,
            "to": t.to_username,
            "amount": str(t.amount),
        }
        for t in transfers
    ]


def serialize_summary(summary: Summary) -> dict:
    return {
        "total": str(summary.total),
        "count": summary.count,
        "average": str(summary.average),
    }


# ── Response payloads ──────────────────────────────────────────────────────

def get_balance_response(
        trip_id: int,
        actor: str,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> dict:
    """Payload for GET /trips/:id/balances."""
    trip_service.require_trip_access(trip_id, actor, session)
    ledger = build_ledger(trip_id, session, policy=policy)
    return {
        "trip_id": trip_id,
        "balances": serialize_balances(ledger.balances, policy),
        "balance_sum": _money(balance_sum(ledger.balances), policy),
    }


def get_settlement_response(
        trip_id: int,
        actor: str,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Payload for GET /trips/:id/settlements.

    `ledger_dirty` tells the client that the persisted pending transfers may
    lag behind the freshly computed `transfers` below.
    """
    trip = trip_service.require_trip_access(trip_id, actor, session)
    view = compute_settlement(trip_id, session, policy)
    return {
        "trip_id": trip_id,
        "balances": serialize_balances(view.balances, policy),
        "transfers": serialize_transfers(view.transfers),
        "summary": serialize_summary(view.summary),
        "ledger_dirty": trip.ledger_dirty,
    }


def get_spending_response(
        trip_id: int,
        actor: str,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Payload for GET /trips/:id/spending.

    Same summary and transfers as the settlement view, plus the amount each
    member paid and the spend per category over the counted expenses.
    """
    trip_service.require_trip_access(trip_id, actor, session)
    ledger = build_ledger(trip_id, session, policy=policy)
    view = settlement_view(ledger, policy)

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for expense in ledger.expenses:
        by_category[expense.category or UNCATEGORIZED] += expense.amount

    return {
        "trip_id": trip_id,
        "summary": serialize_summary(view.summary),
        "spending_per_user": {
            member: _money(balance.paid, policy)
            for member, balance in view.balances.items()
        },
        "spending_by_category": {
            category: _money(amount, policy)
            for category, amount in by_category.items()
        },
        "transfers": serialize_transfers(view.transfers),
    }
