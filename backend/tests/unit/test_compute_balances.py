"""
tests/unit/test_compute_balances.py — Unit tests for balance_service.calculate_balances,
                                      apply_completed_transfers and build_ledger.

What this file proves:
  - Payer is credited the full amount; each participant owes amount / k.
  - Every current member appears in the result, even with zero activity.
  - The key set is fixed: an expense naming a non-member never adds a key.
  - Sum of net balances is zero (within tolerance) before and after the
    completed-transfer adjustment.
  - A completed transfer D → C of X moves net[D] up and net[C] down by X,
    and leaves the input mapping untouched.
  - build_ledger() wires the pipeline together; the four worked trips
    (single shared dinner, after one repayment, empty trip, departed
    member) produce the expected balances and transfers.

Unit test constraints:
  - No database. The DB-reading helpers of balance_service are patched.
  - Decimal only; no float anywhere.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from backend.app.services.balance_service import (
    DEFAULT_POLICY,
    IdealTransfer,
    LedgerExpense,
    MemberBalance,
    apply_completed_transfers,
    balance_sum,
    build_ledger,
    calculate_balances,
    compute_balances,
)

MEMBERS = ("alice", "bob", "carol")


def _expense(payer: str, amount: str, *participants: str, id: int = 1) -> LedgerExpense:
    return LedgerExpense(
        id=id,
        payer=payer,
        amount=Decimal(amount),
        participants=tuple(participants),
    )


def _row(payer: str, amount: str, participants: list, id: int = 1) -> SimpleNamespace:
    """Mimics the Expense ORM attributes read by normalize_expense()."""
    return SimpleNamespace(
        id=id,
        payer_username=payer,
        amount=Decimal(amount),
        participants=participants,
        category=None,
    )


def _completed(debtor: str, creditor: str, amount: str) -> SimpleNamespace:
    return SimpleNamespace(
        id=99,
        from_username=debtor,
        to_username=creditor,
        amount=Decimal(amount),
    )


# ── Patch targets ──────────────────────────────────────────────────────────

_PATCH_BASE       = "backend.app.services.balance_service"
_PATCH_MEMBERS    = f"{_PATCH_BASE}.get_trip_member_usernames"
_PATCH_EXPENSES   = f"{_PATCH_BASE}.get_trip_expenses"
_PATCH_COMPLETED  = f"{_PATCH_BASE}.get_completed_transfers"


# ── calculate_balances ─────────────────────────────────────────────────────

def test_payer_credited_participants_debited_equal_shares():
    balances = calculate_balances([_expense("alice", "90.00", *MEMBERS)], MEMBERS)

    assert balances["alice"] == MemberBalance(
        paid=Decimal("90.00"), owes=Decimal("30"), net=Decimal("60.00"),
    )
    assert balances["bob"].net == Decimal("-30")
    assert balances["carol"].net == Decimal("-30")


def test_every_member_appears_even_with_zero_activity():
    balances = calculate_balances([_expense("alice", "20.00", "alice", "bob")], MEMBERS)

    assert set(balances) == set(MEMBERS)
    assert balances["carol"] == MemberBalance()


def test_non_member_participant_never_adds_a_key():
    """The filter normally removes this; the calculator must not leak it either."""
    balances = calculate_balances([_expense("alice", "50.00", "alice", "dave")], MEMBERS)

    assert "dave" not in balances
    assert balances["alice"] == MemberBalance()
    assert balance_sum(balances) == Decimal("0")


def test_expense_without_participants_contributes_nothing():
    balances = calculate_balances([_expense("alice", "40.00")], MEMBERS)

    assert all(b == MemberBalance() for b in balances.values())


def test_uneven_division_conserves_within_tolerance():
    expenses = [
        _expense("alice", "100.00", *MEMBERS, id=1),
        _expense("bob", "10.00", "alice", "bob", "carol", id=2),
        _expense("carol", "7.01", "bob", "carol", id=3),
    ]

    balances = calculate_balances(expenses, MEMBERS)

    assert abs(balance_sum(balances)) <= DEFAULT_POLICY.tolerance


# ── apply_completed_transfers ──────────────────────────────────────────────

def test_completed_transfer_moves_both_parties():
    balances = calculate_balances([_expense("alice", "90.00", *MEMBERS)], MEMBERS)

    adjusted = apply_completed_transfers(balances, [_completed("bob", "alice", "30.00")])

    assert adjusted["alice"].net == Decimal("30.00")
    assert adjusted["bob"].net == Decimal("0.00")
    assert adjusted["carol"].net == Decimal("-30")
    assert abs(balance_sum(adjusted)) <= DEFAULT_POLICY.tolerance


def test_adjustment_returns_a_copy():
    balances = calculate_balances([_expense("alice", "90.00", *MEMBERS)], MEMBERS)

    apply_completed_transfers(balances, [_completed("bob", "alice", "30.00")])

    assert balances["bob"].net == Decimal("-30")


def test_transfer_naming_a_departed_member_is_skipped():
    balances = calculate_balances([_expense("alice", "90.00", *MEMBERS)], MEMBERS)

    adjusted = apply_completed_transfers(balances, [_completed("dave", "alice", "30.00")])

    assert adjusted["alice"].net == Decimal("60.00")
    assert "dave" not in adjusted


# ── build_ledger / compute_balances ────────────────────────────────────────

@patch(_PATCH_COMPLETED)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBERS)
def test_shared_dinner_settles_to_two_transfers(mock_members, mock_expenses, mock_completed):
    mock_members.return_value = list(MEMBERS)
    mock_expenses.return_value = [_row("alice", "90.00", list(MEMBERS))]
    mock_completed.return_value = []

    ledger = build_ledger(trip_id=1, session=MagicMock())

    assert ledger.balances["alice"].net == Decimal("60.00")
    assert ledger.balances["bob"].net == Decimal("-30")
    assert ledger.balances["carol"].net == Decimal("-30")
    assert ledger.transfers == [
        IdealTransfer("bob", "alice", Decimal("30.00")),
        IdealTransfer("carol", "alice", Decimal("30.00")),
    ]


@patch(_PATCH_COMPLETED)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBERS)
def test_after_one_repayment_only_the_other_debt_remains(mock_members, mock_expenses, mock_completed):
    mock_members.return_value = list(MEMBERS)
    mock_expenses.return_value = [_row("alice", "90.00", list(MEMBERS))]
    mock_completed.return_value = [_completed("bob", "alice", "30.00")]

    ledger = build_ledger(trip_id=1, session=MagicMock())

    assert ledger.balances["alice"].net == Decimal("30.00")
    assert ledger.balances["bob"].net == Decimal("0.00")
    assert ledger.transfers == [IdealTransfer("carol", "alice", Decimal("30.00"))]


@patch(_PATCH_COMPLETED)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBERS)
def test_include_completed_false_ignores_repayments(mock_members, mock_expenses, mock_completed):
    mock_members.return_value = list(MEMBERS)
    mock_expenses.return_value = [_row("alice", "90.00", list(MEMBERS))]
    mock_completed.return_value = [_completed("bob", "alice", "30.00")]

    ledger = build_ledger(trip_id=1, session=MagicMock(), include_completed=False)

    assert len(ledger.transfers) == 2
    mock_completed.assert_not_called()


@patch(_PATCH_COMPLETED)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBERS)
def test_trip_without_members_is_empty_not_an_error(mock_members, mock_expenses, mock_completed):
    mock_members.return_value = []

    ledger = build_ledger(trip_id=1, session=MagicMock())

    assert ledger.balances == {}
    assert ledger.transfers == []
    assert ledger.expenses == ()
    mock_expenses.assert_not_called()


@patch(_PATCH_COMPLETED)
@patch(_PATCH_EXPENSES)
@patch(_PATCH_MEMBERS)
def test_departed_member_expense_is_excluded(mock_members, mock_expenses, mock_completed):
    """Dave left the trip after an Alice+Dave expense was recorded."""
    mock_members.return_value = list(MEMBERS)
    mock_expenses.return_value = [_row("alice", "50.00", ["alice", "dave"])]
    mock_completed.return_value = []

    balances = compute_balances(trip_id=1, session=MagicMock())

    assert set(balances) == set(MEMBERS)
    assert balances["alice"] == MemberBalance()
    assert balance_sum(balances) == Decimal("0")
