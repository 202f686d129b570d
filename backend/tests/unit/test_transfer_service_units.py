"""
tests/unit/test_transfer_service_units.py — Unit tests for transfer_service.

What this file proves:
  - complete_transfer: 404 for a missing transfer, 403 for anyone but the
    creditor, 409 for an already completed transfer; the creditor match is
    case- and whitespace-insensitive; completion stamps completed_at.
  - reconcile: deletes then inserts one pending row per ideal transfer,
    clears ledger_dirty, and a hard reset recomputes without completed
    transfers.
  - reconcile_best_effort: a storage failure rolls back, marks the trip
    dirty and returns a LEDGER_STALE warning instead of raising.
  - reconcile_dirty_trips: counts healed and failed trips independently.
  - create_transfer: self-transfer and non-member parties are rejected.

Unit test constraints:
  - No database. The session is a MagicMock; build_ledger and the trip
    access guards are patched.
"""

from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.transfer import Transfer, TransferStatus
from backend.app.services import transfer_service
from backend.app.services.balance_service import IdealTransfer, Ledger
from backend.app.services.transfer_service import ReconcileResult

_PATCH_BASE = "backend.app.services.transfer_service"


def _transfer(status: TransferStatus = TransferStatus.PENDING) -> Transfer:
    return Transfer(
        id=5,
        trip_id=1,
        from_username="bob",
        to_username="alice",
        amount=Decimal("30.00"),
        status=status,
        created_by="alice",
    )


def _ledger(*transfers: IdealTransfer) -> Ledger:
    return Ledger(members=("alice", "bob", "carol"), expenses=(), transfers=list(transfers))


# ── complete_transfer ──────────────────────────────────────────────────────

def test_complete_missing_transfer_raises_404():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        transfer_service.complete_transfer(transfer_id=404, actor="alice", session=session)

    assert exc_info.value.code == ErrorCode.TRANSFER_NOT_FOUND
    assert exc_info.value.http_status == 404


@pytest.mark.parametrize("actor", ["bob", "carol", "alicia"])
def test_only_the_creditor_may_complete(actor):
    session = MagicMock()
    transfer = _transfer()
    session.get.return_value = transfer

    with pytest.raises(AppError) as exc_info:
        transfer_service.complete_transfer(transfer_id=5, actor=actor, session=session)

    assert exc_info.value.code == ErrorCode.NOT_TRANSFER_RECIPIENT
    assert exc_info.value.http_status == 403
    assert transfer.status == TransferStatus.PENDING
    session.flush.assert_not_called()


def test_creditor_match_ignores_case_and_padding():
    session = MagicMock()
    transfer = _transfer()
    session.get.return_value = transfer

    result = transfer_service.complete_transfer(transfer_id=5, actor=" ALICE ", session=session)

    assert result is transfer
    assert transfer.status == TransferStatus.COMPLETED
    assert transfer.completed_at is not None
    assert transfer.completed_at.tzinfo is not None
    session.flush.assert_called_once()


def test_completing_twice_is_a_conflict():
    session = MagicMock()
    transfer = _transfer(TransferStatus.COMPLETED)
    session.get.return_value = transfer

    with pytest.raises(AppError) as exc_info:
        transfer_service.complete_transfer(transfer_id=5, actor="alice", session=session)

    assert exc_info.value.code == ErrorCode.TRANSFER_ALREADY_COMPLETED
    assert exc_info.value.http_status == 409


# ── reconcile ──────────────────────────────────────────────────────────────

@patch(f"{_PATCH_BASE}.build_ledger")
def test_reconcile_replaces_pending_rows(mock_build):
    mock_build.return_value = _ledger(
        IdealTransfer("bob", "alice", Decimal("30.00")),
        IdealTransfer("carol", "alice", Decimal("30.00")),
    )
    trip = SimpleNamespace(id=1, ledger_dirty=True)
    session = MagicMock()
    session.get.return_value = trip
    session.execute.return_value.rowcount = 3

    result = transfer_service.reconcile(trip_id=1, actor="alice", session=session)

    assert result == ReconcileResult(created=2, deleted=3)
    assert trip.ledger_dirty is False

    (rows,), _ = session.add_all.call_args
    assert [(r.from_username, r.to_username, r.amount) for r in rows] == [
        ("bob", "alice", Decimal("30.00")),
        ("carol", "alice", Decimal("30.00")),
    ]
    assert all(r.status == TransferStatus.PENDING for r in rows)
    assert all(r.created_by == "alice" for r in rows)

    _, kwargs = session.get.call_args
    assert kwargs == {"with_for_update": True}
    _, build_kwargs = mock_build.call_args
    assert build_kwargs["include_completed"] is True
    session.flush.assert_called_once()


@patch(f"{_PATCH_BASE}.build_ledger")
def test_reconcile_without_actor_attributes_rows_to_the_debtor(mock_build):
    mock_build.return_value = _ledger(IdealTransfer("carol", "alice", Decimal("12.00")))
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, ledger_dirty=True)
    session.execute.return_value.rowcount = 0

    transfer_service.reconcile(trip_id=1, actor=None, session=session)

    (rows,), _ = session.add_all.call_args
    assert rows[0].created_by == "carol"


@patch(f"{_PATCH_BASE}.build_ledger")
def test_hard_reset_recomputes_without_completed_transfers(mock_build):
    mock_build.return_value = _ledger()
    session = MagicMock()
    session.get.return_value = SimpleNamespace(id=1, ledger_dirty=False)
    session.execute.return_value.rowcount = 4

    result = transfer_service.reconcile(
        trip_id=1, actor="alice", session=session, reset_completed=True,
    )

    _, build_kwargs = mock_build.call_args
    assert build_kwargs["include_completed"] is False
    assert result == ReconcileResult(created=0, deleted=4)


def test_reconcile_missing_trip_raises_404():
    session = MagicMock()
    session.get.return_value = None

    with pytest.raises(AppError) as exc_info:
        transfer_service.reconcile(trip_id=9, actor="alice", session=session)

    assert exc_info.value.code == ErrorCode.TRIP_NOT_FOUND
    session.add_all.assert_not_called()


# ── reconcile_best_effort ──────────────────────────────────────────────────

@patch(f"{_PATCH_BASE}.reconcile")
def test_best_effort_success_commits_and_returns_no_warnings(mock_reconcile):
    mock_reconcile.return_value = ReconcileResult(created=1)
    session = MagicMock()

    warnings = transfer_service.reconcile_best_effort(1, "alice", session)

    assert warnings == []
    session.commit.assert_called_once()
    session.rollback.assert_not_called()


@patch(f"{_PATCH_BASE}.reconcile")
def test_best_effort_failure_marks_dirty_and_warns(mock_reconcile):
    mock_reconcile.side_effect = OperationalError("DELETE", {}, Exception("db down"))
    session = MagicMock()

    warnings = transfer_service.reconcile_best_effort(1, "alice", session)

    assert len(warnings) == 1
    assert warnings[0]["code"] == WarningCode.LEDGER_STALE
    session.rollback.assert_called_once()
    # The dirty flag is written and committed in its own transaction.
    session.execute.assert_called_once()
    session.commit.assert_called_once()


@patch(f"{_PATCH_BASE}.reconcile")
def test_best_effort_survives_failure_to_mark_dirty(mock_reconcile):
    mock_reconcile.side_effect = SQLAlchemyError("boom")
    session = MagicMock()
    session.commit.side_effect = SQLAlchemyError("still down")

    warnings = transfer_service.reconcile_best_effort(1, "alice", session)

    assert warnings[0]["code"] == WarningCode.LEDGER_STALE
    assert session.rollback.call_count == 2


@patch(f"{_PATCH_BASE}.reconcile")
def test_best_effort_turns_vanished_trip_into_stale_warning(mock_reconcile):
    mock_reconcile.side_effect = AppError(ErrorCode.TRIP_NOT_FOUND, "gone", 404)
    session = MagicMock()

    warnings = transfer_service.reconcile_best_effort(1, "alice", session)

    assert [w["code"] for w in warnings] == [WarningCode.LEDGER_STALE]
    session.rollback.assert_called_once()


@patch(f"{_PATCH_BASE}.reconcile")
def test_best_effort_does_not_swallow_non_storage_errors(mock_reconcile):
    mock_reconcile.side_effect = RuntimeError("bug")

    with pytest.raises(RuntimeError):
        transfer_service.reconcile_best_effort(1, "alice", MagicMock())


# ── reconcile_dirty_trips ──────────────────────────────────────────────────

@patch(f"{_PATCH_BASE}.reconcile")
def test_dirty_trips_are_retried_one_by_one(mock_reconcile):
    mock_reconcile.side_effect = [ReconcileResult(created=1), SQLAlchemyError("boom")]
    session = MagicMock()
    session.execute.return_value.scalars.return_value.all.return_value = [3, 7]

    healed, failed = transfer_service.reconcile_dirty_trips(session)

    assert (healed, failed) == (1, 1)
    assert [c.args[0] for c in mock_reconcile.call_args_list] == [3, 7]
    session.commit.assert_called_once()
    session.rollback.assert_called_once()


# ── create_transfer ────────────────────────────────────────────────────────

@patch("backend.app.services.trip_service.get_trip_member_set")
@patch("backend.app.services.trip_service.require_trip_access")
def test_self_transfer_rejected(mock_access, mock_members):
    data = {"from_username": "Bob", "to_username": "bob", "amount": Decimal("5.00")}

    with pytest.raises(AppError) as exc_info:
        transfer_service.create_transfer(1, "bob", data, MagicMock())

    assert exc_info.value.code == ErrorCode.SELF_TRANSFER
    assert exc_info.value.http_status == 422
    mock_members.assert_not_called()


@patch("backend.app.services.trip_service.get_trip_member_set")
@patch("backend.app.services.trip_service.require_trip_access")
def test_non_member_party_rejected(mock_access, mock_members):
    mock_members.return_value = {"alice", "bob"}
    data = {"from_username": "dave", "to_username": "alice", "amount": Decimal("5.00")}

    with pytest.raises(AppError) as exc_info:
        transfer_service.create_transfer(1, "alice", data, MagicMock())

    assert exc_info.value.code == ErrorCode.TRANSFER_PARTY_NOT_MEMBER
    assert exc_info.value.field == "from_username"


@patch("backend.app.services.trip_service.get_trip_member_set")
@patch("backend.app.services.trip_service.require_trip_access")
def test_manual_transfer_is_pending_and_attributed(mock_access, mock_members):
    mock_members.return_value = {"alice", "bob"}
    session = MagicMock()
    data = {"from_username": "bob", "to_username": "alice", "amount": Decimal("5.00")}

    transfer = transfer_service.create_transfer(1, "alice", data, session)

    assert transfer.status == TransferStatus.PENDING
    assert transfer.created_by == "alice"
    session.add.assert_called_once_with(transfer)
    session.flush.assert_called_once()
