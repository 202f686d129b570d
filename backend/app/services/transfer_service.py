"""
services/transfer_service.py — Transfer reconciliation, completion and listing.

The reconciler keeps a trip's persisted PENDING transfers equal to the ideal
transfer list computed by balance_service.build_ledger(), without touching
COMPLETED transfers (unless a hard reset is requested) and without ever
writing a completed row itself.

Invocation points of reconcile():
  - after an expense is created or deleted        (routes/expenses.py)
  - after a transfer is marked completed          (routes/transfers.py)
  - before transfers are listed                   (list_transfers)
  - on an explicit soft/hard reset request        (reset_transfers)
  - for every dirty trip, from the CLI            (cli.py)

After a primary action has committed, the call goes through
reconcile_best_effort(): a storage failure there is logged, flags the trip
`ledger_dirty`, and comes back as a LEDGER_STALE warning. It never turns the
committed primary action into an error response. The ledger is always
re-derivable from expenses, so the next successful pass heals it.

Concurrency:
  reconcile() locks the trip row (SELECT ... FOR UPDATE) before reading, so
  two passes for the same trip run one after the other on PostgreSQL. The
  lock is released when the caller commits or rolls back.

Layer rules:
  - No Flask imports. Receives plain values and a SQLAlchemy session.
  - reconcile(), complete_transfer(), create_transfer() and reset_transfers()
    only flush; the route commits. reconcile_best_effort() and
    list_transfers() run after the primary commit and manage their own
    transaction.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode, WarningCode
from backend.app.models.transfer import Transfer, TransferStatus
from backend.app.models.trip import Trip
from backend.app.services import trip_service
from backend.app.services.balance_service import (
    DEFAULT_POLICY,
    LedgerPolicy,
    build_ledger,
)

logger = logging.getLogger(__name__)


class ResetMode(str, enum.Enum):
    SOFT = "soft"   # rebuild pending transfers, keep completed ones
    HARD = "hard"   # also discard completed transfers


@dataclass(frozen=True)
class ReconcileResult:
    created: int
    deleted: int = 0


# ── Private helpers ────────────────────────────────────────────────────────

def _lock_trip(trip_id: int, session: Session) -> Trip:
    """Loads the trip with a row lock. Raises TRIP_NOT_FOUND (404)."""
    trip = session.get(Trip, trip_id, with_for_update=True)
    if trip is None:
        raise AppError(
            ErrorCode.TRIP_NOT_FOUND,
            f"Trip {trip_id} does not exist.",
            404,
        )
    return trip


def _same_handle(a: str | None, b: str | None) -> bool:
    """Case-insensitive, whitespace-insensitive username comparison."""
    return (a or "").strip().lower() == (b or "").strip().lower()


def _mark_dirty(trip_id: int, session: Session) -> None:
    """Flags the trip in its own transaction after a failed pass."""
    try:
        session.execute(
            update(Trip).where(Trip.id == trip_id).values(ledger_dirty=True)
        )
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Could not flag trip %s as ledger_dirty.", trip_id)


def _stale_warning(trip_id: int) -> dict:
    return {
        "code": WarningCode.LEDGER_STALE,
        "message": (
            f"The action succeeded, but pending transfers for trip {trip_id} "
            f"could not be refreshed. They will be rebuilt on the next update."
        ),
    }


# ── Reconciliation ─────────────────────────────────────────────────────────

def reconcile(
        trip_id: int,
        actor: str | None,
        session: Session,
        reset_completed: bool = False,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> ReconcileResult:
    """
    Regenerates the trip's pending transfers from the current ledger.

    Steps:
      1. Lock the trip row.
      2. Compute the ideal transfer list from current expenses, current trip
         members and completed transfers. A hard reset ignores completed
         transfers, since they are about to be deleted.
      3. Delete every PENDING transfer of the trip (and every COMPLETED one
         when reset_completed=True).
      4. Insert one PENDING transfer per ideal transfer, created_by = actor
         (the debtor when no actor is given).
      5. Clear trip.ledger_dirty.

    Running it twice with no change in between yields the same multiset of
    (from, to, amount) pending rows.

    Returns:
        ReconcileResult with the number of pending rows created and the
        number of rows deleted.
    """
    trip = _lock_trip(trip_id, session)

    ledger = build_ledger(
        trip_id,
        session,
        policy=policy,
        include_completed=not reset_completed,
    )

    stmt = delete(Transfer).where(Transfer.trip_id == trip_id)
    if not reset_completed:
        stmt = stmt.where(Transfer.status == TransferStatus.PENDING)
    deleted = session.execute(stmt).rowcount or 0

    rows = [
        Transfer(
            trip_id=trip_id,
            from_username=ideal.from_username,
            to_username=ideal.to_username,
            amount=ideal.amount,
            status=TransferStatus.PENDING,
            created_by=actor or ideal.from_username,
        )
        for ideal in ledger.transfers
    ]
    session.add_all(rows)

    trip.ledger_dirty = False
    session.flush()

    logger.info(
        "Reconciled trip %s: deleted %d, created %d pending transfers (reset_completed=%s).",
        trip_id,
        deleted,
        len(rows),
        reset_completed,
    )
    return ReconcileResult(created=len(rows), deleted=deleted)


def reconcile_best_effort(
        trip_id: int,
        actor: str | None,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> list[dict]:
    """
    Runs reconcile() in its own transaction after a primary action committed.

    Returns:
        [] on success; [LEDGER_STALE warning] if storage failed or the trip
        vanished in between. Those errors are logged and never raised.
    """
    try:
        reconcile(trip_id, actor, session, policy=policy)
        session.commit()
    except (SQLAlchemyError, AppError):
        session.rollback()
        logger.exception(
            "Reconciliation failed for trip %s (actor=%s); marking ledger dirty.",
            trip_id,
            actor,
        )
        _mark_dirty(trip_id, session)
        return [_stale_warning(trip_id)]
    return []


def reconcile_dirty_trips(
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> tuple[int, int]:
    """
    Retries reconciliation for every trip flagged ledger_dirty.

    Commits per trip so one failing trip does not hold back the others.

    Returns:
        (healed, failed) trip counts.
    """
    trip_ids = list(
        session.execute(
            select(Trip.id).where(Trip.ledger_dirty.is_(True)).order_by(Trip.id)
        ).scalars().all()
    )

    healed = failed = 0
    for trip_id in trip_ids:
        try:
            reconcile(trip_id, None, session, policy=policy)
            session.commit()
            healed += 1
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Retry of reconciliation failed for trip %s.", trip_id)
            failed += 1
    return healed, failed


# ── Public service functions ───────────────────────────────────────────────

def complete_transfer(
        transfer_id: int,
        actor: str,
        session: Session,
) -> Transfer:
    """
    Marks a transfer completed on behalf of its creditor.

    Only the transfer's `to_username` may confirm receipt (trimmed,
    case-insensitive match). The caller commits, then runs exactly one
    reconciliation pass, since the completed amount changes both parties'
    adjusted balances.

    Raises:
        AppError(TRANSFER_NOT_FOUND, 404)          -- no such transfer.
        AppError(NOT_TRANSFER_RECIPIENT, 403)      -- actor is not the creditor.
        AppError(TRANSFER_ALREADY_COMPLETED, 409)  -- already confirmed.
    """
    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise AppError(
            ErrorCode.TRANSFER_NOT_FOUND,
            f"Transfer {transfer_id} does not exist.",
            404,
        )

    if not _same_handle(transfer.to_username, actor):
        raise AppError(
            ErrorCode.NOT_TRANSFER_RECIPIENT,
            "Only the receiver of a transfer can mark it as completed.",
            403,
        )

    if transfer.is_completed:
        raise AppError(
            ErrorCode.TRANSFER_ALREADY_COMPLETED,
            f"Transfer {transfer_id} is already completed.",
            409,
        )

    transfer.status = TransferStatus.COMPLETED
    transfer.completed_at = datetime.now(timezone.utc)
    session.flush()
    return transfer


def list_transfers(
        trip_id: int,
        actor: str,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> tuple[list[Transfer], list[dict]]:
    """
    Returns all transfers of a trip, newest first, after refreshing the
    pending set.

    The refresh is best-effort: if it fails, the stored rows are returned
    together with a LEDGER_STALE warning.
    """
    trip_service.require_trip_access(trip_id, actor, session)

    warnings = reconcile_best_effort(trip_id, actor, session, policy=policy)

    stmt = (
        select(Transfer)
        .where(Transfer.trip_id == trip_id)
        .order_by(Transfer.created_at.desc(), Transfer.id.desc())
    )
    return list(session.execute(stmt).scalars().all()), warnings


def reset_transfers(
        trip_id: int,
        actor: str,
        mode: ResetMode,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> dict:
    """
    Explicit reconciliation request.

    SOFT rebuilds pending transfers and keeps completed ones.
    HARD also deletes completed transfers and rebuilds from expenses alone.
    Reconciliation is the primary action here, so failures propagate.
    """
    trip_service.require_trip_access(trip_id, actor, session)

    hard = mode == ResetMode.HARD
    result = reconcile(trip_id, actor, session, reset_completed=hard, policy=policy)

    return {
        "mode": mode.value,
        "created": result.created,
        "message": (
            "Hard reset: pending transfers rebuilt and completed transfers cleared."
            if hard
            else "Soft reset: pending transfers rebuilt and completed transfers preserved."
        ),
    }


def create_transfer(
        trip_id: int,
        actor: str,
        data: dict,
        session: Session,
) -> Transfer:
    """
    Records a manual PENDING transfer request between two trip members.

    Like every pending row, it is replaced on the next reconciliation pass.

    Args:
        data: Validated dict from CreateTransferSchema.
              Keys: from_username, to_username, amount (Decimal).

    Raises:
        AppError(SELF_TRANSFER, 422)
        AppError(TRANSFER_PARTY_NOT_MEMBER, 422)
    """
    trip_service.require_trip_access(trip_id, actor, session)

    from_username: str = data["from_username"]
    to_username: str = data["to_username"]

    if _same_handle(from_username, to_username):
        raise AppError(
            ErrorCode.SELF_TRANSFER,
            "A transfer cannot be made to the same member.",
            422,
            field="to_username",
        )

    members = trip_service.get_trip_member_set(trip_id, session)
    for field_name, username in (("from_username", from_username), ("to_username", to_username)):
        if username not in members:
            raise AppError(
                ErrorCode.TRANSFER_PARTY_NOT_MEMBER,
                f"User {username!r} is not a member of trip {trip_id}.",
                422,
                field=field_name,
            )

    transfer = Transfer(
        trip_id=trip_id,
        from_username=from_username,
        to_username=to_username,
        amount=data["amount"],
        status=TransferStatus.PENDING,
        created_by=actor,
    )
    session.add(transfer)
    session.flush()
    return transfer
