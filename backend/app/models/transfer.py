"""
models/transfer.py — Transfer table definition.

A transfer is an instruction that `from_username` (debtor) pay
`to_username` (creditor). Columns and constraints only. No business logic.

Lifecycle:
  - pending   — written by the reconciler; the whole pending set of a trip is
                deleted and re-inserted on every reconciliation pass.
  - completed — set only by the named creditor confirming receipt. Completed
                rows survive reconciliation and feed back into balances as
                realized payments. Only a hard reset deletes them.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - CHECK(from_username <> to_username) — nobody pays themselves.
"""

from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class TransferStatus(str, enum.Enum):
    PENDING   = "pending"
    COMPLETED = "completed"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Ensure SQLAlchemy stores enum values (e.g., 'pending'), not names ('PENDING')."""
    return [member.value for member in enum_cls]


class Transfer(db.Model):
    __tablename__ = "transfers"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        CheckConstraint(
            "from_username <> to_username",
            name="ck_transfers_no_self_transfer",
        ),
        # Every reconciliation pass deletes by (trip_id, status).
        Index("idx_transfers_trip_status", "trip_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
    )

    from_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
    )

    to_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
    )

    # NUMERIC(12, 2). Never Float.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    status: Mapped[TransferStatus] = mapped_column(
        Enum(
            TransferStatus,
            name="transfer_status_enum",
            native_enum=False,
            length=16,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=TransferStatus.PENDING,
        server_default=TransferStatus.PENDING.value,
    )

    # Handle of the user whose action produced this row.
    created_by: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="transfers",
    )

    @property
    def is_completed(self) -> bool:
        return self.status == TransferStatus.COMPLETED

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Transfer id={self.id} "
            f"trip_id={self.trip_id} "
            f"from={self.from_username!r} "
            f"to={self.to_username!r} "
            f"amount={self.amount} "
            f"status={self.status.value}>"
        )
