"""
models/trip.py — Trip table definition.

Key design points:
  - `ledger_dirty` is set when a reconciliation pass failed after its
    triggering action was already committed, and cleared by the next
    successful pass. `flask ledger reconcile-dirty` retries every dirty trip.
  - Reconciliation locks the trip row (SELECT ... FOR UPDATE) so passes for
    the same trip run one at a time on stores that support row locks.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, false, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Trip(db.Model):
    __tablename__ = "trips"

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    ledger_dirty: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="trips",
    )

    memberships: Mapped[list["TripMembership"]] = relationship(  # noqa: F821
        "TripMembership",
        back_populates="trip",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    expenses: Mapped[list["Expense"]] = relationship(  # noqa: F821
        "Expense",
        back_populates="trip",
    )

    transfers: Mapped[list["Transfer"]] = relationship(  # noqa: F821
        "Transfer",
        back_populates="trip",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Trip id={self.id} "
            f"group_id={self.group_id} "
            f"dirty={self.ledger_dirty}>"
        )
