"""
models/expense.py — Expense table definition.

Columns and constraints only. No business logic.

Key design points:
  - `amount` uses Numeric(12, 2) — never Float.
  - `participants` is a JSON list of usernames. The share of each participant
    is always amount / len(participants); there are no custom splits.
    Rows written by older clients may hold a delimited string instead of a
    list; balance_service.normalize_expense() coerces both shapes before the
    value reaches any arithmetic.
  - Expenses are hard-deleted. Every delete triggers a reconciliation pass,
    so pending transfers never outlive the expense that produced them.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Expense(db.Model):
    __tablename__ = "expenses"

    __table_args__ = (
        # Also enforced by the marshmallow schema.
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payer_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
    )

    # NUMERIC(12, 2). Never Float.
    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    # Free text; the spending view groups NULL under "Uncategorized".
    category: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    participants: Mapped[list] = mapped_column(
        JSON,
        nullable=False,
        default=list,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="expenses",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Expense id={self.id} "
            f"trip_id={self.trip_id} "
            f"payer={self.payer_username!r} "
            f"amount={self.amount}>"
        )
