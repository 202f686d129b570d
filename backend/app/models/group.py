"""
models/group.py — Group table definition.

Groups own trips. Membership in a trip's group is what grants access to
that trip's ledger (see services/trip_service.py).
No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class Group(db.Model):
    __tablename__ = "groups"

    __table_args__ = (
        CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # ON DELETE RESTRICT: owners cannot be deleted.
    owner_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    # ── Relationships ──────────────────────────────────────────────────────

    memberships: Mapped[list["GroupMembership"]] = relationship(  # noqa: F821
        "GroupMembership",
        back_populates="group",
    )

    trips: Mapped[list["Trip"]] = relationship(  # noqa: F821
        "Trip",
        back_populates="group",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Group id={self.id} name={self.name!r}>"
