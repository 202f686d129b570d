"""
models/membership.py — Group and trip membership junction tables.

GroupMembership grants access to every trip of the group.
TripMembership is the authority for whose balance counts on a trip: only
current trip members appear in balances, and expenses naming anyone else
are excluded from the ledger.

No business logic. No imports from services or routes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.extensions import db


class GroupMembership(db.Model):
    __tablename__ = "group_memberships"

    __table_args__ = (
        UniqueConstraint("group_id", "username", name="uq_group_memberships_group_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<GroupMembership id={self.id} "
            f"group_id={self.group_id} "
            f"username={self.username!r}>"
        )


class TripMembership(db.Model):
    __tablename__ = "trip_memberships"

    __table_args__ = (
        UniqueConstraint("trip_id", "username", name="uq_trip_memberships_trip_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    trip_id: Mapped[int] = mapped_column(
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="RESTRICT"),
        nullable=False,
    )

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    trip: Mapped["Trip"] = relationship(  # noqa: F821
        "Trip",
        back_populates="memberships",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<TripMembership id={self.id} "
            f"trip_id={self.trip_id} "
            f"username={self.username!r}>"
        )
