"""
services/trip_service.py — Trip lookup and access guards.

Trips, groups and memberships are provisioned by other services; this module
only reads them. Every ledger operation starts with require_trip_access().

Access rule: the caller must be a member of the trip's GROUP. Trip
membership is a separate, narrower set: it decides whose balance counts, not
who may look at the ledger.

Layer rules:
  - No Flask imports. Receives plain values and a SQLAlchemy session.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.errors import AppError, ErrorCode
from backend.app.models.membership import GroupMembership, TripMembership
from backend.app.models.trip import Trip


def get_trip_or_404(trip_id: int, session: Session) -> Trip:
    """Returns the Trip or raises TRIP_NOT_FOUND (404)."""
    trip = session.get(Trip, trip_id)
    if trip is None:
        raise AppError(
            ErrorCode.TRIP_NOT_FOUND,
            f"Trip {trip_id} does not exist.",
            404,
        )
    return trip


def is_group_member(group_id: int, username: str, session: Session) -> bool:
    membership = session.execute(
        select(GroupMembership.id).where(
            GroupMembership.group_id == group_id,
            GroupMembership.username == username,
        )
    ).scalar_one_or_none()
    return membership is not None


def require_trip_access(trip_id: int, username: str, session: Session) -> Trip:
    """
    Returns the trip if `username` may read and mutate its ledger.

    Raises:
        AppError(TRIP_NOT_FOUND, 404) -- trip does not exist.
        AppError(FORBIDDEN, 403)      -- caller is not in the trip's group.
    """
    trip = get_trip_or_404(trip_id, session)
    if not is_group_member(trip.group_id, username, session):
        raise AppError(
            ErrorCode.FORBIDDEN,
            "You are not a member of this trip's group.",
            403,
        )
    return trip


def get_trip_member_set(trip_id: int, session: Session) -> set[str]:
    """Returns current trip member handles as a set, for membership checks."""
    stmt = select(TripMembership.username).where(TripMembership.trip_id == trip_id)
    return set(session.execute(stmt).scalars().all())
