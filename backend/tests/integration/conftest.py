"""
tests/integration/conftest.py — Fixtures and helpers for all integration tests.

Design:
  - Tests run against TEST_DATABASE_URL (in-memory SQLite by default).
  - The app is created once per session using create_app("testing").
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order.

Identity is owned by another service, so there is no register/login here:
  - token_for(username)   → a signed access token, as the identity service
                            would issue it
  - seed_trip(app, ...)   → users, group, trip and memberships written
                            straight through the ORM

Every helper that touches the database opens and closes its own app
context, so it never shares a session with a request made by the client.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import delete, select

from backend.app import create_app
from backend.app.extensions import db as _db
from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import GroupMembership, TripMembership
from backend.app.models.transfer import Transfer, TransferStatus
from backend.app.models.trip import Trip
from backend.app.models.user import User


# ═══════════════════════════════════════════════════════════════════════════
# App / client fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()
        for model in (
            Transfer,
            Expense,
            TripMembership,
            Trip,
            GroupMembership,
            Group,
            User,
        ):
            _db.session.execute(delete(model))
        _db.session.commit()


@pytest.fixture
def client(app):
    return app.test_client()


# ═══════════════════════════════════════════════════════════════════════════
# Auth helpers
# ═══════════════════════════════════════════════════════════════════════════

def token_for(username: str, expires_in: timedelta = timedelta(minutes=15)) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": username, "iat": now, "exp": now + expires_in},
        "testing-secret",
        algorithm="HS256",
    )


def auth_headers(username: str) -> dict:
    return {"Authorization": f"Bearer {token_for(username)}"}


# ═══════════════════════════════════════════════════════════════════════════
# Seeding helpers
# ═══════════════════════════════════════════════════════════════════════════

def seed_trip(
    app,
    members: tuple[str, ...] = ("alice", "bob", "carol"),
    group_only: tuple[str, ...] = (),
    name: str = "Lisbon",
) -> int:
    """
    Creates users, a group containing `members` + `group_only`, and a trip
    whose members are `members` in the given join order. Returns trip_id.
    """
    everyone = tuple(members) + tuple(group_only)
    with app.app_context():
        existing = set(_db.session.execute(select(User.username)).scalars().all())
        for username in everyone:
            if username not in existing:
                _db.session.add(User(username=username))
        _db.session.flush()

        group = Group(name=f"{name} crew", owner_username=everyone[0])
        _db.session.add(group)
        _db.session.flush()
        for username in everyone:
            _db.session.add(GroupMembership(group_id=group.id, username=username))

        trip = Trip(group_id=group.id, name=name)
        _db.session.add(trip)
        _db.session.flush()
        # Explicit timestamps keep join order deterministic within one second.
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for offset, username in enumerate(members):
            _db.session.add(TripMembership(
                trip_id=trip.id,
                username=username,
                joined_at=base + timedelta(seconds=offset),
            ))
        _db.session.commit()
        return trip.id


def remove_trip_member(app, trip_id: int, username: str) -> None:
    with app.app_context():
        _db.session.execute(
            delete(TripMembership).where(
                TripMembership.trip_id == trip_id,
                TripMembership.username == username,
            )
        )
        _db.session.commit()


def stored_transfers(app, trip_id: int, status: TransferStatus | None = None) -> list[tuple]:
    """(from, to, amount-string, status) of persisted transfers, sorted."""
    with app.app_context():
        stmt = select(Transfer).where(Transfer.trip_id == trip_id)
        if status is not None:
            stmt = stmt.where(Transfer.status == status)
        rows = _db.session.execute(stmt).scalars().all()
        return sorted(
            (t.from_username, t.to_username, f"{t.amount:.2f}", t.status.value)
            for t in rows
        )


def trip_is_dirty(app, trip_id: int) -> bool:
    with app.app_context():
        return _db.session.get(Trip, trip_id).ledger_dirty


def make_expense(
    client,
    trip_id: int,
    payer: str,
    amount: str,
    participants: list[str],
    **extra,
):
    """Creates an expense as `payer` and returns the HTTP response."""
    payload = {"amount": amount, "participants": participants, **extra}
    return client.post(
        f"/api/v1/trips/{trip_id}/expenses",
        json=payload,
        headers=auth_headers(payer),
    )


def pending_transfer_id(client, trip_id: int, debtor: str, creditor: str) -> int:
    resp = client.get(f"/api/v1/trips/{trip_id}/transfers", headers=auth_headers(creditor))
    assert resp.status_code == 200, resp.get_json()
    for t in resp.get_json()["data"]:
        if (t["from_username"], t["to_username"], t["status"]) == (debtor, creditor, "pending"):
            return t["id"]
    raise AssertionError(f"no pending transfer {debtor} → {creditor}")


def transfer_state(app, transfer_id: int) -> tuple:
    """(status, completed_at) of one persisted transfer."""
    with app.app_context():
        transfer = _db.session.get(Transfer, transfer_id)
        return transfer.status.value, transfer.completed_at
