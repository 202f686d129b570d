"""Initial schema — identity mirror, trips, expenses and transfers.

Revision: 001_initial_schema
Created:  2026-10-18

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  Schema changes go into a NEW migration file.

Creation order (FK dependency order):
  users → groups → group_memberships → trips → trip_memberships
  → expenses → transfers, then indexes.

ON DELETE policies:
  group_memberships.group_id → CASCADE
  trips.group_id             → RESTRICT  (cannot delete a group with trips)
  trip_memberships.trip_id   → CASCADE
  expenses.trip_id           → CASCADE
  transfers.trip_id          → CASCADE
  *.username references      → RESTRICT  (cannot delete a user with ledger rows)

transfers.status is a VARCHAR with a CHECK rather than a native enum type,
matching Enum(native_enum=False) on the model.
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration
branch_labels: tuple | None = None
depends_on: tuple | None = None


def upgrade() -> None:

    # ── users ──────────────────────────────────────────────────────────────
    # Provisioned by the identity service; username is the ledger identity.

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.CheckConstraint(
            "LENGTH(TRIM(username)) > 0",
            name="ck_users_username_nonempty",
        ),
    )

    # ── groups ─────────────────────────────────────────────────────────────

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "owner_username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_groups_owner"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_groups"),
        sa.CheckConstraint(
            "LENGTH(TRIM(name)) > 0",
            name="ck_groups_name_nonempty",
        ),
    )

    # ── group_memberships ──────────────────────────────────────────────────
    # Grants access to every trip of the group.

    op.create_table(
        "group_memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="CASCADE", name="fk_group_memberships_group"),
            nullable=False,
        ),
        sa.Column(
            "username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_group_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_group_memberships"),
        sa.UniqueConstraint("group_id", "username", name="uq_group_memberships_group_user"),
    )

    # ── trips ──────────────────────────────────────────────────────────────
    # ledger_dirty: last reconciliation pass failed after its action committed.

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "group_id",
            sa.Integer(),
            sa.ForeignKey("groups.id", ondelete="RESTRICT", name="fk_trips_group"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "ledger_dirty",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_trips"),
    )

    # ── trip_memberships ───────────────────────────────────────────────────
    # Whose balance counts on a trip.

    op.create_table(
        "trip_memberships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "trip_id",
            sa.Integer(),
            sa.ForeignKey("trips.id", ondelete="CASCADE", name="fk_trip_memberships_trip"),
            nullable=False,
        ),
        sa.Column(
            "username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_trip_memberships_user"),
            nullable=False,
        ),
        sa.Column(
            "joined_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_trip_memberships"),
        sa.UniqueConstraint("trip_id", "username", name="uq_trip_memberships_trip_user"),
    )

    # ── expenses ───────────────────────────────────────────────────────────
    # participants: JSON list of usernames sharing the amount equally.

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "trip_id",
            sa.Integer(),
            sa.ForeignKey("trips.id", ondelete="CASCADE", name="fk_expenses_trip"),
            nullable=False,
        ),
        sa.Column(
            "payer_username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_expenses_payer"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id", name="pk_expenses"),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )

    # ── transfers ──────────────────────────────────────────────────────────
    # CHECK(from_username <> to_username): nobody pays themselves.

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "trip_id",
            sa.Integer(),
            sa.ForeignKey("trips.id", ondelete="CASCADE", name="fk_transfers_trip"),
            nullable=False,
        ),
        sa.Column(
            "from_username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_transfers_debtor"),
            nullable=False,
        ),
        sa.Column(
            "to_username",
            sa.String(50),
            sa.ForeignKey("users.username", ondelete="RESTRICT", name="fk_transfers_creditor"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            sa.String(16),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("created_by", sa.String(50), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_transfers"),
        sa.CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint(
            "from_username <> to_username",
            name="ck_transfers_no_self_transfer",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'completed')",
            name="transfer_status_enum",
        ),
    )

    # ── Indexes ────────────────────────────────────────────────────────────

    op.create_index("ix_group_memberships_group_id", "group_memberships", ["group_id"])
    op.create_index("ix_group_memberships_username", "group_memberships", ["username"])
    op.create_index("ix_trips_group_id", "trips", ["group_id"])
    op.create_index("ix_trip_memberships_trip_id", "trip_memberships", ["trip_id"])
    op.create_index("ix_expenses_trip_id", "expenses", ["trip_id"])
    # Every reconciliation pass deletes by (trip_id, status).
    op.create_index("idx_transfers_trip_status", "transfers", ["trip_id", "status"])


def downgrade() -> None:
    """Local development reset only. Production migrations are append-only."""

    op.drop_index("idx_transfers_trip_status", table_name="transfers")
    op.drop_index("ix_expenses_trip_id", table_name="expenses")
    op.drop_index("ix_trip_memberships_trip_id", table_name="trip_memberships")
    op.drop_index("ix_trips_group_id", table_name="trips")
    op.drop_index("ix_group_memberships_username", table_name="group_memberships")
    op.drop_index("ix_group_memberships_group_id", table_name="group_memberships")

    op.drop_table("transfers")
    op.drop_table("expenses")
    op.drop_table("trip_memberships")
    op.drop_table("trips")
    op.drop_table("group_memberships")
    op.drop_table("groups")
    op.drop_table("users")
