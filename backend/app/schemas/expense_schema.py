"""
schemas/expense_schema.py — Marshmallow schema for expense endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount, non-empty
    participant list of non-blank usernames.
  - services/expense_service.py:
      - PAYER_NOT_MEMBER (422)        — requires DB membership lookup.
      - PARTICIPANT_NOT_MEMBER (422)  — requires DB membership lookup.

IMPORTANT: Inherits from marshmallow.Schema directly. Schemas have no
           knowledge of Flask, g, or HTTP context, so unit tests can load
           them without an app.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, post_load, validate

from backend.app.errors import ErrorCode


# ── Shared validators ──────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must have at most 2 decimal places.

    Input with more than 2 decimal places is REJECTED
    (INVALID_AMOUNT_PRECISION), never rounded. Matches NUMERIC(12, 2).
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # e.g. Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /trips/:id/expenses

    The payer is the authenticated caller (flask.g.username), never the body.

    Field rules:
      amount       : required, positive Decimal, max 2 decimal places
      participants : required, at least one non-blank username. Duplicates
                     are collapsed in first-seen order; each participant
                     owes amount / len(participants).
      description  : optional, max 255 chars
      category     : optional free text, max 50 chars
    """

    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    participants = fields.List(
        fields.Str(validate=_validate_non_empty_after_trim),
        required=True,
        validate=validate.Length(min=1, error=ErrorCode.EMPTY_PARTICIPANTS),
    )

    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=255),
    )

    category = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=50),
    )

    @post_load
    def normalize_participants(self, data: dict, **kwargs) -> dict:
        """Strips handles and drops duplicates, keeping first-seen order."""
        seen: list[str] = []
        for handle in data["participants"]:
            handle = handle.strip()
            if handle not in seen:
                seen.append(handle)
        data["participants"] = seen

        category = data.get("category")
        if category is not None and not category.strip():
            data["category"] = None
        return data
