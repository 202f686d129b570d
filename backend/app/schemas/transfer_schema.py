"""
schemas/transfer_schema.py — Marshmallow schemas for transfer endpoints.

Validation responsibility:
  - This file: field types, decimal precision, positive amount, reset mode.
  - services/transfer_service.py:
      - SELF_TRANSFER (422)              — case-insensitive handle comparison.
      - TRANSFER_PARTY_NOT_MEMBER (422)  — requires DB membership lookup.

IMPORTANT: Inherits from marshmallow.Schema directly — never an app-bound
           schema class.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, pre_load, validate

from backend.app.errors import ErrorCode
from backend.app.services.transfer_service import ResetMode


def _validate_monetary_amount(value: Decimal) -> None:
    """Strictly positive, at most 2 decimal places (never rounded)."""
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_username(value: str) -> None:
    if not value.strip():
        raise ValidationError("Username must not be blank.")


class CreateTransferSchema(Schema):
    """
    POST /trips/:id/transfers

    A manual pending transfer request. Any group member may file one; only
    the receiver may later mark it completed.
    """

    from_username = fields.Str(
        required=True,
        validate=[validate.Length(max=50), _validate_username],
    )
    to_username = fields.Str(
        required=True,
        validate=[validate.Length(max=50), _validate_username],
    )
    amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )


class ResetTransfersSchema(Schema):
    """
    POST /trips/:id/transfers/reset

    mode: "soft" (default) keeps completed transfers; "hard" clears them.
    Case-insensitive.
    """

    mode = fields.Enum(
        ResetMode,
        by_value=True,
        load_default=ResetMode.SOFT,
        error_messages={"unknown": ErrorCode.INVALID_RESET_MODE},
    )

    @pre_load
    def lowercase_mode(self, data, **kwargs):
        if isinstance(data, dict) and isinstance(data.get("mode"), str):
            data = {**data, "mode": data["mode"].strip().lower()}
        return data
