"""
services/balance_service.py — Ledger math: validity filter, balances, debt simplification.

This file is the SINGLE SOURCE OF TRUTH for how a trip's balances and ideal
transfers are computed. The settlement view and the reconciler both call
build_ledger(); neither reimplements any part of it.

Pipeline:
  raw expense rows + current trip members
    → filter_valid_expenses()       normalize rows, drop non-member expenses
    → calculate_balances()          {member: paid / owes / net}
    → apply_completed_transfers()   realized payments shift net
    → simplify_debts()              greedy largest-first transfer list

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives trip_id (int) and session (SQLAlchemy Session) as arguments.
  - Every algorithm takes a LedgerPolicy explicitly; none reads config.

Money:
  - Decimal throughout, never float. Shares are unrounded Decimal division;
    rounding to the policy quantum happens only when a transfer is emitted
    and when a response is serialized.
  - Conservation: the sum of all net balances is zero (within the policy
    tolerance) before and after the completed-transfer adjustment.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.models.expense import Expense
from backend.app.models.membership import TripMembership
from backend.app.models.transfer import Transfer, TransferStatus

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ── Policy ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class LedgerPolicy:
    """
    Numeric policy of the ledger.

    tolerance: balances and transfer amounts at or below this magnitude count
               as settled. Also the threshold for emitting a transfer.
    quantum:   the currency unit transfer amounts are rounded to.
    """

    tolerance: Decimal = Decimal("0.01")
    quantum: Decimal = Decimal("0.01")

    @classmethod
    def from_config(cls, config: Mapping) -> "LedgerPolicy":
        """Builds a policy from the LEDGER_TOLERANCE / LEDGER_QUANTUM config keys."""
        return cls(
            tolerance=Decimal(str(config.get("LEDGER_TOLERANCE", cls.tolerance))),
            quantum=Decimal(str(config.get("LEDGER_QUANTUM", cls.quantum))),
        )

    def quantize(self, value: Decimal) -> Decimal:
        return value.quantize(self.quantum, rounding=ROUND_HALF_UP)


DEFAULT_POLICY = LedgerPolicy()


# ── Value types ────────────────────────────────────────────────────────────

class MalformedExpenseError(ValueError):
    """Raised by normalize_expense() for a row that cannot enter the ledger."""


@dataclass(frozen=True)
class LedgerExpense:
    """An expense row normalized at the filter boundary."""

    id: int | None
    payer: str
    amount: Decimal
    participants: tuple[str, ...]
    category: str | None = None


@dataclass
class MemberBalance:
    paid: Decimal = ZERO
    owes: Decimal = ZERO
    net: Decimal = ZERO


@dataclass(frozen=True)
class IdealTransfer:
    from_username: str
    to_username: str
    amount: Decimal


@dataclass(frozen=True)
class Ledger:
    """Everything derived from one read of a trip's rows."""

    members: tuple[str, ...]
    expenses: tuple[LedgerExpense, ...]
    balances: dict[str, MemberBalance] = field(default_factory=dict)
    transfers: list[IdealTransfer] = field(default_factory=list)


# ── Data access helpers ────────────────────────────────────────────────────

def get_trip_member_usernames(trip_id: int, session: Session) -> list[str]:
    """Returns current trip member handles in join order."""
    stmt = (
        select(TripMembership.username)
        .where(TripMembership.trip_id == trip_id)
        .order_by(TripMembership.joined_at, TripMembership.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_trip_expenses(trip_id: int, session: Session) -> list[Expense]:
    """Returns every expense recorded against the trip, oldest first."""
    stmt = (
        select(Expense)
        .where(Expense.trip_id == trip_id)
        .order_by(Expense.created_at, Expense.id)
    )
    return list(session.execute(stmt).scalars().all())


def get_completed_transfers(trip_id: int, session: Session) -> list[Transfer]:
    """Returns the trip's transfers with status = completed."""
    stmt = select(Transfer).where(
        Transfer.trip_id == trip_id,
        Transfer.status == TransferStatus.COMPLETED,
    )
    return list(session.execute(stmt).scalars().all())


# ── Normalization ──────────────────────────────────────────────────────────

def _field(row, name: str):
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _coerce_participants(raw) -> tuple[str, ...]:
    """
    Accepts a list/tuple/set of handles, a JSON-encoded list, a Postgres array
    literal ("{a,b}") or a comma-delimited string. Returns stripped, non-empty
    handles, de-duplicated in first-seen order.
    """
    if raw is None:
        return ()

    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as exc:
                raise MalformedExpenseError(f"participants is not valid JSON: {exc}") from exc
            if not isinstance(raw, list):
                raise MalformedExpenseError("participants JSON must be a list.")
        else:
            if text.startswith("{") and text.endswith("}"):
                text = text[1:-1]
            raw = text.split(",") if text else []

    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise MalformedExpenseError(
            f"participants must be a list of usernames, got {type(raw).__name__}."
        )

    handles: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            raise MalformedExpenseError(
                f"participant entries must be usernames, got {type(item).__name__}."
            )
        handle = item.strip().strip('"')
        if handle and handle not in handles:
            handles.append(handle)
    return tuple(handles)


def _coerce_amount(raw) -> Decimal:
    if isinstance(raw, bool) or raw is None:
        raise MalformedExpenseError(f"amount {raw!r} is not a number.")
    try:
        amount = raw if isinstance(raw, Decimal) else Decimal(str(raw).strip())
    except (InvalidOperation, ValueError) as exc:
        raise MalformedExpenseError(f"amount {raw!r} is not a number.") from exc
    if not amount.is_finite() or amount <= ZERO:
        raise MalformedExpenseError(f"amount {raw!r} must be a positive number.")
    return amount


def normalize_expense(row) -> LedgerExpense:
    """
    Converts a storage row (ORM object or mapping) into a LedgerExpense.

    Raises MalformedExpenseError when the payer, amount or participants field
    cannot be coerced. Callers skip such rows rather than failing the trip.
    """
    payer = _field(row, "payer_username")
    if payer is None:
        payer = _field(row, "payer")
    if not isinstance(payer, str) or not payer.strip():
        raise MalformedExpenseError("payer must be a non-blank username.")

    category = _field(row, "category")
    return LedgerExpense(
        id=_field(row, "id"),
        payer=payer.strip(),
        amount=_coerce_amount(_field(row, "amount")),
        participants=_coerce_participants(_field(row, "participants")),
        category=category if isinstance(category, str) and category.strip() else None,
    )


# ── Core algorithms ────────────────────────────────────────────────────────

def filter_valid_expenses(rows: Iterable, members: Iterable[str]) -> list[LedgerExpense]:
    """
    Keeps an expense only if its payer is a current member AND every
    participant (if any are recorded) is a current member.

    Membership can change after an expense was recorded; counting a departed
    member's share would leak a balance entry for someone no longer on the
    trip and break conservation. An empty member set yields [].
    """
    member_set = set(members)
    if not member_set:
        return []

    valid: list[LedgerExpense] = []
    for row in rows:
        try:
            expense = normalize_expense(row)
        except MalformedExpenseError as exc:
            logger.warning("Skipping malformed expense %s: %s", _field(row, "id"), exc)
            continue

        if expense.payer not in member_set:
            continue
        if expense.participants and not all(p in member_set for p in expense.participants):
            continue
        valid.append(expense)
    return valid


def calculate_balances(
        expenses: Iterable[LedgerExpense],
        members: Iterable[str],
) -> dict[str, MemberBalance]:
    """
    Folds filtered expenses into {member: MemberBalance}.

    The key set is the member set, fixed before the fold. For each expense
    of amount A with k participants: payer.paid += A, participant.owes += A/k.
    Expenses with no participants contribute nothing. An expense naming a
    handle outside the key set is skipped whole, so the fold never creates
    entries and never unbalances the sheet.
    """
    balances = {member: MemberBalance() for member in members}

    for expense in expenses:
        if not expense.participants:
            continue
        if expense.payer not in balances or any(p not in balances for p in expense.participants):
            logger.debug("Expense %s names a non-member; not counted.", expense.id)
            continue

        share = expense.amount / len(expense.participants)
        balances[expense.payer].paid += expense.amount
        for participant in expense.participants:
            balances[participant].owes += share

    for balance in balances.values():
        balance.net = balance.paid - balance.owes

    return balances


def apply_completed_transfers(
        balances: Mapping[str, MemberBalance],
        transfers: Iterable,
) -> dict[str, MemberBalance]:
    """
    Returns a copy of `balances` with completed transfers netted in.

    A completed transfer D → C of X means D already paid C: net[D] += X and
    net[C] -= X. A transfer naming a handle absent from the map is skipped.
    """
    adjusted = {member: replace(balance) for member, balance in balances.items()}

    for transfer in transfers:
        debtor = transfer.from_username
        creditor = transfer.to_username
        if debtor not in adjusted or creditor not in adjusted:
            logger.debug(
                "Completed transfer %s names a non-member; not applied.",
                getattr(transfer, "id", None),
            )
            continue
        amount = Decimal(str(transfer.amount))
        adjusted[debtor].net += amount
        adjusted[creditor].net -= amount

    return adjusted


def simplify_debts(
        net_balances: Mapping[str, Decimal],
        policy: LedgerPolicy = DEFAULT_POLICY,
) -> list[IdealTransfer]:
    """
    Greedy largest-first debt simplification.

    Creditors (net > tolerance) and debtors (net < -tolerance) are each sorted
    by magnitude, largest first; equal magnitudes keep input order. The head
    debtor pays the head creditor min(both remainders); a party is passed
    over once its remainder drops below the tolerance. Produces at most
    |creditors| + |debtors| - 1 transfers. Not guaranteed minimal in count.

    Each amount is quantized as it is emitted, so every debtor settles within
    the tolerance but a creditor paid by many debtors can drift further: one
    100.00 expense shared by seven non-payers yields seven 14.29 transfers,
    so the payer receives 100.03.

    Args:
        net_balances: {username: net} where positive means others owe them.

    Returns:
        Transfers in emission order, amounts quantized to policy.quantum.
    """
    tolerance = policy.tolerance

    creditors = sorted(
        ([member, net] for member, net in net_balances.items() if net > tolerance),
        key=lambda entry: entry[1],
        reverse=True,
    )
    debtors = sorted(
        ([member, -net] for member, net in net_balances.items() if net < -tolerance),
        key=lambda entry: entry[1],
        reverse=True,
    )

    transfers: list[IdealTransfer] = []
    i = j = 0

    while i < len(creditors) and j < len(debtors):
        creditor = creditors[i]
        debtor = debtors[j]

        amount = min(creditor[1], debtor[1])
        if amount > tolerance:
            transfers.append(IdealTransfer(
                from_username=debtor[0],
                to_username=creditor[0],
                amount=policy.quantize(amount),
            ))

        creditor[1] -= amount
        debtor[1] -= amount

        if creditor[1] < tolerance:
            i += 1
        if debtor[1] < tolerance:
            j += 1

    return transfers


def net_of(balances: Mapping[str, MemberBalance]) -> dict[str, Decimal]:
    return {member: balance.net for member, balance in balances.items()}


def balance_sum(balances: Mapping[str, MemberBalance]) -> Decimal:
    """Sum of all net balances. Zero within tolerance for any consistent trip."""
    return sum((balance.net for balance in balances.values()), ZERO)


# ── Trip-level entry points ────────────────────────────────────────────────

def build_ledger(
        trip_id: int,
        session: Session,
        policy: LedgerPolicy = DEFAULT_POLICY,
        include_completed: bool = True,
) -> Ledger:
    """
    Runs the full pipeline for one trip from a fresh read of its rows.

    include_completed=False ignores completed transfers; used by a hard reset,
    which discards completed history before recomputing.
    """
    members = tuple(get_trip_member_usernames(trip_id, session))
    if not members:
        return Ledger(members=(), expenses=())

    expenses = tuple(filter_valid_expenses(get_trip_expenses(trip_id, session), members))
    balances = calculate_balances(expenses, members)
    if include_completed:
        balances = apply_completed_transfers(balances, get_completed_transfers(trip_id, session))

    return Ledger(
        members=members,
        expenses=expenses,
        balances=balances,
        transfers=simplify_debts(net_of(balances), policy),
    )


def compute_balances(trip_id: int, session: Session) -> dict[str, MemberBalance]:
    """
    Returns {username: MemberBalance} for every current trip member, with
    completed transfers netted in. Pure read.
    """
    return build_ledger(trip_id, session).balances
