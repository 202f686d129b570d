"""
models — ORM table definitions.

Every model is imported here so string-based relationship targets
("Trip", "Group", ...) resolve no matter which model a caller imports first.
"""

from backend.app.models.expense import Expense
from backend.app.models.group import Group
from backend.app.models.membership import GroupMembership, TripMembership
from backend.app.models.transfer import Transfer, TransferStatus
from backend.app.models.trip import Trip
from backend.app.models.user import User

__all__ = [
    "Expense",
    "Group",
    "GroupMembership",
    "TripMembership",
    "Transfer",
    "TransferStatus",
    "Trip",
    "User",
]
