"""SQLAlchemy models for the credit ledger."""

from coverview.models.account import CreditAccount
from coverview.models.transaction import CreditTransaction, Feature, TransactionType

__all__ = [
    "CreditAccount",
    "CreditTransaction",
    "Feature",
    "TransactionType",
]
