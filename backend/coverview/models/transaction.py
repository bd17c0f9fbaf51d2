"""Credit transaction model: the append-only audit log."""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coverview.core.database import Base


def utc_now() -> datetime:
    """Current UTC timestamp."""
    return datetime.now(timezone.utc)


class TransactionType(str, enum.Enum):
    """Transaction types for credit operations."""

    DEBIT = "debit"  # Billed feature use
    REFUND = "refund"  # Compensating credit for an undelivered debit
    GRANT = "grant"  # Signup grant, promotion, operator grant
    PURCHASE = "purchase"  # Paid top-up


class Feature(str, enum.Enum):
    """Billed features."""

    TITLE_OPTIMIZATION = "title_optimization"
    IMAGE_GENERATION = "image_generation"


class CreditTransaction(Base):
    """
    Immutable audit log for all credit operations.

    This table is append-only: amounts and balances are never updated and rows
    are never deleted. The one exception is a refund clearing its debit's
    ``request_id`` so the key can be retried. Replaying a user's rows in ``id``
    order reproduces every ``balance_after``.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # Idempotency keys: billed requests and payment references never collide
        UniqueConstraint(
            "user_id", "type", "request_id", name="uq_credit_transactions_user_type_request"
        ),
    )

    # Primary key (monotonic)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("credit_accounts.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # Negative for debit
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(255), nullable=False)
    feature: Mapped[Optional[Feature]] = mapped_column(
        Enum(Feature, values_callable=lambda e: [m.value for m in e]),
        nullable=True,
        index=True,
    )

    # Not interpreted by the ledger. Note: 'metadata' is reserved by SQLAlchemy
    tx_metadata: Mapped[Optional[dict]] = mapped_column(
        "metadata", JSON().with_variant(JSONB, "postgresql"), nullable=True
    )

    request_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # A debit can be refunded at most once
    refund_of_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("credit_transactions.id"),
        nullable=True,
        unique=True,
    )

    # Timestamp (immutable)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False, index=True
    )

    # Relationships
    account: Mapped["CreditAccount"] = relationship(
        "CreditAccount", back_populates="transactions"
    )

    def __repr__(self) -> str:
        return (
            f"<CreditTransaction(id={self.id}, type={self.type.value}, "
            f"amount={self.amount}, balance_after={self.balance_after})>"
        )
