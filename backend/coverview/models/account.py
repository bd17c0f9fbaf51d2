"""Credit account model: the cached per-user balance."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from coverview.core.database import Base


class CreditAccount(Base):
    """
    Credit balance for each user.

    ``credits`` always equals the sum of the user's transaction amounts. It is
    only ever written by the ledger's conditional update, never directly.
    """

    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_credit_accounts_credits_non_negative"),
    )

    # Opaque identity assigned by the external auth provider
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    credits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # Relationships
    transactions: Mapped[list["CreditTransaction"]] = relationship(
        "CreditTransaction", back_populates="account", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<CreditAccount(user_id={self.user_id}, credits={self.credits})>"
