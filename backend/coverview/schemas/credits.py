"""Pydantic schemas for credit API endpoints.

This module defines response models for:
- Balance queries
- Transaction history
- Monthly usage summary
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from coverview.models.transaction import Feature, TransactionType


class BalanceResponse(BaseModel):
    """Response model for balance queries."""

    credits: int = Field(description="Available credits")
    is_low_balance: bool = Field(description="True if balance is at or below warning threshold")


class TransactionResponse(BaseModel):
    """Response model for a single ledger transaction."""

    id: int = Field(description="Transaction ID")
    type: TransactionType = Field(description="Transaction type")
    amount: int = Field(description="Credit change (positive=add, negative=debit)")
    balance_after: int = Field(description="Balance after this transaction")
    description: str = Field(description="What the transaction was for")
    feature: Optional[Feature] = Field(default=None, description="Billed feature, if any")
    metadata: Optional[dict] = Field(default=None, description="Additional transaction context")
    refund_of_id: Optional[int] = Field(default=None, description="Debit reversed by this refund")
    created_at: datetime = Field(description="Transaction timestamp")

    class Config:
        from_attributes = True


class TransactionHistoryResponse(BaseModel):
    """Response model for transaction history queries."""

    transactions: list[TransactionResponse] = Field(description="List of transactions")
    total: int = Field(description="Total number of transactions")
    limit: int = Field(description="Page size limit")
    offset: int = Field(description="Current offset")


class FeatureUsageResponse(BaseModel):
    feature: Feature
    quota: int = Field(description="Monthly allotment")
    used: int = Field(description="Non-refunded uses this month")
    remaining: int = Field(description="Allotment left this month")
    can_use: bool
    cost: int = Field(description="Credits charged per use")


class UsageSummaryResponse(BaseModel):
    """Response model for the monthly usage view."""

    period: str = Field(description="Calendar month in UTC, YYYY-MM")
    credits: int = Field(description="Available credits")
    features: list[FeatureUsageResponse]
