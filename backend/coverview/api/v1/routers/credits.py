"""API routes for credit balances.

This module provides REST endpoints for:
- GET /api/v1/credits/balance - Get current balance
- GET /api/v1/credits/transactions - Get transaction history
- GET /api/v1/credits/usage - Get this month's usage per feature
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from coverview.api.deps import get_current_user_id, get_ledger, get_usage
from coverview.models.transaction import TransactionType
from coverview.schemas.credits import (
    BalanceResponse,
    FeatureUsageResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    UsageSummaryResponse,
)
from coverview.services.ledger import LedgerService
from coverview.services.usage import UsageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get(
    "/balance",
    response_model=BalanceResponse,
    summary="Get credit balance",
    description="Get the current credit balance for the authenticated user",
)
async def get_balance(
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger),
) -> BalanceResponse:
    """Get the current user's balance, creating the account on first use."""
    details = await ledger.get_balance_details(user_id)
    return BalanceResponse(**details)


@router.get(
    "/transactions",
    response_model=TransactionHistoryResponse,
    summary="Get transaction history",
    description="Get paginated transaction history for the authenticated user",
)
async def get_transactions(
    transaction_type: Optional[TransactionType] = Query(
        default=None,
        alias="type",
        description="Filter by transaction type",
    ),
    limit: int = Query(
        default=20,
        ge=1,
        le=100,
        description="Maximum number of transactions to return",
    ),
    offset: int = Query(
        default=0,
        ge=0,
        description="Offset for pagination",
    ),
    user_id: str = Depends(get_current_user_id),
    ledger: LedgerService = Depends(get_ledger),
) -> TransactionHistoryResponse:
    """Get transaction history for the current user, newest first.

    Args:
        transaction_type: Optional filter by type (debit, refund, grant, purchase)
        limit: Maximum transactions to return (1-100)
        offset: Pagination offset
        user_id: Authenticated caller
        ledger: Ledger service

    Returns:
        TransactionHistoryResponse with paginated transactions
    """
    transactions, total = await ledger.get_transaction_history(
        user_id=user_id,
        limit=limit,
        offset=offset,
        transaction_type=transaction_type,
    )

    transaction_responses = [
        TransactionResponse(
            id=tx.id,
            type=tx.type,
            amount=tx.amount,
            balance_after=tx.balance_after,
            description=tx.description,
            feature=tx.feature,
            metadata=tx.tx_metadata,
            refund_of_id=tx.refund_of_id,
            created_at=tx.created_at,
        )
        for tx in transactions
    ]

    return TransactionHistoryResponse(
        transactions=transaction_responses,
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/usage",
    response_model=UsageSummaryResponse,
    summary="Get monthly usage",
    description="Per-feature usage against the monthly allotment",
)
async def get_usage_summary(
    user_id: str = Depends(get_current_user_id),
    usage: UsageService = Depends(get_usage),
) -> UsageSummaryResponse:
    """Summarize this month's non-refunded feature use. Never charges."""
    summary = await usage.get_summary(user_id)

    return UsageSummaryResponse(
        period=summary.period,
        credits=summary.credits,
        features=[
            FeatureUsageResponse(
                feature=item.feature,
                quota=item.quota,
                used=item.used,
                remaining=item.remaining,
                can_use=item.can_use,
                cost=item.cost,
            )
            for item in summary.features
        ],
    )
