"""Monthly usage view per billed feature.

Usage is derived from the ledger: a feature use is a DEBIT in the current
calendar month (UTC) that was not refunded. Reading the summary never writes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from coverview.core.config import settings
from coverview.core.exceptions import LedgerUnavailableError
from coverview.models.account import CreditAccount
from coverview.models.transaction import CreditTransaction, Feature, TransactionType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureQuota:
    """Monthly allotment and consumption of one feature."""

    feature: Feature
    used: int
    quota: int
    remaining: int
    can_use: bool
    cost: int


@dataclass
class UsageSummary:
    period: str
    credits: int
    features: list[FeatureQuota] = field(default_factory=list)

    def for_feature(self, feature: Feature) -> FeatureQuota:
        for item in self.features:
            if item.feature == feature:
                return item
        raise KeyError(feature)


def period_bounds(now: datetime) -> tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of the UTC month containing ``now``."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)

    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def period_key(now: datetime) -> str:
    """Month identifier, e.g. ``2026-10``."""
    start, _ = period_bounds(now)
    return start.strftime("%Y-%m")


def build_usage_summary(
    used: dict[Feature, int],
    quotas: dict[Feature, int],
    costs: dict[Feature, int],
    credits: int,
    period: str,
) -> UsageSummary:
    """Combine usage counts with the configured allotments."""
    features = []
    for feature in Feature:
        quota = quotas.get(feature, 0)
        count = used.get(feature, 0)
        remaining = max(0, quota - count)
        features.append(
            FeatureQuota(
                feature=feature,
                used=count,
                quota=quota,
                remaining=remaining,
                can_use=remaining > 0,
                cost=costs.get(feature, 0),
            )
        )
    return UsageSummary(period=period, credits=credits, features=features)


class UsageService:
    """Read-only usage statistics built from the transaction log."""

    def __init__(
        self,
        db: AsyncSession,
        quotas: dict[Feature, int],
        costs: dict[Feature, int],
    ):
        self.db = db
        self.quotas = quotas
        self.costs = costs

    async def get_usage_counts(
        self, user_id: str, now: Optional[datetime] = None
    ) -> dict[Feature, int]:
        """Count non-refunded debits per feature in the month of ``now``."""
        start, end = period_bounds(now or datetime.now(timezone.utc))

        refund = aliased(CreditTransaction)
        refunded = select(refund.id).where(refund.refund_of_id == CreditTransaction.id).exists()

        result = await self.db.execute(
            select(CreditTransaction.feature, func.count(CreditTransaction.id))
            .where(
                and_(
                    CreditTransaction.user_id == user_id,
                    CreditTransaction.type == TransactionType.DEBIT,
                    CreditTransaction.feature.is_not(None),
                    CreditTransaction.created_at >= start,
                    CreditTransaction.created_at < end,
                    ~refunded,
                )
            )
            .group_by(CreditTransaction.feature)
        )
        return {feature: count for feature, count in result.all()}

    async def get_summary(self, user_id: str, now: Optional[datetime] = None) -> UsageSummary:
        """Usage summary for the month of ``now``.

        Accounts are not created here; an unknown user reads as zero credits.
        """
        now = now or datetime.now(timezone.utc)
        try:
            used = await self.get_usage_counts(user_id, now)
            credits = await self.db.scalar(
                select(CreditAccount.credits).where(CreditAccount.user_id == user_id)
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Usage summary failed for user {user_id}: {e}")
            raise LedgerUnavailableError(f"usage: {e.__class__.__name__}") from e
        return build_usage_summary(used, self.quotas, self.costs, credits or 0, period_key(now))


def get_usage_service(db: AsyncSession) -> UsageService:
    """Build a usage service from application settings."""
    return UsageService(
        db,
        quotas={
            Feature.TITLE_OPTIMIZATION: settings.FREE_QUOTA_TITLE_OPTIMIZATION,
            Feature.IMAGE_GENERATION: settings.FREE_QUOTA_IMAGE_GENERATION,
        },
        costs={
            Feature.TITLE_OPTIMIZATION: settings.CREDIT_COST_TITLE_OPTIMIZATION,
            Feature.IMAGE_GENERATION: settings.CREDIT_COST_IMAGE_GENERATION,
        },
    )
