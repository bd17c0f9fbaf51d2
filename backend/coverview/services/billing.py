"""Billed operation wrapper.

Every paid feature runs through BillingService.run:
1. Debit the feature cost (insufficient funds and reused request ids stop here)
2. Run the provider call under a hard timeout
3. Return the result with the post-debit balance, or
4. On provider failure, refund the debit and report the restored balance

Step 4 can be switched off (``refund_on_failure=False``) to keep the charge
for the attempt; the failure is then logged with the debit that was kept.
Authentication happens before the wrapper is constructed.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from coverview.core.config import settings
from coverview.core.exceptions import (
    DuplicateRequestError,
    InsufficientCreditsError,
    LedgerUnavailableError,
    ProviderError,
)
from coverview.models.transaction import Feature
from coverview.services.ledger import DebitResult, LedgerService

logger = logging.getLogger(__name__)

T = TypeVar("T")

FEATURE_DESCRIPTIONS = {
    Feature.TITLE_OPTIMIZATION: "AI Title Optimization",
    Feature.IMAGE_GENERATION: "AI Image Generation",
}


@dataclass(frozen=True)
class BilledResult(Generic[T]):
    """A delivered feature result and what it cost."""

    value: T
    credits: int
    cost: int
    transaction_id: int


class BillingService:
    """Charges for a feature, runs it, and settles the charge on failure."""

    def __init__(
        self,
        ledger: LedgerService,
        costs: dict[Feature, int],
        refund_on_failure: bool = True,
        timeout_seconds: float = 60.0,
    ):
        """Initialize the billing wrapper.

        Args:
            ledger: Ledger bound to the request's database session
            costs: Credit cost per feature
            refund_on_failure: Refund the debit when the provider fails
            timeout_seconds: Upper bound for one provider call
        """
        for feature, cost in costs.items():
            if cost <= 0:
                raise ValueError(f"Cost for {feature.value} must be positive")

        self.ledger = ledger
        self.costs = dict(costs)
        self.refund_on_failure = refund_on_failure
        self.timeout_seconds = timeout_seconds

    def cost_of(self, feature: Feature) -> int:
        return self.costs[feature]

    async def run(
        self,
        user_id: str,
        feature: Feature,
        action: Callable[[], Awaitable[T]],
        *,
        request_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> BilledResult[T]:
        """Debit ``feature``'s cost, then run ``action``.

        Args:
            user_id: Authenticated caller
            feature: Feature being billed
            action: Zero-argument coroutine factory performing the provider call
            request_id: Optional client idempotency key
            metadata: Context stored on the debit transaction

        Returns:
            BilledResult with the action's value and the post-debit balance

        Raises:
            InsufficientCreditsError: Balance below cost; nothing was charged
            DuplicateRequestError: ``request_id`` was already billed
            LedgerUnavailableError: Storage failed before the debit applied
            ProviderError: The action failed after the debit; ``refunded``
                tells whether the charge was reversed
        """
        cost = self.cost_of(feature)
        debit = await self.ledger.debit(
            user_id,
            cost,
            FEATURE_DESCRIPTIONS[feature],
            metadata,
            feature=feature,
            request_id=request_id,
        )

        if debit.duplicate:
            raise DuplicateRequestError(request_id, credits=debit.balance_after)
        if not debit.success:
            raise InsufficientCreditsError(required=cost, available=debit.balance_after)

        try:
            value = await asyncio.wait_for(action(), timeout=self.timeout_seconds)
        except asyncio.CancelledError:
            # The caller went away: nothing will be delivered
            await asyncio.shield(self._settle_failure(user_id, feature, debit, "request cancelled"))
            raise
        except Exception as e:
            error = await self._settle_failure(user_id, feature, debit, self._describe(e))
            raise error from e

        return BilledResult(
            value=value,
            credits=debit.balance_after,
            cost=cost,
            transaction_id=debit.transaction_id,
        )

    def _describe(self, error: Exception) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"provider timed out after {self.timeout_seconds:g}s"
        if isinstance(error, ProviderError):
            return error.reason
        return f"{error.__class__.__name__}: {error}"

    async def _settle_failure(
        self,
        user_id: str,
        feature: Feature,
        debit: DebitResult,
        reason: str,
    ) -> ProviderError:
        """Refund (or knowingly keep) a debit whose feature was not delivered."""
        if not self.refund_on_failure:
            logger.error(
                f"{feature.value} failed for user {user_id} after debit "
                f"{debit.transaction_id}; refunds disabled, charge kept: {reason}"
            )
            return ProviderError(reason, refunded=False, credits=debit.balance_after)

        try:
            refund = await self.ledger.refund(user_id, debit.transaction_id, reason=reason)
        except LedgerUnavailableError as e:
            logger.error(
                f"Refund of debit {debit.transaction_id} for user {user_id} failed ({e}); "
                f"finish with: ledger_admin.py refund {user_id} {debit.transaction_id}"
            )
            return ProviderError(reason, refunded=False, credits=debit.balance_after)

        logger.warning(
            f"{feature.value} failed for user {user_id}: {reason}. "
            f"Debit {debit.transaction_id} refunded, balance {refund.balance_after}"
        )
        return ProviderError(reason, refunded=True, credits=refund.balance_after)


def get_billing_service(ledger: LedgerService) -> BillingService:
    """Build a billing wrapper from application settings."""
    return BillingService(
        ledger,
        costs={
            Feature.TITLE_OPTIMIZATION: settings.CREDIT_COST_TITLE_OPTIMIZATION,
            Feature.IMAGE_GENERATION: settings.CREDIT_COST_IMAGE_GENERATION,
        },
        refund_on_failure=settings.REFUND_ON_PROVIDER_FAILURE,
        timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
    )
