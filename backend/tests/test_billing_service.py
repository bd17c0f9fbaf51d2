"""Tests for the billed operation wrapper.

Tests cover:
- Successful billed calls and the returned balance
- Insufficient credits (no provider call)
- Duplicate request ids
- Provider failures with and without refunds
- Provider timeouts and cancellation
"""

import asyncio

import pytest
from sqlalchemy import func, select

from coverview.core.exceptions import (
    DuplicateRequestError,
    InsufficientCreditsError,
    LedgerUnavailableError,
    ProviderError,
)
from coverview.models import CreditTransaction, Feature, TransactionType
from coverview.services.billing import BillingService, get_billing_service

USER = "user-billing"

COSTS = {
    Feature.TITLE_OPTIMIZATION: 1,
    Feature.IMAGE_GENERATION: 10,
}


@pytest.fixture
def billing(ledger) -> BillingService:
    return BillingService(ledger, costs=COSTS, refund_on_failure=True, timeout_seconds=5)


class RecordingAction:
    """Provider stand-in that records whether it was called."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


async def transactions_of(db_session, transaction_type: TransactionType) -> int:
    return await db_session.scalar(
        select(func.count()).select_from(CreditTransaction).where(
            CreditTransaction.user_id == USER,
            CreditTransaction.type == transaction_type,
        )
    )


# =============================================================================
# Success and rejection
# =============================================================================


class TestBilledCall:

    @pytest.mark.asyncio
    async def test_success_returns_post_debit_balance(self, billing, fund):
        """Balance 10, one title optimization: 9 left."""
        await fund(USER, 10)
        action = RecordingAction(result=["A", "B", "C"])

        billed = await billing.run(USER, Feature.TITLE_OPTIMIZATION, action)

        assert billed.value == ["A", "B", "C"]
        assert billed.credits == 9
        assert billed.cost == 1
        assert billed.transaction_id is not None
        assert action.calls == 1

    @pytest.mark.asyncio
    async def test_metadata_and_feature_recorded(self, billing, fund, db_session):
        await fund(USER, 10)

        billed = await billing.run(
            USER,
            Feature.TITLE_OPTIMIZATION,
            RecordingAction(result=["A"]),
            metadata={"style": "catchy"},
        )

        tx = await db_session.get(CreditTransaction, billed.transaction_id)
        assert tx.description == "AI Title Optimization"
        assert tx.feature == Feature.TITLE_OPTIMIZATION
        assert tx.tx_metadata == {"style": "catchy"}

    @pytest.mark.asyncio
    async def test_insufficient_credits_skips_provider(self, billing, fund, ledger, db_session):
        """Balance 5, image generation costs 10: rejected, nothing recorded."""
        await fund(USER, 5)
        action = RecordingAction(result="image")

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await billing.run(USER, Feature.IMAGE_GENERATION, action)

        assert exc_info.value.required == 10
        assert exc_info.value.available == 5
        assert "Requires 10, Current 5" in exc_info.value.message
        assert action.calls == 0
        assert await ledger.get_balance(USER) == 5
        assert await transactions_of(db_session, TransactionType.DEBIT) == 0

    @pytest.mark.asyncio
    async def test_duplicate_request_skips_provider(self, billing, fund, ledger):
        await fund(USER, 10)
        first = RecordingAction(result=["A"])
        retry = RecordingAction(result=["B"])

        await billing.run(USER, Feature.TITLE_OPTIMIZATION, first, request_id="req-42")
        with pytest.raises(DuplicateRequestError) as exc_info:
            await billing.run(USER, Feature.TITLE_OPTIMIZATION, retry, request_id="req-42")

        assert exc_info.value.request_id == "req-42"
        assert exc_info.value.details["credits"] == 9
        assert retry.calls == 0
        assert await ledger.get_balance(USER) == 9

    @pytest.mark.asyncio
    async def test_ledger_failure_skips_provider(self, billing, monkeypatch):
        action = RecordingAction(result=["A"])

        async def unavailable(*args, **kwargs):
            raise LedgerUnavailableError("debit: OperationalError")

        monkeypatch.setattr(billing.ledger, "debit", unavailable)

        with pytest.raises(LedgerUnavailableError):
            await billing.run(USER, Feature.TITLE_OPTIMIZATION, action)
        assert action.calls == 0

    @pytest.mark.asyncio
    async def test_costs_must_be_positive(self, ledger):
        with pytest.raises(ValueError):
            BillingService(ledger, costs={Feature.TITLE_OPTIMIZATION: 0})

    @pytest.mark.asyncio
    async def test_factory_uses_settings(self, ledger, monkeypatch):
        from coverview.core.config import settings

        monkeypatch.setattr(settings, "CREDIT_COST_IMAGE_GENERATION", 7)
        monkeypatch.setattr(settings, "REFUND_ON_PROVIDER_FAILURE", False)

        service = get_billing_service(ledger)

        assert service.cost_of(Feature.IMAGE_GENERATION) == 7
        assert service.refund_on_failure is False


# =============================================================================
# Provider failures
# =============================================================================


class TestProviderFailure:

    @pytest.mark.asyncio
    async def test_failure_is_refunded(self, billing, fund, ledger, db_session):
        """The balance after the refund equals the balance before the debit."""
        await fund(USER, 20)
        action = RecordingAction(error=ProviderError("Image provider error: 502 Bad Gateway"))

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(USER, Feature.IMAGE_GENERATION, action)

        error = exc_info.value
        assert error.refunded is True
        assert error.credits == 20
        assert error.message == ProviderError.USER_MESSAGE
        assert await ledger.get_balance(USER) == 20
        assert await transactions_of(db_session, TransactionType.REFUND) == 1

        audit = await ledger.audit_account(USER)
        assert audit.consistent is True

    @pytest.mark.asyncio
    async def test_timeout_is_refunded(self, ledger, fund, db_session):
        """Balance 20, image generation times out: back to 20."""
        await fund(USER, 20)
        billing = BillingService(ledger, costs=COSTS, timeout_seconds=0.05)

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(USER, Feature.IMAGE_GENERATION, RecordingAction(delay=5))

        assert exc_info.value.refunded is True
        assert "timed out" in exc_info.value.reason
        assert await ledger.get_balance(USER) == 20

        refunds, _ = await ledger.get_transaction_history(
            USER, transaction_type=TransactionType.REFUND
        )
        assert refunds[0].description.startswith("refund: provider timed out")

    @pytest.mark.asyncio
    async def test_timeout_without_refunds_keeps_charge(self, ledger, fund, db_session):
        """With refunds disabled the attempt stays charged (20 -> 10)."""
        await fund(USER, 20)
        billing = BillingService(
            ledger, costs=COSTS, refund_on_failure=False, timeout_seconds=0.05
        )

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(USER, Feature.IMAGE_GENERATION, RecordingAction(delay=5))

        assert exc_info.value.refunded is False
        assert exc_info.value.credits == 10
        assert await ledger.get_balance(USER) == 10
        assert await transactions_of(db_session, TransactionType.REFUND) == 0

    @pytest.mark.asyncio
    async def test_refunded_request_id_can_be_retried(self, billing, fund, ledger):
        """A failed, refunded request is charged and delivered on retry."""
        await fund(USER, 10)
        failing = RecordingAction(error=ProviderError("Image provider error: 502 Bad Gateway"))
        retry = RecordingAction(result="image")

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(USER, Feature.IMAGE_GENERATION, failing, request_id="k1")
        billed = await billing.run(USER, Feature.IMAGE_GENERATION, retry, request_id="k1")

        assert exc_info.value.refunded is True
        assert billed.value == "image"
        assert billed.credits == 0
        assert retry.calls == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_refunded(self, billing, fund, ledger):
        await fund(USER, 3)

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(
                USER, Feature.TITLE_OPTIMIZATION, RecordingAction(error=KeyError("choices"))
            )

        assert "KeyError" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert await ledger.get_balance(USER) == 3

    @pytest.mark.asyncio
    async def test_failed_refund_is_reported(self, billing, fund, ledger, monkeypatch):
        """If the refund itself fails the caller learns nothing was refunded."""
        await fund(USER, 10)

        async def unavailable(*args, **kwargs):
            raise LedgerUnavailableError("refund: OperationalError")

        monkeypatch.setattr(billing.ledger, "refund", unavailable)

        with pytest.raises(ProviderError) as exc_info:
            await billing.run(
                USER, Feature.TITLE_OPTIMIZATION, RecordingAction(error=ProviderError("boom"))
            )

        assert exc_info.value.refunded is False
        assert exc_info.value.credits == 9

    @pytest.mark.asyncio
    async def test_cancelled_request_is_refunded(self, billing, fund, ledger):
        await fund(USER, 10)
        started = asyncio.Event()

        async def hangs():
            started.set()
            await asyncio.sleep(60)

        task = asyncio.create_task(billing.run(USER, Feature.IMAGE_GENERATION, hangs))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert await ledger.get_balance(USER) == 10
