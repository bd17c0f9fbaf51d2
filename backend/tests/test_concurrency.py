"""Concurrency tests for the atomic debit.

Each concurrent attempt runs in its own session (its own connection), the way
separate HTTP requests would.
"""

import asyncio

import pytest
from sqlalchemy import select

from coverview.models import CreditTransaction, TransactionType
from coverview.services.ledger import LedgerService

USER = "user-concurrent"


async def debit_in_own_session(session_factory, amount: int, request_id=None):
    async with session_factory() as session:
        ledger = LedgerService(session, starting_credits=0)
        return await ledger.debit(
            USER, amount, "AI Title Optimization", request_id=request_id
        )


async def debit_rows(session_factory) -> list[CreditTransaction]:
    async with session_factory() as session:
        result = await session.execute(
            select(CreditTransaction)
            .where(
                CreditTransaction.user_id == USER,
                CreditTransaction.type == TransactionType.DEBIT,
            )
            .order_by(CreditTransaction.id)
        )
        return list(result.scalars().all())


async def balance(session_factory) -> int:
    async with session_factory() as session:
        return await LedgerService(session, starting_credits=0).get_balance(USER)


class TestConcurrentDebits:
    """Concurrent debits serialize on the account row."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "starting,cost,extra",
        [
            (25, 10, 1),
            (25, 10, 4),
            (5, 1, 3),
        ],
    )
    async def test_exactly_affordable_debits_succeed(
        self, session_factory, fund, starting, cost, extra
    ):
        """floor(B/C) + k attempts give floor(B/C) successes and k failures."""
        await fund(USER, starting)
        affordable = starting // cost

        results = await asyncio.gather(
            *(debit_in_own_session(session_factory, cost) for _ in range(affordable + extra))
        )

        successes = [r for r in results if r.success]
        failures = [r for r in results if not r.success]
        assert len(successes) == affordable
        assert len(failures) == extra
        assert all(not r.duplicate for r in failures)

        final = await balance(session_factory)
        assert final == starting - affordable * cost
        assert final >= 0

    @pytest.mark.asyncio
    async def test_two_concurrent_title_optimizations(self, session_factory, fund):
        """Balance 10, two concurrent cost-1 debits: 8 left, balances 9 and 8."""
        await fund(USER, 10)

        results = await asyncio.gather(
            debit_in_own_session(session_factory, 1),
            debit_in_own_session(session_factory, 1),
        )

        assert all(r.success for r in results)
        assert sorted(r.balance_after for r in results) == [8, 9]
        assert await balance(session_factory) == 8

        rows = await debit_rows(session_factory)
        assert [row.balance_after for row in rows] == [9, 8]

    @pytest.mark.asyncio
    async def test_concurrent_same_request_id_charged_once(self, session_factory, fund):
        """Racing retries of one request are charged exactly once."""
        await fund(USER, 10)

        results = await asyncio.gather(
            *(debit_in_own_session(session_factory, 1, request_id="retry-me") for _ in range(4))
        )

        assert sum(1 for r in results if r.success) == 1
        assert sum(1 for r in results if r.duplicate) == 3
        assert await balance(session_factory) == 9
        assert len(await debit_rows(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_log_replays_after_concurrent_load(self, session_factory, fund):
        await fund(USER, 30)

        await asyncio.gather(
            *(debit_in_own_session(session_factory, 3) for _ in range(15))
        )

        async with session_factory() as session:
            audit = await LedgerService(session, starting_credits=0).audit_account(USER)

        assert audit.consistent is True
        assert audit.credits == 0
