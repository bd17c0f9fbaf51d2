"""Credit ledger service.

This service owns every write to a user's balance:
- Lazily creating accounts (with the configured starting grant)
- Atomic debits for billed features
- Credits (grants, purchases) and idempotent refunds
- Transaction history for display
- Replaying the log to audit the cached balance

Every balance mutation is a single conditional ``UPDATE ... RETURNING`` plus
the matching transaction insert, committed together. The database serializes
concurrent updates of the same account row, so two debits can never both see
a balance that only covers one of them.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coverview.core.config import settings
from coverview.core.exceptions import LedgerUnavailableError, TransactionNotFoundError
from coverview.models.account import CreditAccount
from coverview.models.transaction import CreditTransaction, Feature, TransactionType

logger = logging.getLogger(__name__)

LOW_BALANCE_THRESHOLD = 10  # Warning threshold
MAX_DESCRIPTION_LENGTH = 255


@dataclass(frozen=True)
class DebitResult:
    """Outcome of a debit attempt.

    ``balance_after`` is the post-debit balance on success and the unchanged
    current balance otherwise, so callers never need a second read.
    """

    success: bool
    balance_after: int
    transaction_id: Optional[int] = None
    duplicate: bool = False


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a credit or refund. ``replayed`` marks an idempotent repeat."""

    balance_after: int
    transaction_id: int
    replayed: bool = False


@dataclass
class LedgerAudit:
    """Result of replaying a user's transaction log."""

    user_id: str
    credits: int
    replayed_balance: int
    transaction_count: int
    mismatched_transaction_ids: list[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return not self.mismatched_transaction_ids and self.credits == self.replayed_balance


class LedgerService:
    """Service for credit balances and the transaction log."""

    def __init__(self, db: AsyncSession, starting_credits: Optional[int] = None):
        """Initialize the ledger service.

        Args:
            db: Database session, one per request
            starting_credits: Grant for lazily created accounts
                (defaults to settings.DEFAULT_STARTING_CREDITS)
        """
        self.db = db
        self.starting_credits = (
            settings.DEFAULT_STARTING_CREDITS if starting_credits is None else starting_credits
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_account(self, user_id: str) -> CreditAccount:
        """Get the user's account, creating it if needed."""
        async with self._storage_guard("get_account"):
            await self._ensure_account(user_id)
            return await self.db.scalar(
                select(CreditAccount).where(CreditAccount.user_id == user_id)
            )

    async def get_balance(self, user_id: str) -> int:
        """Get the current balance, creating the account if needed."""
        async with self._storage_guard("get_balance"):
            await self._ensure_account(user_id)
            return await self._read_balance(user_id)

    async def get_balance_details(self, user_id: str) -> dict:
        """Get balance information for display.

        Returns:
            Dict with credits and is_low_balance
        """
        credits = await self.get_balance(user_id)
        return {
            "credits": credits,
            "is_low_balance": credits <= LOW_BALANCE_THRESHOLD,
        }

    async def get_transaction_history(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        transaction_type: Optional[TransactionType] = None,
    ) -> tuple[list[CreditTransaction], int]:
        """Get transaction history for a user, newest first.

        Args:
            user_id: The user's ID
            limit: Maximum number of transactions to return
            offset: Offset for pagination
            transaction_type: Optional filter by transaction type

        Returns:
            Tuple of (list of transactions, total count)
        """
        base_query = select(CreditTransaction).where(CreditTransaction.user_id == user_id)

        if transaction_type:
            base_query = base_query.where(CreditTransaction.type == transaction_type)

        async with self._storage_guard("get_transaction_history"):
            count_query = select(func.count()).select_from(base_query.subquery())
            total = await self.db.scalar(count_query) or 0

            query = (
                base_query
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await self.db.execute(query)
            transactions = list(result.scalars().all())

        return transactions, total

    async def audit_account(self, user_id: str) -> LedgerAudit:
        """Replay the log oldest first and compare it to the cached balance."""
        async with self._storage_guard("audit_account"):
            result = await self.db.execute(
                select(CreditTransaction.id, CreditTransaction.amount, CreditTransaction.balance_after)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.id.asc())
            )
            rows = result.all()
            credits = await self._read_balance(user_id)

        running = 0
        mismatched = []
        for tx_id, amount, balance_after in rows:
            running += amount
            if balance_after != running:
                mismatched.append(tx_id)

        audit = LedgerAudit(
            user_id=user_id,
            credits=credits,
            replayed_balance=running,
            transaction_count=len(rows),
            mismatched_transaction_ids=mismatched,
        )
        if not audit.consistent:
            logger.error(
                f"Ledger audit failed for user {user_id}: cached={credits}, "
                f"replayed={running}, mismatched={mismatched}"
            )
        return audit

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def debit(
        self,
        user_id: str,
        amount: int,
        description: str,
        metadata: Optional[dict] = None,
        *,
        feature: Optional[Feature] = None,
        request_id: Optional[str] = None,
    ) -> DebitResult:
        """Atomically check the balance and take a debit.

        Insufficient funds is an expected outcome, reported as
        ``success=False`` with the unchanged balance. A ``request_id`` already
        held by one of this user's debits is reported as ``duplicate=True`` and
        is never charged twice. Refunding a debit releases its key.

        Args:
            user_id: The user's ID
            amount: Credits to take (must be positive)
            description: Label of the billed feature
            metadata: Optional context stored with the transaction
            feature: Billed feature, used by the usage view
            request_id: Optional client idempotency key

        Returns:
            DebitResult

        Raises:
            ValueError: If amount is not positive
            LedgerUnavailableError: If storage fails (nothing was applied)
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        async with self._storage_guard("debit"):
            await self._ensure_account(user_id)

            if request_id is not None:
                duplicate = await self._duplicate_result(user_id, request_id)
                if duplicate is not None:
                    return duplicate

            new_balance = await self._apply_delta(user_id, -amount)
            if new_balance is None:
                await self.db.rollback()
                current = await self._read_balance(user_id)
                logger.info(
                    f"Debit of {amount} credits rejected for user {user_id} "
                    f"({description}): balance {current}"
                )
                return DebitResult(success=False, balance_after=current)

            transaction = CreditTransaction(
                user_id=user_id,
                type=TransactionType.DEBIT,
                amount=-amount,
                balance_after=new_balance,
                description=description[:MAX_DESCRIPTION_LENGTH],
                feature=feature,
                tx_metadata=metadata,
                request_id=request_id,
            )
            self.db.add(transaction)

            try:
                await self.db.flush()
                transaction_id = transaction.id
                await self.db.commit()
            except IntegrityError:
                # A concurrent request with the same key committed first;
                # the rollback also undoes this balance update.
                await self.db.rollback()
                if request_id is None:
                    raise
                duplicate = await self._duplicate_result(user_id, request_id)
                if duplicate is None:
                    raise
                return duplicate

        logger.info(
            f"Debited {amount} credits from user {user_id} ({description}). "
            f"New balance: {new_balance}"
        )
        return DebitResult(
            success=True,
            balance_after=new_balance,
            transaction_id=transaction_id,
        )

    async def credit(
        self,
        user_id: str,
        amount: int,
        description: str,
        *,
        transaction_type: TransactionType = TransactionType.GRANT,
        metadata: Optional[dict] = None,
        request_id: Optional[str] = None,
    ) -> CreditResult:
        """Add credits to a user's balance.

        Args:
            user_id: The user's ID
            amount: Credits to add (must be positive)
            description: Human-readable reason
            transaction_type: GRANT or PURCHASE
            metadata: Optional context stored with the transaction
            request_id: Optional idempotency key (e.g. a payment reference)

        Returns:
            CreditResult with the new balance

        Raises:
            ValueError: If amount is not positive or the type is not a credit type
            LedgerUnavailableError: If storage fails
        """
        if amount <= 0:
            raise ValueError("Amount must be positive")

        if transaction_type == TransactionType.DEBIT:
            raise ValueError("Use debit for feature charges")
        if transaction_type == TransactionType.REFUND:
            raise ValueError("Use refund to reverse a debit")

        async with self._storage_guard("credit"):
            await self._ensure_account(user_id)

            if request_id is not None:
                existing = await self._find_by_request_id(user_id, request_id, transaction_type)
                if existing is not None:
                    return CreditResult(
                        balance_after=await self._read_balance(user_id),
                        transaction_id=existing.id,
                        replayed=True,
                    )

            try:
                result = await self._append_credit(
                    user_id,
                    amount,
                    transaction_type,
                    description,
                    metadata=metadata,
                    request_id=request_id,
                )
            except IntegrityError:
                await self.db.rollback()
                existing = (
                    await self._find_by_request_id(user_id, request_id, transaction_type)
                    if request_id is not None
                    else None
                )
                if existing is None:
                    raise
                return CreditResult(
                    balance_after=await self._read_balance(user_id),
                    transaction_id=existing.id,
                    replayed=True,
                )

        logger.info(
            f"Added {amount} credits to user {user_id} ({transaction_type.value}). "
            f"New balance: {result.balance_after}"
        )
        return result

    async def refund(
        self,
        user_id: str,
        debit_transaction_id: int,
        reason: str,
    ) -> CreditResult:
        """Reverse a debit whose feature was not delivered.

        Refunds the exact debited amount with description ``"refund: <reason>"``.
        Refunding the same debit twice returns the first refund.
        The debit's ``request_id`` is released in the same commit, so a client
        may retry a request that was not delivered.

        Raises:
            TransactionNotFoundError: If the debit does not exist for this user
            LedgerUnavailableError: If storage fails
        """
        async with self._storage_guard("refund"):
            debit_tx = await self.db.scalar(
                select(CreditTransaction).where(
                    CreditTransaction.id == debit_transaction_id,
                    CreditTransaction.user_id == user_id,
                )
            )
            if debit_tx is None or debit_tx.type != TransactionType.DEBIT:
                raise TransactionNotFoundError(debit_transaction_id)
            refund_amount = -debit_tx.amount

            existing = await self._find_refund(debit_transaction_id)
            if existing is not None:
                return CreditResult(
                    balance_after=await self._read_balance(user_id),
                    transaction_id=existing.id,
                    replayed=True,
                )

            metadata = {"refund_of": debit_transaction_id, "reason": reason}
            if debit_tx.request_id is not None:
                # Flushed with the refund row below
                metadata["request_id"] = debit_tx.request_id
                debit_tx.request_id = None

            try:
                result = await self._append_credit(
                    user_id,
                    refund_amount,
                    TransactionType.REFUND,
                    f"refund: {reason}",
                    metadata=metadata,
                    feature=debit_tx.feature,
                    refund_of_id=debit_transaction_id,
                )
            except IntegrityError:
                await self.db.rollback()
                existing = await self._find_refund(debit_transaction_id)
                if existing is None:
                    raise
                return CreditResult(
                    balance_after=await self._read_balance(user_id),
                    transaction_id=existing.id,
                    replayed=True,
                )

        logger.info(
            f"Refunded {refund_amount} credits to user {user_id} for debit "
            f"{debit_transaction_id} ({reason}). New balance: {result.balance_after}"
        )
        return result

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _storage_guard(self, operation: str) -> AsyncIterator[None]:
        """Translate storage failures into LedgerUnavailableError."""
        try:
            yield
        except (SQLAlchemyError, OSError) as e:
            try:
                await self.db.rollback()
            except (SQLAlchemyError, OSError) as rollback_error:
                logger.warning(f"Rollback after failed {operation} also failed: {rollback_error}")
            logger.error(f"Ledger {operation} failed: {e}")
            raise LedgerUnavailableError(f"{operation}: {e.__class__.__name__}") from e

    async def _ensure_account(self, user_id: str) -> None:
        """Create the account (and its starting grant) if it does not exist."""
        exists = await self.db.scalar(
            select(CreditAccount.user_id).where(CreditAccount.user_id == user_id)
        )
        if exists is not None:
            return

        self.db.add(CreditAccount(user_id=user_id, credits=self.starting_credits))
        if self.starting_credits > 0:
            self.db.add(
                CreditTransaction(
                    user_id=user_id,
                    type=TransactionType.GRANT,
                    amount=self.starting_credits,
                    balance_after=self.starting_credits,
                    description="Initial credit grant",
                    tx_metadata={"reason": "signup"},
                )
            )

        try:
            await self.db.commit()
        except IntegrityError:
            # Created concurrently by another request
            await self.db.rollback()
            return

        logger.info(
            f"Created credit account for user {user_id} "
            f"with {self.starting_credits} credits"
        )

    async def _read_balance(self, user_id: str) -> int:
        credits = await self.db.scalar(
            select(CreditAccount.credits).where(CreditAccount.user_id == user_id)
        )
        return credits or 0

    async def _apply_delta(self, user_id: str, delta: int) -> Optional[int]:
        """Apply a signed delta in one statement; None if the guard rejected it.

        Debits only match when the balance covers them, so the check and the
        update cannot be separated by a concurrent writer.
        """
        stmt = (
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(credits=CreditAccount.credits + delta)
            .returning(CreditAccount.credits)
            .execution_options(synchronize_session=False)
        )
        if delta < 0:
            stmt = stmt.where(CreditAccount.credits >= -delta)

        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _append_credit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType,
        description: str,
        *,
        metadata: Optional[dict] = None,
        feature: Optional[Feature] = None,
        request_id: Optional[str] = None,
        refund_of_id: Optional[int] = None,
    ) -> CreditResult:
        new_balance = await self._apply_delta(user_id, amount)
        if new_balance is None:
            await self.db.rollback()
            raise LedgerUnavailableError(f"account {user_id} disappeared during credit")

        transaction = CreditTransaction(
            user_id=user_id,
            type=transaction_type,
            amount=amount,
            balance_after=new_balance,
            description=description[:MAX_DESCRIPTION_LENGTH],
            feature=feature,
            tx_metadata=metadata,
            request_id=request_id,
            refund_of_id=refund_of_id,
        )
        self.db.add(transaction)
        await self.db.flush()
        transaction_id = transaction.id
        await self.db.commit()

        return CreditResult(balance_after=new_balance, transaction_id=transaction_id)

    async def _find_by_request_id(
        self, user_id: str, request_id: str, transaction_type: TransactionType
    ) -> Optional[CreditTransaction]:
        """Keys are unique per user and transaction type."""
        return await self.db.scalar(
            select(CreditTransaction).where(
                CreditTransaction.user_id == user_id,
                CreditTransaction.type == transaction_type,
                CreditTransaction.request_id == request_id,
            )
        )

    async def _find_refund(self, debit_transaction_id: int) -> Optional[CreditTransaction]:
        return await self.db.scalar(
            select(CreditTransaction).where(
                CreditTransaction.refund_of_id == debit_transaction_id
            )
        )

    async def _duplicate_result(self, user_id: str, request_id: str) -> Optional[DebitResult]:
        existing = await self._find_by_request_id(user_id, request_id, TransactionType.DEBIT)
        if existing is None:
            return None

        logger.warning(
            f"Duplicate billed request {request_id} for user {user_id} "
            f"(transaction {existing.id}); not charging again"
        )
        return DebitResult(
            success=False,
            balance_after=await self._read_balance(user_id),
            transaction_id=existing.id,
            duplicate=True,
        )


def get_ledger_service(db: AsyncSession) -> LedgerService:
    """Factory function to create LedgerService.

    Args:
        db: Database session

    Returns:
        Configured LedgerService instance
    """
    return LedgerService(db)
