"""Wallet ledger: per-user balances and the append-only transaction log.

LOCKING
=======

Every balance change runs under a row lock on the wallet
(``SELECT ... FOR UPDATE``). Callers that touch several wallets in one unit
of work call ``lock_wallets`` first: locks are then always taken in ascending
id order, so two purchases crediting the same provider and platform wallets
cannot deadlock against each other.

``populate_existing`` forces the locked SELECT to overwrite whatever the
identity map already holds, so the balance checked is the balance locked.

IDEMPOTENCY
===========

Every movement carries a unique idempotency key. Repeating a key for the
same wallet, direction and amount returns the original transaction id and
changes nothing; reusing it for anything else raises
DuplicateIdempotencyKeyError.

EXAMPLE:
    async with unit_of_work(session_maker) as session:
        ledger = WalletLedger(session)
        await ledger.lock_wallets([buyer_wallet_id, provider_wallet_id])
        await ledger.debit(buyer_wallet_id, Decimal("30.0000"), "order-42:debit")
        await ledger.credit(provider_wallet_id, Decimal("28.5000"), "order-42:credit")
"""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import (
    ConflictError,
    DuplicateIdempotencyKeyError,
    InsufficientFundsError,
    NotFoundError,
    ValidationError,
    WalletNotActiveError,
)
from marketplace.models.transaction import LedgerTransaction, TransactionType
from marketplace.models.wallet import Wallet, WalletStatus
from marketplace.services.commission import quantize_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferResult:
    debit_transaction_id: uuid.UUID
    credit_transaction_id: uuid.UUID


@dataclass(frozen=True, slots=True)
class PeerTransfer:
    """A completed user-to-user transfer and the sender's balance after it."""

    debit_transaction_id: uuid.UUID
    credit_transaction_id: uuid.UUID
    amount: Decimal
    sender_balance: Decimal


@dataclass(frozen=True, slots=True)
class ReconciliationReport:
    """Stored balance compared with the balance replayed from history."""

    wallet_id: uuid.UUID
    stored_balance: Decimal
    replayed_balance: Decimal

    @property
    def drift(self) -> Decimal:
        return self.stored_balance - self.replayed_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0


class WalletLedger:
    """Balance mutations and ledger queries inside the caller's unit of work.

    The ledger never commits or rolls back; it only flushes. Any error it
    raises propagates out of the enclosing unit of work, which rolls back
    every movement made so far.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def open_wallet(self, user_id: uuid.UUID, currency: str = "USD") -> Wallet:
        """Create the (single) wallet of ``user_id`` with a zero balance.

        Raises:
            ConflictError: If the user already owns a wallet
        """
        existing = await self.session.execute(
            select(Wallet.id).where(Wallet.user_id == user_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"User {user_id} already has a wallet")

        wallet = Wallet(
            user_id=user_id,
            balance=Decimal("0.0000"),
            currency=currency,
            status=WalletStatus.ACTIVE,
            version=1,
        )
        self.session.add(wallet)
        await self.session.flush()
        logger.info("Opened wallet %s for user %s", wallet.id, user_id)
        return wallet

    async def get_wallet(self, wallet_id: uuid.UUID) -> Wallet:
        wallet = await self.session.get(Wallet, wallet_id)
        if wallet is None:
            raise NotFoundError("Wallet", str(wallet_id))
        return wallet

    async def get_wallet_for_user(self, user_id: uuid.UUID) -> Wallet:
        result = await self.session.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError("Wallet for user", str(user_id))
        return wallet

    async def find_wallet_for_user(self, user_id: uuid.UUID) -> Wallet | None:
        """Like get_wallet_for_user but returns None instead of raising."""
        result = await self.session.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def lock_wallets(self, wallet_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Wallet]:
        """Lock every wallet in ascending id order and return them by id.

        Raises:
            NotFoundError: If any wallet does not exist
        """
        locked: dict[uuid.UUID, Wallet] = {}
        for wallet_id in sorted(set(wallet_ids)):
            locked[wallet_id] = await self._lock(wallet_id)
        return locked

    async def set_status(self, wallet_id: uuid.UUID, status: WalletStatus) -> Wallet:
        """Freeze, close or reactivate a wallet.

        A closed wallet cannot be reopened and can only be closed when empty.
        """
        wallet = await self._lock(wallet_id)
        current = WalletStatus(wallet.status)
        if current == status:
            return wallet
        if current == WalletStatus.CLOSED:
            raise ValidationError(f"Wallet {wallet_id} is closed and cannot be reopened")
        if status == WalletStatus.CLOSED and wallet.balance != 0:
            raise ValidationError(
                f"Wallet {wallet_id} still holds {wallet.balance} and cannot be closed"
            )

        wallet.status = status
        wallet.version += 1
        await self.session.flush()
        logger.info("Wallet %s status changed %s -> %s", wallet_id, current.value, status.value)
        return wallet

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------

    async def debit(
        self,
        wallet_id: uuid.UUID,
        amount: Decimal,
        idempotency_key: str,
        *,
        description: str = "",
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        counterpart_wallet_id: uuid.UUID | None = None,
    ) -> uuid.UUID:
        """Take ``amount`` out of a wallet and append a debit row.

        Args:
            wallet_id: Wallet to debit
            amount: Positive amount, quantized to 4 places
            idempotency_key: Unique key of this movement
            counterpart_wallet_id: Stored as the destination when the debit
                is one leg of a transfer

        Returns:
            uuid.UUID: Id of the (new or previously recorded) transaction

        Raises:
            ValidationError: If amount <= 0
            NotFoundError: If the wallet doesn't exist
            WalletNotActiveError: If the wallet is frozen or closed
            InsufficientFundsError: If balance < amount
            DuplicateIdempotencyKeyError: If the key belongs to another movement
        """
        amount = self._validate_amount(amount)
        replayed = await self._replay(idempotency_key, TransactionType.DEBIT, wallet_id, amount)
        if replayed is not None:
            return replayed

        wallet = await self._lock(wallet_id)
        self._ensure_active(wallet)
        if wallet.balance < amount:
            raise InsufficientFundsError(str(wallet_id), amount, wallet.balance)

        wallet.balance = wallet.balance - amount
        wallet.version += 1
        transaction = LedgerTransaction(
            type=TransactionType.DEBIT,
            amount=amount,
            source_wallet_id=wallet_id,
            destination_wallet_id=counterpart_wallet_id,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            description=description,
            idempotency_key=idempotency_key,
        )
        return await self._append(transaction)

    async def credit(
        self,
        wallet_id: uuid.UUID,
        amount: Decimal,
        idempotency_key: str,
        *,
        description: str = "",
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
        counterpart_wallet_id: uuid.UUID | None = None,
    ) -> uuid.UUID:
        """Add ``amount`` to a wallet and append a credit row.

        Same contract as ``debit`` minus the funds check.
        """
        amount = self._validate_amount(amount)
        replayed = await self._replay(idempotency_key, TransactionType.CREDIT, wallet_id, amount)
        if replayed is not None:
            return replayed

        wallet = await self._lock(wallet_id)
        self._ensure_active(wallet)

        wallet.balance = wallet.balance + amount
        wallet.version += 1
        transaction = LedgerTransaction(
            type=TransactionType.CREDIT,
            amount=amount,
            source_wallet_id=counterpart_wallet_id,
            destination_wallet_id=wallet_id,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            description=description,
            idempotency_key=idempotency_key,
        )
        return await self._append(transaction)

    async def transfer(
        self,
        from_wallet_id: uuid.UUID,
        to_wallet_id: uuid.UUID,
        amount: Decimal,
        idempotency_key: str,
        *,
        description: str = "",
        related_entity_type: str | None = None,
        related_entity_id: str | None = None,
    ) -> TransferResult:
        """Debit one wallet and credit another under a single key.

        The two rows use ``<key>:debit`` and ``<key>:credit`` and reference
        each other's wallet. Both wallets are locked in id order first.
        """
        if from_wallet_id == to_wallet_id:
            raise ValidationError("Cannot transfer funds to the same wallet")

        await self.lock_wallets([from_wallet_id, to_wallet_id])
        debit_id = await self.debit(
            from_wallet_id,
            amount,
            f"{idempotency_key}:debit",
            description=description,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            counterpart_wallet_id=to_wallet_id,
        )
        credit_id = await self.credit(
            to_wallet_id,
            amount,
            f"{idempotency_key}:credit",
            description=description,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
            counterpart_wallet_id=from_wallet_id,
        )
        return TransferResult(debit_transaction_id=debit_id, credit_transaction_id=credit_id)

    async def transfer_between_users(
        self,
        from_user_id: uuid.UUID,
        to_user_id: uuid.UUID,
        amount: Decimal,
        idempotency_key: str | None = None,
        description: str | None = None,
    ) -> PeerTransfer:
        """Move funds from one user's wallet to another's.

        Client keys are scoped to the sender (``p2p:<sender>:<key>``); a
        retried request with the same key, recipient and amount replays the
        original transfer.

        Raises:
            ValidationError: Self-transfer, currency mismatch or amount <= 0
            NotFoundError: Sender or recipient has no wallet
            WalletNotActiveError: Either wallet is frozen or closed
            InsufficientFundsError: Sender balance below ``amount``
        """
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer funds to yourself")
        amount = self._validate_amount(amount)

        sender = await self.get_wallet_for_user(from_user_id)
        recipient = await self.get_wallet_for_user(to_user_id)
        if sender.currency != recipient.currency:
            raise ValidationError(
                f"Currency mismatch: {sender.currency} wallet cannot pay a {recipient.currency} wallet"
            )

        key = f"p2p:{from_user_id}:{idempotency_key or uuid.uuid4()}"
        result = await self.transfer(
            sender.id,
            recipient.id,
            amount,
            key,
            description=description or f"Transfer to user {to_user_id}",
            related_entity_type="user",
            related_entity_id=str(to_user_id),
        )
        logger.info(
            "User %s transferred %s to user %s (key %s)",
            from_user_id,
            amount,
            to_user_id,
            key,
        )
        return PeerTransfer(
            debit_transaction_id=result.debit_transaction_id,
            credit_transaction_id=result.credit_transaction_id,
            amount=amount,
            sender_balance=sender.balance,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def history(
        self,
        wallet_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LedgerTransaction]:
        """Rows affecting the wallet, newest first."""
        result = await self.session.execute(
            select(LedgerTransaction)
            .where(
                (
                    (LedgerTransaction.type == TransactionType.DEBIT)
                    & (LedgerTransaction.source_wallet_id == wallet_id)
                )
                | (
                    (LedgerTransaction.type == TransactionType.CREDIT)
                    & (LedgerTransaction.destination_wallet_id == wallet_id)
                )
            )
            .order_by(LedgerTransaction.created_at.desc(), LedgerTransaction.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def replay_balance(self, wallet_id: uuid.UUID) -> Decimal:
        """Sum of credits into the wallet minus debits out of it."""
        credits = await self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.type == TransactionType.CREDIT,
                LedgerTransaction.destination_wallet_id == wallet_id,
            )
        )
        debits = await self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.amount), 0)).where(
                LedgerTransaction.type == TransactionType.DEBIT,
                LedgerTransaction.source_wallet_id == wallet_id,
            )
        )
        return quantize_money(Decimal(str(credits.scalar_one())) - Decimal(str(debits.scalar_one())))

    async def reconcile(self, wallet_id: uuid.UUID) -> ReconciliationReport:
        wallet = await self.get_wallet(wallet_id)
        replayed = await self.replay_balance(wallet_id)
        report = ReconciliationReport(
            wallet_id=wallet_id,
            stored_balance=quantize_money(wallet.balance),
            replayed_balance=replayed,
        )
        if not report.is_consistent:
            logger.error(
                "Wallet %s drifted from its ledger: stored=%s replayed=%s",
                wallet_id,
                report.stored_balance,
                report.replayed_balance,
            )
        return report

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lock(self, wallet_id: uuid.UUID) -> Wallet:
        result = await self.session.execute(
            select(Wallet)
            .where(Wallet.id == wallet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        wallet = result.scalar_one_or_none()
        if wallet is None:
            raise NotFoundError("Wallet", str(wallet_id))
        return wallet

    @staticmethod
    def _validate_amount(amount: Decimal) -> Decimal:
        amount = quantize_money(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        return amount

    @staticmethod
    def _ensure_active(wallet: Wallet) -> None:
        status = WalletStatus(wallet.status)
        if status != WalletStatus.ACTIVE:
            raise WalletNotActiveError(str(wallet.id), status.value)

    async def _replay(
        self,
        idempotency_key: str,
        tx_type: TransactionType,
        wallet_id: uuid.UUID,
        amount: Decimal,
    ) -> uuid.UUID | None:
        """Return the id of an identical earlier movement, if there is one."""
        result = await self.session.execute(
            select(LedgerTransaction).where(LedgerTransaction.idempotency_key == idempotency_key)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            return None

        affected = (
            existing.source_wallet_id
            if existing.type == TransactionType.DEBIT
            else existing.destination_wallet_id
        )
        if (
            TransactionType(existing.type) != tx_type
            or affected != wallet_id
            or quantize_money(existing.amount) != amount
        ):
            raise DuplicateIdempotencyKeyError(
                idempotency_key,
                f"recorded as {TransactionType(existing.type).value} of {existing.amount} "
                f"on wallet {affected}",
            )
        logger.info("Replayed ledger movement %s for key %s", existing.id, idempotency_key)
        return existing.id

    async def _append(self, transaction: LedgerTransaction) -> uuid.UUID:
        self.session.add(transaction)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            # A concurrent unit of work committed the same key first
            raise DuplicateIdempotencyKeyError(transaction.idempotency_key) from exc
        logger.debug(
            "Ledger %s %s key=%s",
            TransactionType(transaction.type).value,
            transaction.amount,
            transaction.idempotency_key,
        )
        return transaction.id
