"""Purchase orchestration: one buyer action, one unit of work.

Inside a single transaction the orchestrator

1. replays an earlier purchase carrying the same buyer-scoped idempotency key,
2. loads the variant and the commission rates in effect,
3. locks every wallet it will touch (ascending id order),
4. claims one inventory unit,
5. debits the buyer and credits provider, platform and affiliate,
6. marks the Purchase completed.

Any exception rolls all of it back. Business rejections (no funds, no stock,
frozen wallet) are then recorded as a ``failed`` Purchase in a separate,
effect-free unit of work so that failed attempts stay auditable.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.exceptions import (
    AppException,
    DuplicateIdempotencyKeyError,
    ForbiddenError,
    InsufficientFundsError,
    NotFoundError,
    OutOfStockError,
    ProductNotFoundError,
    TransientStorageError,
    WalletNotActiveError,
)
from marketplace.db.base import utcnow
from marketplace.db.unit_of_work import unit_of_work
from marketplace.models.commission import Affiliation, AffiliationApproval, AffiliationStatus
from marketplace.models.product import Product, ProductVariant
from marketplace.models.purchase import Purchase, PurchaseStatus, UnitKind
from marketplace.models.user import User, UserRole
from marketplace.models.wallet import Wallet, WalletStatus
from marketplace.services.commission import CommissionConfigService, compute_split, quantize_money
from marketplace.services.inventory_allocator import InventoryAllocator, UnitHandle
from marketplace.services.wallet_ledger import WalletLedger

logger = logging.getLogger(__name__)

# Rejections that are persisted as a failed Purchase for audit
RECORDED_FAILURES = (InsufficientFundsError, OutOfStockError, WalletNotActiveError)

SETTLED_STATUSES = (
    PurchaseStatus.COMPLETED,
    PurchaseStatus.PARTIAL_REFUND,
    PurchaseStatus.REFUNDED,
)


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    purchase: Purchase
    buyer_balance: Decimal
    replayed: bool = False


@dataclass(frozen=True, slots=True)
class PurchasePage:
    items: list[Purchase]
    total: int
    limit: int
    offset: int
    total_spent: Decimal
    has_more: bool


def scope_idempotency_key(buyer_id: uuid.UUID, idempotency_key: str) -> str:
    """Client keys are only unique per buyer."""
    return f"{buyer_id}:{idempotency_key}"


class PurchaseOrchestrator:
    """Runs purchases as atomic units of work.

    Args:
        session_maker: Factory for the sessions each unit of work opens
        default_commission_rate: Percent used when no CommissionConfig is active
        default_affiliate_rate: Affiliate percent used in the same case
        platform_user_id: Owner of the platform wallet; defaults to the
            oldest admin user
        lock_timeout_ms: Row lock wait limit on PostgreSQL
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        default_commission_rate: Decimal,
        default_affiliate_rate: Decimal = Decimal("0.00"),
        platform_user_id: uuid.UUID | None = None,
        lock_timeout_ms: int | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.default_commission_rate = default_commission_rate
        self.default_affiliate_rate = default_affiliate_rate
        self.platform_user_id = platform_user_id
        self.lock_timeout_ms = lock_timeout_ms

    async def purchase(
        self,
        buyer_id: uuid.UUID,
        variant_id: uuid.UUID,
        idempotency_key: str | None = None,
    ) -> PurchaseResult:
        """Buy one unit of ``variant_id`` for ``buyer_id``.

        Returns:
            PurchaseResult: The completed (or replayed) Purchase and the
            buyer's balance after it

        Raises:
            ProductNotFoundError: Variant or product missing or inactive
            NotFoundError: Buyer, provider or platform wallet missing
            WalletNotActiveError: A wallet on the money path is frozen or closed
            OutOfStockError: No unit could be claimed
            InsufficientFundsError: Buyer balance below the price
            DuplicateIdempotencyKeyError: Key already used for another variant
            TransientStorageError: Lock timeout or lost connection; retry
        """
        try:
            async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
                return await self._purchase(session, buyer_id, variant_id, idempotency_key)
        except DuplicateIdempotencyKeyError:
            if idempotency_key is None:
                raise
            # A concurrent request with the same key may have committed first
            replay = await self._replay_committed(buyer_id, variant_id, idempotency_key)
            if replay is None:
                raise
            return replay
        except RECORDED_FAILURES as exc:
            await self._record_failure(buyer_id, variant_id, exc)
            raise

    async def get_purchase(self, purchase_id: uuid.UUID, buyer_id: uuid.UUID) -> Purchase:
        """One purchase of ``buyer_id``.

        Raises:
            NotFoundError: Unknown purchase
            ForbiddenError: The purchase belongs to another buyer
        """
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            purchase = await session.get(Purchase, purchase_id)
            if purchase is None:
                raise NotFoundError("Purchase", str(purchase_id))
            if purchase.buyer_id != buyer_id:
                raise ForbiddenError("Purchases are only visible to their buyer")
            return purchase

    async def list_purchases(
        self,
        buyer_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> PurchasePage:
        """Purchases of ``buyer_id``, newest first, with the amount spent.

        ``total_spent`` counts what the buyer still owes for settled
        purchases: price minus refunds, failed attempts excluded.
        """
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            rows = await session.execute(
                select(Purchase)
                .where(Purchase.buyer_id == buyer_id)
                .order_by(Purchase.created_at.desc(), Purchase.id.desc())
                .limit(limit)
                .offset(offset)
            )
            items = list(rows.scalars().all())
            total = await session.scalar(
                select(func.count()).select_from(Purchase).where(Purchase.buyer_id == buyer_id)
            )
            spent = await session.scalar(
                select(func.coalesce(func.sum(Purchase.amount - Purchase.refunded_amount), 0)).where(
                    Purchase.buyer_id == buyer_id,
                    Purchase.status.in_(SETTLED_STATUSES),
                )
            )

        total = total or 0
        return PurchasePage(
            items=items,
            total=total,
            limit=limit,
            offset=offset,
            total_spent=quantize_money(Decimal(spent)),
            has_more=offset + len(items) < total,
        )

    async def _purchase(
        self,
        session: AsyncSession,
        buyer_id: uuid.UUID,
        variant_id: uuid.UUID,
        idempotency_key: str | None,
    ) -> PurchaseResult:
        ledger = WalletLedger(session)

        # Step 1: Replay
        scoped_key = None
        if idempotency_key is not None:
            replay = await self._find_replay(session, ledger, buyer_id, variant_id, idempotency_key)
            if replay is not None:
                return replay
            scoped_key = scope_idempotency_key(buyer_id, idempotency_key)

        # Step 2: Variant, product and rates in effect now
        variant, product = await self._load_variant(session, variant_id)
        snapshot = await CommissionConfigService(
            session,
            self.default_commission_rate,
            self.default_affiliate_rate,
        ).snapshot()

        # Step 3: Wallets, locked in id order
        buyer_wallet = await ledger.get_wallet_for_user(buyer_id)
        provider_wallet = await ledger.get_wallet_for_user(product.provider_id)
        platform_wallet = await self._platform_wallet(session, ledger)
        affiliate_id, affiliate_wallet = await self._affiliate_wallet(session, ledger, buyer_id)

        wallet_ids = [buyer_wallet.id, provider_wallet.id, platform_wallet.id]
        if affiliate_wallet is not None:
            wallet_ids.append(affiliate_wallet.id)
        await ledger.lock_wallets(wallet_ids)

        purchase_id = uuid.uuid4()
        purchase = Purchase(
            id=purchase_id,
            buyer_id=buyer_id,
            provider_id=product.provider_id,
            product_id=product.id,
            variant_id=variant.id,
            amount=variant.price,
            currency=buyer_wallet.currency,
            status=PurchaseStatus.PENDING,
            commission_config_id=snapshot.config_id,
            commission_rate=snapshot.commission_rate,
            affiliate_rate=snapshot.affiliate_rate if affiliate_wallet is not None else Decimal("0.00"),
            buyer_wallet_id=buyer_wallet.id,
            provider_wallet_id=provider_wallet.id,
            platform_wallet_id=platform_wallet.id,
            affiliate_wallet_id=affiliate_wallet.id if affiliate_wallet is not None else None,
            affiliate_id=affiliate_id if affiliate_wallet is not None else None,
            idempotency_key=scoped_key,
        )
        session.add(purchase)
        try:
            await session.flush()
        except IntegrityError as exc:
            raise DuplicateIdempotencyKeyError(scoped_key or str(purchase_id)) from exc

        # Step 4: Inventory
        handle = await InventoryAllocator(session).claim_unit(product.id)
        self._bind_unit(purchase, handle)

        # Step 5: Money
        key_base = f"purchase:{buyer_id}:{idempotency_key or purchase_id}"
        related = {"related_entity_type": "purchase", "related_entity_id": str(purchase_id)}
        await ledger.debit(
            buyer_wallet.id,
            variant.price,
            f"{key_base}:buyer-debit",
            description=f"Purchase of {product.name} / {variant.name}",
            **related,
        )

        split = compute_split(
            variant.price,
            snapshot.commission_rate,
            snapshot.affiliate_rate if affiliate_wallet is not None else None,
        )
        credits = [
            (provider_wallet, split.provider_earnings, "provider-credit", "Provider earnings"),
            (platform_wallet, split.platform_commission, "platform-commission", "Platform commission"),
        ]
        if affiliate_wallet is not None:
            credits.append(
                (affiliate_wallet, split.affiliate_commission, "affiliate-commission", "Affiliate commission")
            )
        for wallet, amount, leg, description in credits:
            if amount <= 0:
                continue
            await ledger.credit(
                wallet.id,
                amount,
                f"{key_base}:{leg}",
                description=f"{description} for purchase {purchase_id}",
                counterpart_wallet_id=buyer_wallet.id,
                **related,
            )

        # Step 6: Complete
        purchase.provider_earnings = split.provider_earnings
        purchase.platform_commission = split.platform_commission
        purchase.affiliate_commission = split.affiliate_commission
        purchase.status = PurchaseStatus.COMPLETED
        purchase.completed_at = utcnow()
        await session.flush()

        logger.info(
            "Purchase %s completed: buyer=%s variant=%s amount=%s provider=%s platform=%s affiliate=%s",
            purchase_id,
            buyer_id,
            variant_id,
            variant.price,
            split.provider_earnings,
            split.platform_commission,
            split.affiliate_commission,
        )
        return PurchaseResult(purchase=purchase, buyer_balance=buyer_wallet.balance)

    async def _find_replay(
        self,
        session: AsyncSession,
        ledger: WalletLedger,
        buyer_id: uuid.UUID,
        variant_id: uuid.UUID,
        idempotency_key: str,
    ) -> PurchaseResult | None:
        result = await session.execute(
            select(Purchase).where(
                Purchase.idempotency_key == scope_idempotency_key(buyer_id, idempotency_key)
            )
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            return None
        if existing.variant_id != variant_id:
            raise DuplicateIdempotencyKeyError(
                idempotency_key,
                f"already used for variant {existing.variant_id}",
            )

        wallet = await ledger.get_wallet_for_user(buyer_id)
        logger.info("Replayed purchase %s for key %s", existing.id, idempotency_key)
        return PurchaseResult(purchase=existing, buyer_balance=wallet.balance, replayed=True)

    async def _replay_committed(
        self,
        buyer_id: uuid.UUID,
        variant_id: uuid.UUID,
        idempotency_key: str,
    ) -> PurchaseResult | None:
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            return await self._find_replay(
                session, WalletLedger(session), buyer_id, variant_id, idempotency_key
            )

    async def _load_variant(
        self,
        session: AsyncSession,
        variant_id: uuid.UUID,
    ) -> tuple[ProductVariant, Product]:
        result = await session.execute(
            select(ProductVariant, Product)
            .join(Product, ProductVariant.product_id == Product.id)
            .where(ProductVariant.id == variant_id)
        )
        row = result.one_or_none()
        if row is None:
            raise ProductNotFoundError(str(variant_id))
        variant, product = row
        if not variant.is_active or not product.is_active:
            raise ProductNotFoundError(str(variant_id))
        return variant, product

    async def _platform_wallet(self, session: AsyncSession, ledger: WalletLedger) -> Wallet:
        if self.platform_user_id is not None:
            return await ledger.get_wallet_for_user(self.platform_user_id)

        result = await session.execute(
            select(User.id)
            .where(User.role == UserRole.ADMIN, User.is_active.is_(True))
            .order_by(User.created_at, User.id)
            .limit(1)
        )
        admin_id = result.scalar_one_or_none()
        if admin_id is None:
            raise NotFoundError("Platform wallet", "admin")
        return await ledger.get_wallet_for_user(admin_id)

    async def _affiliate_wallet(
        self,
        session: AsyncSession,
        ledger: WalletLedger,
        buyer_id: uuid.UUID,
    ) -> tuple[uuid.UUID | None, Wallet | None]:
        """Wallet of the approved, active affiliate who referred the buyer.

        A missing or inactive affiliate wallet skips the affiliate leg; the
        whole commission then stays with the platform.
        """
        result = await session.execute(
            select(Affiliation.affiliate_id).where(
                Affiliation.referred_user_id == buyer_id,
                Affiliation.status == AffiliationStatus.ACTIVE,
                Affiliation.approval_status == AffiliationApproval.APPROVED,
            )
        )
        affiliate_id = result.scalar_one_or_none()
        if affiliate_id is None:
            return None, None

        wallet = await ledger.find_wallet_for_user(affiliate_id)
        if wallet is None or WalletStatus(wallet.status) != WalletStatus.ACTIVE:
            logger.warning(
                "Affiliate %s of buyer %s has no active wallet; commission stays with the platform",
                affiliate_id,
                buyer_id,
            )
            return affiliate_id, None
        return affiliate_id, wallet

    @staticmethod
    def _bind_unit(purchase: Purchase, handle: UnitHandle) -> None:
        purchase.unit_kind = handle.kind
        if handle.kind == UnitKind.ACCOUNT:
            purchase.assigned_account_id = handle.unit_id
        elif handle.kind == UnitKind.SLOT:
            purchase.assigned_slot_id = handle.unit_id
            purchase.assigned_account_id = handle.account_id
        else:
            purchase.assigned_license_id = handle.unit_id

    async def _record_failure(
        self,
        buyer_id: uuid.UUID,
        variant_id: uuid.UUID,
        error: AppException,
    ) -> None:
        """Persist a failed attempt. Never raises; the original error wins."""
        try:
            async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
                result = await session.execute(
                    select(ProductVariant, Product)
                    .join(Product, ProductVariant.product_id == Product.id)
                    .where(ProductVariant.id == variant_id)
                )
                row = result.one_or_none()
                variant, product = row if row is not None else (None, None)
                session.add(
                    Purchase(
                        buyer_id=buyer_id,
                        provider_id=product.provider_id if product is not None else None,
                        product_id=product.id if product is not None else None,
                        variant_id=variant_id,
                        amount=variant.price if variant is not None else Decimal("0.0000"),
                        status=PurchaseStatus.FAILED,
                        failure_reason=type(error).__name__,
                    )
                )
        except (SQLAlchemyError, TransientStorageError):
            logger.exception("Could not record failed purchase for buyer %s", buyer_id)
            return

        logger.info(
            "Purchase by %s of variant %s failed: %s",
            buyer_id,
            variant_id,
            error.message,
        )
