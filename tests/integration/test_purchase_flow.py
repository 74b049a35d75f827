"""End-to-end purchase tests: ledger, inventory and commission together."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from marketplace.core.exceptions import (
    DuplicateIdempotencyKeyError,
    ForbiddenError,
    InsufficientFundsError,
    NotFoundError,
    OutOfStockError,
    ProductNotFoundError,
    WalletNotActiveError,
)
from marketplace.db.base import utcnow
from marketplace.db.unit_of_work import unit_of_work
from marketplace.models import (
    CommissionConfig,
    LedgerTransaction,
    Product,
    ProductVariant,
    Purchase,
    PurchaseStatus,
    TransactionType,
    UnitKind,
    User,
    UserRole,
    Wallet,
    WalletStatus,
)
from marketplace.services.commission import CommissionConfigService
from marketplace.services.inventory_allocator import InventoryAllocator
from marketplace.services.purchase_service import PurchaseOrchestrator
from marketplace.services.wallet_ledger import WalletLedger


@dataclass
class Market:
    admin: User
    provider: User
    buyer: User
    product: Product
    variant: ProductVariant
    orchestrator: PurchaseOrchestrator


@pytest_asyncio.fixture
async def market(seed, session_maker) -> Market:
    admin = await seed.user(role=UserRole.ADMIN)
    provider = await seed.user(role=UserRole.PROVIDER)
    buyer = await seed.user(balance=Decimal("50.00"))
    product, variant = await seed.product(provider.id, price=Decimal("30.00"))
    orchestrator = PurchaseOrchestrator(
        session_maker,
        default_commission_rate=Decimal("5.00"),
        default_affiliate_rate=Decimal("1.00"),
    )
    return Market(admin, provider, buyer, product, variant, orchestrator)


async def total_balance(session_maker) -> Decimal:
    async with unit_of_work(session_maker) as session:
        balances = (await session.execute(select(Wallet.balance))).scalars().all()
    return sum(balances, Decimal("0"))


class TestSuccessfulPurchase:

    @pytest.mark.asyncio
    async def test_purchase_splits_price_between_wallets(self, market, seed, session_maker) -> None:
        await seed.full_account(market.product.id)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "order-1")

        assert result.replayed is False
        assert result.purchase.status == PurchaseStatus.COMPLETED
        assert result.buyer_balance == Decimal("20.00")
        assert await seed.balance(market.buyer.id) == Decimal("20.00")
        assert await seed.balance(market.provider.id) == Decimal("28.50")
        assert await seed.balance(market.admin.id) == Decimal("1.50")

        purchase = result.purchase
        assert purchase.provider_earnings == Decimal("28.50")
        assert purchase.platform_commission == Decimal("1.50")
        assert purchase.affiliate_commission == Decimal("0")
        assert purchase.commission_rate == Decimal("5.00")
        assert purchase.unit_kind == UnitKind.ACCOUNT
        assert purchase.assigned_account_id is not None
        assert purchase.completed_at is not None

    @pytest.mark.asyncio
    async def test_purchase_writes_one_debit_and_two_credits(self, market, seed, session_maker) -> None:
        await seed.license(market.product.id)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "order-2")

        async with unit_of_work(session_maker) as session:
            rows = (
                await session.execute(
                    select(LedgerTransaction).where(
                        LedgerTransaction.related_entity_id == str(result.purchase.id)
                    )
                )
            ).scalars().all()
        by_key = {row.idempotency_key: row for row in rows}
        prefix = f"purchase:{market.buyer.id}:order-2"
        assert set(by_key) == {
            f"{prefix}:buyer-debit",
            f"{prefix}:provider-credit",
            f"{prefix}:platform-commission",
        }
        assert by_key[f"{prefix}:buyer-debit"].type == TransactionType.DEBIT
        assert by_key[f"{prefix}:buyer-debit"].amount == Decimal("30.00")
        assert sum(row.amount for row in rows if row.type == TransactionType.CREDIT) == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_published_commission_config_is_snapshotted(self, market, seed, session_maker) -> None:
        await seed.full_account(market.product.id)
        async with unit_of_work(session_maker) as session:
            config = await CommissionConfigService(session, Decimal("5.00")).publish(
                Decimal("10.00"), Decimal("0.00")
            )

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        assert result.purchase.commission_config_id == config.id
        assert result.purchase.commission_rate == Decimal("10.00")
        assert await seed.balance(market.provider.id) == Decimal("27.00")
        assert await seed.balance(market.admin.id) == Decimal("3.00")

    @pytest.mark.asyncio
    async def test_scheduled_config_does_not_displace_current_rate(
        self, market, seed, session_maker
    ) -> None:
        await seed.full_account(market.product.id)
        tomorrow = utcnow() + timedelta(days=1)
        async with unit_of_work(session_maker) as session:
            service = CommissionConfigService(session, Decimal("5.00"))
            current = await service.publish(Decimal("10.00"))
            scheduled = await service.publish(Decimal("20.00"), effective_from=tomorrow)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        assert result.purchase.commission_config_id == current.id
        assert result.purchase.commission_rate == Decimal("10.00")
        assert await seed.balance(market.admin.id) == Decimal("3.00")
        async with unit_of_work(session_maker) as session:
            later = await CommissionConfigService(session, Decimal("5.00")).snapshot(
                at=tomorrow + timedelta(hours=1)
            )
        assert later.config_id == scheduled.id
        assert later.commission_rate == Decimal("20.00")

    @pytest.mark.asyncio
    async def test_config_starting_now_supersedes_earlier_versions(self, session_maker) -> None:
        async with unit_of_work(session_maker) as session:
            service = CommissionConfigService(session, Decimal("5.00"))
            first = await service.publish(Decimal("10.00"), effective_from=utcnow() - timedelta(days=2))
            second = await service.publish(Decimal("7.50"))
        async with unit_of_work(session_maker) as session:
            snapshot = await CommissionConfigService(session, Decimal("5.00")).snapshot()
            stored_first = await session.get(CommissionConfig, first.id)

        assert snapshot.config_id == second.id
        assert snapshot.commission_rate == Decimal("7.50")
        assert stored_first.is_active is False

    @pytest.mark.asyncio
    async def test_affiliate_commission_comes_out_of_platform_share(self, market, seed) -> None:
        affiliate = await seed.user(role=UserRole.AFFILIATE)
        await seed.affiliation(affiliate.id, market.buyer.id)
        await seed.full_account(market.product.id)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        assert result.purchase.affiliate_id == affiliate.id
        assert await seed.balance(market.provider.id) == Decimal("28.50")
        assert await seed.balance(market.admin.id) == Decimal("1.20")
        assert await seed.balance(affiliate.id) == Decimal("0.30")

    @pytest.mark.asyncio
    async def test_inactive_affiliate_wallet_leaves_commission_with_platform(
        self, market, seed, session_maker
    ) -> None:
        affiliate = await seed.user(role=UserRole.AFFILIATE)
        await seed.affiliation(affiliate.id, market.buyer.id)
        affiliate_wallet = await seed.wallet(affiliate.id)
        async with unit_of_work(session_maker) as session:
            await WalletLedger(session).set_status(affiliate_wallet.id, WalletStatus.FROZEN)
        await seed.full_account(market.product.id)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        assert result.purchase.affiliate_commission == Decimal("0")
        assert result.purchase.affiliate_wallet_id is None
        assert await seed.balance(market.admin.id) == Decimal("1.50")
        assert await seed.balance(affiliate.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_configured_platform_user_collects_commission(self, market, seed, session_maker) -> None:
        treasury = await seed.user(role=UserRole.ADMIN)
        await seed.full_account(market.product.id)
        orchestrator = PurchaseOrchestrator(
            session_maker,
            default_commission_rate=Decimal("5.00"),
            platform_user_id=treasury.id,
        )

        await orchestrator.purchase(market.buyer.id, market.variant.id)

        assert await seed.balance(treasury.id) == Decimal("1.50")
        assert await seed.balance(market.admin.id) == Decimal("0")


class TestIdempotentRetry:

    @pytest.mark.asyncio
    async def test_same_key_replays_without_charging_twice(self, market, seed, session_maker) -> None:
        await seed.full_account(market.product.id)
        await seed.full_account(market.product.id)

        first = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "retry-key")
        second = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "retry-key")

        assert second.replayed is True
        assert second.purchase.id == first.purchase.id
        assert second.buyer_balance == Decimal("20.00")
        assert await seed.balance(market.buyer.id) == Decimal("20.00")
        async with unit_of_work(session_maker) as session:
            assert await InventoryAllocator(session).count_available(market.product.id) == 1

    @pytest.mark.asyncio
    async def test_same_key_for_another_variant_is_rejected(self, market, seed) -> None:
        await seed.full_account(market.product.id)
        _, other_variant = await seed.product(market.provider.id, price=Decimal("5.00"))

        await market.orchestrator.purchase(market.buyer.id, market.variant.id, "one-key")
        with pytest.raises(DuplicateIdempotencyKeyError):
            await market.orchestrator.purchase(market.buyer.id, other_variant.id, "one-key")

    @pytest.mark.asyncio
    async def test_keys_are_scoped_per_buyer(self, market, seed) -> None:
        other_buyer = await seed.user(balance=Decimal("30.00"))
        await seed.full_account(market.product.id)
        await seed.full_account(market.product.id)

        first = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "checkout")
        second = await market.orchestrator.purchase(other_buyer.id, market.variant.id, "checkout")

        assert second.replayed is False
        assert second.purchase.id != first.purchase.id
        assert await seed.balance(other_buyer.id) == Decimal("0")


class TestRejectedPurchase:

    @pytest.mark.asyncio
    async def test_insufficient_funds_has_no_effects_but_is_recorded(
        self, market, seed, session_maker
    ) -> None:
        poor_buyer = await seed.user(balance=Decimal("29.99"))
        await seed.full_account(market.product.id)

        with pytest.raises(InsufficientFundsError):
            await market.orchestrator.purchase(poor_buyer.id, market.variant.id, "poor")

        assert await seed.balance(poor_buyer.id) == Decimal("29.99")
        assert await seed.balance(market.provider.id) == Decimal("0")
        async with unit_of_work(session_maker) as session:
            assert await InventoryAllocator(session).count_available(market.product.id) == 1
            failed = (
                await session.execute(select(Purchase).where(Purchase.buyer_id == poor_buyer.id))
            ).scalars().all()
        assert len(failed) == 1
        assert failed[0].status == PurchaseStatus.FAILED
        assert failed[0].failure_reason == "InsufficientFundsError"
        assert failed[0].idempotency_key is None

    @pytest.mark.asyncio
    async def test_out_of_stock(self, market) -> None:
        with pytest.raises(OutOfStockError):
            await market.orchestrator.purchase(market.buyer.id, market.variant.id)

    @pytest.mark.asyncio
    async def test_inactive_product_is_not_found(self, market, seed) -> None:
        _, hidden_variant = await seed.product(market.provider.id, is_active=False)
        with pytest.raises(ProductNotFoundError):
            await market.orchestrator.purchase(market.buyer.id, hidden_variant.id)

    @pytest.mark.asyncio
    async def test_unknown_variant_is_not_found(self, market) -> None:
        with pytest.raises(ProductNotFoundError):
            await market.orchestrator.purchase(market.buyer.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_frozen_buyer_wallet(self, market, seed, session_maker) -> None:
        await seed.full_account(market.product.id)
        buyer_wallet = await seed.wallet(market.buyer.id)
        async with unit_of_work(session_maker) as session:
            await WalletLedger(session).set_status(buyer_wallet.id, WalletStatus.FROZEN)

        with pytest.raises(WalletNotActiveError):
            await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        assert await seed.balance(market.buyer.id) == Decimal("50.00")
        async with unit_of_work(session_maker) as session:
            assert await InventoryAllocator(session).count_available(market.product.id) == 1

    @pytest.mark.asyncio
    async def test_key_of_failed_attempt_can_be_retried(self, market, seed) -> None:
        with pytest.raises(OutOfStockError):
            await market.orchestrator.purchase(market.buyer.id, market.variant.id, "later")
        await seed.full_account(market.product.id)

        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id, "later")

        assert result.replayed is False
        assert result.purchase.status == PurchaseStatus.COMPLETED


class TestConcurrentPurchases:

    @pytest.mark.asyncio
    async def test_last_unit_is_sold_exactly_once(self, market, seed, session_maker) -> None:
        second_buyer = await seed.user(balance=Decimal("50.00"))
        await seed.full_account(market.product.id)
        money_before = await total_balance(session_maker)

        results = await asyncio.gather(
            market.orchestrator.purchase(market.buyer.id, market.variant.id, "race"),
            market.orchestrator.purchase(second_buyer.id, market.variant.id, "race"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], OutOfStockError)
        assert await total_balance(session_maker) == money_before

        async with unit_of_work(session_maker) as session:
            completed = await session.scalar(
                select(func.count(Purchase.id)).where(Purchase.status == PurchaseStatus.COMPLETED)
            )
        assert completed == 1

    @pytest.mark.asyncio
    async def test_many_buyers_share_limited_stock(self, market, seed, session_maker) -> None:
        buyers = [await seed.user(balance=Decimal("30.00")) for _ in range(5)]
        await seed.shared_account(market.product.id, slots=3)
        money_before = await total_balance(session_maker)

        results = await asyncio.gather(
            *(market.orchestrator.purchase(b.id, market.variant.id) for b in buyers),
            return_exceptions=True,
        )

        sold = [r for r in results if not isinstance(r, BaseException)]
        assert len(sold) == 3
        assert all(isinstance(r, OutOfStockError) for r in results if isinstance(r, BaseException))
        assert len({r.purchase.assigned_slot_id for r in sold}) == 3
        assert await total_balance(session_maker) == money_before
        assert await seed.balance(market.provider.id) == Decimal("85.50")


class TestPurchaseHistory:

    @pytest.mark.asyncio
    async def test_buyer_lists_own_purchases_newest_first(self, market, seed) -> None:
        await seed.full_account(market.product.id)
        await seed.license(market.product.id)
        first = await market.orchestrator.purchase(market.buyer.id, market.variant.id)
        with pytest.raises(InsufficientFundsError):
            await market.orchestrator.purchase(market.buyer.id, market.variant.id)
        other_buyer = await seed.user(balance=Decimal("30.00"))
        await market.orchestrator.purchase(other_buyer.id, market.variant.id)

        page = await market.orchestrator.list_purchases(market.buyer.id)

        assert page.total == 2
        assert [p.status for p in page.items] == [PurchaseStatus.FAILED, PurchaseStatus.COMPLETED]
        assert page.items[1].id == first.purchase.id
        assert page.total_spent == Decimal("30.00")
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_pages_report_whether_more_remain(self, market, seed) -> None:
        rich_buyer = await seed.user(balance=Decimal("90.00"))
        for _ in range(3):
            await seed.license(market.product.id)
            await market.orchestrator.purchase(rich_buyer.id, market.variant.id)

        head = await market.orchestrator.list_purchases(rich_buyer.id, limit=2)
        tail = await market.orchestrator.list_purchases(rich_buyer.id, limit=2, offset=2)

        assert (len(head.items), head.has_more) == (2, True)
        assert (len(tail.items), tail.has_more) == (1, False)
        assert {p.id for p in head.items}.isdisjoint(p.id for p in tail.items)
        assert head.total_spent == tail.total_spent == Decimal("90.00")

    @pytest.mark.asyncio
    async def test_refunds_reduce_total_spent(self, market, seed, session_maker) -> None:
        await seed.license(market.product.id)
        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)
        async with unit_of_work(session_maker) as session:
            stored = await session.get(Purchase, result.purchase.id)
            stored.status = PurchaseStatus.PARTIAL_REFUND
            stored.refunded_amount = Decimal("12.0000")

        page = await market.orchestrator.list_purchases(market.buyer.id)

        assert page.total_spent == Decimal("18.00")

    @pytest.mark.asyncio
    async def test_purchase_is_only_visible_to_its_buyer(self, market, seed) -> None:
        await seed.license(market.product.id)
        result = await market.orchestrator.purchase(market.buyer.id, market.variant.id)

        fetched = await market.orchestrator.get_purchase(result.purchase.id, market.buyer.id)
        assert fetched.id == result.purchase.id
        assert fetched.unit_kind == UnitKind.LICENSE

        with pytest.raises(ForbiddenError):
            await market.orchestrator.get_purchase(result.purchase.id, market.provider.id)
        with pytest.raises(NotFoundError):
            await market.orchestrator.get_purchase(uuid.uuid4(), market.buyer.id)
