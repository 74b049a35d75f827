"""Shared fixtures: a throwaway SQLite database and marketplace seed helpers.

Integration tests run the real services against a file-backed SQLite
database through aiosqlite. Engines built by ``create_engine_for_url`` take
the write lock at BEGIN, so concurrent units of work serialize there the way
row locks serialize them on PostgreSQL.
"""

import os

# Settings are read at import time by the Celery app; keep them local
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_USER", "testuser")
os.environ.setdefault("POSTGRES_PASSWORD", "testpass")
os.environ.setdefault("POSTGRES_DB", "testdb")

import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from marketplace.db.base import Base
from marketplace.db.session import create_engine_for_url
from marketplace.db.unit_of_work import unit_of_work
from marketplace.models import (
    Affiliation,
    AffiliationApproval,
    AffiliationStatus,
    InventoryAccount,
    InventoryLicense,
    InventorySlot,
    Product,
    ProductVariant,
    User,
    UserRole,
    Wallet,
)
from marketplace.services.wallet_ledger import WalletLedger

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine with every table created."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@dataclass
class Seeder:
    """Creates users, wallets, catalog rows and stock for a test."""

    session_maker: async_sessionmaker[AsyncSession]

    async def user(
        self,
        role: UserRole = UserRole.SELLER,
        balance: Decimal = Decimal("0"),
        with_wallet: bool = True,
        created_at: datetime | None = None,
    ) -> User:
        async with unit_of_work(self.session_maker) as session:
            user = User(
                email=f"{role.value}_{uuid.uuid4().hex[:12]}@example.com",
                full_name=f"Test {role.value}",
                role=role,
                is_active=True,
                created_at=created_at or BASE_TIME,
            )
            session.add(user)
            await session.flush()
            if with_wallet:
                ledger = WalletLedger(session)
                wallet = await ledger.open_wallet(user.id)
                if balance > 0:
                    await ledger.credit(wallet.id, balance, f"seed:{user.id}", description="Top-up")
        return user

    async def wallet(self, user_id: uuid.UUID) -> Wallet:
        async with unit_of_work(self.session_maker) as session:
            return await WalletLedger(session).get_wallet_for_user(user_id)

    async def balance(self, user_id: uuid.UUID) -> Decimal:
        return (await self.wallet(user_id)).balance

    async def product(
        self,
        provider_id: uuid.UUID,
        price: Decimal = Decimal("30.00"),
        is_active: bool = True,
    ) -> tuple[Product, ProductVariant]:
        async with unit_of_work(self.session_maker) as session:
            product = Product(
                provider_id=provider_id,
                name="Streaming Premium",
                category="streaming",
                is_active=is_active,
            )
            session.add(product)
            await session.flush()
            variant = ProductVariant(
                product_id=product.id,
                name="30 days",
                price=price,
                duration_days=30,
                is_active=True,
            )
            session.add(variant)
        return product, variant

    async def full_account(self, product_id: uuid.UUID, age: int = 0) -> InventoryAccount:
        """A whole-account unit; larger ``age`` means created earlier."""
        async with unit_of_work(self.session_maker) as session:
            account = InventoryAccount(
                product_id=product_id,
                email_ciphertext="gAAAAB-email",
                password_ciphertext="gAAAAB-password",
                platform_type="netflix",
                total_slots=1,
                available_slots=1,
                created_at=BASE_TIME - timedelta(minutes=age),
            )
            session.add(account)
        return account

    async def shared_account(
        self,
        product_id: uuid.UUID,
        slots: int = 2,
        age: int = 0,
    ) -> tuple[InventoryAccount, list[InventorySlot]]:
        async with unit_of_work(self.session_maker) as session:
            account = InventoryAccount(
                product_id=product_id,
                email_ciphertext="gAAAAB-email",
                password_ciphertext="gAAAAB-password",
                platform_type="netflix",
                total_slots=slots,
                available_slots=slots,
                created_at=BASE_TIME - timedelta(minutes=age),
            )
            session.add(account)
            await session.flush()
            profiles = [
                InventorySlot(
                    account_id=account.id,
                    profile_name=f"Profile {index + 1}",
                    pin_ciphertext="gAAAAB-pin",
                    created_at=BASE_TIME + timedelta(seconds=index),
                )
                for index in range(slots)
            ]
            session.add_all(profiles)
        return account, profiles

    async def license(self, product_id: uuid.UUID, age: int = 0) -> InventoryLicense:
        async with unit_of_work(self.session_maker) as session:
            license_key = InventoryLicense(
                product_id=product_id,
                license_key_ciphertext="gAAAAB-key",
                activation_type="online",
                created_at=BASE_TIME - timedelta(minutes=age),
            )
            session.add(license_key)
        return license_key

    async def affiliation(self, affiliate_id: uuid.UUID, referred_user_id: uuid.UUID) -> Affiliation:
        async with unit_of_work(self.session_maker) as session:
            affiliation = Affiliation(
                affiliate_id=affiliate_id,
                referred_user_id=referred_user_id,
                referral_code=f"REF{uuid.uuid4().hex[:6].upper()}",
                status=AffiliationStatus.ACTIVE,
                approval_status=AffiliationApproval.APPROVED,
                approved_at=BASE_TIME,
            )
            session.add(affiliation)
        return affiliation


@pytest.fixture
def seed(session_maker: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_maker)
