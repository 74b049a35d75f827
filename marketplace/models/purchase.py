"""Purchase SQLAlchemy ORM model."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import MONEY, PERCENT, Base, enum_column, utcnow


class PurchaseStatus(str, enum.Enum):
    """Purchase status enum.

    Values:
        PENDING: Row created inside the unit of work, effects not yet applied
        COMPLETED: Unit bound, buyer debited and proceeds credited
        FAILED: Attempt rejected; recorded for audit, no ledger or stock effect
        REFUNDED: Fully reversed by a dispute resolution
        PARTIAL_REFUND: Partially reversed; buyer keeps the unit
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIAL_REFUND = "partial_refund"


class UnitKind(str, enum.Enum):
    """Which inventory table a claimed unit lives in."""

    ACCOUNT = "account"
    SLOT = "slot"
    LICENSE = "license"


class Purchase(Base):
    """One buyer acquiring one inventory unit.

    The commission rates in effect at purchase time and the exact amounts
    credited to every wallet are copied onto the row, so refunds reverse
    what actually happened rather than what the current config says.
    """

    __tablename__ = "purchases"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False
    )
    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=True
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("products.id"),
        nullable=True
    )
    variant_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD"
    )
    status: Mapped[PurchaseStatus] = mapped_column(
        enum_column(PurchaseStatus),
        nullable=False,
        default=PurchaseStatus.PENDING
    )

    # Commission snapshot
    commission_config_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("commission_configs.id"),
        nullable=True
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        PERCENT,
        nullable=False,
        default=Decimal("0.00")
    )
    affiliate_rate: Mapped[Decimal] = mapped_column(
        PERCENT,
        nullable=False,
        default=Decimal("0.00")
    )

    # Split actually credited
    provider_earnings: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        default=Decimal("0.0000")
    )
    platform_commission: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        default=Decimal("0.0000")
    )
    affiliate_commission: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        default=Decimal("0.0000")
    )
    affiliate_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=True
    )

    # Wallets of every leg
    buyer_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )
    provider_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )
    platform_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )
    affiliate_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )

    # Bound inventory unit
    unit_kind: Mapped[UnitKind | None] = mapped_column(
        enum_column(UnitKind),
        nullable=True
    )
    assigned_account_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("inventory_accounts.id"),
        nullable=True
    )
    assigned_slot_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("inventory_slots.id"),
        nullable=True
    )
    assigned_license_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("inventory_licenses.id"),
        nullable=True
    )

    refunded_amount: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        default=Decimal("0.0000")
    )
    # Scoped per buyer ("<buyer_id>:<client key>"); NULL for failed attempts
    idempotency_key: Mapped[str | None] = mapped_column(
        String(300),
        nullable=True,
        unique=True
    )
    failure_reason: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    refunded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    __table_args__ = (
        Index("ix_purchases_buyer_id", "buyer_id"),
        Index("ix_purchases_provider_id", "provider_id"),
    )
