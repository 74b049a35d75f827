"""Wallet SQLAlchemy ORM model."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import MONEY, Base, enum_column, utcnow


class WalletStatus(str, enum.Enum):
    """Wallet status enum.

    Values:
        ACTIVE: Wallet can send and receive funds
        FROZEN: Temporarily blocked (e.g. under investigation)
        CLOSED: Permanently retired
    """

    ACTIVE = "active"
    FROZEN = "frozen"
    CLOSED = "closed"


class Wallet(Base):
    """Wallet model storing a user's balance with financial precision.

    The balance is only ever changed by WalletLedger, which appends a
    LedgerTransaction for each change in the same unit of work.

    Attributes:
        id: Unique identifier (UUID)
        user_id: Foreign key to User (unique, one-to-one)
        balance: Current balance with DECIMAL(18,4) precision
        currency: ISO currency code (default: USD)
        status: active, frozen or closed
        version: Incremented on every balance change
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
        user: Relationship to User model
    """

    __tablename__ = "wallets"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        unique=True,
        nullable=False
    )
    balance: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
        default=Decimal("0.0000")
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD"
    )
    status: Mapped[WalletStatus] = mapped_column(
        enum_column(WalletStatus),
        nullable=False,
        default=WalletStatus.ACTIVE
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow
    )

    # One-to-one relationship with User
    user: Mapped["User"] = relationship("User", back_populates="wallet")

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )
