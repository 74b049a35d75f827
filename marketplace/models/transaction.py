"""Ledger transaction SQLAlchemy ORM model."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import MONEY, Base, enum_column, utcnow


class TransactionType(str, enum.Enum):
    """Direction of a ledger row relative to the wallet it affects.

    Values:
        CREDIT: Increases the destination wallet's balance
        DEBIT: Decreases the source wallet's balance
    """

    CREDIT = "credit"
    DEBIT = "debit"


class LedgerTransaction(Base):
    """Immutable record of one money movement.

    A debit row affects ``source_wallet_id``; a credit row affects
    ``destination_wallet_id``. The other side is filled in when the row is
    one leg of a transfer, so every movement can be traced in both
    directions. Rows are never updated or deleted.

    Attributes:
        id: Unique identifier (UUID)
        type: credit or debit
        amount: Positive amount with DECIMAL(18,4) precision
        source_wallet_id: Wallet debited (or counterpart of a credit leg)
        destination_wallet_id: Wallet credited (or counterpart of a debit leg)
        related_entity_type: e.g. "purchase" or "dispute"
        related_entity_id: Identifier of the related entity
        description: Human readable summary
        idempotency_key: Unique key making retries safe
        created_at: Transaction timestamp
    """

    __tablename__ = "ledger_transactions"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    type: Mapped[TransactionType] = mapped_column(
        enum_column(TransactionType),
        nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False
    )
    source_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )
    destination_wallet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("wallets.id"),
        nullable=True
    )
    related_entity_type: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True
    )
    related_entity_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True
    )
    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=""
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    # Composite indexes for query performance
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_transactions_amount_positive"),
        Index("ix_ledger_transactions_source_wallet_id", "source_wallet_id"),
        Index("ix_ledger_transactions_destination_wallet_id", "destination_wallet_id"),
        Index(
            "ix_ledger_transactions_related_entity",
            "related_entity_type",
            "related_entity_id",
        ),
    )
