"""Inventory SQLAlchemy ORM models.

Three kinds of sellable unit exist:

- a whole InventoryAccount with ``total_slots == 1`` (available while
  ``available_slots == 1``),
- an InventorySlot (profile) inside a shared account (``total_slots > 1``;
  slot rows under a single-slot account are never sold separately),
- an InventoryLicense key.

Credential columns hold ciphertext produced by the encryption service; this
package never decrypts them.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base, enum_column, utcnow


class SlotStatus(str, enum.Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"


class LicenseStatus(str, enum.Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    REVOKED = "revoked"


class InventoryAccount(Base):
    """A streaming/AI account, sold whole or split into profile slots."""

    __tablename__ = "inventory_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id"),
        nullable=False
    )
    email_ciphertext: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    password_ciphertext: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    platform_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False
    )
    total_slots: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1
    )
    available_slots: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1
    )
    expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    slots: Mapped[list["InventorySlot"]] = relationship(
        "InventorySlot",
        back_populates="account"
    )

    __table_args__ = (
        CheckConstraint("total_slots >= 1", name="ck_inventory_accounts_total_slots"),
        CheckConstraint(
            "available_slots >= 0 AND available_slots <= total_slots",
            name="ck_inventory_accounts_available_slots",
        ),
        Index("ix_inventory_accounts_product_created", "product_id", "created_at"),
    )


class InventorySlot(Base):
    """One profile (with optional PIN) inside a shared account."""

    __tablename__ = "inventory_slots"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("inventory_accounts.id"),
        nullable=False
    )
    profile_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True
    )
    pin_ciphertext: Mapped[str | None] = mapped_column(
        Text,
        nullable=True
    )
    status: Mapped[SlotStatus] = mapped_column(
        enum_column(SlotStatus),
        nullable=False,
        default=SlotStatus.AVAILABLE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    account: Mapped[InventoryAccount] = relationship("InventoryAccount", back_populates="slots")

    __table_args__ = (
        Index("ix_inventory_slots_account_status", "account_id", "status"),
    )


class InventoryLicense(Base):
    """A unique license key."""

    __tablename__ = "inventory_licenses"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("products.id"),
        nullable=False
    )
    license_key_ciphertext: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    activation_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False
    )
    status: Mapped[LicenseStatus] = mapped_column(
        enum_column(LicenseStatus),
        nullable=False,
        default=LicenseStatus.AVAILABLE
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_inventory_licenses_product_status", "product_id", "status"),
    )
