"""Commission configuration and affiliate referral ORM models."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.db.base import PERCENT, Base, enum_column, utcnow


class CommissionConfig(Base):
    """One version of the platform's commission rates.

    Rows are never edited: a rate change inserts a new row, so every
    Purchase can point at the version it used. The rates in effect at an
    instant come from the newest active row whose ``effective_from`` has
    passed; a row scheduled for later does not displace the current one.

    Attributes:
        commission_rate: Platform share of the sale price, in percent
        affiliate_rate: Affiliate share of the sale price, in percent,
            carved out of the platform share
        effective_from: First instant the version applies to
    """

    __tablename__ = "commission_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    commission_rate: Mapped[Decimal] = mapped_column(
        PERCENT,
        nullable=False
    )
    affiliate_rate: Mapped[Decimal] = mapped_column(
        PERCENT,
        nullable=False,
        default=Decimal("0.00")
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )
    effective_from: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )


class AffiliationApproval(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AffiliationStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Affiliation(Base):
    """Links a referred buyer to the affiliate who onboarded them."""

    __tablename__ = "affiliations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    affiliate_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
        index=True
    )
    referred_user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False,
        unique=True
    )
    referral_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False
    )
    status: Mapped[AffiliationStatus] = mapped_column(
        enum_column(AffiliationStatus),
        nullable=False,
        default=AffiliationStatus.ACTIVE
    )
    approval_status: Mapped[AffiliationApproval] = mapped_column(
        enum_column(AffiliationApproval),
        nullable=False,
        default=AffiliationApproval.PENDING
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
