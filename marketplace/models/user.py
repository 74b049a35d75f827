"""User SQLAlchemy ORM model."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.db.base import Base, enum_column, utcnow


class UserRole(str, enum.Enum):
    """Marketplace roles. Authentication itself happens upstream."""

    ADMIN = "admin"
    SELLER = "seller"
    PROVIDER = "provider"
    AFFILIATE = "affiliate"
    CONCILIATOR = "conciliator"
    PAYMENT_VALIDATOR = "payment_validator"


class User(Base):
    """Marketplace participant and wallet owner.

    Attributes:
        id: Unique identifier (UUID)
        email: User email address (unique)
        full_name: User's display name
        role: Marketplace role (buyers are sellers in marketplace terms)
        is_active: Account status
        created_at: Record creation timestamp
        updated_at: Last modification timestamp
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )
    role: Mapped[UserRole] = mapped_column(
        enum_column(UserRole),
        nullable=False,
        default=UserRole.SELLER
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
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

    # One-to-one relationship with Wallet
    wallet: Mapped["Wallet"] = relationship("Wallet", back_populates="user", uselist=False)
