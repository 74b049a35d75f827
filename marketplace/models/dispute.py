"""Dispute SQLAlchemy ORM model and its state machine."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.core.exceptions import InvalidDisputeTransitionError
from marketplace.db.base import MONEY, PERCENT, Base, enum_column, utcnow


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"
    CLOSED = "closed"


class ResolutionType(str, enum.Enum):
    """Outcome chosen by the conciliator.

    Values:
        REFUND_SELLER: Full refund to the buyer, unit returned to stock
        REFUND_PROVIDER: Decided in the provider's favour, no money moves
        PARTIAL_REFUND: Buyer gets a percentage back and keeps the unit
        NO_REFUND: No money moves
    """

    REFUND_SELLER = "refund_seller"
    REFUND_PROVIDER = "refund_provider"
    PARTIAL_REFUND = "partial_refund"
    NO_REFUND = "no_refund"


class OpenedBy(str, enum.Enum):
    BUYER = "buyer"
    PROVIDER = "provider"


# open -> under_review -> resolved -> closed, or open -> closed (withdrawn)
ALLOWED_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    DisputeStatus.OPEN: frozenset({DisputeStatus.UNDER_REVIEW, DisputeStatus.CLOSED}),
    DisputeStatus.UNDER_REVIEW: frozenset({DisputeStatus.RESOLVED}),
    DisputeStatus.RESOLVED: frozenset({DisputeStatus.CLOSED}),
    DisputeStatus.CLOSED: frozenset(),
}


class Dispute(Base):
    """A buyer's (or provider's) contest of one completed Purchase."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    purchase_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("purchases.id"),
        nullable=False,
        unique=True
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
    opened_by: Mapped[OpenedBy] = mapped_column(
        enum_column(OpenedBy),
        nullable=False
    )
    reason: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    status: Mapped[DisputeStatus] = mapped_column(
        enum_column(DisputeStatus),
        nullable=False,
        default=DisputeStatus.OPEN
    )
    conciliator_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=True
    )
    resolution_type: Mapped[ResolutionType | None] = mapped_column(
        enum_column(ResolutionType),
        nullable=True
    )
    partial_refund_percentage: Mapped[Decimal | None] = mapped_column(
        PERCENT,
        nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(
        Text,
        nullable=True
    )
    resolver_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=True
    )
    refund_amount: Mapped[Decimal | None] = mapped_column(
        MONEY,
        nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    def can_transition_to(self, new_status: DisputeStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[DisputeStatus(self.status)]

    def transition_to(self, new_status: DisputeStatus) -> None:
        """Move to ``new_status`` or raise InvalidDisputeTransitionError."""
        if not self.can_transition_to(new_status):
            raise InvalidDisputeTransitionError(
                str(self.id),
                DisputeStatus(self.status).value,
                new_status.value,
            )
        self.status = new_status


class DisputeMessage(Base):
    """One entry in a dispute's conversation thread.

    Internal notes (``is_internal``) are exchanged between conciliators and
    never shown to the buyer or the provider.
    """

    __tablename__ = "dispute_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("disputes.id"),
        nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id"),
        nullable=False
    )
    body: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    attachments: Mapped[list[str] | None] = mapped_column(
        JSON,
        nullable=True
    )
    is_internal: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        Index("ix_dispute_messages_dispute_created", "dispute_id", "created_at"),
    )
