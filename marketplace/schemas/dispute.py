"""Dispute Pydantic schemas for request/response validation."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from marketplace.models.dispute import DisputeStatus, OpenedBy, ResolutionType
from marketplace.schemas.purchase import PurchaseRead


class DisputeCreate(BaseModel):
    """Request schema for opening a dispute."""

    purchase_id: uuid.UUID
    reason: str = Field(..., min_length=10, max_length=2000)


class DisputeResolveRequest(BaseModel):
    """Request schema for resolving a dispute under review."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "resolution_type": "partial_refund",
                "partial_refund_percentage": "50.00",
                "resolution": "Profile worked for half of the period",
            }
        }
    )

    resolution_type: ResolutionType
    partial_refund_percentage: Decimal | None = Field(default=None, gt=0, lt=100, decimal_places=2)
    resolution: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_percentage(self) -> "DisputeResolveRequest":
        """A percentage is required for partial refunds and rejected otherwise."""
        if self.resolution_type == ResolutionType.PARTIAL_REFUND:
            if self.partial_refund_percentage is None:
                raise ValueError("partial_refund requires partial_refund_percentage")
        elif self.partial_refund_percentage is not None:
            raise ValueError("partial_refund_percentage is only valid for partial_refund")
        return self


class DisputeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    purchase_id: uuid.UUID
    buyer_id: uuid.UUID
    provider_id: uuid.UUID | None = None
    opened_by: OpenedBy
    reason: str
    status: DisputeStatus
    conciliator_id: uuid.UUID | None = None
    resolution_type: ResolutionType | None = None
    partial_refund_percentage: Decimal | None = None
    resolution: str | None = None
    resolver_id: uuid.UUID | None = None
    refund_amount: Decimal | None = None
    created_at: datetime
    assigned_at: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None

    @field_serializer("partial_refund_percentage", "refund_amount")
    def serialize_decimal(self, value: Decimal | None) -> str | None:
        return str(value) if value is not None else None


class ResolutionResponse(BaseModel):
    purchase: PurchaseRead
    dispute: DisputeRead
    refund_amount: Decimal
    replayed: bool = False

    @field_serializer("refund_amount")
    def serialize_refund_amount(self, value: Decimal) -> str:
        return str(value)


class DisputeMessageCreate(BaseModel):
    """Request schema for posting to a dispute thread."""

    body: str = Field(..., min_length=5, max_length=5000)
    attachments: list[str] = Field(default_factory=list, max_length=10)
    is_internal: bool = False


class DisputeMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    dispute_id: uuid.UUID
    sender_id: uuid.UUID
    body: str
    attachments: list[str] = Field(default_factory=list)
    is_internal: bool
    created_at: datetime

    @field_validator("attachments", mode="before")
    @classmethod
    def default_attachments(cls, value: list[str] | None) -> list[str]:
        return value or []
