"""Purchase Pydantic schemas for request/response validation."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from marketplace.models.purchase import PurchaseStatus, UnitKind


class PurchaseRequest(BaseModel):
    """Request schema for buying one unit of a product variant."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "123e4567-e89b-12d3-a456-426614174000",
            }
        }
    )

    variant_id: uuid.UUID = Field(..., description="Product variant to buy")


class PurchaseResponse(BaseModel):
    """Result of a successful (or replayed) purchase."""

    purchase_id: uuid.UUID
    status: PurchaseStatus
    amount: Decimal
    new_balance: Decimal
    replayed: bool = False

    @field_serializer("amount", "new_balance")
    def serialize_money(self, value: Decimal) -> str:
        """Serialize amounts as decimal strings to preserve precision."""
        return str(value)

    @field_serializer("status")
    def serialize_status(self, status: PurchaseStatus) -> str:
        return status.value


class PurchaseRead(BaseModel):
    """Purchase as shown to its buyer and alongside a dispute resolution.

    The bound unit is referenced by id only; credentials never leave the
    inventory tables.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: uuid.UUID
    provider_id: uuid.UUID | None = None
    variant_id: uuid.UUID
    amount: Decimal
    currency: str
    status: PurchaseStatus
    commission_rate: Decimal
    provider_earnings: Decimal
    platform_commission: Decimal
    affiliate_commission: Decimal
    refunded_amount: Decimal
    unit_kind: UnitKind | None = None
    created_at: datetime
    completed_at: datetime | None = None
    refunded_at: datetime | None = None

    @field_serializer(
        "amount",
        "commission_rate",
        "provider_earnings",
        "platform_commission",
        "affiliate_commission",
        "refunded_amount",
    )
    def serialize_decimal(self, value: Decimal) -> str:
        return str(value)

    @field_serializer("status")
    def serialize_status(self, status: PurchaseStatus) -> str:
        return status.value


class PurchaseListResponse(BaseModel):
    """One page of the caller's purchases plus what they have spent so far."""

    items: list[PurchaseRead]
    total: int
    limit: int
    offset: int
    has_more: bool
    total_spent: Decimal

    @field_serializer("total_spent")
    def serialize_total_spent(self, value: Decimal) -> str:
        return str(value)
