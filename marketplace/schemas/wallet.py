"""Wallet and ledger Pydantic schemas for responses."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from marketplace.models.transaction import TransactionType
from marketplace.models.wallet import WalletStatus


class WalletRead(BaseModel):
    """Schema for reading Wallet data.

    Balance is serialized as a decimal string for precision.
    """

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    balance: Decimal
    currency: str
    status: WalletStatus
    version: int
    created_at: datetime
    updated_at: datetime

    @field_serializer("balance")
    def serialize_balance(self, balance: Decimal) -> str:
        """Serialize balance as decimal string to preserve precision."""
        return str(balance)

    @field_serializer("status")
    def serialize_status(self, status: WalletStatus) -> str:
        return status.value


class LedgerTransactionRead(BaseModel):
    """One ledger row as shown to the wallet owner."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: TransactionType
    amount: Decimal
    source_wallet_id: uuid.UUID | None = None
    destination_wallet_id: uuid.UUID | None = None
    related_entity_type: str | None = None
    related_entity_id: str | None = None
    description: str
    created_at: datetime

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> str:
        """Serialize amount as decimal string to preserve precision."""
        return str(amount)

    @field_serializer("type")
    def serialize_type(self, tx_type: TransactionType) -> str:
        return tx_type.value


class TransferRequest(BaseModel):
    """Request schema for sending funds to another user."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "to_user_id": "123e4567-e89b-12d3-a456-426614174000",
                "amount": "12.5000",
                "description": "Split of the shared subscription",
            }
        }
    )

    to_user_id: uuid.UUID
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=4)
    description: str | None = Field(default=None, max_length=500)


class TransferResponse(BaseModel):
    debit_transaction_id: uuid.UUID
    credit_transaction_id: uuid.UUID
    amount: Decimal
    new_balance: Decimal

    @field_serializer("amount", "new_balance")
    def serialize_money(self, value: Decimal) -> str:
        return str(value)
