# Pydantic Data Transfer Objects

from marketplace.schemas.dispute import (
    DisputeCreate,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputeRead,
    DisputeResolveRequest,
    ResolutionResponse,
)
from marketplace.schemas.purchase import (
    PurchaseListResponse,
    PurchaseRead,
    PurchaseRequest,
    PurchaseResponse,
)
from marketplace.schemas.wallet import (
    LedgerTransactionRead,
    TransferRequest,
    TransferResponse,
    WalletRead,
)

__all__ = [
    "DisputeCreate",
    "DisputeMessageCreate",
    "DisputeMessageRead",
    "DisputeRead",
    "DisputeResolveRequest",
    "LedgerTransactionRead",
    "PurchaseListResponse",
    "PurchaseRead",
    "PurchaseRequest",
    "PurchaseResponse",
    "ResolutionResponse",
    "TransferRequest",
    "TransferResponse",
    "WalletRead",
]
