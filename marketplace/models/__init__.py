# SQLAlchemy ORM Models
"""Model package exports for Alembic discovery and application use.

All models must be imported here to ensure Alembic can discover them
for automatic migration generation.
"""

from marketplace.models.commission import (
    Affiliation,
    AffiliationApproval,
    AffiliationStatus,
    CommissionConfig,
)
from marketplace.models.dispute import (
    Dispute,
    DisputeMessage,
    DisputeStatus,
    OpenedBy,
    ResolutionType,
)
from marketplace.models.inventory import (
    InventoryAccount,
    InventoryLicense,
    InventorySlot,
    LicenseStatus,
    SlotStatus,
)
from marketplace.models.product import Product, ProductVariant
from marketplace.models.purchase import Purchase, PurchaseStatus, UnitKind
from marketplace.models.transaction import LedgerTransaction, TransactionType
from marketplace.models.user import User, UserRole
from marketplace.models.wallet import Wallet, WalletStatus

__all__ = [
    "Affiliation",
    "AffiliationApproval",
    "AffiliationStatus",
    "CommissionConfig",
    "Dispute",
    "DisputeMessage",
    "DisputeStatus",
    "InventoryAccount",
    "InventoryLicense",
    "InventorySlot",
    "LedgerTransaction",
    "LicenseStatus",
    "OpenedBy",
    "Product",
    "ProductVariant",
    "Purchase",
    "PurchaseStatus",
    "ResolutionType",
    "SlotStatus",
    "TransactionType",
    "UnitKind",
    "User",
    "UserRole",
    "Wallet",
    "WalletStatus",
]
