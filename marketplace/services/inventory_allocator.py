"""Inventory allocator: claim and release sellable units without double-selling.

A claim is two steps inside the caller's unit of work:

1. Candidates are selected oldest first with ``FOR UPDATE SKIP LOCKED`` so
   concurrent buyers on PostgreSQL skip rows another transaction is already
   claiming instead of queueing behind it.
2. Each candidate is claimed with a compare-and-set UPDATE that only matches
   while the unit is still available. ``rowcount == 1`` means this
   transaction won it.

SQLite ignores the row lock clause; there the unit of work holds the
database write lock, so the compare-and-set alone is enough.

Preference order: whole accounts, then profile slots, then license keys.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import ConcurrencyError, OutOfStockError, UnitNotAssignedError
from marketplace.models.inventory import (
    InventoryAccount,
    InventoryLicense,
    InventorySlot,
    LicenseStatus,
    SlotStatus,
)
from marketplace.models.purchase import UnitKind

logger = logging.getLogger(__name__)

# Rows examined per claim attempt before falling through to the next kind
CANDIDATE_BATCH = 10


@dataclass(frozen=True, slots=True)
class UnitHandle:
    """Reference to one claimed unit, as bound to a Purchase."""

    kind: UnitKind
    unit_id: uuid.UUID
    account_id: uuid.UUID | None = None


class InventoryAllocator:
    """Claims and releases units; never commits."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def claim_unit(self, product_id: uuid.UUID) -> UnitHandle:
        """Atomically take the oldest available unit of ``product_id``.

        Raises:
            OutOfStockError: If no unit of any kind could be claimed
        """
        handle = (
            await self._claim_full_account(product_id)
            or await self._claim_slot(product_id)
            or await self._claim_license(product_id)
        )
        if handle is None:
            logger.info("No unit available for product %s", product_id)
            raise OutOfStockError(str(product_id))

        logger.info("Claimed %s %s for product %s", handle.kind.value, handle.unit_id, product_id)
        return handle

    async def release_unit(self, handle: UnitHandle) -> None:
        """Return a claimed unit to stock.

        Raises:
            UnitNotAssignedError: If the unit is not currently assigned
                (already released, never claimed, or a revoked license)
        """
        if handle.kind == UnitKind.ACCOUNT:
            result = await self.session.execute(
                update(InventoryAccount)
                .where(
                    InventoryAccount.id == handle.unit_id,
                    InventoryAccount.total_slots == 1,
                    InventoryAccount.available_slots == 0,
                )
                .values(available_slots=1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise UnitNotAssignedError(handle.kind.value, str(handle.unit_id))

        elif handle.kind == UnitKind.SLOT:
            result = await self.session.execute(
                update(InventorySlot)
                .where(
                    InventorySlot.id == handle.unit_id,
                    InventorySlot.status == SlotStatus.ASSIGNED,
                )
                .values(status=SlotStatus.AVAILABLE)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise UnitNotAssignedError(handle.kind.value, str(handle.unit_id))
            account_id = handle.account_id or await self._slot_account_id(handle.unit_id)
            result = await self.session.execute(
                update(InventoryAccount)
                .where(
                    InventoryAccount.id == account_id,
                    InventoryAccount.available_slots < InventoryAccount.total_slots,
                )
                .values(available_slots=InventoryAccount.available_slots + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyError("InventoryAccount", str(account_id))

        else:
            result = await self.session.execute(
                update(InventoryLicense)
                .where(
                    InventoryLicense.id == handle.unit_id,
                    InventoryLicense.status == LicenseStatus.ASSIGNED,
                )
                .values(status=LicenseStatus.AVAILABLE)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise UnitNotAssignedError(handle.kind.value, str(handle.unit_id))

        logger.info("Released %s %s back to stock", handle.kind.value, handle.unit_id)

    async def count_available(self, product_id: uuid.UUID) -> int:
        """Number of units a buyer could currently get for ``product_id``."""
        accounts = await self.session.execute(
            select(func.count(InventoryAccount.id)).where(
                InventoryAccount.product_id == product_id,
                InventoryAccount.total_slots == 1,
                InventoryAccount.available_slots > 0,
            )
        )
        slots = await self.session.execute(
            select(func.count(InventorySlot.id))
            .join(InventoryAccount, InventorySlot.account_id == InventoryAccount.id)
            .where(
                InventoryAccount.product_id == product_id,
                InventoryAccount.total_slots > 1,
                InventorySlot.status == SlotStatus.AVAILABLE,
            )
        )
        licenses = await self.session.execute(
            select(func.count(InventoryLicense.id)).where(
                InventoryLicense.product_id == product_id,
                InventoryLicense.status == LicenseStatus.AVAILABLE,
            )
        )
        return accounts.scalar_one() + slots.scalar_one() + licenses.scalar_one()

    async def _claim_full_account(self, product_id: uuid.UUID) -> UnitHandle | None:
        candidates = await self.session.execute(
            select(InventoryAccount.id)
            .where(
                InventoryAccount.product_id == product_id,
                InventoryAccount.total_slots == 1,
                InventoryAccount.available_slots > 0,
            )
            .order_by(InventoryAccount.created_at, InventoryAccount.id)
            .limit(CANDIDATE_BATCH)
            .with_for_update(skip_locked=True)
        )
        for account_id in candidates.scalars().all():
            result = await self.session.execute(
                update(InventoryAccount)
                .where(
                    InventoryAccount.id == account_id,
                    InventoryAccount.available_slots == 1,
                )
                .values(available_slots=0)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return UnitHandle(kind=UnitKind.ACCOUNT, unit_id=account_id, account_id=account_id)
        return None

    async def _claim_slot(self, product_id: uuid.UUID) -> UnitHandle | None:
        candidates = await self.session.execute(
            select(InventorySlot.id, InventorySlot.account_id)
            .join(InventoryAccount, InventorySlot.account_id == InventoryAccount.id)
            .where(
                InventoryAccount.product_id == product_id,
                InventoryAccount.total_slots > 1,
                InventorySlot.status == SlotStatus.AVAILABLE,
            )
            .order_by(InventorySlot.created_at, InventorySlot.id)
            .limit(CANDIDATE_BATCH)
            .with_for_update(skip_locked=True, of=InventorySlot)
        )
        for slot_id, account_id in candidates.all():
            result = await self.session.execute(
                update(InventorySlot)
                .where(
                    InventorySlot.id == slot_id,
                    InventorySlot.status == SlotStatus.AVAILABLE,
                )
                .values(status=SlotStatus.ASSIGNED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                continue
            result = await self.session.execute(
                update(InventoryAccount)
                .where(
                    InventoryAccount.id == account_id,
                    InventoryAccount.available_slots > 0,
                )
                .values(available_slots=InventoryAccount.available_slots - 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Slot statuses and the account counter disagree
                raise ConcurrencyError("InventoryAccount", str(account_id))
            return UnitHandle(kind=UnitKind.SLOT, unit_id=slot_id, account_id=account_id)
        return None

    async def _claim_license(self, product_id: uuid.UUID) -> UnitHandle | None:
        candidates = await self.session.execute(
            select(InventoryLicense.id)
            .where(
                InventoryLicense.product_id == product_id,
                InventoryLicense.status == LicenseStatus.AVAILABLE,
            )
            .order_by(InventoryLicense.created_at, InventoryLicense.id)
            .limit(CANDIDATE_BATCH)
            .with_for_update(skip_locked=True)
        )
        for license_id in candidates.scalars().all():
            result = await self.session.execute(
                update(InventoryLicense)
                .where(
                    InventoryLicense.id == license_id,
                    InventoryLicense.status == LicenseStatus.AVAILABLE,
                )
                .values(status=LicenseStatus.ASSIGNED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return UnitHandle(kind=UnitKind.LICENSE, unit_id=license_id)
        return None

    async def _slot_account_id(self, slot_id: uuid.UUID) -> uuid.UUID:
        result = await self.session.execute(
            select(InventorySlot.account_id).where(InventorySlot.id == slot_id)
        )
        return result.scalar_one()
