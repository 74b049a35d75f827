"""Dispute workflow and compensating refunds.

    open --assign--> under_review --resolve--> resolved --> closed
      \\------------------withdraw-----------------------> closed

A resolution passes through ``resolved`` and ends ``closed`` in the same
unit of work; ``resolved_at`` and ``closed_at`` are stamped together.

Resolving moves money only for ``refund_seller`` (full reversal, unit back
in stock) and ``partial_refund`` (proportional reversal, buyer keeps the
unit). Refunds never rewrite history: each credited wallet transfers its
share back to the buyer, keyed under ``dispute:<id>:`` so a retried
resolution cannot pay twice.

Every dispute carries a message thread between its participants. Internal
notes in that thread are visible only to whoever reviews the dispute, and a
closed dispute accepts no further messages.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidDisputeTransitionError,
    NotFoundError,
    ValidationError,
)
from marketplace.db.base import utcnow
from marketplace.db.unit_of_work import unit_of_work
from marketplace.models.dispute import (
    Dispute,
    DisputeMessage,
    DisputeStatus,
    OpenedBy,
    ResolutionType,
)
from marketplace.models.purchase import Purchase, PurchaseStatus, UnitKind
from marketplace.models.user import User, UserRole
from marketplace.services.commission import (
    HUNDRED,
    CommissionSplit,
    RefundLegs,
    compute_refund_legs,
)
from marketplace.services.inventory_allocator import InventoryAllocator, UnitHandle
from marketplace.services.wallet_ledger import WalletLedger

logger = logging.getLogger(__name__)

REASON_MIN_LENGTH = 10
REASON_MAX_LENGTH = 2000
MESSAGE_MIN_LENGTH = 5
MESSAGE_MAX_LENGTH = 5000
MAX_ATTACHMENTS = 10

REVIEWER_ROLES = frozenset({UserRole.CONCILIATOR, UserRole.ADMIN})

_ATTACHMENT_URL = TypeAdapter(AnyHttpUrl)


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    purchase: Purchase
    dispute: Dispute
    refund_amount: Decimal
    replayed: bool = False


class DisputeResolver:
    """Every operation runs in its own unit of work."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lock_timeout_ms: int | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.lock_timeout_ms = lock_timeout_ms

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            dispute = await session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError("Dispute", str(dispute_id))
            return dispute

    async def open_dispute(
        self,
        purchase_id: uuid.UUID,
        user_id: uuid.UUID,
        reason: str,
    ) -> Dispute:
        """Open a dispute on a completed purchase.

        Raises:
            ValidationError: Reason length out of range, or purchase not completed
            NotFoundError: Unknown purchase
            ForbiddenError: Caller is neither the buyer nor the provider
            ConflictError: The purchase already has a dispute
        """
        reason = (reason or "").strip()
        if not REASON_MIN_LENGTH <= len(reason) <= REASON_MAX_LENGTH:
            raise ValidationError(
                f"Reason must be between {REASON_MIN_LENGTH} and {REASON_MAX_LENGTH} characters"
            )

        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            purchase = await session.get(Purchase, purchase_id)
            if purchase is None:
                raise NotFoundError("Purchase", str(purchase_id))
            if user_id == purchase.buyer_id:
                opened_by = OpenedBy.BUYER
            elif user_id == purchase.provider_id:
                opened_by = OpenedBy.PROVIDER
            else:
                raise ForbiddenError("Only the buyer or the provider can open a dispute")
            if PurchaseStatus(purchase.status) != PurchaseStatus.COMPLETED:
                raise ValidationError(
                    f"Only completed purchases can be disputed (status: {PurchaseStatus(purchase.status).value})"
                )

            existing = await session.execute(
                select(Dispute.id).where(Dispute.purchase_id == purchase_id)
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictError(f"Purchase {purchase_id} already has a dispute")

            dispute = Dispute(
                purchase_id=purchase_id,
                buyer_id=purchase.buyer_id,
                provider_id=purchase.provider_id,
                opened_by=opened_by,
                reason=reason,
                status=DisputeStatus.OPEN,
            )
            session.add(dispute)
            try:
                await session.flush()
            except IntegrityError as exc:
                raise ConflictError(f"Purchase {purchase_id} already has a dispute") from exc

        logger.info("Dispute %s opened on purchase %s by %s", dispute.id, purchase_id, opened_by.value)
        return dispute

    async def assign(self, dispute_id: uuid.UUID, conciliator_id: uuid.UUID) -> Dispute:
        """Put an open dispute under review by ``conciliator_id``."""
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            conciliator = await session.get(User, conciliator_id)
            if conciliator is None:
                raise NotFoundError("User", str(conciliator_id))
            if UserRole(conciliator.role) not in REVIEWER_ROLES:
                raise ForbiddenError("Only conciliators can review disputes")

            dispute = await self._lock_dispute(session, dispute_id)
            dispute.transition_to(DisputeStatus.UNDER_REVIEW)
            dispute.conciliator_id = conciliator_id
            dispute.assigned_at = utcnow()

        logger.info("Dispute %s assigned to %s", dispute_id, conciliator_id)
        return dispute

    async def withdraw(self, dispute_id: uuid.UUID, user_id: uuid.UUID) -> Dispute:
        """Close an open dispute at the request of whoever opened it."""
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            dispute = await self._lock_dispute(session, dispute_id)
            opener = dispute.buyer_id if OpenedBy(dispute.opened_by) == OpenedBy.BUYER else dispute.provider_id
            if user_id != opener:
                raise ForbiddenError("Only the party that opened the dispute can withdraw it")
            dispute.transition_to(DisputeStatus.CLOSED)
            dispute.closed_at = utcnow()

        logger.info("Dispute %s withdrawn by %s", dispute_id, user_id)
        return dispute

    async def resolve(
        self,
        dispute_id: uuid.UUID,
        resolution_type: ResolutionType,
        resolver_id: uuid.UUID,
        percentage: Decimal | None = None,
        resolution: str | None = None,
        allow_override: bool = False,
    ) -> ResolutionResult:
        """Apply a resolution and its compensating ledger entries atomically.

        The dispute ends ``closed`` with the outcome recorded on it.

        Args:
            dispute_id: Dispute under review
            resolution_type: Outcome to apply
            resolver_id: Conciliator (or admin) applying it
            percentage: Required for partial_refund, 0 < p < 100
            resolution: Free-text note stored on the dispute
            allow_override: Let someone other than the assigned conciliator
                resolve (admins)

        Returns:
            ResolutionResult: Updated purchase and dispute plus the amount
            returned to the buyer. ``replayed`` is set when the identical
            resolution had already been applied.

        Raises:
            NotFoundError: Unknown dispute
            ValidationError: Percentage missing, out of range or unexpected
            ForbiddenError: Resolver is not the assigned conciliator
            InvalidDisputeTransitionError: Dispute not under review, or
                already resolved differently
            InsufficientFundsError: A credited wallet can no longer cover its
                refund leg; nothing is applied
        """
        resolution_type = ResolutionType(resolution_type)
        percentage = self._validate_percentage(resolution_type, percentage)

        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            dispute = await self._lock_dispute(session, dispute_id)
            status = DisputeStatus(dispute.status)

            if status in (DisputeStatus.RESOLVED, DisputeStatus.CLOSED) and dispute.resolution_type is not None:
                return await self._replay(session, dispute, resolution_type, percentage)
            if status != DisputeStatus.UNDER_REVIEW:
                raise InvalidDisputeTransitionError(
                    str(dispute_id), status.value, DisputeStatus.RESOLVED.value
                )
            if not allow_override and dispute.conciliator_id != resolver_id:
                raise ForbiddenError("Only the assigned conciliator can resolve this dispute")

            purchase = await self._lock_purchase(session, dispute.purchase_id)
            if PurchaseStatus(purchase.status) != PurchaseStatus.COMPLETED:
                raise ConflictError(
                    f"Purchase {purchase.id} cannot be refunded (status: {PurchaseStatus(purchase.status).value})"
                )

            refund_amount = Decimal("0.0000")
            if resolution_type == ResolutionType.REFUND_SELLER:
                legs = compute_refund_legs(self._original_split(purchase), HUNDRED)
                await self._apply_refund(session, dispute, purchase, legs)
                await InventoryAllocator(session).release_unit(self._unit_handle(purchase))
                purchase.status = PurchaseStatus.REFUNDED
                refund_amount = legs.buyer_credit
            elif resolution_type == ResolutionType.PARTIAL_REFUND:
                legs = compute_refund_legs(self._original_split(purchase), percentage)
                await self._apply_refund(session, dispute, purchase, legs)
                purchase.status = PurchaseStatus.PARTIAL_REFUND
                refund_amount = legs.buyer_credit

            if refund_amount > 0:
                purchase.refunded_amount = purchase.refunded_amount + refund_amount
                purchase.refunded_at = utcnow()

            dispute.transition_to(DisputeStatus.RESOLVED)
            dispute.resolution_type = resolution_type
            dispute.partial_refund_percentage = percentage
            dispute.resolution = resolution
            dispute.resolver_id = resolver_id
            dispute.refund_amount = refund_amount
            dispute.resolved_at = utcnow()
            dispute.transition_to(DisputeStatus.CLOSED)
            dispute.closed_at = dispute.resolved_at
            await session.flush()

        logger.info(
            "Dispute %s resolved as %s by %s: refunded %s on purchase %s",
            dispute_id,
            resolution_type.value,
            resolver_id,
            refund_amount,
            purchase.id,
        )
        return ResolutionResult(purchase=purchase, dispute=dispute, refund_amount=refund_amount)

    async def add_message(
        self,
        dispute_id: uuid.UUID,
        sender_id: uuid.UUID,
        body: str,
        attachments: list[str] | None = None,
        is_internal: bool = False,
    ) -> DisputeMessage:
        """Append a message to the dispute thread.

        The buyer, the provider, the assigned conciliator and admins take
        part in a dispute. Internal notes can only come from the assigned
        conciliator or an admin.

        Raises:
            ValidationError: Body length out of range, too many attachments
                or an attachment that is not an http(s) URL
            NotFoundError: Unknown dispute or sender
            ConflictError: The dispute is closed
            ForbiddenError: Sender is not a participant, or posts an
                internal note without reviewing the dispute
        """
        body = (body or "").strip()
        if not MESSAGE_MIN_LENGTH <= len(body) <= MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message must be between {MESSAGE_MIN_LENGTH} and {MESSAGE_MAX_LENGTH} characters"
            )
        attachments = self._validate_attachments(attachments or [])

        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            dispute = await session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError("Dispute", str(dispute_id))
            if DisputeStatus(dispute.status) == DisputeStatus.CLOSED:
                raise ConflictError(f"Dispute {dispute_id} is closed; no further messages")
            sender = await session.get(User, sender_id)
            if sender is None:
                raise NotFoundError("User", str(sender_id))
            if not self._is_participant(dispute, sender):
                raise ForbiddenError("Only dispute participants can send messages")
            if is_internal and not self._is_reviewer(dispute, sender):
                raise ForbiddenError("Only conciliators can post internal notes")

            message = DisputeMessage(
                dispute_id=dispute_id,
                sender_id=sender_id,
                body=body,
                attachments=attachments or None,
                is_internal=is_internal,
            )
            session.add(message)
            await session.flush()

        logger.info(
            "Message %s added to dispute %s by %s (internal=%s)",
            message.id,
            dispute_id,
            sender_id,
            is_internal,
        )
        return message

    async def list_messages(
        self,
        dispute_id: uuid.UUID,
        viewer_id: uuid.UUID,
    ) -> list[DisputeMessage]:
        """Thread of a dispute, oldest first. Internal notes are only
        included for the assigned conciliator and admins."""
        async with unit_of_work(self.session_maker, self.lock_timeout_ms) as session:
            dispute = await session.get(Dispute, dispute_id)
            if dispute is None:
                raise NotFoundError("Dispute", str(dispute_id))
            viewer = await session.get(User, viewer_id)
            if viewer is None or not self._is_participant(dispute, viewer):
                raise ForbiddenError("Only dispute participants can read its messages")

            query = select(DisputeMessage).where(DisputeMessage.dispute_id == dispute_id)
            if not self._is_reviewer(dispute, viewer):
                query = query.where(DisputeMessage.is_internal.is_(False))
            result = await session.execute(
                query.order_by(DisputeMessage.created_at.asc(), DisputeMessage.id.asc())
            )
            return list(result.scalars().all())

    @staticmethod
    def _is_reviewer(dispute: Dispute, user: User) -> bool:
        role = UserRole(user.role)
        return role == UserRole.ADMIN or (
            role == UserRole.CONCILIATOR and dispute.conciliator_id == user.id
        )

    @classmethod
    def _is_participant(cls, dispute: Dispute, user: User) -> bool:
        return user.id in (dispute.buyer_id, dispute.provider_id) or cls._is_reviewer(dispute, user)

    @staticmethod
    def _validate_attachments(attachments: list[str]) -> list[str]:
        if len(attachments) > MAX_ATTACHMENTS:
            raise ValidationError(f"A message can carry at most {MAX_ATTACHMENTS} attachments")
        for url in attachments:
            try:
                _ATTACHMENT_URL.validate_python(url)
            except PydanticValidationError as exc:
                raise ValidationError(f"Attachment is not a valid http(s) URL: {url}") from exc
        return list(attachments)

    @staticmethod
    def _validate_percentage(
        resolution_type: ResolutionType,
        percentage: Decimal | None,
    ) -> Decimal | None:
        if resolution_type == ResolutionType.PARTIAL_REFUND:
            if percentage is None:
                raise ValidationError("partial_refund requires a percentage")
            percentage = Decimal(percentage)
            if percentage <= 0 or percentage >= HUNDRED:
                raise ValidationError("Partial refund percentage must be between 0 and 100 (exclusive)")
            return percentage
        if percentage is not None:
            raise ValidationError(f"{resolution_type.value} does not take a percentage")
        return None

    async def _replay(
        self,
        session: AsyncSession,
        dispute: Dispute,
        resolution_type: ResolutionType,
        percentage: Decimal | None,
    ) -> ResolutionResult:
        """Return the stored outcome if the same resolution is requested again."""
        stored_percentage = dispute.partial_refund_percentage
        same_percentage = (
            stored_percentage is None and percentage is None
        ) or (
            stored_percentage is not None
            and percentage is not None
            and Decimal(stored_percentage) == percentage
        )
        if ResolutionType(dispute.resolution_type) != resolution_type or not same_percentage:
            raise InvalidDisputeTransitionError(
                str(dispute.id),
                DisputeStatus(dispute.status).value,
                DisputeStatus.RESOLVED.value,
            )

        purchase = await session.get(Purchase, dispute.purchase_id)
        logger.info("Replayed resolution of dispute %s", dispute.id)
        return ResolutionResult(
            purchase=purchase,
            dispute=dispute,
            refund_amount=dispute.refund_amount or Decimal("0.0000"),
            replayed=True,
        )

    async def _apply_refund(
        self,
        session: AsyncSession,
        dispute: Dispute,
        purchase: Purchase,
        legs: RefundLegs,
    ) -> None:
        ledger = WalletLedger(session)
        transfers = [
            (purchase.provider_wallet_id, legs.provider_debit, "provider-refund"),
            (purchase.platform_wallet_id, legs.platform_debit, "platform-refund"),
            (purchase.affiliate_wallet_id, legs.affiliate_debit, "affiliate-refund"),
        ]
        transfers = [
            (wallet_id, amount, leg)
            for wallet_id, amount, leg in transfers
            if wallet_id is not None and amount > 0 and wallet_id != purchase.buyer_wallet_id
        ]
        await ledger.lock_wallets(
            [purchase.buyer_wallet_id, *(wallet_id for wallet_id, _, _ in transfers)]
        )
        for wallet_id, amount, leg in transfers:
            await ledger.transfer(
                wallet_id,
                purchase.buyer_wallet_id,
                amount,
                f"dispute:{dispute.id}:{leg}",
                description=f"Refund for dispute {dispute.id} on purchase {purchase.id}",
                related_entity_type="dispute",
                related_entity_id=str(dispute.id),
            )

    @staticmethod
    def _original_split(purchase: Purchase) -> CommissionSplit:
        return CommissionSplit(
            price=Decimal(purchase.amount),
            provider_earnings=Decimal(purchase.provider_earnings),
            platform_commission=Decimal(purchase.platform_commission),
            affiliate_commission=Decimal(purchase.affiliate_commission),
        )

    @staticmethod
    def _unit_handle(purchase: Purchase) -> UnitHandle:
        kind = UnitKind(purchase.unit_kind)
        if kind == UnitKind.ACCOUNT:
            return UnitHandle(kind=kind, unit_id=purchase.assigned_account_id, account_id=purchase.assigned_account_id)
        if kind == UnitKind.SLOT:
            return UnitHandle(kind=kind, unit_id=purchase.assigned_slot_id, account_id=purchase.assigned_account_id)
        return UnitHandle(kind=kind, unit_id=purchase.assigned_license_id)

    async def _lock_dispute(self, session: AsyncSession, dispute_id: uuid.UUID) -> Dispute:
        result = await session.execute(
            select(Dispute)
            .where(Dispute.id == dispute_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        dispute = result.scalar_one_or_none()
        if dispute is None:
            raise NotFoundError("Dispute", str(dispute_id))
        return dispute

    async def _lock_purchase(self, session: AsyncSession, purchase_id: uuid.UUID) -> Purchase:
        result = await session.execute(
            select(Purchase)
            .where(Purchase.id == purchase_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        purchase = result.scalar_one_or_none()
        if purchase is None:
            raise NotFoundError("Purchase", str(purchase_id))
        return purchase
