"""Dispute API endpoints."""

import uuid

from fastapi import APIRouter

from marketplace.api.deps import CurrentUser, Resolver, Reviewer
from marketplace.models.user import UserRole
from marketplace.schemas.dispute import (
    DisputeCreate,
    DisputeMessageCreate,
    DisputeMessageRead,
    DisputeRead,
    DisputeResolveRequest,
    ResolutionResponse,
)
from marketplace.schemas.purchase import PurchaseRead
from marketplace.worker import audit_log_dispute_resolution

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.post("", response_model=DisputeRead, status_code=201)
async def open_dispute(
    request: DisputeCreate,
    current_user: CurrentUser,
    resolver: Resolver,
) -> DisputeRead:
    """
    Open a dispute on a completed purchase.

    Only the buyer or the provider of the purchase may open it, and each
    purchase can be disputed once.
    """
    dispute = await resolver.open_dispute(request.purchase_id, current_user.id, request.reason)
    return DisputeRead.model_validate(dispute)


@router.post("/{dispute_id}/assign", response_model=DisputeRead)
async def assign_dispute(
    dispute_id: uuid.UUID,
    reviewer: Reviewer,
    resolver: Resolver,
) -> DisputeRead:
    """Take an open dispute under review as the calling conciliator."""
    dispute = await resolver.assign(dispute_id, reviewer.id)
    return DisputeRead.model_validate(dispute)


@router.post("/{dispute_id}/withdraw", response_model=DisputeRead)
async def withdraw_dispute(
    dispute_id: uuid.UUID,
    current_user: CurrentUser,
    resolver: Resolver,
) -> DisputeRead:
    dispute = await resolver.withdraw(dispute_id, current_user.id)
    return DisputeRead.model_validate(dispute)


@router.put("/{dispute_id}/resolve", response_model=ResolutionResponse)
async def resolve_dispute(
    dispute_id: uuid.UUID,
    request: DisputeResolveRequest,
    reviewer: Reviewer,
    resolver: Resolver,
) -> ResolutionResponse:
    """
    Resolve a dispute under review.

    - **resolution_type**: refund_seller, refund_provider, partial_refund or no_refund
    - **partial_refund_percentage**: required for partial_refund (0 < p < 100)
    - **resolution**: optional note

    Refunds are applied atomically with the status change. Repeating the
    same resolution returns the stored outcome.
    """
    result = await resolver.resolve(
        dispute_id,
        request.resolution_type,
        resolver_id=reviewer.id,
        percentage=request.partial_refund_percentage,
        resolution=request.resolution,
        allow_override=UserRole(reviewer.role) == UserRole.ADMIN,
    )
    dispute = result.dispute

    # Committed at this point; safe to queue the audit record
    if not result.replayed:
        audit_log_dispute_resolution.delay(
            dispute_id=str(dispute.id),
            data={
                "purchase_id": str(dispute.purchase_id),
                "resolution_type": dispute.resolution_type.value,
                "refund_amount": str(result.refund_amount),
                "resolver_id": str(dispute.resolver_id),
                "resolved_at": dispute.resolved_at.isoformat() if dispute.resolved_at else None,
            },
        )

    return ResolutionResponse(
        purchase=PurchaseRead.model_validate(result.purchase),
        dispute=DisputeRead.model_validate(dispute),
        refund_amount=result.refund_amount,
        replayed=result.replayed,
    )


@router.post("/{dispute_id}/messages", response_model=DisputeMessageRead, status_code=201)
async def add_dispute_message(
    dispute_id: uuid.UUID,
    request: DisputeMessageCreate,
    current_user: CurrentUser,
    resolver: Resolver,
) -> DisputeMessageRead:
    """
    Post to the dispute thread.

    - **body**: 5 to 5000 characters
    - **attachments**: up to 10 http(s) URLs
    - **is_internal**: note visible only to the reviewing conciliator and admins

    Closed disputes answer 409; non-participants answer 403.
    """
    message = await resolver.add_message(
        dispute_id,
        current_user.id,
        request.body,
        attachments=request.attachments,
        is_internal=request.is_internal,
    )
    return DisputeMessageRead.model_validate(message)


@router.get("/{dispute_id}/messages", response_model=list[DisputeMessageRead])
async def list_dispute_messages(
    dispute_id: uuid.UUID,
    current_user: CurrentUser,
    resolver: Resolver,
) -> list[DisputeMessageRead]:
    messages = await resolver.list_messages(dispute_id, current_user.id)
    return [DisputeMessageRead.model_validate(message) for message in messages]
