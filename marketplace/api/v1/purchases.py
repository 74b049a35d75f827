"""Purchase API endpoints."""

import uuid
from typing import Annotated

from fastapi import APIRouter, Header, Query

from marketplace.api.deps import AppSettings, CurrentUser, Orchestrator
from marketplace.db.unit_of_work import retry_transient
from marketplace.schemas.purchase import (
    PurchaseListResponse,
    PurchaseRead,
    PurchaseRequest,
    PurchaseResponse,
)
from marketplace.worker import audit_log_purchase

router = APIRouter(prefix="/purchases", tags=["purchases"])


@router.post("", response_model=PurchaseResponse, status_code=201)
async def create_purchase(
    request: PurchaseRequest,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    settings: AppSettings,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key", max_length=200)] = None,
) -> PurchaseResponse:
    """
    Buy one unit of a product variant with the caller's wallet balance.

    - **variant_id**: UUID of the product variant

    Send the same `Idempotency-Key` header when retrying: the original
    purchase is returned instead of charging twice.

    Errors: 402 insufficient funds, 404 unknown or inactive product
    (`ProductNotFoundError`) or a buyer, provider or platform without a
    wallet (`NotFoundError`), 409 out of stock or reused key, 423 wallet not
    active, 503 transient storage failure. The envelope's `error.type`
    distinguishes the two 404 cases.
    """
    result = await retry_transient(
        lambda: orchestrator.purchase(current_user.id, request.variant_id, idempotency_key),
        attempts=settings.TRANSIENT_RETRY_ATTEMPTS,
    )
    purchase = result.purchase

    # Committed at this point; safe to queue the audit record
    if not result.replayed:
        audit_log_purchase.delay(
            purchase_id=str(purchase.id),
            data={
                "buyer_id": str(purchase.buyer_id),
                "variant_id": str(purchase.variant_id),
                "amount": str(purchase.amount),
                "provider_earnings": str(purchase.provider_earnings),
                "platform_commission": str(purchase.platform_commission),
                "affiliate_commission": str(purchase.affiliate_commission),
                "unit_kind": purchase.unit_kind.value if purchase.unit_kind else None,
                "completed_at": purchase.completed_at.isoformat() if purchase.completed_at else None,
            },
        )

    return PurchaseResponse(
        purchase_id=purchase.id,
        status=purchase.status,
        amount=purchase.amount,
        new_balance=result.buyer_balance,
        replayed=result.replayed,
    )


@router.get("", response_model=PurchaseListResponse)
async def list_my_purchases(
    current_user: CurrentUser,
    orchestrator: Orchestrator,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> PurchaseListResponse:
    """The caller's purchases, newest first. Failed attempts are listed but
    not counted in `total_spent`."""
    page = await orchestrator.list_purchases(current_user.id, limit=limit, offset=offset)
    return PurchaseListResponse(
        items=[PurchaseRead.model_validate(purchase) for purchase in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
        has_more=page.has_more,
        total_spent=page.total_spent,
    )


@router.get("/{purchase_id}", response_model=PurchaseRead)
async def get_my_purchase(
    purchase_id: uuid.UUID,
    current_user: CurrentUser,
    orchestrator: Orchestrator,
) -> PurchaseRead:
    """
    One of the caller's purchases.

    The delivered unit is referenced by kind only; credentials are not part
    of the response. 404 if the purchase does not exist, 403 if it belongs
    to another buyer.
    """
    purchase = await orchestrator.get_purchase(purchase_id, current_user.id)
    return PurchaseRead.model_validate(purchase)
