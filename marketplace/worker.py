"""Background task definitions for post-commit audit records.

Tasks are queued by the API only after the unit of work has committed, so
an audit line never describes money movement that was rolled back.
"""

import logging

from celery import Task

from marketplace.core.celery_app import celery_app

audit_logger = logging.getLogger("marketplace.audit")


@celery_app.task(name="audit_log_purchase", bind=True)
def audit_log_purchase(
    self: Task,
    purchase_id: str,
    data: dict,
) -> dict:
    """
    Write a completed purchase to the audit log.

    Args:
        purchase_id: UUID of the purchase
        data: Purchase data dictionary with keys:
            - buyer_id: UUID string
            - variant_id: UUID string
            - amount: Decimal string
            - provider_earnings: Decimal string
            - platform_commission: Decimal string
            - affiliate_commission: Decimal string
            - unit_kind: account, slot or license
            - completed_at: ISO timestamp string

    Returns:
        dict: Result with success status and message
    """
    message = f"Audit log for purchase {purchase_id}: {data}"
    audit_logger.info("[task %s] %s", self.request.id, message)

    return {
        "success": True,
        "message": message,
        "task_id": self.request.id,
        "purchase_id": purchase_id,
    }


@celery_app.task(name="audit_log_dispute_resolution", bind=True)
def audit_log_dispute_resolution(
    self: Task,
    dispute_id: str,
    data: dict,
) -> dict:
    """
    Write a dispute resolution and its refund to the audit log.

    Args:
        dispute_id: UUID of the dispute
        data: Resolution data dictionary with keys:
            - purchase_id: UUID string
            - resolution_type: Resolution type value
            - refund_amount: Decimal string
            - resolver_id: UUID string
            - resolved_at: ISO timestamp string

    Returns:
        dict: Result with success status and message
    """
    message = f"Audit log for dispute {dispute_id}: {data}"
    audit_logger.info("[task %s] %s", self.request.id, message)

    return {
        "success": True,
        "message": message,
        "task_id": self.request.id,
        "dispute_id": dispute_id,
    }
