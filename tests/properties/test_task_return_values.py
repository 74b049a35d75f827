"""Property-based tests for audit task return values."""

import json
from decimal import Decimal

from hypothesis import given, settings, strategies as st

from marketplace.worker import audit_log_dispute_resolution, audit_log_purchase

# Strategy for decimal amounts as strings
amount_strategy = st.decimals(
    min_value=Decimal("0.0000"),
    max_value=Decimal("999999.9999"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
).map(str)

timestamp_strategy = st.datetimes().map(lambda dt: dt.isoformat())

purchase_data_strategy = st.fixed_dictionaries({
    "buyer_id": st.uuids().map(str),
    "variant_id": st.uuids().map(str),
    "amount": amount_strategy,
    "provider_earnings": amount_strategy,
    "platform_commission": amount_strategy,
    "affiliate_commission": amount_strategy,
    "unit_kind": st.sampled_from(["account", "slot", "license"]),
    "completed_at": timestamp_strategy,
})

resolution_data_strategy = st.fixed_dictionaries({
    "purchase_id": st.uuids().map(str),
    "resolution_type": st.sampled_from(["refund_seller", "refund_provider", "partial_refund", "no_refund"]),
    "refund_amount": amount_strategy,
    "resolver_id": st.uuids().map(str),
    "resolved_at": timestamp_strategy,
})


@settings(max_examples=100, deadline=None)
@given(purchase_id=st.uuids().map(str), data=purchase_data_strategy)
def test_purchase_audit_returns_serializable_success(purchase_id: str, data: dict) -> None:
    """
    *For any* purchase audit payload, the task SHALL return a JSON-serializable
    dictionary with a success indicator and the purchase id.
    """
    result = audit_log_purchase.run(purchase_id=purchase_id, data=data)

    assert result["success"] is True
    assert result["purchase_id"] == purchase_id
    assert isinstance(result["message"], str) and result["message"]
    json.dumps(result)


@settings(max_examples=100, deadline=None)
@given(dispute_id=st.uuids().map(str), data=resolution_data_strategy)
def test_resolution_audit_returns_serializable_success(dispute_id: str, data: dict) -> None:
    """
    *For any* resolution audit payload, the task SHALL return a
    JSON-serializable dictionary with a success indicator and the dispute id.
    """
    result = audit_log_dispute_resolution.run(dispute_id=dispute_id, data=data)

    assert result["success"] is True
    assert result["dispute_id"] == dispute_id
    json.dumps(result)
