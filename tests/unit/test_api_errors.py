"""HTTP-level tests for authentication, role checks and the error envelope."""

import uuid
from collections.abc import Generator
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from marketplace.api.deps import (
    get_current_user,
    get_dispute_resolver,
    get_purchase_orchestrator,
    get_session_maker,
)
from marketplace.core.exceptions import (
    ConflictError,
    DuplicateIdempotencyKeyError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidDisputeTransitionError,
    NotFoundError,
    OutOfStockError,
    ProductNotFoundError,
    TransientStorageError,
    WalletNotActiveError,
)
from marketplace.main import app
from marketplace.models import DisputeMessage, Purchase, PurchaseStatus, UnitKind, User, UserRole
from marketplace.services.dispute_service import DisputeResolver
from marketplace.services.purchase_service import PurchaseOrchestrator, PurchasePage

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


@dataclass
class Harness:
    client: TestClient
    user: User
    orchestrator: AsyncMock
    resolver: AsyncMock


@pytest.fixture
def harness() -> Generator[Harness, None, None]:
    user = User(
        id=uuid.uuid4(),
        email="buyer@example.com",
        full_name="Buyer",
        role=UserRole.SELLER,
        is_active=True,
    )
    orchestrator = AsyncMock(spec=PurchaseOrchestrator)
    resolver = AsyncMock(spec=DisputeResolver)

    app.dependency_overrides[get_current_user] = lambda: user
    app.dependency_overrides[get_purchase_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_dispute_resolver] = lambda: resolver
    with patch("marketplace.api.v1.purchases.audit_log_purchase"), patch(
        "marketplace.api.v1.disputes.audit_log_dispute_resolution"
    ), patch("marketplace.db.unit_of_work.asyncio.sleep", new=AsyncMock()):
        yield Harness(TestClient(app), user, orchestrator, resolver)
    app.dependency_overrides.clear()


class TestPurchaseErrors:

    @pytest.mark.parametrize(
        "error, status_code",
        [
            (InsufficientFundsError(str(uuid.uuid4()), Decimal("30"), Decimal("1")), 402),
            (ProductNotFoundError(str(uuid.uuid4())), 404),
            (OutOfStockError(str(uuid.uuid4())), 409),
            (DuplicateIdempotencyKeyError("abc", "already used for variant x"), 409),
            (WalletNotActiveError(str(uuid.uuid4()), "frozen"), 423),
            (TransientStorageError("Storage temporarily unavailable"), 503),
        ],
    )
    def test_business_errors_use_envelope(self, harness: Harness, error, status_code: int) -> None:
        harness.orchestrator.purchase.side_effect = error

        response = harness.client.post(
            "/api/v1/purchases",
            json={"variant_id": str(uuid.uuid4())},
            headers={"Idempotency-Key": "abc"},
        )

        assert response.status_code == status_code
        body = response.json()
        assert body["error"]["type"] == type(error).__name__
        assert body["error"]["status_code"] == status_code
        assert body["error"]["message"] == error.message

    def test_missing_wallet_and_missing_product_are_told_apart(self, harness: Harness) -> None:
        harness.orchestrator.purchase.side_effect = NotFoundError("Wallet for user", str(harness.user.id))
        missing_wallet = harness.client.post("/api/v1/purchases", json={"variant_id": str(uuid.uuid4())})

        harness.orchestrator.purchase.side_effect = ProductNotFoundError(str(uuid.uuid4()))
        missing_product = harness.client.post("/api/v1/purchases", json={"variant_id": str(uuid.uuid4())})

        assert missing_wallet.status_code == missing_product.status_code == 404
        assert missing_wallet.json()["error"]["type"] == "NotFoundError"
        assert missing_wallet.json()["error"]["message"].startswith("Wallet for user")
        assert missing_product.json()["error"]["type"] == "ProductNotFoundError"

    def test_malformed_body_is_rejected_before_service(self, harness: Harness) -> None:
        response = harness.client.post("/api/v1/purchases", json={"variant_id": "not-a-uuid"})

        assert response.status_code == 422
        harness.orchestrator.purchase.assert_not_called()


class TestAuthentication:

    def test_missing_user_header_is_unauthorized(self) -> None:
        app.dependency_overrides[get_session_maker] = lambda: MagicMock()
        try:
            response = TestClient(app).post(
                "/api/v1/purchases", json={"variant_id": str(uuid.uuid4())}
            )
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert response.json()["error"]["type"] == "AuthenticationError"


class TestReviewerRoutes:

    def test_seller_cannot_resolve(self, harness: Harness) -> None:
        response = harness.client.put(
            f"/api/v1/disputes/{uuid.uuid4()}/resolve",
            json={"resolution_type": "no_refund"},
        )

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "ForbiddenError"
        harness.resolver.resolve.assert_not_called()

    def test_partial_refund_requires_percentage(self, harness: Harness) -> None:
        harness.user.role = UserRole.CONCILIATOR

        response = harness.client.put(
            f"/api/v1/disputes/{uuid.uuid4()}/resolve",
            json={"resolution_type": "partial_refund"},
        )

        assert response.status_code == 422
        harness.resolver.resolve.assert_not_called()

    def test_invalid_transition_is_bad_request(self, harness: Harness) -> None:
        harness.user.role = UserRole.CONCILIATOR
        dispute_id = uuid.uuid4()
        harness.resolver.resolve.side_effect = InvalidDisputeTransitionError(
            str(dispute_id), "open", "resolved"
        )

        response = harness.client.put(
            f"/api/v1/disputes/{dispute_id}/resolve",
            json={"resolution_type": "no_refund"},
        )

        assert response.status_code == 400
        assert "cannot move from open to resolved" in response.json()["error"]["message"]


def stored_purchase(buyer_id: uuid.UUID) -> Purchase:
    return Purchase(
        id=uuid.uuid4(),
        buyer_id=buyer_id,
        provider_id=uuid.uuid4(),
        variant_id=uuid.uuid4(),
        amount=Decimal("30.0000"),
        currency="USD",
        status=PurchaseStatus.COMPLETED,
        commission_rate=Decimal("5.00"),
        provider_earnings=Decimal("28.5000"),
        platform_commission=Decimal("1.5000"),
        affiliate_commission=Decimal("0.0000"),
        refunded_amount=Decimal("0.0000"),
        unit_kind=UnitKind.ACCOUNT,
        assigned_account_id=uuid.uuid4(),
        created_at=NOW,
        completed_at=NOW,
    )


class TestPurchaseReads:

    def test_list_returns_page_without_unit_references(self, harness: Harness) -> None:
        purchase = stored_purchase(harness.user.id)
        harness.orchestrator.list_purchases.return_value = PurchasePage(
            items=[purchase],
            total=3,
            limit=1,
            offset=0,
            total_spent=Decimal("90.0000"),
            has_more=True,
        )

        response = harness.client.get("/api/v1/purchases", params={"limit": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 3
        assert body["has_more"] is True
        assert body["total_spent"] == "90.0000"
        assert body["items"][0]["id"] == str(purchase.id)
        assert body["items"][0]["unit_kind"] == "account"
        assert "assigned_account_id" not in body["items"][0]
        harness.orchestrator.list_purchases.assert_awaited_once_with(harness.user.id, limit=1, offset=0)

    def test_limit_is_bounded(self, harness: Harness) -> None:
        response = harness.client.get("/api/v1/purchases", params={"limit": 500})

        assert response.status_code == 422
        harness.orchestrator.list_purchases.assert_not_called()

    def test_someone_elses_purchase_is_forbidden(self, harness: Harness) -> None:
        harness.orchestrator.get_purchase.side_effect = ForbiddenError(
            "Purchases are only visible to their buyer"
        )

        response = harness.client.get(f"/api/v1/purchases/{uuid.uuid4()}")

        assert response.status_code == 403
        assert response.json()["error"]["type"] == "ForbiddenError"

    def test_own_purchase_is_returned(self, harness: Harness) -> None:
        purchase = stored_purchase(harness.user.id)
        harness.orchestrator.get_purchase.return_value = purchase

        response = harness.client.get(f"/api/v1/purchases/{purchase.id}")

        assert response.status_code == 200
        assert response.json()["amount"] == "30.0000"
        harness.orchestrator.get_purchase.assert_awaited_once_with(purchase.id, harness.user.id)


class TestDisputeMessageRoutes:

    def test_message_is_posted_as_caller(self, harness: Harness) -> None:
        dispute_id = uuid.uuid4()
        harness.resolver.add_message.return_value = DisputeMessage(
            id=uuid.uuid4(),
            dispute_id=dispute_id,
            sender_id=harness.user.id,
            body="Login fails every time",
            attachments=None,
            is_internal=False,
            created_at=NOW,
        )

        response = harness.client.post(
            f"/api/v1/disputes/{dispute_id}/messages",
            json={"body": "Login fails every time"},
        )

        assert response.status_code == 201
        assert response.json()["attachments"] == []
        harness.resolver.add_message.assert_awaited_once_with(
            dispute_id,
            harness.user.id,
            "Login fails every time",
            attachments=[],
            is_internal=False,
        )

    def test_internal_note_from_party_is_forbidden(self, harness: Harness) -> None:
        harness.resolver.add_message.side_effect = ForbiddenError(
            "Only conciliators can post internal notes"
        )

        response = harness.client.post(
            f"/api/v1/disputes/{uuid.uuid4()}/messages",
            json={"body": "Between us only", "is_internal": True},
        )

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Only conciliators can post internal notes"

    def test_closed_dispute_is_conflict(self, harness: Harness) -> None:
        harness.resolver.add_message.side_effect = ConflictError("Dispute is closed; no further messages")

        response = harness.client.post(
            f"/api/v1/disputes/{uuid.uuid4()}/messages",
            json={"body": "One more thing"},
        )

        assert response.status_code == 409

    def test_short_body_never_reaches_resolver(self, harness: Harness) -> None:
        response = harness.client.post(
            f"/api/v1/disputes/{uuid.uuid4()}/messages",
            json={"body": "ok"},
        )

        assert response.status_code == 422
        harness.resolver.add_message.assert_not_called()
