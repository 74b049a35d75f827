"""Unit tests for commission split and refund leg arithmetic."""

from decimal import Decimal

import pytest

from marketplace.core.exceptions import ValidationError
from marketplace.services.commission import (
    CommissionSplit,
    compute_refund_legs,
    compute_split,
    quantize_money,
)


class TestComputeSplit:

    def test_five_percent_of_thirty(self) -> None:
        split = compute_split(Decimal("30.00"), Decimal("5.00"))

        assert split.provider_earnings == Decimal("28.5000")
        assert split.platform_commission == Decimal("1.5000")
        assert split.affiliate_commission == Decimal("0.0000")
        assert split.total_commission == Decimal("1.5000")

    def test_affiliate_is_paid_from_platform_share(self) -> None:
        split = compute_split(Decimal("30.00"), Decimal("5.00"), Decimal("1.00"))

        assert split.provider_earnings == Decimal("28.5000")
        assert split.platform_commission == Decimal("1.2000")
        assert split.affiliate_commission == Decimal("0.3000")

    def test_affiliate_is_capped_at_commission(self) -> None:
        split = compute_split(Decimal("10.00"), Decimal("2.00"), Decimal("50.00"))

        assert split.affiliate_commission == Decimal("0.2000")
        assert split.platform_commission == Decimal("0.0000")
        assert split.provider_earnings == Decimal("9.8000")

    def test_rounding_is_half_up_at_four_places(self) -> None:
        # 0.0005 * 5% = 0.000025 -> 0.0000; 0.0010 * 5% = 0.00005 -> 0.0001
        assert compute_split(Decimal("0.0005"), Decimal("5")).platform_commission == Decimal("0.0000")
        assert compute_split(Decimal("0.0010"), Decimal("5")).platform_commission == Decimal("0.0001")
        assert quantize_money(Decimal("1.23445")) == Decimal("1.2345")

    def test_zero_commission_pays_provider_everything(self) -> None:
        split = compute_split(Decimal("19.99"), Decimal("0"))

        assert split.provider_earnings == Decimal("19.9900")
        assert split.total_commission == Decimal("0")

    @pytest.mark.parametrize("price", [Decimal("0"), Decimal("-1"), Decimal("0.00001")])
    def test_non_positive_price_is_rejected(self, price: Decimal) -> None:
        with pytest.raises(ValidationError):
            compute_split(price, Decimal("5"))

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("100.01")])
    def test_out_of_range_rate_is_rejected(self, rate: Decimal) -> None:
        with pytest.raises(ValidationError):
            compute_split(Decimal("10"), rate)
        with pytest.raises(ValidationError):
            compute_split(Decimal("10"), Decimal("5"), rate)


class TestRefundLegs:

    SPLIT = CommissionSplit(
        price=Decimal("100.0000"),
        provider_earnings=Decimal("95.0000"),
        platform_commission=Decimal("4.0000"),
        affiliate_commission=Decimal("1.0000"),
    )

    def test_full_refund_reverses_original_amounts(self) -> None:
        legs = compute_refund_legs(self.SPLIT, Decimal("100"))

        assert legs.buyer_credit == Decimal("100.0000")
        assert legs.provider_debit == Decimal("95.0000")
        assert legs.platform_debit == Decimal("4.0000")
        assert legs.affiliate_debit == Decimal("1.0000")

    def test_half_refund_is_proportional(self) -> None:
        legs = compute_refund_legs(self.SPLIT, Decimal("50"))

        assert legs.buyer_credit == Decimal("50.0000")
        assert legs.provider_debit == Decimal("47.5000")
        assert legs.platform_debit == Decimal("2.0000")
        assert legs.affiliate_debit == Decimal("0.5000")

    def test_platform_leg_absorbs_rounding(self) -> None:
        split = compute_split(Decimal("33.33"), Decimal("7.5"), Decimal("2.5"))

        legs = compute_refund_legs(split, Decimal("33.33"))

        assert legs.provider_debit + legs.platform_debit + legs.affiliate_debit == legs.buyer_credit
        assert legs.platform_debit >= 0

    def test_zero_platform_share_never_goes_negative(self) -> None:
        split = compute_split(Decimal("0.0003"), Decimal("0"))

        legs = compute_refund_legs(split, Decimal("50"))

        assert legs.platform_debit == Decimal("0")
        assert legs.provider_debit == legs.buyer_credit

    def test_platform_is_never_charged_more_than_it_received(self) -> None:
        # Affiliate capped at the whole commission: platform received nothing
        split = compute_split(Decimal("0.0006"), Decimal("50"), Decimal("50"))
        assert split.platform_commission == Decimal("0")

        legs = compute_refund_legs(split, Decimal("75"))

        assert legs.buyer_credit == Decimal("0.0005")
        assert legs.platform_debit == Decimal("0")
        assert legs.provider_debit + legs.affiliate_debit == Decimal("0.0005")
        assert legs.provider_debit <= split.provider_earnings
        assert legs.affiliate_debit <= split.affiliate_commission

    @pytest.mark.parametrize("percentage", [Decimal("0"), Decimal("-5"), Decimal("100.01")])
    def test_percentage_out_of_range(self, percentage: Decimal) -> None:
        with pytest.raises(ValidationError):
            compute_refund_legs(self.SPLIT, percentage)
