"""Commission split arithmetic and the versioned commission configuration.

All arithmetic is Decimal, quantized to four places (the precision of every
monetary column). Rates are percentages: ``Decimal("5.00")`` means 5%.

Purchase split:
    commission        = price * commission_rate / 100
    provider_earnings = price - commission
    affiliate         = min(price * affiliate_rate / 100, commission)
    platform          = commission - affiliate

so ``provider_earnings + platform + affiliate == price`` always holds and the
affiliate is paid out of the platform's share, never the provider's.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.core.exceptions import ValidationError
from marketplace.db.base import MONEY_QUANTUM, utcnow
from marketplace.models.commission import CommissionConfig

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")
ZERO = Decimal("0.0000")


def quantize_money(amount: Decimal) -> Decimal:
    """Round to the 4-place precision of DECIMAL(18,4) columns."""
    return Decimal(amount).quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def _validate_rate(name: str, rate: Decimal) -> Decimal:
    rate = Decimal(rate)
    if rate < 0 or rate > HUNDRED:
        raise ValidationError(f"{name} must be between 0 and 100, got {rate}")
    return rate


@dataclass(frozen=True, slots=True)
class CommissionSplit:
    """How one sale price is divided between the credited wallets."""

    price: Decimal
    provider_earnings: Decimal
    platform_commission: Decimal
    affiliate_commission: Decimal

    @property
    def total_commission(self) -> Decimal:
        return self.platform_commission + self.affiliate_commission


@dataclass(frozen=True, slots=True)
class RefundLegs:
    """Amounts returned to the buyer by each originally credited wallet."""

    buyer_credit: Decimal
    provider_debit: Decimal
    platform_debit: Decimal
    affiliate_debit: Decimal


def compute_split(
    price: Decimal,
    commission_rate: Decimal,
    affiliate_rate: Decimal | None = None,
) -> CommissionSplit:
    """Split ``price`` into provider, platform and affiliate shares."""
    price = quantize_money(price)
    if price <= 0:
        raise ValidationError("Price must be greater than zero")
    commission_rate = _validate_rate("commission_rate", commission_rate)

    commission = quantize_money(price * commission_rate / HUNDRED)
    affiliate = ZERO
    if affiliate_rate:
        affiliate_rate = _validate_rate("affiliate_rate", affiliate_rate)
        affiliate = min(quantize_money(price * affiliate_rate / HUNDRED), commission)

    return CommissionSplit(
        price=price,
        provider_earnings=price - commission,
        platform_commission=commission - affiliate,
        affiliate_commission=affiliate,
    )


def compute_refund_legs(split: CommissionSplit, percentage: Decimal) -> RefundLegs:
    """Proportional reversal of ``split`` for a refund of ``percentage`` percent.

    The provider and affiliate shares are rounded individually and the
    platform leg takes the remainder, so the legs always add up to exactly
    the buyer's credit. No leg exceeds what its wallet was credited: a
    rounding remainder the platform cannot absorb moves to the provider leg,
    then to the affiliate leg. At 100% every leg equals the original credit.
    """
    percentage = Decimal(percentage)
    if percentage <= 0 or percentage > HUNDRED:
        raise ValidationError(f"Refund percentage must be in (0, 100], got {percentage}")

    if percentage == HUNDRED:
        return RefundLegs(
            buyer_credit=split.price,
            provider_debit=split.provider_earnings,
            platform_debit=split.platform_commission,
            affiliate_debit=split.affiliate_commission,
        )

    refund = quantize_money(split.price * percentage / HUNDRED)
    provider = quantize_money(split.provider_earnings * percentage / HUNDRED)
    affiliate = quantize_money(split.affiliate_commission * percentage / HUNDRED)
    platform = refund - provider - affiliate
    if platform < 0:
        shortfall = -platform
        cut = min(shortfall, provider)
        provider -= cut
        affiliate -= shortfall - cut
        platform = ZERO
    elif platform > split.platform_commission:
        excess = platform - split.platform_commission
        extra = min(excess, split.provider_earnings - provider)
        provider += extra
        affiliate += excess - extra
        platform = split.platform_commission

    return RefundLegs(
        buyer_credit=refund,
        provider_debit=provider,
        platform_debit=platform,
        affiliate_debit=affiliate,
    )


@dataclass(frozen=True, slots=True)
class CommissionSnapshot:
    """The rates in effect at one instant, as copied onto a Purchase."""

    config_id: uuid.UUID | None
    commission_rate: Decimal
    affiliate_rate: Decimal


class CommissionConfigService:
    """Reads and versions the commission configuration table."""

    def __init__(
        self,
        session: AsyncSession,
        default_commission_rate: Decimal,
        default_affiliate_rate: Decimal = Decimal("0.00"),
    ) -> None:
        self.session = session
        self.default_commission_rate = default_commission_rate
        self.default_affiliate_rate = default_affiliate_rate

    async def snapshot(self, at: datetime | None = None) -> CommissionSnapshot:
        """Rates in effect at ``at`` (now by default).

        Falls back to the configured defaults when no version is active.
        """
        at = at or utcnow()
        result = await self.session.execute(
            select(CommissionConfig)
            .where(
                CommissionConfig.is_active.is_(True),
                CommissionConfig.effective_from <= at,
            )
            .order_by(CommissionConfig.effective_from.desc(), CommissionConfig.created_at.desc())
            .limit(1)
        )
        config = result.scalar_one_or_none()
        if config is None:
            return CommissionSnapshot(
                config_id=None,
                commission_rate=self.default_commission_rate,
                affiliate_rate=self.default_affiliate_rate,
            )
        return CommissionSnapshot(
            config_id=config.id,
            commission_rate=Decimal(config.commission_rate),
            affiliate_rate=Decimal(config.affiliate_rate),
        )

    async def publish(
        self,
        commission_rate: Decimal,
        affiliate_rate: Decimal = Decimal("0.00"),
        effective_from: datetime | None = None,
    ) -> CommissionConfig:
        """Insert a new active version.

        A version that starts now (or earlier) supersedes every version that
        started before it. A version scheduled for later leaves the current
        one active: until ``effective_from`` passes, ``snapshot`` keeps
        returning the rates already in effect.
        """
        commission_rate = _validate_rate("commission_rate", commission_rate)
        affiliate_rate = _validate_rate("affiliate_rate", affiliate_rate)
        if affiliate_rate > commission_rate:
            raise ValidationError("affiliate_rate cannot exceed commission_rate")

        now = utcnow()
        effective_from = effective_from or now
        if effective_from.tzinfo is None:
            effective_from = effective_from.replace(tzinfo=timezone.utc)
        if effective_from <= now:
            await self.session.execute(
                update(CommissionConfig)
                .where(
                    CommissionConfig.is_active.is_(True),
                    CommissionConfig.effective_from <= effective_from,
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
        config = CommissionConfig(
            commission_rate=commission_rate,
            affiliate_rate=affiliate_rate,
            is_active=True,
            effective_from=effective_from,
        )
        self.session.add(config)
        await self.session.flush()
        logger.info(
            "Published commission config %s: commission=%s%% affiliate=%s%%",
            config.id,
            commission_rate,
            affiliate_rate,
        )
        return config
