"""
CivicPulse - Proration Calculator

Computes time-prorated credits and debits for add-on quantity and plan
changes within a tenant's current billing period.

Periods are half-open [start, end):
- days_in_period = end - start
- days_remaining = end - today, floored at 0 and capped at days_in_period

amount = unit_price x days_remaining x |quantity_delta| / days_in_period,
rounded to the cent (half-up). A positive delta is a debit (units added
for the rest of the period); a negative delta is a credit (unused portion
of removed units).

Period resolution:
- YEARLY: the tenant's active MandateSubscription [start_date, end_date)
  when one exists, else the anniversary window of the tenant's creation date
- MONTHLY: the calendar month containing today
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing_enums import AddonCode, BillingInterval, MandateSubscriptionStatus
from civicpulse.models.mandate import MandateSubscription
from civicpulse.models.tenant import Tenant, TenantAddon
from civicpulse.utils.dates import anniversary_period, month_period, utc_today
from civicpulse.utils.error_handling import BillingIntegrityException

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Legacy tenant columns holding add-on quantities before tenant_addons existed
LEGACY_QUANTITY_COLUMNS = {
    AddonCode.ADMIN.value: "purchased_admins",
    AddonCode.ASSOCIATIONS.value: "purchased_associations",
    AddonCode.MAIRIES.value: "purchased_communes",
    "COMMUNES": "purchased_communes",
}


class PeriodSource:
    """Where a billing period came from."""
    SUBSCRIPTION = "subscription"
    ANNIVERSARY = "anniversary"
    CALENDAR_MONTH = "calendar_month"


@dataclass(frozen=True)
class BillingPeriod:
    start: date
    end: date
    source: str = PeriodSource.CALENDAR_MONTH

    @property
    def days(self) -> int:
        return (self.end - self.start).days


@dataclass(frozen=True)
class ProrationResult:
    credit: Decimal
    debit: Decimal
    days_in_period: int
    days_remaining: int

    @property
    def net(self) -> Decimal:
        """Amount owed by the tenant (negative when the tenant is owed)."""
        return self.debit - self.credit


# ===========================================
# PURE CALCULATIONS
# ===========================================

def _period_days(period_start: date, period_end: date, today: date) -> Tuple[int, int]:
    days_in_period = (period_end - period_start).days
    if days_in_period <= 0:
        raise BillingIntegrityException(
            f"Billing period {period_start} - {period_end} has no days",
            details={"period_start": str(period_start), "period_end": str(period_end)},
        )
    days_remaining = (period_end - today).days
    days_remaining = max(0, min(days_remaining, days_in_period))
    return days_in_period, days_remaining


def _prorated_amount(unit_price: Decimal, units: int, days_remaining: int, days_in_period: int) -> Decimal:
    try:
        price = Decimal(unit_price)
        if not price.is_finite() or price < 0:
            raise BillingIntegrityException(
                f"Unit price {unit_price} cannot be prorated",
                details={"unit_price": str(unit_price)},
            )
        amount = (price * days_remaining * units / days_in_period).quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as e:
        raise BillingIntegrityException(f"Proration of {unit_price} failed: {e}") from e

    if amount.is_nan() or amount < 0:
        raise BillingIntegrityException(f"Proration produced an invalid amount: {amount}")
    return amount


def prorate(
    unit_price: Decimal,
    period_start: date,
    period_end: date,
    today: date,
    quantity_delta: int,
) -> ProrationResult:
    """Credit/debit for a change of ``quantity_delta`` units on ``today``."""
    days_in_period, days_remaining = _period_days(period_start, period_end, today)
    amount = _prorated_amount(unit_price, abs(quantity_delta), days_remaining, days_in_period)

    credit = amount if quantity_delta < 0 else ZERO
    debit = amount if quantity_delta > 0 else ZERO
    return ProrationResult(
        credit=credit,
        debit=debit,
        days_in_period=days_in_period,
        days_remaining=days_remaining,
    )


def prorate_plan_change(
    old_price: Decimal,
    new_price: Decimal,
    period_start: date,
    period_end: date,
    today: date,
) -> ProrationResult:
    """
    Plan swap proration.

    Upgrade: credit the unused part of the old plan and debit the new plan
    for the same days (the net is the prorated difference). Downgrade: no
    debit; the credit is the prorated difference old - new.
    """
    days_in_period, days_remaining = _period_days(period_start, period_end, today)
    old_price = Decimal(old_price)
    new_price = Decimal(new_price)

    if new_price > old_price:
        credit = _prorated_amount(old_price, 1, days_remaining, days_in_period)
        debit = _prorated_amount(new_price, 1, days_remaining, days_in_period)
    else:
        credit = _prorated_amount(old_price - new_price, 1, days_remaining, days_in_period)
        debit = ZERO

    return ProrationResult(
        credit=credit,
        debit=debit,
        days_in_period=days_in_period,
        days_remaining=days_remaining,
    )


def resolve_effective_quantity(tenant: Tenant, addon_code: str, row: Optional[TenantAddon]) -> int:
    """
    Live quantity of an add-on for a tenant.

    Precedence: the explicit tenant_addons row, else the legacy
    ``purchased_*`` column mapped from the add-on code, else 0.
    """
    if row is not None:
        return row.quantity
    column = LEGACY_QUANTITY_COLUMNS.get(addon_code)
    if column is None:
        return 0
    return getattr(tenant, column) or 0


# ===========================================
# PERIOD RESOLUTION
# ===========================================

class ProrationService:
    """Resolves a tenant's billing period from the store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_active_subscription(self, tenant_id) -> Optional[MandateSubscription]:
        result = await self.db.execute(
            select(MandateSubscription)
            .where(MandateSubscription.tenant_id == tenant_id)
            .where(MandateSubscription.status == MandateSubscriptionStatus.ACTIVE)
            .order_by(MandateSubscription.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve_period(
        self,
        tenant: Tenant,
        interval: Optional[BillingInterval] = None,
        today: Optional[date] = None,
    ) -> BillingPeriod:
        today = today or utc_today()
        interval = interval or tenant.billing_interval or BillingInterval.MONTHLY

        if interval == BillingInterval.MONTHLY:
            start, end = month_period(today)
            return BillingPeriod(start, end, PeriodSource.CALENDAR_MONTH)

        subscription = await self.get_active_subscription(tenant.id)
        if subscription is not None:
            return BillingPeriod(subscription.start_date, subscription.end_date, PeriodSource.SUBSCRIPTION)

        anchor = tenant.created_at.date() if tenant.created_at else today
        start, end = anniversary_period(anchor, today)
        logger.debug(f"Tenant {tenant.id}: no active mandate subscription, using anniversary period {start} - {end}")
        return BillingPeriod(start, end, PeriodSource.ANNIVERSARY)
