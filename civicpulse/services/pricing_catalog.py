"""
CivicPulse - Pricing Catalog

Read-only snapshot of plans, add-ons and per-plan add-on access, loaded
once per request (or built directly from value objects in tests) and
passed to the proration calculator and the order/invoice builders.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing_enums import BillingInterval
from civicpulse.models.catalog import Addon, Plan, PlanAddonAccess
from civicpulse.utils.error_handling import AddonNotAvailableException, NotFoundException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanPrice:
    id: UUID
    code: str
    name: str
    monthly_price: Decimal
    yearly_price: Decimal
    max_admins: int = 1
    associations_included: int = 0
    communes_included: int = 1
    is_active: bool = True

    def price_for(self, interval: BillingInterval) -> Decimal:
        if interval == BillingInterval.YEARLY:
            return self.yearly_price
        return self.monthly_price


@dataclass(frozen=True)
class AddonPrice:
    id: UUID
    code: str
    name: str
    default_monthly_price: Decimal
    default_yearly_price: Decimal
    is_active: bool = True


@dataclass(frozen=True)
class AddonAccess:
    plan_id: UUID
    addon_id: UUID
    is_enabled: bool = True
    monthly_price: Optional[Decimal] = None
    yearly_price: Optional[Decimal] = None


class PricingCatalog:
    """Immutable lookup of plan and add-on prices."""

    def __init__(
        self,
        plans: Iterable[PlanPrice],
        addons: Iterable[AddonPrice],
        access: Iterable[AddonAccess] = (),
    ):
        self._plans = MappingProxyType({p.id: p for p in plans})
        self._addons = MappingProxyType({a.id: a for a in addons})
        self._addons_by_code = MappingProxyType({a.code: a for a in self._addons.values()})
        self._access = MappingProxyType(
            {(a.plan_id, a.addon_id): a for a in access}
        )

    @classmethod
    async def load(cls, db: AsyncSession) -> "PricingCatalog":
        """Read the whole catalog once."""
        plans = (await db.execute(select(Plan))).scalars().all()
        addons = (await db.execute(select(Addon))).scalars().all()
        access = (await db.execute(select(PlanAddonAccess))).scalars().all()

        catalog = cls(
            plans=[
                PlanPrice(
                    id=p.id,
                    code=p.code,
                    name=p.name,
                    monthly_price=Decimal(p.monthly_price),
                    yearly_price=Decimal(p.yearly_price),
                    max_admins=p.max_admins,
                    associations_included=p.associations_included,
                    communes_included=p.communes_included,
                    is_active=p.is_active,
                )
                for p in plans
            ],
            addons=[
                AddonPrice(
                    id=a.id,
                    code=a.code,
                    name=a.name,
                    default_monthly_price=Decimal(a.default_monthly_price),
                    default_yearly_price=Decimal(a.default_yearly_price),
                    is_active=a.is_active,
                )
                for a in addons
            ],
            access=[
                AddonAccess(
                    plan_id=r.plan_id,
                    addon_id=r.addon_id,
                    is_enabled=r.is_enabled,
                    monthly_price=Decimal(r.monthly_price) if r.monthly_price is not None else None,
                    yearly_price=Decimal(r.yearly_price) if r.yearly_price is not None else None,
                )
                for r in access
            ],
        )
        logger.debug(f"Pricing catalog loaded: {len(plans)} plans, {len(addons)} add-ons")
        return catalog

    # ===========================================
    # LOOKUPS
    # ===========================================

    def get_plan(self, plan_id: UUID) -> PlanPrice:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise NotFoundException("Plan", plan_id)
        return plan

    def get_addon(self, addon_id: UUID) -> AddonPrice:
        addon = self._addons.get(addon_id)
        if addon is None:
            raise NotFoundException("Addon", addon_id)
        return addon

    def get_addon_by_code(self, code: str) -> AddonPrice:
        addon = self._addons_by_code.get(code)
        if addon is None:
            raise NotFoundException("Addon", message=f"Addon with code '{code}' not found")
        return addon

    @property
    def addons(self) -> List[AddonPrice]:
        return list(self._addons.values())

    # ===========================================
    # PRICES
    # ===========================================

    def plan_price(self, plan_id: UUID, interval: BillingInterval) -> Decimal:
        return self.get_plan(plan_id).price_for(interval)

    def is_addon_available(self, plan_id: UUID, addon_id: UUID) -> bool:
        """An add-on is available unless it is inactive or its access row is disabled."""
        addon = self.get_addon(addon_id)
        access = self._access.get((plan_id, addon_id))
        if not addon.is_active:
            return False
        return access is None or access.is_enabled

    def addon_unit_price(self, plan_id: UUID, addon_id: UUID, interval: BillingInterval) -> Decimal:
        """
        Unit price of an add-on for tenants of a plan.

        A plan-level override wins over the add-on default.
        """
        plan = self.get_plan(plan_id)
        addon = self.get_addon(addon_id)
        if not self.is_addon_available(plan_id, addon_id):
            raise AddonNotAvailableException(addon.code, plan.code)

        access = self._access.get((plan_id, addon_id))
        if interval == BillingInterval.YEARLY:
            override = access.yearly_price if access else None
            return override if override is not None else addon.default_yearly_price
        override = access.monthly_price if access else None
        return override if override is not None else addon.default_monthly_price

    def available_addons(self, plan_id: UUID) -> List[AddonPrice]:
        self.get_plan(plan_id)
        return [a for a in self._addons.values() if self.is_addon_available(plan_id, a.id)]
