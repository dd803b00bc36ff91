"""
CivicPulse - Entitlement Resolution

A tenant's live entitlements are its plan id plus one effective quantity
per add-on, resolved through ``resolve_effective_quantity``.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing_enums import BillingInterval
from civicpulse.models.tenant import Tenant, TenantAddon
from civicpulse.schemas.snapshot import AddonSnapshotLine, AddonsSnapshot
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.services.proration_service import LEGACY_QUANTITY_COLUMNS, resolve_effective_quantity


@dataclass(frozen=True)
class EffectiveAddon:
    addon_id: UUID
    code: str
    name: str
    quantity: int
    source: str  # "row", "legacy" or "none"


class EntitlementService:
    def __init__(self, db: AsyncSession, catalog: PricingCatalog):
        self.db = db
        self.catalog = catalog

    async def get_addon_rows(self, tenant_id: UUID) -> Dict[UUID, TenantAddon]:
        result = await self.db.execute(
            select(TenantAddon).where(TenantAddon.tenant_id == tenant_id)
        )
        return {row.addon_id: row for row in result.scalars().all()}

    async def effective_addons(self, tenant: Tenant) -> List[EffectiveAddon]:
        rows = await self.get_addon_rows(tenant.id)
        effective = []
        for addon in sorted(self.catalog.addons, key=lambda a: a.code):
            row = rows.get(addon.id)
            if row is not None:
                source = "row"
            elif addon.code in LEGACY_QUANTITY_COLUMNS:
                source = "legacy"
            else:
                source = "none"
            effective.append(EffectiveAddon(
                addon_id=addon.id,
                code=addon.code,
                name=addon.name,
                quantity=resolve_effective_quantity(tenant, addon.code, row),
                source=source,
            ))
        return effective

    async def live_snapshot(
        self,
        tenant: Tenant,
        plan_id: Optional[UUID] = None,
        interval: BillingInterval = BillingInterval.YEARLY,
    ) -> AddonsSnapshot:
        """
        Price the tenant's current non-zero add-on quantities.

        Add-ons no longer available on the plan are left out.
        """
        plan_id = plan_id or tenant.subscription_plan_id
        lines = []
        for item in await self.effective_addons(tenant):
            if item.quantity <= 0 or not self.catalog.is_addon_available(plan_id, item.addon_id):
                continue
            lines.append(AddonSnapshotLine.priced(
                id=item.addon_id,
                code=item.code,
                name=item.name,
                quantity=item.quantity,
                unit_price=self.catalog.addon_unit_price(plan_id, item.addon_id, interval),
            ))
        return AddonsSnapshot.of(lines)
