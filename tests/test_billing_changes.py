"""
Tests for the billing change scheduler.

Covers immediate and deferred add-on changes, plan changes, cancellation,
idempotent application, supersession and the daily due-change sweep.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from civicpulse.models import (
    BillingChangeStatus,
    BillingChangeType,
    BillingInterval,
    LedgerEntryType,
    PaymentMethod,
    TenantAddon,
)
from civicpulse.services.billing_change_service import BillingChangeService
from civicpulse.services.ledger_service import LedgerService
from civicpulse.tasks.scheduled_tasks import apply_due_billing_changes
from civicpulse.utils.error_handling import (
    InvalidQuantityException,
    InvalidStateException,
    PreconditionFailedException,
    ValidationException,
)


START = date(2025, 1, 1)
END = START + timedelta(days=360)
MID = START + timedelta(days=180)


@pytest.fixture
async def subscribed_tenant(make_tenant, make_subscription):
    """Yearly STANDARD tenant with a 360-day subscription, half used on MID."""
    tenant = await make_tenant()
    await make_subscription(tenant, START, END)
    return tenant


async def _quantity(db_session, tenant_id, addon_id) -> int:
    row = (await db_session.execute(
        select(TenantAddon)
        .where(TenantAddon.tenant_id == tenant_id)
        .where(TenantAddon.addon_id == addon_id)
    )).scalar_one_or_none()
    return row.quantity if row else 0


class TestImmediateAddonChanges:

    async def test_add_seats_debits_prorated_amount(self, db_session, catalog, subscribed_tenant):
        """Scenario A."""
        service = BillingChangeService(db_session)

        result = await service.schedule_addon_change(
            subscribed_tenant.id, catalog["admin"].id, 2, immediate=True, today=MID,
        )

        change = result.change
        assert change.status == BillingChangeStatus.APPLIED
        assert change.change_type == BillingChangeType.ADDON_CHANGE
        assert change.effective_date == MID
        assert (change.from_quantity, change.to_quantity) == (0, 2)
        assert change.prorata_debit == Decimal("100.00")
        assert change.prorata_credit == Decimal("0.00")
        assert change.days_in_period == 360
        assert change.days_remaining == 180
        assert change.payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE

        assert [e.entry_type for e in result.ledger_entries] == [LedgerEntryType.DEBIT]
        assert await LedgerService(db_session).get_balance(subscribed_tenant.id) == Decimal("-100.00")
        assert await _quantity(db_session, subscribed_tenant.id, catalog["admin"].id) == 2
        assert subscribed_tenant.purchased_admins == 2

    async def test_remove_seats_same_day_credits_full_reversal(self, db_session, catalog, subscribed_tenant):
        """Scenario B: the ledger nets back to zero."""
        service = BillingChangeService(db_session)
        await service.schedule_addon_change(subscribed_tenant.id, catalog["admin"].id, 2, immediate=True, today=MID)

        result = await service.schedule_addon_change(
            subscribed_tenant.id, catalog["admin"].id, 0, immediate=True, today=MID,
        )

        assert result.change.prorata_credit == Decimal("100.00")
        assert result.change.prorata_debit == Decimal("0.00")
        assert await LedgerService(db_session).get_balance(subscribed_tenant.id) == Decimal("0.00")
        # The row is kept at zero so it keeps shadowing the legacy column
        assert await _quantity(db_session, subscribed_tenant.id, catalog["admin"].id) == 0

    async def test_monthly_tenant_uses_calendar_month(self, db_session, catalog, make_tenant):
        tenant = await make_tenant(interval=BillingInterval.MONTHLY)

        result = await BillingChangeService(db_session).schedule_addon_change(
            tenant.id, catalog["admin"].id, 1, immediate=True, today=date(2025, 2, 10),
        )

        # 10 x 19 / 28 = 6.7857...
        assert result.change.days_in_period == 28
        assert result.change.days_remaining == 19
        assert result.change.prorata_debit == Decimal("6.79")

    async def test_stripe_tenant_is_tagged_stripe(self, db_session, catalog, make_tenant, make_subscription):
        tenant = await make_tenant(stripe_subscription_id="sub_123")
        await make_subscription(tenant, START, END)

        result = await BillingChangeService(db_session).schedule_addon_change(
            tenant.id, catalog["admin"].id, 1, immediate=True, today=MID,
        )
        assert result.change.payment_method == PaymentMethod.STRIPE


class TestAddonChangeValidation:

    async def test_negative_quantity_rejected(self, db_session, catalog, subscribed_tenant):
        with pytest.raises(InvalidQuantityException):
            await BillingChangeService(db_session).schedule_addon_change(
                subscribed_tenant.id, catalog["admin"].id, -1, today=MID,
            )

    async def test_non_integer_quantity_rejected(self, db_session, catalog, subscribed_tenant):
        with pytest.raises(InvalidQuantityException):
            await BillingChangeService(db_session).schedule_addon_change(
                subscribed_tenant.id, catalog["admin"].id, 1.5, today=MID,
            )

    async def test_same_quantity_rejected(self, db_session, catalog, make_tenant, make_subscription):
        tenant = await make_tenant(purchased_admins=2)
        await make_subscription(tenant, START, END)

        with pytest.raises(ValidationException):
            await BillingChangeService(db_session).schedule_addon_change(
                tenant.id, catalog["admin"].id, 2, today=MID,
            )

    async def test_tenant_without_plan(self, db_session, catalog, make_tenant):
        tenant = await make_tenant(with_plan=False)
        with pytest.raises(PreconditionFailedException):
            await BillingChangeService(db_session).schedule_addon_change(
                tenant.id, catalog["admin"].id, 1, today=MID,
            )

    async def test_failed_change_writes_nothing(self, db_session, catalog, make_tenant):
        tenant_id = (await make_tenant(with_plan=False)).id
        addon_id = catalog["admin"].id
        service = BillingChangeService(db_session)

        with pytest.raises(PreconditionFailedException):
            await service.schedule_addon_change(tenant_id, addon_id, 1, immediate=True, today=MID)

        assert await service.list_changes(tenant_id) == []
        assert await LedgerService(db_session).list_entries(tenant_id) == []


class TestDeferredAddonChanges:

    async def test_deferred_change_is_pending_until_applied(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        addon_id = catalog["admin"].id

        result = await service.schedule_addon_change(tenant_id, addon_id, 2, today=MID)

        change = result.change
        assert change.status == BillingChangeStatus.PENDING
        assert change.effective_date == date(2025, 7, 1)
        assert "01/07/2025" in result.message
        assert result.ledger_entries == []
        assert await LedgerService(db_session).list_entries(tenant_id) == []
        assert await _quantity(db_session, tenant_id, addon_id) == 0

        applied = await service.apply_billing_change(change.id)

        assert applied.change.status == BillingChangeStatus.APPLIED
        assert applied.change.applied_at is not None
        assert len(applied.ledger_entries) == 1
        assert await _quantity(db_session, tenant_id, addon_id) == 2

    async def test_apply_is_idempotent(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        change = (await service.schedule_addon_change(tenant_id, catalog["admin"].id, 2, today=MID)).change

        await service.apply_billing_change(change.id)
        second = await service.apply_billing_change(change.id)

        assert second.ledger_entries == []
        assert second.change.status == BillingChangeStatus.APPLIED
        assert len(await LedgerService(db_session).list_entries(tenant_id)) == 1

    async def test_cancel_pending(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        change_id = (await service.schedule_addon_change(
            subscribed_tenant.id, catalog["admin"].id, 2, today=MID,
        )).change.id

        result = await service.cancel_pending_change(change_id)

        assert result.change.status == BillingChangeStatus.CANCELLED
        assert result.change.cancelled_at is not None
        with pytest.raises(InvalidStateException):
            await service.apply_billing_change(change_id)

    async def test_applied_change_cannot_be_cancelled(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        change_id = (await service.schedule_addon_change(
            subscribed_tenant.id, catalog["admin"].id, 2, immediate=True, today=MID,
        )).change.id

        with pytest.raises(InvalidStateException):
            await service.cancel_pending_change(change_id)

        change = await service.get_change(change_id)
        await db_session.refresh(change)
        assert change.status == BillingChangeStatus.APPLIED

    async def test_newer_change_supersedes_pending(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        first = (await service.schedule_addon_change(tenant_id, catalog["admin"].id, 2, today=MID)).change
        second = (await service.schedule_addon_change(tenant_id, catalog["admin"].id, 3, today=MID)).change

        assert first.status == BillingChangeStatus.CANCELLED
        assert second.status == BillingChangeStatus.PENDING
        pending = await service.list_changes(tenant_id, BillingChangeStatus.PENDING)
        assert [c.id for c in pending] == [second.id]

    async def test_other_addon_is_not_superseded(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        admin_change = (await service.schedule_addon_change(tenant_id, catalog["admin"].id, 2, today=MID)).change
        await service.schedule_addon_change(tenant_id, catalog["mairies"].id, 1, today=MID)

        assert admin_change.status == BillingChangeStatus.PENDING


class TestPlanChanges:

    async def test_upgrade_is_deferred_and_prorated(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        premium_id = catalog["premium"].id

        result = await service.schedule_plan_change(tenant_id, premium_id, today=MID)

        change = result.change
        assert change.status == BillingChangeStatus.PENDING
        assert change.change_type == BillingChangeType.PLAN_CHANGE
        assert change.effective_date == date(2025, 7, 1)
        assert change.prorata_credit == Decimal("600.00")
        assert change.prorata_debit == Decimal("1200.00")
        assert subscribed_tenant.subscription_plan_id == catalog["standard"].id
        assert await LedgerService(db_session).list_entries(tenant_id) == []

        await service.apply_billing_change(change.id)

        assert subscribed_tenant.subscription_plan_id == premium_id
        assert await LedgerService(db_session).get_balance(tenant_id) == Decimal("-600.00")

    async def test_downgrade_credits_difference(self, db_session, catalog, make_tenant, make_subscription):
        tenant = await make_tenant(plan=catalog["premium"])
        await make_subscription(tenant, START, END)

        result = await BillingChangeService(db_session).schedule_plan_change(
            tenant.id, catalog["standard"].id, today=MID,
        )

        assert result.change.prorata_credit == Decimal("600.00")
        assert result.change.prorata_debit == Decimal("0.00")

    async def test_interval_switch_applies_next_cycle(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        change = (await service.schedule_plan_change(
            subscribed_tenant.id, catalog["premium"].id, BillingInterval.MONTHLY, today=MID,
        )).change

        assert change.from_billing_interval == BillingInterval.YEARLY
        assert change.to_billing_interval == BillingInterval.MONTHLY
        # Prorated at the current (yearly) interval
        assert change.prorata_debit == Decimal("1200.00")

        await service.apply_billing_change(change.id)
        assert subscribed_tenant.billing_interval == BillingInterval.MONTHLY

    async def test_same_plan_rejected(self, db_session, catalog, subscribed_tenant):
        with pytest.raises(ValidationException):
            await BillingChangeService(db_session).schedule_plan_change(
                subscribed_tenant.id, catalog["standard"].id, today=MID,
            )

    async def test_newer_plan_change_supersedes(self, db_session, catalog, make_tenant, make_subscription):
        tenant = await make_tenant(plan=catalog["premium"])
        await make_subscription(tenant, START, END)
        service = BillingChangeService(db_session)

        first = (await service.schedule_plan_change(tenant.id, catalog["standard"].id, today=MID)).change
        await service.schedule_plan_change(tenant.id, catalog["standard"].id, BillingInterval.MONTHLY, today=MID)

        assert first.status == BillingChangeStatus.CANCELLED


class TestDueChangesSweep:

    async def test_applies_only_due_changes(self, db_session, catalog, subscribed_tenant):
        service = BillingChangeService(db_session)
        tenant_id = subscribed_tenant.id
        await service.schedule_addon_change(tenant_id, catalog["admin"].id, 2, today=MID)

        assert await apply_due_billing_changes(db_session, today=date(2025, 6, 30)) == {"applied": 0, "failed": 0}
        assert await apply_due_billing_changes(db_session, today=date(2025, 7, 1)) == {"applied": 1, "failed": 0}
        assert await apply_due_billing_changes(db_session, today=date(2025, 7, 2)) == {"applied": 0, "failed": 0}

        assert len(await LedgerService(db_session).list_entries(tenant_id)) == 1
