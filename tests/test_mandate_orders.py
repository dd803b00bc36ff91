"""
Tests for the mandate order lifecycle.

Covers:
- Order creation from the catalog, from a tenant's live entitlements, and as a lead
- Tenant linking and document upload
- Client validation, operator validation (Scenario C), parking and rejection
- Soft delete and the activity trail
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from civicpulse.models import (
    ActorType,
    BillingStatus,
    MandateActivityType,
    MandateDocumentType,
    MandateOrderSource,
    MandateOrderStatus,
    MandateSubscriptionStatus,
)
from civicpulse.schemas.snapshot import AddonsSnapshot
from civicpulse.services.mandate_order_service import MandateOrderService, OrderClient
from civicpulse.services.mandate_state_machine import Actor
from civicpulse.utils.error_handling import (
    InvalidStateException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)


OPERATOR = Actor(id="operateur@civicpulse.fr", type=ActorType.SUPERADMIN)


@pytest.fixture
async def discounted_admin(catalog, addon_override):
    """ADMIN seats at 50/year on the STANDARD plan."""
    await addon_override(catalog["standard"], catalog["admin"], yearly_price=Decimal("50.00"))
    return catalog["admin"]


async def _activity_types(service, order_id):
    return [a.activity_type for a in await service.list_activities(order_id)]


class TestCreateOrder:

    async def test_order_amounts_and_snapshot(self, db_session, catalog, tenant, discounted_admin, today):
        service = MandateOrderService(db_session)

        order = await service.create_order(
            plan_id=catalog["standard"].id,
            addon_quantities={discounted_admin.id: 2},
            actor=OPERATOR,
            tenant_id=tenant.id,
            today=today,
        )

        assert order.status == MandateOrderStatus.PENDING_VALIDATION
        assert order.order_number == "DV-2025-00001"
        assert order.source == MandateOrderSource.MANUAL
        assert order.plan_amount == Decimal("1200.00")
        assert order.addons_amount == Decimal("100.00")
        assert order.annual_amount == Decimal("1300.00")
        assert order.final_amount == Decimal("1300.00")

        snapshot = AddonsSnapshot.from_json(order.addons_snapshot)
        assert len(snapshot) == 1
        line = snapshot.lines[0]
        assert (line.code, line.quantity, line.unit_price, line.total_price) == (
            "ADMIN", 2, Decimal("50.00"), Decimal("100.00"),
        )
        assert await _activity_types(service, order.id) == [MandateActivityType.ORDER_CREATED]

    async def test_zero_quantities_are_left_out(self, db_session, catalog, tenant):
        order = await MandateOrderService(db_session).create_order(
            plan_id=catalog["standard"].id,
            addon_quantities={catalog["admin"].id: 0, catalog["mairies"].id: 1},
            tenant_id=tenant.id,
        )

        assert [line.code for line in AddonsSnapshot.from_json(order.addons_snapshot)] == ["MAIRIES"]
        assert order.addons_amount == Decimal("240.00")

    async def test_discount(self, db_session, catalog, tenant):
        order = await MandateOrderService(db_session).create_order(
            plan_id=catalog["standard"].id,
            tenant_id=tenant.id,
            discount_amount=Decimal("200"),
        )
        assert order.annual_amount == Decimal("1200.00")
        assert order.final_amount == Decimal("1000.00")

    @pytest.mark.parametrize("discount", [Decimal("-1"), Decimal("1200.01")])
    async def test_discount_out_of_range(self, db_session, catalog, tenant, discount):
        with pytest.raises(ValidationException):
            await MandateOrderService(db_session).create_order(
                plan_id=catalog["standard"].id,
                tenant_id=tenant.id,
                discount_amount=discount,
            )

    async def test_numbers_are_sequential(self, db_session, catalog, tenant, today):
        service = MandateOrderService(db_session)
        first = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id, today=today)
        second = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id, today=today)
        assert (first.order_number, second.order_number) == ("DV-2025-00001", "DV-2025-00002")

    async def test_unknown_tenant(self, db_session, catalog):
        with pytest.raises(NotFoundException):
            await MandateOrderService(db_session).create_order(plan_id=catalog["standard"].id, tenant_id=uuid4())

    async def test_from_tenant_uses_live_entitlements(self, db_session, catalog, tenant, set_addon_quantity):
        await set_addon_quantity(tenant, catalog["admin"], 2)

        order = await MandateOrderService(db_session).create_order_for_tenant(tenant.id)

        assert order.source == MandateOrderSource.SIGNUP
        assert order.plan_id == catalog["standard"].id
        assert order.addons_amount == Decimal("200.00")
        assert order.final_amount == Decimal("1400.00")
        assert order.client_name == tenant.name
        assert order.client_siret == tenant.siret
        assert order.accounting_contact_email == "compta@saint-andre.fr"

    async def test_from_tenant_without_plan(self, db_session, make_tenant):
        tenant = await make_tenant(with_plan=False)
        with pytest.raises(PreconditionFailedException):
            await MandateOrderService(db_session).create_order_for_tenant(tenant.id)


class TestLeadOrders:

    async def test_order_without_tenant_is_a_lead(self, db_session, catalog):
        order = await MandateOrderService(db_session).create_order(
            plan_id=catalog["standard"].id,
            client=OrderClient(name="Communaute de communes du Val", siret="20004567800019"),
        )
        assert order.tenant_id is None
        assert order.source == MandateOrderSource.LEAD
        assert order.client_name == "Communaute de communes du Val"

    async def test_link_tenant(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id)

        linked = await service.link_tenant(order.id, tenant.id, OPERATOR)

        assert linked.tenant_id == tenant.id
        assert MandateActivityType.TENANT_LINKED in await _activity_types(service, order.id)

    async def test_relinking_same_tenant_is_a_no_op(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id)
        await service.link_tenant(order.id, tenant.id)
        await service.link_tenant(order.id, tenant.id)

        types = await _activity_types(service, order.id)
        assert types.count(MandateActivityType.TENANT_LINKED) == 1

    async def test_link_is_permanent(self, db_session, catalog, make_tenant):
        first = await make_tenant(name="Mairie A")
        second = await make_tenant(name="Mairie B")
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=first.id)

        with pytest.raises(PreconditionFailedException):
            await service.link_tenant(order.id, second.id)

    async def test_lead_cannot_be_accepted(self, db_session, catalog):
        service = MandateOrderService(db_session)
        order_id = (await service.create_order(plan_id=catalog["standard"].id)).id

        with pytest.raises(PreconditionFailedException):
            await service.validate_order(order_id, has_purchase_order=True)

        order = await service.get_order(order_id)
        await db_session.refresh(order)
        assert order.status == MandateOrderStatus.PENDING_VALIDATION
        assert order.commande_number is None


class TestDocumentsAndClientValidation:

    async def test_attach_purchase_order(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)

        document = await service.attach_document(
            order.id, "bon-de-commande.pdf", "s3://civicpulse/bc/123.pdf", reference="BC-MAIRIE-2025-17",
        )

        assert document.document_type == MandateDocumentType.PURCHASE_ORDER
        assert order.purchase_order_number == "BC-MAIRIE-2025-17"
        assert [d.id for d in await service.list_documents(order.id)] == [document.id]
        assert MandateActivityType.BC_UPLOADED in await _activity_types(service, order.id)

    async def test_blank_file_name_rejected(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        with pytest.raises(ValidationException):
            await service.attach_document(order.id, "  ", "s3://x")

    async def test_client_validation_requires_a_document(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order_id = (await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)).id

        with pytest.raises(PreconditionFailedException):
            await service.client_validate(order_id)

        await service.attach_document(order_id, "bc.pdf", "s3://civicpulse/bc.pdf")
        order = await service.client_validate(order_id, Actor(id="maire@saint-andre.fr", type=ActorType.CLIENT))

        assert order.status == MandateOrderStatus.PENDING_BC
        assert order.client_validated_at is not None

    async def test_client_validation_only_from_pending_validation(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        await service.validate_order(order.id, has_purchase_order=False)

        with pytest.raises(InvalidStateException):
            await service.client_validate(order.id)


class TestOperatorValidation:

    async def test_accept_with_purchase_order(self, db_session, catalog, tenant, discounted_admin, today):
        """Scenario C."""
        service = MandateOrderService(db_session)
        order = await service.create_order(
            plan_id=catalog["standard"].id,
            addon_quantities={discounted_admin.id: 2},
            tenant_id=tenant.id,
            today=today,
        )
        assert order.final_amount == Decimal("1300.00")

        result = await service.validate_order(
            order.id, has_purchase_order=True, actor=OPERATOR,
            purchase_order_number="BC-17", today=today,
        )

        assert result.order.status == MandateOrderStatus.ACCEPTED
        assert result.order.commande_number == "BC-2025-00001"
        assert result.order.purchase_order_number == "BC-17"
        assert result.order.validated_by == OPERATOR.id
        assert result.order.validated_at is not None

        subscription = result.subscription
        assert subscription.status == MandateSubscriptionStatus.ACTIVE
        assert subscription.start_date == today
        assert subscription.end_date == today + timedelta(days=365)
        assert subscription.order_id == order.id
        assert tenant.billing_status == BillingStatus.ACTIVE
        # The plan assignment is untouched
        assert tenant.subscription_plan_id == catalog["standard"].id

        types = await _activity_types(service, order.id)
        assert MandateActivityType.BC_VALIDATED in types
        assert MandateActivityType.SUBSCRIPTION_ACTIVATED in types

    async def test_park_without_purchase_order(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)

        first = await service.validate_order(order.id, has_purchase_order=False)
        second = await service.validate_order(order.id, has_purchase_order=False)

        assert first.subscription is None
        assert second.order.status == MandateOrderStatus.PENDING_BC
        assert tenant.billing_status == BillingStatus.TRIAL

    async def test_accept_from_pending_bc(self, db_session, catalog, tenant, today):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        await service.validate_order(order.id, has_purchase_order=False)

        result = await service.validate_order(order.id, has_purchase_order=True, today=today)

        assert result.order.status == MandateOrderStatus.ACCEPTED
        assert result.subscription is not None

    async def test_accepted_order_cannot_be_validated_again(self, db_session, catalog, tenant, today):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        await service.validate_order(order.id, has_purchase_order=True, today=today)

        with pytest.raises(InvalidStateException):
            await service.validate_order(order.id, has_purchase_order=True, today=today)

    async def test_new_acceptance_supersedes_active_subscription(self, db_session, catalog, tenant, today):
        service = MandateOrderService(db_session)
        first = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        second = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)

        old = (await service.validate_order(first.id, has_purchase_order=True, today=today)).subscription
        new = (await service.validate_order(second.id, has_purchase_order=True, today=today + timedelta(days=300))).subscription

        assert old.status == MandateSubscriptionStatus.CANCELLED
        assert new.status == MandateSubscriptionStatus.ACTIVE


class TestRejectAndDelete:

    async def test_reject(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)

        rejected = await service.reject_order(order.id, "Budget non vote", OPERATOR)

        assert rejected.status == MandateOrderStatus.REJECTED
        assert rejected.rejection_reason == "Budget non vote"
        assert rejected.rejected_at is not None

    async def test_reject_requires_reason(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        with pytest.raises(ValidationException):
            await service.reject_order(order.id, "")

    async def test_rejected_order_is_terminal(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        order_id = order.id
        await service.reject_order(order_id, "Doublon")

        with pytest.raises(InvalidStateException):
            await service.validate_order(order_id, has_purchase_order=True)
        with pytest.raises(PreconditionFailedException):
            await service.attach_document(order_id, "bc.pdf", "s3://bc.pdf")

    async def test_soft_delete_hides_the_order(self, db_session, catalog, tenant):
        service = MandateOrderService(db_session)
        order = await service.create_order(plan_id=catalog["standard"].id, tenant_id=tenant.id)
        actor_id = str(uuid4())

        deleted = await service.soft_delete_order(order.id, Actor(id=actor_id, type=ActorType.SUPERADMIN))

        assert deleted.is_deleted is True
        assert str(deleted.deleted_by) == actor_id
        with pytest.raises(NotFoundException):
            await service.get_order(order.id)
        assert MandateActivityType.ORDER_DELETED in await _activity_types(service, order.id)
