"""
CivicPulse - Mandate Order Service

Lifecycle of purchase-order-backed subscription requests:
- create (signup, quote acceptance, lead conversion, renewal, manual)
- link a tenant to a lead order
- attach purchase-order documents
- client validation, operator validation, rejection
- soft delete

Add-on pricing is frozen into ``addons_snapshot`` at creation and is never
re-priced afterwards. Status changes go through MandateStateMachine so
each one writes its activity row in the same transaction.
"""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.database import atomic
from civicpulse.models.billing_enums import (
    BillingInterval,
    DocumentType,
    MandateActivityType,
    MandateDocumentType,
    MandateOrderSource,
    MandateOrderStatus,
)
from civicpulse.models.mandate import MandateActivity, MandateDocument, MandateOrder, MandateSubscription
from civicpulse.models.tenant import Tenant
from civicpulse.schemas.snapshot import AddonSnapshotLine, AddonsSnapshot, to_money
from civicpulse.services.document_number_service import DocumentNumberService
from civicpulse.services.entitlements import EntitlementService
from civicpulse.services.mandate_state_machine import (
    SYSTEM_ACTOR,
    Actor,
    MandateStateMachine,
    OrderAction,
    next_order_status,
)
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.services.subscription_activator import SubscriptionActivator
from civicpulse.utils.dates import utcnow
from civicpulse.utils.error_handling import (
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
    require_text,
    validate_quantity,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderClient:
    """Buyer identity copied onto the order."""
    name: Optional[str] = None
    siret: Optional[str] = None
    address: Optional[str] = None
    billing_service: Optional[str] = None
    accounting_contact_name: Optional[str] = None
    accounting_contact_email: Optional[str] = None
    accounting_contact_phone: Optional[str] = None
    service_code: Optional[str] = None
    engagement_number: Optional[str] = None

    @classmethod
    def from_tenant(cls, tenant: Tenant) -> "OrderClient":
        return cls(
            name=tenant.name,
            siret=tenant.siret,
            address=tenant.billing_address,
            billing_service=tenant.billing_service,
            accounting_contact_name=tenant.accounting_contact_name,
            accounting_contact_email=tenant.accounting_contact_email or tenant.contact_email,
            accounting_contact_phone=tenant.accounting_contact_phone,
            service_code=tenant.service_code,
            engagement_number=tenant.engagement_number,
        )


@dataclass
class ValidateOrderResult:
    order: MandateOrder
    subscription: Optional[MandateSubscription] = None


def price_order(
    catalog: PricingCatalog,
    plan_id: UUID,
    addon_quantities: Mapping[UUID, int],
) -> Tuple[Decimal, AddonsSnapshot]:
    """Yearly plan amount and priced add-on snapshot for an order."""
    plan = catalog.get_plan(plan_id)
    lines = []
    for addon_id, quantity in addon_quantities.items():
        validate_quantity(quantity)
        if quantity == 0:
            continue
        addon = catalog.get_addon(addon_id)
        lines.append(AddonSnapshotLine.priced(
            id=addon.id,
            code=addon.code,
            name=addon.name,
            quantity=quantity,
            unit_price=catalog.addon_unit_price(plan_id, addon_id, BillingInterval.YEARLY),
        ))
    return to_money(plan.yearly_price), AddonsSnapshot.of(lines)


class MandateOrderService:
    """Creates mandate orders and drives them through validation."""

    def __init__(self, db: AsyncSession, catalog: Optional[PricingCatalog] = None):
        self.db = db
        self._catalog = catalog
        self.machine = MandateStateMachine(db)
        self.numbers = DocumentNumberService(db)

    async def get_catalog(self) -> PricingCatalog:
        if self._catalog is None:
            self._catalog = await PricingCatalog.load(self.db)
        return self._catalog

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_order(self, order_id: UUID, lock: bool = False) -> MandateOrder:
        """Fetch a live order; soft-deleted orders are treated as absent."""
        query = select(MandateOrder).where(MandateOrder.id == order_id).where(MandateOrder.is_deleted.is_(False))
        if lock:
            query = query.with_for_update()
        order = (await self.db.execute(query)).scalar_one_or_none()
        if order is None:
            raise NotFoundException("MandateOrder", order_id)
        return order

    async def _get_tenant(self, tenant_id: UUID, lock: bool = False) -> Tenant:
        query = select(Tenant).where(Tenant.id == tenant_id)
        if lock:
            query = query.with_for_update()
        tenant = (await self.db.execute(query)).scalar_one_or_none()
        if tenant is None:
            raise NotFoundException("Tenant", tenant_id)
        return tenant

    async def list_documents(self, order_id: UUID) -> List[MandateDocument]:
        result = await self.db.execute(
            select(MandateDocument)
            .where(MandateDocument.order_id == order_id)
            .order_by(MandateDocument.created_at)
        )
        return list(result.scalars().all())

    async def list_activities(self, order_id: UUID) -> List[MandateActivity]:
        result = await self.db.execute(
            select(MandateActivity)
            .where(MandateActivity.order_id == order_id)
            .order_by(MandateActivity.created_at, MandateActivity.id)
        )
        return list(result.scalars().all())

    # ===========================================
    # CREATION
    # ===========================================

    async def stage_order(
        self,
        plan_id: UUID,
        plan_amount: Decimal,
        snapshot: AddonsSnapshot,
        actor: Actor = SYSTEM_ACTOR,
        tenant_id: Optional[UUID] = None,
        quote_id: Optional[UUID] = None,
        discount_amount: Decimal = Decimal("0"),
        source: MandateOrderSource = MandateOrderSource.MANUAL,
        client: Optional[OrderClient] = None,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> MandateOrder:
        """
        Build a PENDING_VALIDATION order in the current transaction.

        Callers own the commit, so quote acceptance and renewals can create
        the order atomically with their own changes.
        """
        plan_amount = to_money(plan_amount)
        addons_amount = snapshot.total
        annual_amount = plan_amount + addons_amount
        discount_amount = to_money(discount_amount)
        if discount_amount < 0 or discount_amount > annual_amount:
            raise ValidationException(
                f"Discount {discount_amount} must be between 0 and the annual amount {annual_amount}",
                field="discount_amount",
            )

        client = client or OrderClient()
        order = MandateOrder(
            order_number=await self.numbers.next_number(DocumentType.DEVIS, today),
            source=source,
            quote_id=quote_id,
            tenant_id=tenant_id,
            plan_id=plan_id,
            status=MandateOrderStatus.PENDING_VALIDATION,
            billing_cycle=BillingInterval.YEARLY,
            plan_amount=plan_amount,
            addons_amount=addons_amount,
            addons_snapshot=snapshot.to_json(),
            annual_amount=annual_amount,
            discount_amount=discount_amount,
            final_amount=annual_amount - discount_amount,
            client_name=client.name,
            client_siret=client.siret,
            client_address=client.address,
            billing_service=client.billing_service,
            accounting_contact_name=client.accounting_contact_name,
            accounting_contact_email=client.accounting_contact_email,
            accounting_contact_phone=client.accounting_contact_phone,
            service_code=client.service_code,
            engagement_number=client.engagement_number,
            notes=notes,
        )
        self.db.add(order)
        await self.db.flush()

        self.machine.record_activity(
            MandateActivityType.ORDER_CREATED,
            "Order created",
            actor=actor,
            tenant_id=tenant_id,
            order_id=order.id,
            description=f"Order {order.order_number} ({source.value}), final amount {order.final_amount}",
            new_value=MandateOrderStatus.PENDING_VALIDATION.value,
        )
        logger.info(f"Mandate order {order.order_number} created ({source.value}), final amount {order.final_amount}")
        return order

    async def create_order(
        self,
        plan_id: UUID,
        addon_quantities: Optional[Mapping[UUID, int]] = None,
        actor: Actor = SYSTEM_ACTOR,
        tenant_id: Optional[UUID] = None,
        quote_id: Optional[UUID] = None,
        discount_amount: Decimal = Decimal("0"),
        source: Optional[MandateOrderSource] = None,
        client: Optional[OrderClient] = None,
        notes: Optional[str] = None,
        today: Optional[date] = None,
    ) -> MandateOrder:
        """
        Create an order priced from the catalog.

        Without a tenant the order is a lead and stays unlinked until
        ``link_tenant``.
        """
        catalog = await self.get_catalog()
        plan_amount, snapshot = price_order(catalog, plan_id, addon_quantities or {})
        if source is None:
            source = MandateOrderSource.MANUAL if tenant_id else MandateOrderSource.LEAD

        async with atomic(self.db):
            if tenant_id is not None:
                await self._get_tenant(tenant_id)
            order = await self.stage_order(
                plan_id=plan_id,
                plan_amount=plan_amount,
                snapshot=snapshot,
                actor=actor,
                tenant_id=tenant_id,
                quote_id=quote_id,
                discount_amount=discount_amount,
                source=source,
                client=client,
                notes=notes,
                today=today,
            )
        return order

    async def create_order_for_tenant(
        self,
        tenant_id: UUID,
        actor: Actor = SYSTEM_ACTOR,
        discount_amount: Decimal = Decimal("0"),
        source: MandateOrderSource = MandateOrderSource.SIGNUP,
        today: Optional[date] = None,
    ) -> MandateOrder:
        """Signup path: price the tenant's current plan and live add-on quantities."""
        catalog = await self.get_catalog()

        async with atomic(self.db):
            tenant = await self._get_tenant(tenant_id)
            if tenant.subscription_plan_id is None:
                raise PreconditionFailedException(
                    "Tenant has no subscription plan",
                    rule="order_requires_plan",
                )
            snapshot = await EntitlementService(self.db, catalog).live_snapshot(tenant)
            order = await self.stage_order(
                plan_id=tenant.subscription_plan_id,
                plan_amount=catalog.plan_price(tenant.subscription_plan_id, BillingInterval.YEARLY),
                snapshot=snapshot,
                actor=actor,
                tenant_id=tenant.id,
                discount_amount=discount_amount,
                source=source,
                client=OrderClient.from_tenant(tenant),
                today=today,
            )
        return order

    # ===========================================
    # LEAD CONVERSION & DOCUMENTS
    # ===========================================

    async def link_tenant(self, order_id: UUID, tenant_id: UUID, actor: Actor = SYSTEM_ACTOR) -> MandateOrder:
        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)
            tenant = await self._get_tenant(tenant_id)
            if order.tenant_id is not None:
                if order.tenant_id == tenant.id:
                    return order
                raise PreconditionFailedException(
                    f"Order {order.order_number} is already linked to another tenant",
                    rule="tenant_link_is_permanent",
                )
            order.tenant_id = tenant.id
            self.machine.record_activity(
                MandateActivityType.TENANT_LINKED,
                "Order linked to tenant",
                actor=actor,
                tenant_id=tenant.id,
                order_id=order.id,
                description=f"Lead order linked to {tenant.name}",
            )
        logger.info(f"Order {order.order_number} linked to tenant {tenant_id}")
        return order

    async def attach_document(
        self,
        order_id: UUID,
        file_name: str,
        file_url: str,
        document_type: MandateDocumentType = MandateDocumentType.PURCHASE_ORDER,
        reference: Optional[str] = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> MandateDocument:
        """Record uploaded document metadata (the file itself lives in object storage)."""
        file_name = require_text(file_name, "file_name")
        file_url = require_text(file_url, "file_url")

        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)
            if order.status in (MandateOrderStatus.REJECTED, MandateOrderStatus.INVOICED):
                raise PreconditionFailedException(
                    f"Documents cannot be attached to a {order.status.value} order",
                    rule="documents_before_invoicing",
                )
            document = MandateDocument(
                order_id=order.id,
                tenant_id=order.tenant_id,
                document_type=document_type,
                file_name=file_name,
                file_url=file_url,
                reference=reference,
                uploaded_by=actor.id,
            )
            self.db.add(document)
            if document_type == MandateDocumentType.PURCHASE_ORDER and reference:
                order.purchase_order_number = reference
            self.machine.record_activity(
                MandateActivityType.BC_UPLOADED,
                "Document uploaded",
                actor=actor,
                tenant_id=order.tenant_id,
                order_id=order.id,
                description=f"{document_type.value}: {file_name}",
            )
            await self.db.flush()
        return document

    # ===========================================
    # TRANSITIONS
    # ===========================================

    async def client_validate(self, order_id: UUID, actor: Actor = SYSTEM_ACTOR) -> MandateOrder:
        """PENDING_VALIDATION -> PENDING_BC; needs at least one uploaded document."""
        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)
            next_order_status(order.status, OrderAction.CLIENT_VALIDATE)

            count = (await self.db.execute(
                select(func.count(MandateDocument.id)).where(MandateDocument.order_id == order.id)
            )).scalar_one()
            if count == 0:
                raise PreconditionFailedException(
                    "At least one document must be uploaded before validating the order",
                    rule="document_required",
                )

            order.client_validated_at = utcnow()
            self.machine.transition_order(order, OrderAction.CLIENT_VALIDATE, actor)
        return order

    async def validate_order(
        self,
        order_id: UUID,
        has_purchase_order: bool,
        actor: Actor = SYSTEM_ACTOR,
        purchase_order_number: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ValidateOrderResult:
        """
        Operator validation.

        With a purchase order the order is ACCEPTED, gets its commande
        number and a one-year subscription is opened, all in one
        transaction. Without one the order is parked in PENDING_BC.
        """
        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)

            if not has_purchase_order:
                self.machine.transition_order(
                    order, OrderAction.PARK, actor,
                    description="Operator is waiting for the purchase order",
                )
                return ValidateOrderResult(order=order)

            next_order_status(order.status, OrderAction.ACCEPT)
            if order.tenant_id is None:
                raise PreconditionFailedException(
                    "Order must be linked to a tenant before acceptance",
                    rule="tenant_link_required",
                )
            tenant = await self._get_tenant(order.tenant_id, lock=True)

            if purchase_order_number:
                order.purchase_order_number = purchase_order_number
            order.commande_number = await self.numbers.next_number(DocumentType.COMMANDE, today)
            order.validated_at = utcnow()
            order.validated_by = actor.id
            self.machine.transition_order(
                order, OrderAction.ACCEPT, actor,
                description=f"Purchase order confirmed, commande {order.commande_number}",
            )
            subscription = await SubscriptionActivator(self.db).activate(order, tenant, actor, today)

        return ValidateOrderResult(order=order, subscription=subscription)

    async def reject_order(self, order_id: UUID, reason: str, actor: Actor = SYSTEM_ACTOR) -> MandateOrder:
        reason = require_text(reason, "reason")
        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)
            self.machine.transition_order(order, OrderAction.REJECT, actor, description=reason)
            order.rejected_at = utcnow()
            order.rejection_reason = reason
        return order

    async def soft_delete_order(self, order_id: UUID, actor: Actor = SYSTEM_ACTOR) -> MandateOrder:
        async with atomic(self.db):
            order = await self.get_order(order_id, lock=True)
            order.is_deleted = True
            order.deleted_at = utcnow()
            order.deleted_by = _actor_uuid(actor)
            self.machine.record_activity(
                MandateActivityType.ORDER_DELETED,
                "Order deleted",
                actor=actor,
                tenant_id=order.tenant_id,
                order_id=order.id,
                old_value=order.status.value,
            )
        logger.info(f"Order {order.order_number} soft-deleted by {actor.id}")
        return order


def _actor_uuid(actor: Actor) -> Optional[UUID]:
    try:
        return UUID(actor.id) if actor.id else None
    except ValueError:
        return None
