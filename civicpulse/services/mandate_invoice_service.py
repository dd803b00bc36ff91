"""
CivicPulse - Mandate Invoice Service

Invoice generation from an accepted mandate order and the follow-up
transitions (send, mandate, pay, cancel).

Amounts come from the order's frozen add-on snapshot, never from the live
catalog. Generating an invoice schedules the three dunning reminders in
the same transaction; paying or cancelling it cancels those still pending.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.config import settings
from civicpulse.database import atomic
from civicpulse.models.billing_enums import (
    DocumentType,
    MandateOrderStatus,
    MandateSubscriptionStatus,
    ReminderType,
)
from civicpulse.models.mandate import MandateInvoice, MandateOrder, MandateReminder, MandateSubscription
from civicpulse.models.tenant import Tenant
from civicpulse.schemas.snapshot import AddonsSnapshot, to_money
from civicpulse.services.document_number_service import DocumentNumberService
from civicpulse.services.mandate_reminder_service import MandateReminderService
from civicpulse.services.mandate_state_machine import (
    SYSTEM_ACTOR,
    Actor,
    InvoiceAction,
    MandateStateMachine,
    OrderAction,
)
from civicpulse.utils.dates import utcnow
from civicpulse.utils.error_handling import (
    BillingIntegrityException,
    NotFoundException,
    PreconditionFailedException,
)

logger = logging.getLogger(__name__)


def dunning_schedule(due_date: date) -> List[date]:
    """Dunning reminder dates, one per level, counted from the due date."""
    return [due_date + timedelta(days=offset) for offset in settings.dunning_offsets_days]


class MandateInvoiceService:
    """Generates and follows up mandate invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.machine = MandateStateMachine(db)
        self.numbers = DocumentNumberService(db)
        self.reminders = MandateReminderService(db)

    async def get_invoice(self, invoice_id: UUID, lock: bool = False) -> MandateInvoice:
        query = select(MandateInvoice).where(MandateInvoice.id == invoice_id).where(MandateInvoice.is_deleted.is_(False))
        if lock:
            query = query.with_for_update()
        invoice = (await self.db.execute(query)).scalar_one_or_none()
        if invoice is None:
            raise NotFoundException("MandateInvoice", invoice_id)
        return invoice

    async def list_invoices(self, order_id: UUID) -> List[MandateInvoice]:
        result = await self.db.execute(
            select(MandateInvoice)
            .where(MandateInvoice.order_id == order_id)
            .where(MandateInvoice.is_deleted.is_(False))
            .order_by(MandateInvoice.created_at)
        )
        return list(result.scalars().all())

    async def list_reminders(self, invoice_id: UUID) -> List[MandateReminder]:
        result = await self.db.execute(
            select(MandateReminder)
            .where(MandateReminder.invoice_id == invoice_id)
            .order_by(MandateReminder.reminder_level)
        )
        return list(result.scalars().all())

    async def _order_subscription(self, order_id: UUID) -> Optional[MandateSubscription]:
        """The ACTIVE subscription opened by this order's acceptance."""
        result = await self.db.execute(
            select(MandateSubscription)
            .where(MandateSubscription.order_id == order_id)
            .where(MandateSubscription.status == MandateSubscriptionStatus.ACTIVE)
        )
        return result.scalar_one_or_none()

    # ===========================================
    # GENERATION
    # ===========================================

    async def generate_invoice(
        self,
        order_id: UUID,
        actor: Actor = SYSTEM_ACTOR,
        today: Optional[date] = None,
    ) -> MandateInvoice:
        """
        Create the invoice for an ACCEPTED order.

        The invoice, its three dunning reminders and the order's move to
        INVOICED are committed together. Nothing is written when a
        precondition fails.
        """
        async with atomic(self.db):
            order = (await self.db.execute(
                select(MandateOrder)
                .where(MandateOrder.id == order_id)
                .where(MandateOrder.is_deleted.is_(False))
                .with_for_update()
            )).scalar_one_or_none()
            if order is None:
                raise NotFoundException("MandateOrder", order_id)

            if order.status != MandateOrderStatus.ACCEPTED:
                raise PreconditionFailedException(
                    f"Order {order.order_number} must be accepted before invoicing (status {order.status.value})",
                    rule="order_accepted",
                    details={"status": order.status.value},
                )
            if order.tenant_id is None:
                raise PreconditionFailedException(
                    f"Order {order.order_number} is not linked to a tenant",
                    rule="tenant_link_required",
                )
            subscription = await self._order_subscription(order.id)
            if subscription is None:
                raise PreconditionFailedException(
                    f"Order {order.order_number} has no active mandate subscription",
                    rule="active_subscription_required",
                )
            tenant = await self.db.get(Tenant, order.tenant_id)

            snapshot = AddonsSnapshot.from_json(order.addons_snapshot)
            addons_amount = snapshot.total
            if addons_amount != to_money(order.addons_amount):
                raise BillingIntegrityException(
                    f"Snapshot total {addons_amount} does not match order add-ons amount {order.addons_amount}",
                    details={"order_id": str(order.id)},
                )

            subtotal = to_money(order.plan_amount) + addons_amount
            discount = to_money(order.discount_amount)
            net = subtotal - discount
            tax_rate = Decimal(settings.mandate_tax_rate_percent)
            tax_amount = to_money(net * tax_rate / Decimal("100"))
            if net < 0 or tax_amount < 0:
                raise BillingIntegrityException(
                    f"Invoice amount for order {order.order_number} would be negative",
                    details={"subtotal": str(subtotal), "discount": str(discount)},
                )

            created_at = utcnow()
            due_date = (today or created_at.date()) + timedelta(days=settings.mandate_payment_terms_days)

            invoice = MandateInvoice(
                invoice_number=await self.numbers.next_number(DocumentType.FACTURE, today),
                order_id=order.id,
                subscription_id=subscription.id,
                tenant_id=order.tenant_id,
                plan_amount=to_money(order.plan_amount),
                addons_amount=addons_amount,
                addons_snapshot=order.addons_snapshot,
                subtotal=subtotal,
                discount_amount=discount,
                tax_rate=tax_rate,
                tax_amount=tax_amount,
                total_amount=net + tax_amount,
                period_start=subscription.start_date,
                period_end=subscription.end_date,
                due_date=due_date,
                client_name=order.client_name,
                client_siret=order.client_siret,
                client_address=order.client_address,
                billing_service=order.billing_service,
                purchase_order_number=order.purchase_order_number,
                engagement_number=order.engagement_number,
                service_code=order.service_code,
                emitter_name=settings.emitter_name,
                emitter_address=settings.emitter_address,
                emitter_siret=settings.emitter_siret,
                emitter_tva=settings.emitter_tva,
                emitter_iban=settings.emitter_iban,
                emitter_bic=settings.emitter_bic,
                created_at=created_at,
            )
            self.db.add(invoice)
            await self.db.flush()

            email_to = order.accounting_contact_email or (tenant.contact_email if tenant else None)
            for level, scheduled_for in enumerate(dunning_schedule(due_date), start=1):
                await self.reminders.schedule_reminder(
                    tenant_id=order.tenant_id,
                    subscription_id=subscription.id,
                    reminder_type=ReminderType.DUNNING,
                    reminder_level=level,
                    scheduled_for=scheduled_for,
                    invoice_id=invoice.id,
                    email_to=email_to,
                )

            self.machine.transition_order(
                order, OrderAction.INVOICE, actor,
                description=f"Invoice {invoice.invoice_number}, total {invoice.total_amount}, due {due_date}",
                invoice_id=invoice.id,
            )

        logger.info(f"Invoice {invoice.invoice_number} generated for order {order.order_number}")
        return invoice

    # ===========================================
    # FOLLOW-UP TRANSITIONS
    # ===========================================

    async def send_invoice(self, invoice_id: UUID, actor: Actor = SYSTEM_ACTOR) -> MandateInvoice:
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id, lock=True)
            self.machine.transition_invoice(invoice, InvoiceAction.SEND, actor)
            invoice.sent_at = utcnow()
        return invoice

    async def mark_mandated(self, invoice_id: UUID, actor: Actor = SYSTEM_ACTOR) -> MandateInvoice:
        """The buyer's treasury has issued the payment mandate."""
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id, lock=True)
            self.machine.transition_invoice(invoice, InvoiceAction.MANDATE, actor)
            invoice.mandated_at = utcnow()
        return invoice

    async def mark_paid(
        self,
        invoice_id: UUID,
        actor: Actor = SYSTEM_ACTOR,
        payment_reference: Optional[str] = None,
    ) -> MandateInvoice:
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id, lock=True)
            self.machine.transition_invoice(
                invoice, InvoiceAction.PAY, actor,
                description=f"Payment reference {payment_reference}" if payment_reference else None,
            )
            invoice.paid_at = utcnow()
            invoice.payment_reference = payment_reference
            cancelled = await self._cancel_pending_reminders(invoice.id)
        logger.info(f"Invoice {invoice.invoice_number} paid, {cancelled} pending reminder(s) cancelled")
        return invoice

    async def cancel_invoice(
        self,
        invoice_id: UUID,
        actor: Actor = SYSTEM_ACTOR,
        reason: Optional[str] = None,
    ) -> MandateInvoice:
        async with atomic(self.db):
            invoice = await self.get_invoice(invoice_id, lock=True)
            self.machine.transition_invoice(invoice, InvoiceAction.CANCEL, actor, description=reason)
            invoice.cancelled_at = utcnow()
            cancelled = await self._cancel_pending_reminders(invoice.id)
        logger.info(f"Invoice {invoice.invoice_number} cancelled, {cancelled} pending reminder(s) cancelled")
        return invoice

    async def _cancel_pending_reminders(self, invoice_id: UUID) -> int:
        result = await self.db.execute(
            update(MandateReminder)
            .where(MandateReminder.invoice_id == invoice_id)
            .where(MandateReminder.sent_at.is_(None))
            .where(MandateReminder.is_cancelled.is_(False))
            .values(is_cancelled=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
