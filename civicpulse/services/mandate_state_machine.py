"""
CivicPulse - Mandate State Machine

Explicit transition tables for mandate orders and invoices. Every status
change goes through ``transition_order`` / ``transition_invoice``, which
check the (status, action) pair against the table and always stage a
MandateActivity row in the caller's transaction. A pair missing from the
table raises InvalidStateException and mutates nothing.

Order:
    PENDING_VALIDATION --client_validate--> PENDING_BC
    PENDING_VALIDATION --accept-----------> ACCEPTED
    PENDING_VALIDATION --park-------------> PENDING_BC
    PENDING_VALIDATION --reject-----------> REJECTED
    PENDING_BC         --accept-----------> ACCEPTED
    PENDING_BC         --park-------------> PENDING_BC
    PENDING_BC         --reject-----------> REJECTED
    ACCEPTED           --invoice----------> INVOICED

Invoice:
    DRAFT --send--> SENT --mandate--> MANDATED --pay--> PAID
    SENT --pay--> PAID
    DRAFT | SENT | MANDATED --cancel--> CANCELLED
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.models.billing_enums import (
    ActorType,
    MandateActivityType,
    MandateInvoiceStatus,
    MandateOrderStatus,
)
from civicpulse.models.mandate import MandateActivity, MandateInvoice, MandateOrder
from civicpulse.utils.error_handling import InvalidStateException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """Who performed an action, recorded on every activity row."""
    id: Optional[str] = None
    type: ActorType = ActorType.SYSTEM


SYSTEM_ACTOR = Actor()


class OrderAction(str, Enum):
    CLIENT_VALIDATE = "client_validate"
    ACCEPT = "accept"
    PARK = "park"
    REJECT = "reject"
    INVOICE = "invoice"


class InvoiceAction(str, Enum):
    SEND = "send"
    MANDATE = "mandate"
    PAY = "pay"
    CANCEL = "cancel"


ORDER_TRANSITIONS: Dict[Tuple[MandateOrderStatus, OrderAction], MandateOrderStatus] = {
    (MandateOrderStatus.PENDING_VALIDATION, OrderAction.CLIENT_VALIDATE): MandateOrderStatus.PENDING_BC,
    (MandateOrderStatus.PENDING_VALIDATION, OrderAction.ACCEPT): MandateOrderStatus.ACCEPTED,
    (MandateOrderStatus.PENDING_VALIDATION, OrderAction.PARK): MandateOrderStatus.PENDING_BC,
    (MandateOrderStatus.PENDING_VALIDATION, OrderAction.REJECT): MandateOrderStatus.REJECTED,
    (MandateOrderStatus.PENDING_BC, OrderAction.ACCEPT): MandateOrderStatus.ACCEPTED,
    (MandateOrderStatus.PENDING_BC, OrderAction.PARK): MandateOrderStatus.PENDING_BC,
    (MandateOrderStatus.PENDING_BC, OrderAction.REJECT): MandateOrderStatus.REJECTED,
    (MandateOrderStatus.ACCEPTED, OrderAction.INVOICE): MandateOrderStatus.INVOICED,
}

INVOICE_TRANSITIONS: Dict[Tuple[MandateInvoiceStatus, InvoiceAction], MandateInvoiceStatus] = {
    (MandateInvoiceStatus.DRAFT, InvoiceAction.SEND): MandateInvoiceStatus.SENT,
    (MandateInvoiceStatus.SENT, InvoiceAction.MANDATE): MandateInvoiceStatus.MANDATED,
    (MandateInvoiceStatus.SENT, InvoiceAction.PAY): MandateInvoiceStatus.PAID,
    (MandateInvoiceStatus.MANDATED, InvoiceAction.PAY): MandateInvoiceStatus.PAID,
    (MandateInvoiceStatus.DRAFT, InvoiceAction.CANCEL): MandateInvoiceStatus.CANCELLED,
    (MandateInvoiceStatus.SENT, InvoiceAction.CANCEL): MandateInvoiceStatus.CANCELLED,
    (MandateInvoiceStatus.MANDATED, InvoiceAction.CANCEL): MandateInvoiceStatus.CANCELLED,
}

# Activity type and title written for each action
ORDER_ACTIVITIES: Dict[OrderAction, Tuple[MandateActivityType, str]] = {
    OrderAction.CLIENT_VALIDATE: (MandateActivityType.ORDER_VALIDATED, "Order validated by client"),
    OrderAction.ACCEPT: (MandateActivityType.BC_VALIDATED, "Purchase order confirmed, order accepted"),
    OrderAction.PARK: (MandateActivityType.STATUS_CHANGED, "Waiting for purchase order"),
    OrderAction.REJECT: (MandateActivityType.ORDER_REJECTED, "Order rejected"),
    OrderAction.INVOICE: (MandateActivityType.INVOICE_GENERATED, "Invoice generated"),
}

INVOICE_ACTIVITIES: Dict[InvoiceAction, Tuple[MandateActivityType, str]] = {
    InvoiceAction.SEND: (MandateActivityType.INVOICE_SENT, "Invoice sent"),
    InvoiceAction.MANDATE: (MandateActivityType.INVOICE_MANDATED, "Invoice mandated by the buyer"),
    InvoiceAction.PAY: (MandateActivityType.PAYMENT_RECEIVED, "Payment received"),
    InvoiceAction.CANCEL: (MandateActivityType.INVOICE_CANCELLED, "Invoice cancelled"),
}


def next_order_status(status: MandateOrderStatus, action: OrderAction) -> MandateOrderStatus:
    target = ORDER_TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidStateException("MandateOrder", status.value, action.value)
    return target


def next_invoice_status(status: MandateInvoiceStatus, action: InvoiceAction) -> MandateInvoiceStatus:
    target = INVOICE_TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidStateException("MandateInvoice", status.value, action.value)
    return target


class MandateStateMachine:
    """Single entry point for status changes and the activity log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record_activity(
        self,
        activity_type: MandateActivityType,
        title: str,
        actor: Actor = SYSTEM_ACTOR,
        tenant_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
        invoice_id: Optional[UUID] = None,
        description: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> MandateActivity:
        activity = MandateActivity(
            tenant_id=tenant_id,
            order_id=order_id,
            subscription_id=subscription_id,
            invoice_id=invoice_id,
            activity_type=activity_type,
            title=title,
            description=description,
            old_value=old_value,
            new_value=new_value,
            performed_by=actor.id,
            performed_by_type=actor.type,
        )
        self.db.add(activity)
        return activity

    def transition_order(
        self,
        order: MandateOrder,
        action: OrderAction,
        actor: Actor = SYSTEM_ACTOR,
        description: Optional[str] = None,
        invoice_id: Optional[UUID] = None,
    ) -> MandateActivity:
        old_status = order.status
        new_status = next_order_status(old_status, action)
        order.status = new_status

        activity_type, title = ORDER_ACTIVITIES[action]
        logger.info(f"Order {order.order_number}: {old_status.value} -> {new_status.value} ({action.value})")
        return self.record_activity(
            activity_type,
            title,
            actor=actor,
            tenant_id=order.tenant_id,
            order_id=order.id,
            invoice_id=invoice_id,
            description=description,
            old_value=old_status.value,
            new_value=new_status.value,
        )

    def transition_invoice(
        self,
        invoice: MandateInvoice,
        action: InvoiceAction,
        actor: Actor = SYSTEM_ACTOR,
        description: Optional[str] = None,
    ) -> MandateActivity:
        old_status = invoice.status
        new_status = next_invoice_status(old_status, action)
        invoice.status = new_status

        activity_type, title = INVOICE_ACTIVITIES[action]
        logger.info(f"Invoice {invoice.invoice_number}: {old_status.value} -> {new_status.value} ({action.value})")
        return self.record_activity(
            activity_type,
            title,
            actor=actor,
            tenant_id=invoice.tenant_id,
            order_id=invoice.order_id,
            subscription_id=invoice.subscription_id,
            invoice_id=invoice.id,
            description=description,
            old_value=old_status.value,
            new_value=new_status.value,
        )
