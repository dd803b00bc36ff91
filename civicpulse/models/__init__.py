"""
CivicPulse - SQLAlchemy Models Package

This package contains all database models for the billing engine.
"""

from civicpulse.models.base import BaseModel, TimestampMixin, SoftDeleteMixin
from civicpulse.models.billing_enums import (
    ActorType,
    AddonCode,
    BillingChangeStatus,
    BillingChangeType,
    BillingInterval,
    BillingStatus,
    DocumentType,
    LedgerEntryType,
    MandateActivityType,
    MandateDocumentType,
    MandateInvoiceStatus,
    MandateOrderSource,
    MandateOrderStatus,
    MandateSubscriptionStatus,
    PaymentMethod,
    QuoteStatus,
    ReminderType,
)
from civicpulse.models.catalog import Plan, Addon, PlanAddonAccess
from civicpulse.models.tenant import Tenant, TenantAddon
from civicpulse.models.billing import BillingChange, LedgerEntry, LedgerImmutableError
from civicpulse.models.quote import Quote, QuoteLineItem
from civicpulse.models.mandate import (
    MandateActivity,
    MandateDocument,
    MandateInvoice,
    MandateOrder,
    MandateReminder,
    MandateSubscription,
)
from civicpulse.models.document_sequence import DocumentSequence

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "SoftDeleteMixin",
    # Enums
    "ActorType",
    "AddonCode",
    "BillingChangeStatus",
    "BillingChangeType",
    "BillingInterval",
    "BillingStatus",
    "DocumentType",
    "LedgerEntryType",
    "MandateActivityType",
    "MandateDocumentType",
    "MandateInvoiceStatus",
    "MandateOrderSource",
    "MandateOrderStatus",
    "MandateSubscriptionStatus",
    "PaymentMethod",
    "QuoteStatus",
    "ReminderType",
    # Catalog
    "Plan",
    "Addon",
    "PlanAddonAccess",
    # Tenant
    "Tenant",
    "TenantAddon",
    # Billing
    "BillingChange",
    "LedgerEntry",
    "LedgerImmutableError",
    # Quotes
    "Quote",
    "QuoteLineItem",
    # Mandate
    "MandateOrder",
    "MandateSubscription",
    "MandateInvoice",
    "MandateReminder",
    "MandateDocument",
    "MandateActivity",
    "DocumentSequence",
]
