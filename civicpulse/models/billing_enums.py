"""
CivicPulse - Billing Enums

Status and category enums shared by the billing and mandate models.
Defined apart from the models so services and schemas can import them
without pulling in the ORM mappings.
"""

from enum import Enum


class BillingInterval(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class BillingStatus(str, Enum):
    """Tenant billing status."""
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"


class AddonCode(str, Enum):
    ADMIN = "ADMIN"                  # Extra administrator seats
    ASSOCIATIONS = "ASSOCIATIONS"    # Extra associations
    MAIRIES = "MAIRIES"              # Extra communes (inter-municipal bodies)


class PaymentMethod(str, Enum):
    STRIPE = "STRIPE"
    BANK_TRANSFER = "BANK_TRANSFER"
    CHECK = "CHECK"
    ADMINISTRATIVE_MANDATE = "ADMINISTRATIVE_MANDATE"


# ===========================================
# BILLING CHANGES & LEDGER
# ===========================================

class BillingChangeType(str, Enum):
    PLAN_CHANGE = "PLAN_CHANGE"
    ADDON_CHANGE = "ADDON_CHANGE"


class BillingChangeStatus(str, Enum):
    """PENDING moves exactly once to APPLIED or CANCELLED."""
    PENDING = "PENDING"
    APPLIED = "APPLIED"
    CANCELLED = "CANCELLED"


class LedgerEntryType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


# ===========================================
# QUOTES
# ===========================================

class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


# ===========================================
# ADMINISTRATIVE MANDATE
# ===========================================

class MandateOrderStatus(str, Enum):
    PENDING_VALIDATION = "PENDING_VALIDATION"   # Waiting for the client
    PENDING_BC = "PENDING_BC"                   # Waiting for the purchase order
    ACCEPTED = "ACCEPTED"
    INVOICED = "INVOICED"
    REJECTED = "REJECTED"


class MandateOrderSource(str, Enum):
    SIGNUP = "SIGNUP"
    QUOTE = "QUOTE"
    LEAD = "LEAD"
    RENEWAL = "RENEWAL"
    MANUAL = "MANUAL"


class MandateSubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class MandateInvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    MANDATED = "MANDATED"   # Mandated by the public buyer's treasury, not yet paid
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class ReminderType(str, Enum):
    DUNNING = "DUNNING"
    RENEWAL = "RENEWAL"


class MandateDocumentType(str, Enum):
    PURCHASE_ORDER = "PURCHASE_ORDER"
    ENGAGEMENT = "ENGAGEMENT"
    OTHER = "OTHER"


class MandateActivityType(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_VALIDATED = "ORDER_VALIDATED"
    ORDER_REJECTED = "ORDER_REJECTED"
    ORDER_DELETED = "ORDER_DELETED"
    TENANT_LINKED = "TENANT_LINKED"
    BC_UPLOADED = "BC_UPLOADED"
    BC_VALIDATED = "BC_VALIDATED"
    SUBSCRIPTION_ACTIVATED = "SUBSCRIPTION_ACTIVATED"
    SUBSCRIPTION_CANCELLED = "SUBSCRIPTION_CANCELLED"
    INVOICE_GENERATED = "INVOICE_GENERATED"
    INVOICE_SENT = "INVOICE_SENT"
    INVOICE_MANDATED = "INVOICE_MANDATED"
    INVOICE_CANCELLED = "INVOICE_CANCELLED"
    REMINDER_SENT = "REMINDER_SENT"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    RENEWAL_INITIATED = "RENEWAL_INITIATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    NOTE_ADDED = "NOTE_ADDED"


class ActorType(str, Enum):
    SUPERADMIN = "superadmin"
    TENANT_ADMIN = "tenant_admin"
    CLIENT = "client"
    SYSTEM = "system"


class DocumentType(str, Enum):
    """Numbered document kinds and their prefixes."""
    DEVIS = "DV"
    COMMANDE = "BC"
    FACTURE = "FA"
