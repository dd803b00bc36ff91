"""
CivicPulse - Services Package

Billing and mandate lifecycle services.
"""

from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.services.proration_service import ProrationService, prorate, resolve_effective_quantity
from civicpulse.services.entitlements import EntitlementService
from civicpulse.services.ledger_service import LedgerService
from civicpulse.services.billing_change_service import BillingChangeService
from civicpulse.services.document_number_service import DocumentNumberService
from civicpulse.services.mandate_state_machine import Actor, MandateStateMachine
from civicpulse.services.mandate_order_service import MandateOrderService
from civicpulse.services.mandate_invoice_service import MandateInvoiceService
from civicpulse.services.mandate_reminder_service import MandateReminderService
from civicpulse.services.renewal_service import RenewalService
from civicpulse.services.quote_service import QuoteService
from civicpulse.services.email_service import EmailService
from civicpulse.services.mandate_email_service import MandateEmailService

__all__ = [
    "PricingCatalog",
    "ProrationService",
    "prorate",
    "resolve_effective_quantity",
    "EntitlementService",
    "LedgerService",
    "BillingChangeService",
    "DocumentNumberService",
    "Actor",
    "MandateStateMachine",
    "MandateOrderService",
    "MandateInvoiceService",
    "MandateReminderService",
    "RenewalService",
    "QuoteService",
    "EmailService",
    "MandateEmailService",
]
