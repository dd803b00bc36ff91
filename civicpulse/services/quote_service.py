"""
CivicPulse - Quote Service

Quotes (devis) are priced from the catalog, sent to the client, and
accepted or rejected through a public token. Accepting with the
administrative mandate payment method creates the mandate order in the
same transaction, using the quote's own line prices.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from civicpulse.config import settings
from civicpulse.database import atomic
from civicpulse.models.billing_enums import (
    ActorType,
    BillingInterval,
    DocumentType,
    MandateOrderSource,
    PaymentMethod,
    QuoteStatus,
)
from civicpulse.models.mandate import MandateOrder
from civicpulse.models.quote import Quote, QuoteLineItem
from civicpulse.schemas.snapshot import AddonSnapshotLine, AddonsSnapshot, to_money
from civicpulse.services.document_number_service import DocumentNumberService
from civicpulse.services.mandate_order_service import MandateOrderService, OrderClient
from civicpulse.services.mandate_state_machine import Actor
from civicpulse.services.pricing_catalog import PricingCatalog
from civicpulse.utils.dates import utc_today, utcnow
from civicpulse.utils.error_handling import (
    InvalidStateException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
    require_text,
    validate_quantity,
)

logger = logging.getLogger(__name__)


QUOTE_TRANSITIONS: Dict[Tuple[QuoteStatus, str], QuoteStatus] = {
    (QuoteStatus.DRAFT, "send"): QuoteStatus.SENT,
    (QuoteStatus.SENT, "send"): QuoteStatus.SENT,
    (QuoteStatus.SENT, "accept"): QuoteStatus.ACCEPTED,
    (QuoteStatus.SENT, "reject"): QuoteStatus.REJECTED,
}


def _transition(quote: Quote, action: str) -> None:
    target = QUOTE_TRANSITIONS.get((quote.status, action))
    if target is None:
        raise InvalidStateException("Quote", quote.status.value, action)
    quote.status = target


@dataclass
class QuoteAcceptResult:
    quote: Quote
    order: Optional[MandateOrder] = None


class QuoteService:
    def __init__(self, db: AsyncSession, catalog: Optional[PricingCatalog] = None):
        self.db = db
        self._catalog = catalog
        self.numbers = DocumentNumberService(db)

    async def get_catalog(self) -> PricingCatalog:
        if self._catalog is None:
            self._catalog = await PricingCatalog.load(self.db)
        return self._catalog

    async def get_quote(self, quote_id: UUID, lock: bool = False) -> Quote:
        query = select(Quote).where(Quote.id == quote_id)
        if lock:
            query = query.with_for_update()
        quote = (await self.db.execute(query)).scalar_one_or_none()
        if quote is None:
            raise NotFoundException("Quote", quote_id)
        return quote

    async def get_by_token(self, token: str, lock: bool = False) -> Quote:
        query = select(Quote).where(Quote.public_token == token)
        if lock:
            query = query.with_for_update()
        quote = (await self.db.execute(query)).scalar_one_or_none()
        if quote is None:
            raise NotFoundException("Quote", message="Quote not found")
        return quote

    async def create_quote(
        self,
        plan_id: UUID,
        client_name: str,
        client_email: str,
        addon_quantities: Optional[Mapping[UUID, int]] = None,
        billing_interval: BillingInterval = BillingInterval.YEARLY,
        tenant_id: Optional[UUID] = None,
        client_siret: Optional[str] = None,
        client_address: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Quote:
        catalog = await self.get_catalog()
        today = today or utc_today()
        client_name = require_text(client_name, "client_name")
        client_email = require_text(client_email, "client_email")

        plan = catalog.get_plan(plan_id)
        plan_price = catalog.plan_price(plan_id, billing_interval)
        items = [QuoteLineItem(
            position=0,
            plan_id=plan.id,
            description=f"{plan.name} ({billing_interval.value.lower()})",
            quantity=1,
            unit_price=plan_price,
            total=plan_price,
        )]
        for addon_id, quantity in (addon_quantities or {}).items():
            validate_quantity(quantity)
            if quantity == 0:
                continue
            addon = catalog.get_addon(addon_id)
            unit_price = catalog.addon_unit_price(plan_id, addon_id, billing_interval)
            items.append(QuoteLineItem(
                position=len(items),
                addon_id=addon.id,
                description=addon.name,
                quantity=quantity,
                unit_price=unit_price,
                total=to_money(unit_price * quantity),
            ))

        subtotal = to_money(sum((item.total for item in items), Decimal("0")))
        tax_rate = Decimal(settings.quote_tax_rate_percent)
        tax_amount = to_money(subtotal * tax_rate / Decimal("100"))

        async with atomic(self.db):
            quote = Quote(
                quote_number=await self.numbers.next_number(DocumentType.DEVIS, today),
                tenant_id=tenant_id,
                plan_id=plan.id,
                client_name=client_name,
                client_email=client_email,
                client_siret=client_siret,
                client_address=client_address,
                status=QuoteStatus.DRAFT,
                billing_interval=billing_interval,
                subtotal=subtotal,
                tax_rate=tax_rate,
                tax_amount=tax_amount,
                total=subtotal + tax_amount,
                valid_until=today + timedelta(days=settings.quote_validity_days),
                public_token=secrets.token_urlsafe(32),
                line_items=items,
            )
            self.db.add(quote)

        logger.info(f"Quote {quote.quote_number} created for {client_name}, total {quote.total}")
        return quote

    async def send_quote(self, quote_id: UUID) -> Quote:
        async with atomic(self.db):
            quote = await self.get_quote(quote_id, lock=True)
            _transition(quote, "send")
            quote.sent_at = utcnow()
        logger.info(f"Quote {quote.quote_number} sent to {quote.client_email}")
        return quote

    async def accept_quote(
        self,
        token: str,
        payment_method: PaymentMethod,
        accepted_by_name: str,
        accepted_by_email: str,
        today: Optional[date] = None,
    ) -> QuoteAcceptResult:
        today = today or utc_today()
        accepted_by_name = require_text(accepted_by_name, "accepted_by_name")
        accepted_by_email = require_text(accepted_by_email, "accepted_by_email")
        catalog = await self.get_catalog()

        async with atomic(self.db):
            quote = await self.get_by_token(token, lock=True)
            _transition(quote, "accept")
            if quote.valid_until < today:
                raise PreconditionFailedException(
                    f"Quote {quote.quote_number} expired on {quote.valid_until}",
                    rule="quote_not_expired",
                )

            quote.payment_method = payment_method
            quote.accepted_at = utcnow()
            quote.accepted_by_name = accepted_by_name
            quote.accepted_by_email = accepted_by_email

            order = None
            if payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE:
                if quote.billing_interval != BillingInterval.YEARLY:
                    raise ValidationException(
                        "Administrative mandate orders are billed yearly; the quote must be yearly",
                        field="payment_method",
                    )
                plan_amount, snapshot = self._snapshot_from_lines(quote, catalog)
                order = await MandateOrderService(self.db, catalog).stage_order(
                    plan_id=quote.plan_id,
                    plan_amount=plan_amount,
                    snapshot=snapshot,
                    actor=Actor(id=accepted_by_email, type=ActorType.CLIENT),
                    tenant_id=quote.tenant_id,
                    quote_id=quote.id,
                    source=MandateOrderSource.QUOTE,
                    client=OrderClient(
                        name=quote.client_name,
                        siret=quote.client_siret,
                        address=quote.client_address,
                        accounting_contact_name=accepted_by_name,
                        accounting_contact_email=quote.client_email,
                    ),
                    today=today,
                )
                quote.administrative_mandate_status = order.status.value

        logger.info(f"Quote {quote.quote_number} accepted ({payment_method.value}) by {accepted_by_email}")
        return QuoteAcceptResult(quote=quote, order=order)

    @staticmethod
    def _snapshot_from_lines(quote: Quote, catalog: PricingCatalog) -> Tuple[Decimal, AddonsSnapshot]:
        plan_amount = Decimal("0")
        lines = []
        for item in quote.line_items:
            if item.addon_id is None:
                plan_amount += item.total
                continue
            addon = catalog.get_addon(item.addon_id)
            lines.append(AddonSnapshotLine.priced(
                id=addon.id,
                code=addon.code,
                name=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
            ))
        return to_money(plan_amount), AddonsSnapshot.of(lines)

    async def reject_quote(self, token: str, reason: Optional[str] = None) -> Quote:
        async with atomic(self.db):
            quote = await self.get_by_token(token, lock=True)
            _transition(quote, "reject")
            quote.rejected_at = utcnow()
            quote.rejection_reason = reason
        logger.info(f"Quote {quote.quote_number} rejected")
        return quote

    async def update_mandate_status(self, quote_id: UUID, status: str) -> Quote:
        """The mandate follow-up field is the only one editable after acceptance."""
        status = require_text(status, "administrative_mandate_status")
        async with atomic(self.db):
            quote = await self.get_quote(quote_id, lock=True)
            if quote.status != QuoteStatus.ACCEPTED or quote.payment_method != PaymentMethod.ADMINISTRATIVE_MANDATE:
                raise PreconditionFailedException(
                    "Only quotes accepted with an administrative mandate carry a mandate status",
                    rule="mandate_quote_required",
                )
            quote.administrative_mandate_status = status
        return quote
