"""
Tests for quotes: pricing, sending, public acceptance and rejection.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from civicpulse.models import (
    ActorType,
    BillingInterval,
    MandateOrderSource,
    MandateOrderStatus,
    PaymentMethod,
    QuoteStatus,
)
from civicpulse.schemas.snapshot import AddonsSnapshot
from civicpulse.services.mandate_order_service import MandateOrderService
from civicpulse.services.quote_service import QuoteService
from civicpulse.utils.error_handling import (
    InvalidStateException,
    NotFoundException,
    PreconditionFailedException,
    ValidationException,
)


@pytest.fixture
async def sent_quote(db_session, catalog, today):
    """STANDARD yearly with 2 ADMIN, sent to the client."""
    service = QuoteService(db_session)
    quote = await service.create_quote(
        plan_id=catalog["standard"].id,
        client_name="Mairie de Saint-Andre",
        client_email="compta@saint-andre.fr",
        addon_quantities={catalog["admin"].id: 2},
        client_siret="21330001600011",
        today=today,
    )
    await service.send_quote(quote.id)
    return quote


class TestCreateQuote:

    async def test_pricing_and_lines(self, db_session, catalog, today):
        quote = await QuoteService(db_session).create_quote(
            plan_id=catalog["standard"].id,
            client_name="Mairie de Saint-Andre",
            client_email="compta@saint-andre.fr",
            addon_quantities={catalog["admin"].id: 2, catalog["mairies"].id: 0},
            today=today,
        )

        assert quote.quote_number == "DV-2025-00001"
        assert quote.status == QuoteStatus.DRAFT
        assert [(item.position, item.quantity, item.total) for item in quote.line_items] == [
            (0, 1, Decimal("1200.00")),
            (1, 2, Decimal("200.00")),
        ]
        assert quote.line_items[0].plan_id == catalog["standard"].id
        assert quote.line_items[1].addon_id == catalog["admin"].id
        assert quote.subtotal == Decimal("1400.00")
        assert quote.tax_amount == Decimal("280.00")
        assert quote.total == Decimal("1680.00")
        assert quote.valid_until == today + timedelta(days=30)
        assert len(quote.public_token) >= 32

    async def test_monthly_prices(self, db_session, catalog, today):
        quote = await QuoteService(db_session).create_quote(
            plan_id=catalog["standard"].id,
            client_name="Association des parents",
            client_email="contact@apel.fr",
            addon_quantities={catalog["admin"].id: 1},
            billing_interval=BillingInterval.MONTHLY,
            today=today,
        )
        assert quote.subtotal == Decimal("110.00")

    async def test_blank_client_name(self, db_session, catalog):
        with pytest.raises(ValidationException):
            await QuoteService(db_session).create_quote(
                plan_id=catalog["standard"].id, client_name="  ", client_email="a@b.fr",
            )

    async def test_quotes_and_orders_share_the_dv_sequence(self, db_session, catalog, tenant, sent_quote, today):
        order = await MandateOrderService(db_session).create_order(
            plan_id=catalog["standard"].id, tenant_id=tenant.id, today=today,
        )
        assert sent_quote.quote_number == "DV-2025-00001"
        assert order.order_number == "DV-2025-00002"


class TestSendQuote:

    async def test_send_twice(self, db_session, sent_quote):
        again = await QuoteService(db_session).send_quote(sent_quote.id)
        assert again.status == QuoteStatus.SENT
        assert again.sent_at is not None


class TestAcceptQuote:

    async def test_accept_with_mandate_creates_order(self, db_session, catalog, sent_quote, today):
        result = await QuoteService(db_session).accept_quote(
            sent_quote.public_token,
            PaymentMethod.ADMINISTRATIVE_MANDATE,
            accepted_by_name="Jeanne Martin",
            accepted_by_email="j.martin@saint-andre.fr",
            today=today,
        )

        quote, order = result.quote, result.order
        assert quote.status == QuoteStatus.ACCEPTED
        assert quote.payment_method == PaymentMethod.ADMINISTRATIVE_MANDATE
        assert quote.accepted_by_name == "Jeanne Martin"
        assert quote.administrative_mandate_status == MandateOrderStatus.PENDING_VALIDATION.value

        assert order.source == MandateOrderSource.QUOTE
        assert order.quote_id == quote.id
        assert order.status == MandateOrderStatus.PENDING_VALIDATION
        assert order.plan_amount == Decimal("1200.00")
        assert order.addons_amount == Decimal("200.00")
        assert order.client_siret == "21330001600011"
        snapshot = AddonsSnapshot.from_json(order.addons_snapshot)
        assert [(line.code, line.quantity) for line in snapshot] == [("ADMIN", 2)]

        activities = await MandateOrderService(db_session).list_activities(order.id)
        assert activities[0].performed_by_type == ActorType.CLIENT
        assert activities[0].performed_by == "j.martin@saint-andre.fr"

    async def test_accept_with_other_method_creates_no_order(self, db_session, sent_quote, today):
        result = await QuoteService(db_session).accept_quote(
            sent_quote.public_token, PaymentMethod.BANK_TRANSFER, "Jeanne Martin", "j.martin@saint-andre.fr",
            today=today,
        )
        assert result.order is None
        assert result.quote.administrative_mandate_status is None

    async def test_monthly_quote_cannot_use_mandate(self, db_session, catalog, today):
        service = QuoteService(db_session)
        quote = await service.create_quote(
            plan_id=catalog["standard"].id,
            client_name="Mairie de Saint-Andre",
            client_email="compta@saint-andre.fr",
            billing_interval=BillingInterval.MONTHLY,
            today=today,
        )
        await service.send_quote(quote.id)
        token, quote_id = quote.public_token, quote.id

        with pytest.raises(ValidationException):
            await service.accept_quote(
                token, PaymentMethod.ADMINISTRATIVE_MANDATE, "Jeanne Martin", "j.martin@saint-andre.fr", today=today,
            )

        assert (await service.get_quote(quote_id)).status == QuoteStatus.SENT

    async def test_expired_quote(self, db_session, sent_quote, today):
        token = sent_quote.public_token
        with pytest.raises(PreconditionFailedException):
            await QuoteService(db_session).accept_quote(
                token, PaymentMethod.BANK_TRANSFER, "Jeanne Martin", "j.martin@saint-andre.fr",
                today=today + timedelta(days=31),
            )

    async def test_valid_on_last_day(self, db_session, sent_quote, today):
        result = await QuoteService(db_session).accept_quote(
            sent_quote.public_token, PaymentMethod.CHECK, "Jeanne Martin", "j.martin@saint-andre.fr",
            today=today + timedelta(days=30),
        )
        assert result.quote.status == QuoteStatus.ACCEPTED

    async def test_draft_cannot_be_accepted(self, db_session, catalog, today):
        service = QuoteService(db_session)
        quote = await service.create_quote(
            plan_id=catalog["standard"].id, client_name="Mairie", client_email="m@x.fr", today=today,
        )
        token = quote.public_token
        with pytest.raises(InvalidStateException):
            await service.accept_quote(token, PaymentMethod.CHECK, "Jeanne Martin", "j@x.fr", today=today)

    async def test_unknown_token(self, db_session):
        with pytest.raises(NotFoundException):
            await QuoteService(db_session).accept_quote("nope", PaymentMethod.CHECK, "Jeanne Martin", "j@x.fr")


class TestRejectQuote:

    async def test_reject(self, db_session, sent_quote):
        quote = await QuoteService(db_session).reject_quote(sent_quote.public_token, reason="Budget 2026")
        assert quote.status == QuoteStatus.REJECTED
        assert quote.rejection_reason == "Budget 2026"
        assert quote.rejected_at is not None

    @pytest.mark.parametrize("first", ["accept", "reject"])
    async def test_decisions_are_final(self, db_session, sent_quote, today, first):
        service = QuoteService(db_session)
        token = sent_quote.public_token
        if first == "accept":
            await service.accept_quote(token, PaymentMethod.CHECK, "Jeanne Martin", "j@x.fr", today=today)
        else:
            await service.reject_quote(token)

        with pytest.raises(InvalidStateException):
            await service.reject_quote(token)
        with pytest.raises(InvalidStateException):
            await service.accept_quote(token, PaymentMethod.CHECK, "Jeanne Martin", "j@x.fr", today=today)


class TestMandateStatus:

    async def test_update_after_mandate_acceptance(self, db_session, sent_quote, today):
        service = QuoteService(db_session)
        await service.accept_quote(
            sent_quote.public_token, PaymentMethod.ADMINISTRATIVE_MANDATE, "Jeanne Martin", "j@x.fr", today=today,
        )

        quote = await service.update_mandate_status(sent_quote.id, "MANDATE_ISSUED")

        assert quote.administrative_mandate_status == "MANDATE_ISSUED"

    async def test_requires_mandate_acceptance(self, db_session, sent_quote):
        with pytest.raises(PreconditionFailedException):
            await QuoteService(db_session).update_mandate_status(sent_quote.id, "MANDATE_ISSUED")
