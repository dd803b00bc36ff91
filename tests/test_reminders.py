"""
Tests for reminder scheduling, the due sweep and reminder emails.
"""

from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from civicpulse.models import MandateActivity, MandateActivityType, MandateReminder, ReminderType
from civicpulse.services.mandate_email_service import MandateEmailService
from civicpulse.services.mandate_reminder_service import MandateReminderService, ReminderDispatch
from civicpulse.utils.dates import utcnow
from civicpulse.utils.error_handling import DuplicateOperationException, ValidationException


SWEEP_DAY = date(2025, 6, 1)


@pytest.fixture
async def subscription(tenant, make_subscription):
    return await make_subscription(tenant, date(2025, 1, 1), date(2026, 1, 1))


@pytest.fixture
async def schedule(db_session, tenant, subscription):
    """Stage and commit one reminder."""

    async def _schedule(level, scheduled_for, reminder_type=ReminderType.DUNNING):
        reminder = await MandateReminderService(db_session).schedule_reminder(
            tenant_id=tenant.id,
            subscription_id=subscription.id,
            reminder_type=reminder_type,
            reminder_level=level,
            scheduled_for=scheduled_for,
            email_to="compta@saint-andre.fr",
        )
        await db_session.commit()
        return reminder

    return _schedule


class _Sender:
    """Records dispatches and answers with a fixed result."""

    def __init__(self, result=True):
        self.result = result
        self.calls = []

    async def __call__(self, dispatch):
        self.calls.append(dispatch)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class TestScheduleReminder:

    async def test_schedule(self, schedule):
        reminder = await schedule(1, SWEEP_DAY)
        assert reminder.sent_at is None
        assert reminder.is_cancelled is False
        assert reminder.reminder_type == ReminderType.DUNNING

    async def test_duplicate_level_refused(self, db_session, tenant, subscription, schedule):
        await schedule(1, SWEEP_DAY)
        with pytest.raises(DuplicateOperationException):
            await MandateReminderService(db_session).schedule_reminder(
                tenant_id=tenant.id,
                subscription_id=subscription.id,
                reminder_type=ReminderType.DUNNING,
                reminder_level=1,
                scheduled_for=SWEEP_DAY + timedelta(days=1),
            )

    async def test_same_level_other_type_allowed(self, schedule):
        await schedule(1, SWEEP_DAY)
        renewal = await schedule(1, SWEEP_DAY, ReminderType.RENEWAL)
        assert renewal.reminder_type == ReminderType.RENEWAL

    async def test_level_must_be_positive(self, db_session, tenant, subscription):
        with pytest.raises(ValidationException):
            await MandateReminderService(db_session).schedule_reminder(
                tenant_id=tenant.id,
                subscription_id=subscription.id,
                reminder_type=ReminderType.DUNNING,
                reminder_level=0,
                scheduled_for=SWEEP_DAY,
            )


class TestDueSweep:

    async def test_only_due_reminders_are_sent(self, db_session, schedule):
        due = await schedule(1, SWEEP_DAY)
        await schedule(2, SWEEP_DAY + timedelta(days=1))
        sender = _Sender()

        counts = await MandateReminderService(db_session).process_due_reminders(sender, today=SWEEP_DAY)

        assert counts == {"due": 1, "sent": 1, "failed": 0, "skipped": 0}
        assert [d.reminder.id for d in sender.calls] == [due.id]
        assert sender.calls[0].tenant.name == "Mairie de Saint-Andre"
        assert sender.calls[0].invoice is None
        assert due.sent_at is not None

        activities = (await db_session.execute(
            select(MandateActivity).where(MandateActivity.activity_type == MandateActivityType.REMINDER_SENT)
        )).scalars().all()
        assert len(activities) == 1

    async def test_sent_reminder_is_not_resent(self, db_session, schedule):
        await schedule(1, SWEEP_DAY)
        service = MandateReminderService(db_session)
        await service.process_due_reminders(_Sender(), today=SWEEP_DAY)

        sender = _Sender()
        counts = await service.process_due_reminders(sender, today=SWEEP_DAY + timedelta(days=7))

        assert counts["due"] == 0
        assert sender.calls == []

    async def test_failed_delivery_is_retried(self, db_session, schedule):
        reminder = await schedule(1, SWEEP_DAY)
        service = MandateReminderService(db_session)

        first = await service.process_due_reminders(_Sender(result=False), today=SWEEP_DAY)
        assert first == {"due": 1, "sent": 0, "failed": 1, "skipped": 0}
        assert reminder.sent_at is None

        second = await service.process_due_reminders(_Sender(), today=SWEEP_DAY + timedelta(days=1))
        assert second == {"due": 1, "sent": 1, "failed": 0, "skipped": 0}

    async def test_sender_exception_counts_as_failure(self, db_session, schedule):
        reminder = await schedule(1, SWEEP_DAY)

        counts = await MandateReminderService(db_session).process_due_reminders(
            _Sender(result=ConnectionError("SMTP down")), today=SWEEP_DAY,
        )

        assert counts["failed"] == 1
        assert reminder.sent_at is None

    async def test_cancelled_reminders_are_ignored(self, db_session, schedule):
        reminder = await schedule(1, SWEEP_DAY)
        reminder.is_cancelled = True
        await db_session.commit()
        sender = _Sender()

        counts = await MandateReminderService(db_session).process_due_reminders(sender, today=SWEEP_DAY)

        assert counts["due"] == 0
        assert sender.calls == []

    async def test_concurrent_sweep_is_skipped(self, db_session, schedule):
        """Another sweep stamps the row while this one is sending."""
        reminder = await schedule(1, SWEEP_DAY)
        reminder_id = reminder.id
        other_sweep_stamp = utcnow()

        async def racing_sender(dispatch):
            await db_session.execute(
                update(MandateReminder)
                .where(MandateReminder.id == reminder_id)
                .values(sent_at=other_sweep_stamp)
                .execution_options(synchronize_session=False)
            )
            await db_session.commit()
            return True

        counts = await MandateReminderService(db_session).process_due_reminders(racing_sender, today=SWEEP_DAY)

        assert counts == {"due": 1, "sent": 0, "failed": 0, "skipped": 1}
        assert reminder.sent_at is not None
        activities = (await db_session.execute(select(MandateActivity))).scalars().all()
        assert activities == []

    async def test_failed_stamp_does_not_abort_the_sweep(self, db_session, schedule):
        first_id = (await schedule(1, SWEEP_DAY)).id
        second_id = (await schedule(2, SWEEP_DAY)).id
        service = MandateReminderService(db_session)
        record_activity = service.machine.record_activity
        calls = []

        def locked_once(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise OperationalError("INSERT INTO mandate_activities", {}, Exception("database is locked"))
            return record_activity(*args, **kwargs)

        with patch.object(service.machine, "record_activity", side_effect=locked_once):
            counts = await service.process_due_reminders(_Sender(), today=SWEEP_DAY)

        assert counts == {"due": 2, "sent": 1, "failed": 1, "skipped": 0}
        stamps = dict((await db_session.execute(
            select(MandateReminder.id, MandateReminder.sent_at)
        )).all())
        assert stamps[first_id] is None
        assert stamps[second_id] is not None

    async def test_reminder_cancelled_after_the_read_is_skipped(self, db_session, schedule):
        reminder_id = (await schedule(1, SWEEP_DAY)).id
        service = MandateReminderService(db_session)
        due = service.get_due_reminders

        async def cancel_after_read(today=None):
            reminders = await due(today)
            await db_session.execute(
                update(MandateReminder)
                .where(MandateReminder.id == reminder_id)
                .values(is_cancelled=True)
                .execution_options(synchronize_session=False)
            )
            return reminders

        sender = _Sender()
        with patch.object(service, "get_due_reminders", side_effect=cancel_after_read):
            counts = await service.process_due_reminders(sender, today=SWEEP_DAY)

        assert counts == {"due": 1, "sent": 0, "failed": 0, "skipped": 1}
        assert sender.calls == []


def _dispatch(reminder_type=ReminderType.DUNNING, level=1, email_to="compta@saint-andre.fr", with_invoice=True):
    tenant = SimpleNamespace(
        name="Mairie de Saint-Andre",
        contact_email=None,
        accounting_contact_email=None,
    )
    subscription = SimpleNamespace(end_date=date(2026, 3, 1))
    invoice = SimpleNamespace(
        invoice_number="FA-2025-00001",
        total_amount=Decimal("1300.00"),
        due_date=date(2025, 3, 31),
        purchase_order_number="BC-2025-117",
        engagement_number=None,
    ) if with_invoice else None
    reminder = SimpleNamespace(id=uuid4(), reminder_type=reminder_type, reminder_level=level, email_to=email_to)
    return ReminderDispatch(reminder=reminder, tenant=tenant, subscription=subscription, invoice=invoice)


class TestReminderEmails:

    @pytest.fixture
    def transport(self):
        email_service = AsyncMock()
        email_service.send_email.return_value = True
        return email_service

    async def test_dunning_email(self, transport):
        sent = await MandateEmailService(transport).send_reminder(_dispatch(level=2))

        assert sent is True
        message = transport.send_email.await_args.args[0]
        assert message.to == ["compta@saint-andre.fr"]
        assert "FA-2025-00001" in message.subject
        assert "Second rappel" in message.subject
        assert "1 300.00 EUR" in message.body_text
        assert "BC-2025-117" in message.body_html

    async def test_renewal_email(self, transport):
        sent = await MandateEmailService(transport).send_reminder(_dispatch(ReminderType.RENEWAL, with_invoice=False))

        assert sent is True
        message = transport.send_email.await_args.args[0]
        assert "01/03/2026" in message.subject

    async def test_no_recipient(self, transport):
        sent = await MandateEmailService(transport).send_reminder(_dispatch(email_to=None))
        assert sent is False
        transport.send_email.assert_not_awaited()

    async def test_dunning_without_invoice(self, transport):
        sent = await MandateEmailService(transport).send_reminder(_dispatch(with_invoice=False))
        assert sent is False
        transport.send_email.assert_not_awaited()

    async def test_transport_failure_is_reported(self, transport):
        transport.send_email.return_value = False
        assert await MandateEmailService(transport).send_reminder(_dispatch()) is False
