"""
Tests for the scheduled sweeps, the task runner and the email transport.
"""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from civicpulse.services.email_service import EmailMessage, EmailProvider, EmailService
from civicpulse.tasks.scheduled_tasks import (
    TaskRunner,
    process_mandate_reminders,
    schedule_renewal_reminders,
)


@pytest.fixture
def mock_transport():
    with patch.object(EmailService, "_determine_provider", return_value=EmailProvider.MOCK):
        yield


class TestSweeps:

    async def test_schedule_renewal_reminders(self, db_session, tenant, make_subscription, today):
        end = today + timedelta(days=25)
        await make_subscription(tenant, end - timedelta(days=365), end)

        assert await schedule_renewal_reminders(db_session, today) == {"reminders_created": 2}

    async def test_reminders_go_through_the_email_service(
        self, db_session, tenant, make_subscription, mock_transport, today,
    ):
        end = today + timedelta(days=25)
        await make_subscription(tenant, end - timedelta(days=365), end)
        await schedule_renewal_reminders(db_session, today)

        counts = await process_mandate_reminders(db_session, today=today)

        assert counts == {"due": 2, "sent": 2, "failed": 0, "skipped": 0}


class TestTaskRunner:

    async def test_runs_every_sweep(self, db_engine, db_session, tenant, make_subscription, mock_transport, today):
        end = today + timedelta(days=10)
        await make_subscription(tenant, end - timedelta(days=365), end)
        factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

        results = await TaskRunner(factory).run_scheduled_tasks(today)

        assert all(r["status"] == "success" for r in results.values())
        assert results["apply_due_billing_changes"]["result"] == {"applied": 0, "failed": 0}
        assert results["schedule_renewal_reminders"]["result"] == {"reminders_created": 3}
        assert results["generate_due_renewal_orders"]["result"] == {"created": 1, "failed": 0}
        assert results["process_mandate_reminders"]["result"]["sent"] == 3

    async def test_run_task_propagates_errors(self, db_engine):
        factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)

        async def broken(db, today=None):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await TaskRunner(factory).run_task(broken)


class TestEmailService:

    @pytest.fixture
    def message(self):
        return EmailMessage(
            to=["compta@saint-andre.fr"],
            subject="Rappel",
            body_text="Facture FA-2025-00001",
            body_html="<p>Facture FA-2025-00001</p>",
            reply_to="facturation@civicpulse.fr",
        )

    @pytest.fixture
    def sendgrid(self):
        service = EmailService()
        service.sendgrid_api_key = "SG.test"
        return service

    async def test_sendgrid_accepted(self, sendgrid, message):
        post = AsyncMock(return_value=SimpleNamespace(status_code=202, text=""))
        with patch.object(httpx.AsyncClient, "post", post):
            assert await sendgrid.send_email(message) is True

        payload = post.await_args.kwargs["json"]
        assert payload["personalizations"][0]["to"] == [{"email": "compta@saint-andre.fr"}]
        assert payload["reply_to"] == {"email": "facturation@civicpulse.fr"}
        assert [c["type"] for c in payload["content"]] == ["text/plain", "text/html"]

    async def test_sendgrid_error_returns_false(self, sendgrid, message):
        post = AsyncMock(return_value=SimpleNamespace(status_code=500, text="oops"))
        with patch.object(httpx.AsyncClient, "post", post):
            assert await sendgrid.send_email(message) is False

    async def test_transport_exception_returns_false(self, sendgrid, message):
        post = AsyncMock(side_effect=httpx.ConnectError("unreachable"))
        with patch.object(httpx.AsyncClient, "post", post):
            assert await sendgrid.send_email(message) is False
