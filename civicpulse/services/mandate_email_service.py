"""
CivicPulse - Mandate Email Service

Renders dunning and renewal reminder emails for administrative mandate
billing. ``send_reminder`` matches the reminder sweep's sender contract:
it returns True when the message was handed to the transport.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional

from civicpulse.config import settings
from civicpulse.models.billing_enums import ReminderType
from civicpulse.services.email_service import EmailMessage, EmailService
from civicpulse.services.mandate_reminder_service import ReminderDispatch
from civicpulse.utils.dates import utcnow

logger = logging.getLogger(__name__)


class MandateEmailService:
    """Reminder emails sent to the buyer's accounting contact."""

    def __init__(self, email_service: Optional[EmailService] = None):
        self.email_service = email_service or EmailService()
        self.company_name = settings.app_name
        self.base_url = settings.base_url
        self.support_email = settings.support_email
        self.billing_email = settings.billing_email

    def _format_euros(self, amount: Decimal) -> str:
        return f"{amount:,.2f} EUR".replace(",", " ")

    @staticmethod
    def _format_date(value: date) -> str:
        return value.strftime("%d/%m/%Y")

    def _get_base_html_template(self, content: str) -> str:
        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{self.company_name}</title>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0; background-color: #f4f4f4; }}
        .container {{ max-width: 600px; margin: 0 auto; background: #ffffff; padding: 20px; }}
        .header {{ background: #1d3557; color: white; padding: 20px; text-align: center; }}
        .content {{ padding: 30px 20px; }}
        .warning {{ background: #fff3cd; border-left: 4px solid #ffc107; padding: 15px; margin: 20px 0; }}
        .danger {{ background: #f8d7da; border-left: 4px solid #dc3545; padding: 15px; margin: 20px 0; }}
        .info {{ background: #eef4fb; border-left: 4px solid #1d3557; padding: 15px; margin: 20px 0; }}
        .footer {{ background: #f8f9fa; padding: 20px; text-align: center; font-size: 12px; color: #666; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>{self.company_name}</h1></div>
        <div class="content">
            {content}
        </div>
        <div class="footer">
            <p>&copy; {utcnow().year} {settings.emitter_name}</p>
            <p><a href="mailto:{self.billing_email}">{self.billing_email}</a></p>
        </div>
    </div>
</body>
</html>
"""

    def _recipients(self, dispatch: ReminderDispatch) -> List[str]:
        email = dispatch.reminder.email_to or dispatch.tenant.accounting_contact_email or dispatch.tenant.contact_email
        return [email] if email else []

    # ===========================================
    # DUNNING
    # ===========================================

    def build_dunning_message(self, dispatch: ReminderDispatch, to: List[str]) -> EmailMessage:
        invoice = dispatch.invoice
        level = dispatch.reminder.reminder_level
        urgency_map = {
            1: ("Rappel : facture en attente de paiement", "warning"),
            2: ("Second rappel : facture impayée", "danger"),
            3: ("Dernier rappel avant suspension", "danger"),
        }
        title, style = urgency_map.get(level, urgency_map[3])
        subject = f"{title} - {invoice.invoice_number}"
        amount = self._format_euros(invoice.total_amount)
        due = self._format_date(invoice.due_date)
        references = ""
        if invoice.purchase_order_number:
            references += f"<p>Bon de commande : <strong>{invoice.purchase_order_number}</strong></p>"
        if invoice.engagement_number:
            references += f"<p>Numéro d'engagement : <strong>{invoice.engagement_number}</strong></p>"

        content = f"""
        <h2>{title}</h2>
        <p>Madame, Monsieur,</p>
        <p>Sauf erreur de notre part, la facture {invoice.invoice_number} adressée à
        {dispatch.tenant.name} reste impayée à ce jour.</p>
        <div class="{style}">
            <p><strong>Montant :</strong> {amount}</p>
            <p><strong>Échéance :</strong> {due}</p>
            {references}
        </div>
        <p>Si le mandatement a déjà été effectué, merci de ne pas tenir compte de ce message.</p>
        """
        body_text = (
            f"{title}\n\n"
            f"La facture {invoice.invoice_number} ({amount}, échéance {due}) adressée à "
            f"{dispatch.tenant.name} reste impayée.\n\n"
            f"Contact facturation : {self.billing_email}\n"
        )
        return EmailMessage(
            to=to,
            subject=subject,
            body_text=body_text,
            body_html=self._get_base_html_template(content),
            reply_to=self.billing_email,
        )

    # ===========================================
    # RENEWAL
    # ===========================================

    def build_renewal_message(self, dispatch: ReminderDispatch, to: List[str]) -> EmailMessage:
        subscription = dispatch.subscription
        end = self._format_date(subscription.end_date)
        subject = f"Renouvellement de votre abonnement {self.company_name} avant le {end}"
        content = f"""
        <h2>Renouvellement de votre abonnement</h2>
        <p>Madame, Monsieur,</p>
        <p>L'abonnement de {dispatch.tenant.name} arrive à échéance le <strong>{end}</strong>.</p>
        <div class="info">
            <p>Pour assurer la continuité du service, merci de nous transmettre un
            nouveau bon de commande depuis votre espace de facturation.</p>
        </div>
        <p><a href="{self.base_url}/billing">Accéder à la facturation</a></p>
        """
        body_text = (
            f"L'abonnement de {dispatch.tenant.name} arrive à échéance le {end}.\n"
            f"Merci de transmettre un nouveau bon de commande : {self.base_url}/billing\n"
        )
        return EmailMessage(
            to=to,
            subject=subject,
            body_text=body_text,
            body_html=self._get_base_html_template(content),
            reply_to=self.billing_email,
        )

    async def send_reminder(self, dispatch: ReminderDispatch) -> bool:
        to = self._recipients(dispatch)
        if not to:
            logger.warning(f"Reminder {dispatch.reminder.id} has no recipient")
            return False

        if dispatch.reminder.reminder_type == ReminderType.DUNNING:
            if dispatch.invoice is None:
                logger.warning(f"Dunning reminder {dispatch.reminder.id} has no invoice")
                return False
            message = self.build_dunning_message(dispatch, to)
        else:
            message = self.build_renewal_message(dispatch, to)

        return await self.email_service.send_email(message)
