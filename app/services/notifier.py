# app/services/notifier.py
"""
Customer notifications for waitlist offers.

Offers and reminders go out by SMS (Africa's Talking) and email (Resend).
Email is always attempted when the customer has an address, and its copy
says whether the SMS got through.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import africastalking
import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

OFFER_TEMPLATE = "waitlist_offer"
REMINDER_TEMPLATE = "waitlist_reminder"


@dataclass
class Contact:
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_entry(cls, entry) -> "Contact":
        return cls(
            name=entry.customer_name,
            email=entry.customer_email,
            phone=entry.customer_phone,
        )


class Notifier:
    """Delivery interface used by the waitlist services."""

    def send(self, contact: Contact, template: str, context: dict) -> bool:
        """Deliver a templated message. Returns True if any channel succeeded."""
        raise NotImplementedError


def _sms_body(template: str, contact: Contact, context: dict) -> str:
    slot = context.get("slot_label", "")
    if template == REMINDER_TEMPLATE:
        return (
            f"Hi {contact.name}, your slot {slot} is still held for you but the offer "
            f"expires in {context['expires_in_minutes']} minutes. "
            f"Confirm: {context['claim_link']} Decline: {context['decline_link']}"
        )
    return (
        f"Hi {contact.name}! A slot opened up {slot}. "
        f"Confirm within {context['expires_in_minutes']} minutes: {context['claim_link']} "
        f"Decline: {context['decline_link']}"
    )


def _email_params(template: str, contact: Contact, context: dict, sms_sent: bool) -> dict:
    slot = context.get("slot_label", "")
    if template == REMINDER_TEMPLATE:
        subject = "Reminder: your waitlist offer expires soon"
        lead = f"<p>Your offered slot {slot} is still held for you.</p>"
    else:
        subject = "A slot is available for you!"
        lead = f"<p>A slot has opened for your requested service {slot}.</p>"
    delivery_copy = (
        "We've also sent this by SMS."
        if sms_sent
        else "We could not deliver SMS, so we're sending this by email."
    )
    html_content = (
        f"<p>Hi {contact.name},</p>{lead}"
        f"<p><a href=\"{context['claim_link']}\">Confirm booking</a> "
        f"(expires in {context['expires_in_minutes']} minutes)</p>"
        f"<p><a href=\"{context['decline_link']}\">Decline offer</a></p>"
    )
    if contact.phone:
        html_content += f"<p>{delivery_copy}</p>"
    return {
        "from": settings.WAITLIST_EMAIL_FROM,
        "to": [contact.email],
        "subject": subject,
        "html": html_content,
    }


class WaitlistNotifier(Notifier):
    """SMS and email delivery for claim links."""

    def __init__(self):
        self._sms = None
        self._sms_initialized = False

    @property
    def sms(self):
        """Lazy-initialize the Africa's Talking client."""
        if not self._sms_initialized:
            self._sms_initialized = True
            if not settings.AFRICASTALKING_API_KEY:
                logger.info("AFRICASTALKING_API_KEY not set, waitlist SMS disabled")
                return None
            africastalking.initialize(
                settings.AFRICASTALKING_USERNAME, settings.AFRICASTALKING_API_KEY
            )
            self._sms = africastalking.SMS
        return self._sms

    @staticmethod
    def _mask_phone(phone: str) -> str:
        if len(phone) <= 4:
            return "****"
        return phone[:4] + "****" + phone[-4:]

    def _send_sms(self, phone: str, message: str) -> bool:
        masked = self._mask_phone(phone)
        if not self.sms:
            logger.debug(f"Waitlist SMS skipped (gateway not configured) to {masked}")
            return False
        try:
            response = self.sms.send(
                message,
                [phone],
                sender_id=settings.AFRICASTALKING_SENDER_ID or None,
            )
            logger.info(
                f"Waitlist SMS sent to {masked}: "
                f"status={response.get('SMSMessageData', {}).get('Message', 'unknown')}"
            )
            return True
        except Exception as e:
            logger.error(f"Waitlist SMS send failed to {masked}: {e}")
            return False

    def _send_email(self, params: dict) -> bool:
        if not settings.RESEND_API_KEY:
            logger.warning(f"Skipping waitlist email to {params['to'][0]} - RESEND_API_KEY not configured")
            return False
        resend.api_key = settings.RESEND_API_KEY
        try:
            response = resend.Emails.send(params)
            logger.info(
                f"Sent waitlist email to {params['to'][0]}. Resend ID: {response.get('id')}"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to send waitlist email to {params['to'][0]}: {e}", exc_info=True)
            return False

    def send(self, contact: Contact, template: str, context: dict) -> bool:
        sms_sent = False
        email_sent = False

        if contact.phone:
            sms_sent = self._send_sms(contact.phone, _sms_body(template, contact, context))
        if contact.email:
            email_sent = self._send_email(_email_params(template, contact, context, sms_sent))

        if not (sms_sent or email_sent):
            logger.warning(f"Waitlist {template} could not be delivered to {contact.name}")
        return sms_sent or email_sent
