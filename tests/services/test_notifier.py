from unittest.mock import MagicMock

import resend

from app.core.config import settings
from app.services.notifier import WaitlistNotifier, Contact, OFFER_TEMPLATE, REMINDER_TEMPLATE

CONTEXT = {
    "claim_link": "http://app.test/waitlist/claim?token=abc",
    "decline_link": "http://api.test/waitlist/claim?token=abc&action=decline",
    "slot_label": "on Wed 01 May at 10:00",
    "expires_in_minutes": 120,
}


def _notifier_with_sms(sms_client):
    notifier = WaitlistNotifier()
    notifier._sms = sms_client
    notifier._sms_initialized = True
    return notifier


def test_sms_and_email_both_sent(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    send_email = MagicMock(return_value={"id": "email_1"})
    monkeypatch.setattr(resend.Emails, "send", send_email)
    sms = MagicMock()
    sms.send.return_value = {"SMSMessageData": {"Message": "Sent to 1/1"}}

    delivered = _notifier_with_sms(sms).send(
        Contact(name="Ada", email="ada@example.com", phone="+254712345678"), OFFER_TEMPLATE, CONTEXT
    )

    assert delivered is True
    message, recipients = sms.send.call_args.args[:2]
    assert CONTEXT["claim_link"] in message
    assert recipients == ["+254712345678"]
    params = send_email.call_args.args[0]
    assert params["to"] == ["ada@example.com"]
    assert params["subject"] == "A slot is available for you!"
    assert "also sent this by SMS" in params["html"]


def test_email_fallback_when_sms_fails(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "re_test")
    send_email = MagicMock(return_value={"id": "email_1"})
    monkeypatch.setattr(resend.Emails, "send", send_email)
    sms = MagicMock()
    sms.send.side_effect = RuntimeError("gateway down")

    delivered = _notifier_with_sms(sms).send(
        Contact(name="Ada", email="ada@example.com", phone="+254712345678"), REMINDER_TEMPLATE, CONTEXT
    )

    assert delivered is True
    params = send_email.call_args.args[0]
    assert params["subject"] == "Reminder: your waitlist offer expires soon"
    assert "could not deliver SMS" in params["html"]


def test_nothing_configured_is_not_delivered(monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")
    monkeypatch.setattr(settings, "AFRICASTALKING_API_KEY", "")

    delivered = WaitlistNotifier().send(
        Contact(name="Ada", email="ada@example.com", phone="+254712345678"), OFFER_TEMPLATE, CONTEXT
    )

    assert delivered is False


def test_mask_phone():
    assert WaitlistNotifier._mask_phone("+254712345678") == "+254****5678"
    assert WaitlistNotifier._mask_phone("123") == "****"
