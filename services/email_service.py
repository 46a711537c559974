import logging
import re
import smtplib

from flask import current_app
from flask_mail import Message

from extensions import mail
from services.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

_VARIABLE = re.compile(r"{{\s*(\w+)\s*}}")


def lead_variables(lead, company=None):
    return {
        "firstName": lead.first_name or "there",
        "lastName": lead.last_name or "",
        "email": lead.email,
        "title": lead.title or "",
        "companyName": lead.company_name or "",
        "senderCompany": company.name if company else "",
    }


def replace_variables(text, variables):
    """Substitutes ``{{name}}`` placeholders; unknown names are left as-is."""
    if not text:
        return ""
    return _VARIABLE.sub(lambda m: str(variables.get(m.group(1), m.group(0))), text)


def send_email(to_email, subject, body, sender=None):
    """
    Hands one message to the configured mail server and returns its Message-ID.
    Raises EmailDeliveryError if the message cannot be sent.
    """
    sender = sender or current_app.config.get('MAIL_DEFAULT_SENDER')
    if not sender:
        raise EmailDeliveryError("No sender configured. Set MAIL_DEFAULT_SENDER or MAIL_USERNAME.")

    msg = Message(subject=subject, sender=sender, recipients=[to_email], body=body)
    try:
        mail.send(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Could not send email to %s: %s", to_email, e)
        raise EmailDeliveryError(f"Could not send email to {to_email}: {e}") from e

    logger.info("Email sent to %s", to_email)
    return getattr(msg, 'msgId', None)
