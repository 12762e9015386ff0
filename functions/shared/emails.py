"""
Participation confirmation email via SES.
"""

import logging
import os
import time
from html import escape

from botocore.exceptions import ClientError

from shared.aws_clients import get_ses
from shared.logging_utils import log_external_call, mask_email

logger = logging.getLogger(__name__)

CONFIRMATION_SUBJECT = "Dein Golden Ticket ist registriert"


def send_confirmation_email(email: str, first_name: str, ticket_code: str) -> bool:
    """
    Confirm a golden ticket registration to the participant.

    Best-effort: returns False when no sender is configured or SES rejects
    the message.
    """
    sender = os.environ.get("CONFIRMATION_EMAIL_SENDER")
    if not sender:
        logger.info("CONFIRMATION_EMAIL_SENDER not set, skipping confirmation email")
        return False

    name = first_name or "Naschkatze"
    start = time.time()
    try:
        get_ses().send_email(
            Source=sender,
            Destination={"ToAddresses": [email]},
            Message={
                "Subject": {"Data": CONFIRMATION_SUBJECT, "Charset": "UTF-8"},
                "Body": {
                    "Html": {
                        "Data": f"""
                        <html>
                        <body style="font-family: system-ui, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
                            <h1 style="color: #b8860b;">Hallo {escape(name)},</h1>
                            <p style="color: #475569; font-size: 16px;">
                                vielen Dank für deine Teilnahme! Dein Golden Ticket wurde erfolgreich registriert.
                            </p>
                            <p style="font-size: 20px; font-weight: bold; letter-spacing: 2px; color: #1e293b;">
                                {escape(ticket_code)}
                            </p>
                            <p style="color: #64748b; font-size: 14px;">
                                Bewahre dein Ticket bis zur Gewinnbenachrichtigung gut auf.
                            </p>
                            <p style="color: #94a3b8; font-size: 12px;">
                                Du erhältst diese E-Mail, weil du an unserem Golden Ticket Gewinnspiel teilgenommen hast.
                            </p>
                        </body>
                        </html>
                        """,
                        "Charset": "UTF-8",
                    },
                    "Text": {
                        "Data": f"""Hallo {name},

vielen Dank für deine Teilnahme! Dein Golden Ticket wurde erfolgreich registriert.

Ticket-Code: {ticket_code}

Bewahre dein Ticket bis zur Gewinnbenachrichtigung gut auf.
""",
                        "Charset": "UTF-8",
                    },
                },
            },
        )
    except ClientError as e:
        log_external_call(logger, "ses", "send_email", False, (time.time() - start) * 1000, str(e))
        return False

    log_external_call(logger, "ses", "send_email", True, (time.time() - start) * 1000)
    logger.info(f"Confirmation email sent to {mask_email(email)}")
    return True
