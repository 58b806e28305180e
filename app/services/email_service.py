import base64
import logging
import re
from typing import List, Optional, Tuple

import requests

from app.config import settings
from app.models.transaction import Transaction
from app.models.user import User
from app.utils.template import render_template

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"


def is_valid_email(email):
    if isinstance(email, list):
        return all(is_valid_email(e) for e in email)

    if not email:
        return False

    return re.match(r"[^@]+@[^@]+\.[^@]+", email) is not None


def send_email(
    to: str,
    subject: str,
    html: str,
    attachments: Optional[List[Tuple[str, bytes, str]]] = None,
) -> bool:
    """
    Send email via Brevo.

    attachments: List of tuples
        (filename, file_bytes, mime_type)
    """

    if not is_valid_email(to):
        logger.warning(f"Invalid email address: {to}")
        return False

    if not settings.BREVO_API_KEY:
        logger.warning(f"BREVO_API_KEY not set, skipping email to {to}")
        return False

    payload = {
        "sender": {
            "email": settings.MAIL_FROM,
            "name": settings.STORE_NAME,
        },
        "to": [{"email": to}],
        "subject": subject,
        "htmlContent": html,
    }

    if attachments:
        payload["attachment"] = [
            {
                "name": filename,
                "content": base64.b64encode(file_bytes).decode("utf-8"),
            }
            for filename, file_bytes, mime_type in attachments
        ]

    headers = {
        "api-key": settings.BREVO_API_KEY,
        "Content-Type": "application/json",
    }

    try:
        response = requests.post(
            BREVO_API_URL,
            json=payload,
            headers=headers,
            timeout=10,
        )
    except requests.RequestException:
        logger.exception("Brevo email exception")
        return False

    if response.status_code >= 400:
        logger.error(
            f"Brevo email failed ({response.status_code}): {response.text}"
        )
        return False

    logger.info(f"Brevo email sent to {to}")
    return True


def send_payment_confirmation(
    txn: Transaction,
    user: User,
    title: str,
    invoice_pdf: Optional[bytes] = None,
) -> bool:
    """Payment confirmation with the invoice attached"""
    html = render_template(
        "user_emails/payment_confirmation.html",
        txn=txn,
        user=user,
        title=title,
        store_name=settings.STORE_NAME,
    )

    attachments = None
    if invoice_pdf:
        attachments = [(f"{txn.invoice_id}.pdf", invoice_pdf, "application/pdf")]

    return send_email(
        to=user.email,
        subject=f"Pagamento confirmado - {txn.invoice_id}",
        html=html,
        attachments=attachments,
    )
