"""
Outbound email through the Resend API.

Mail is sent from FastAPI background tasks, so send failures are logged and
never reach the request that triggered them.
"""
import logging
from typing import Dict, Optional

import resend

from config import FRONTEND_URL, MAIL_FROM, RESEND_API_KEY

logger = logging.getLogger(__name__)


def send_email(to: str, subject: str, text: str, html: Optional[str] = None) -> bool:
    if not RESEND_API_KEY:
        logger.warning("RESEND_API_KEY not configured, dropping email to %s (%s)", to, subject)
        return False

    payload: Dict[str, object] = {
        "from": MAIL_FROM,
        "to": [to],
        "subject": subject,
        "text": text,
    }
    if html:
        payload["html"] = html

    resend.api_key = RESEND_API_KEY
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        logger.error("Failed to send email to %s: %s", to, exc)
        return False

    if not isinstance(response, dict) or not response.get("id"):
        logger.error("Resend rejected email to %s: %s", to, response)
        return False

    logger.info("Email %s sent to %s: %s", response["id"], to, subject)
    return True


def send_verification_email(to: str, username: str, token: str) -> bool:
    url = f"{FRONTEND_URL}/verify-email/{token}"
    text = (
        f"Hello {username},\n\n"
        f"Please confirm your email address by opening this link:\n{url}\n"
    )
    html = (
        f"<p>Hello {username},</p>"
        f"<p>Please confirm your email address by opening this link:</p>"
        f'<p><a href="{url}">Verify email</a></p>'
    )
    return send_email(to, "Verify your email address", text, html)


def send_reset_code_email(to: str, code: str, ttl_seconds: int) -> bool:
    minutes = max(1, ttl_seconds // 60)
    text = f"Your password reset code is: {code}\n\nThe code expires in {minutes} minute(s)."
    return send_email(to, "Password reset code", text)
