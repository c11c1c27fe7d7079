"""
Email Service using Resend API with MJML templates
Handles the spa's operational email notifications
"""

import asyncio
import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import EMAIL_FROM_ADDRESS, ERROR_ALERT_DEDUP_SECONDS, ERROR_ALERT_RECIPIENTS, RESEND_API_KEY
from .email_templates import error_alert_template

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


class EmailError(Exception):
    """Email could not be rendered or sent"""


def compile_mjml_to_html(mjml_content: str) -> str:
    try:
        result = mjml_to_html(mjml_content)
        if hasattr(result, "html"):
            return result.html
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise EmailError(f"Failed to compile MJML template: {e}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (compiled to HTML here)
        from_address: Optional custom from address

    Returns:
        Resend response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ RESEND_API_KEY missing - email not sent")
        raise EmailError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        # The resend SDK is synchronous
        response = await asyncio.to_thread(
            resend.Emails.send,
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            },
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise EmailError(f"Failed to send email: {e}") from e


# ============================================
# Pre-built emails
# ============================================


async def send_error_alert(
    message: str,
    severity: str = "error",
    url: Optional[str] = None,
    user_id: Optional[str] = None,
    stack: Optional[str] = None,
    component_stack: Optional[str] = None,
) -> dict:
    """Alert the staff inbox about a client-side error"""
    mjml_content = error_alert_template(
        message=message,
        severity=severity,
        url=url,
        user_id=user_id,
        stack=stack,
        component_stack=component_stack,
        dedup_minutes=ERROR_ALERT_DEDUP_SECONDS // 60,
    )
    return await send_email(
        to=ERROR_ALERT_RECIPIENTS,
        subject=f"[{severity.upper()}] System Alert: {message[:50]}...",
        mjml_content=mjml_content,
    )
