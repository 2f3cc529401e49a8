# ============================================================================
# APARTRACK - Email Delivery Channel
# ============================================================================
# Supports SendGrid (preferred) and SMTP fallback. Both paths are bounded
# by send_timeout_seconds.
# ============================================================================

import json
import logging
import smtplib
import urllib.request
import urllib.error
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from .base import DeliveryChannel, DeliveryResult
from ..config import get_config

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailDelivery(DeliveryChannel):
    """Email delivery using SendGrid or SMTP."""

    channel_name = "email"

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else get_config("send_timeout_seconds", 10)

    def is_configured(self) -> bool:
        provider = get_config("email_provider", "sendgrid")

        if provider == "sendgrid":
            return bool(get_config("sendgrid_api_key"))
        return bool(get_config("smtp_user") and get_config("smtp_pass"))

    def send(
        self,
        recipient: str,
        subject: str,
        body_text: str,
        body_html: Optional[str] = None,
        **kwargs,
    ) -> DeliveryResult:
        if not recipient or "@" not in recipient:
            return self._fail(recipient, f"Invalid email address: {recipient!r}")

        provider = get_config("email_provider", "sendgrid")
        if provider == "sendgrid":
            return self._send_sendgrid(recipient, subject, body_text, body_html)
        return self._send_smtp(recipient, subject, body_text, body_html)

    def _fail(self, recipient: str, error: str) -> DeliveryResult:
        return DeliveryResult(success=False, recipient=recipient, channel=self.channel_name, error=error)

    def _send_sendgrid(self, recipient: str, subject: str, body_text: str,
                       body_html: Optional[str] = None) -> DeliveryResult:
        api_key = get_config("sendgrid_api_key")
        from_email = get_config("from_email", "noreply@apartrack.local")
        from_name = get_config("from_name", "APARTRACK Inspection")

        if not api_key:
            logger.info(
                "SendGrid disabled — would send email to=%s subject=%r body_len=%d",
                recipient, subject, len(body_text),
            )
            return self._fail(recipient, "SendGrid API key not configured — delivery skipped (logged)")

        content = [{"type": "text/plain", "value": body_text}]
        if body_html:
            content.append({"type": "text/html", "value": body_html})

        payload = {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": from_email, "name": from_name},
            "subject": subject,
            "content": content,
        }

        try:
            req = urllib.request.Request(
                SENDGRID_SEND_URL,
                data=json.dumps(payload).encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                },
                method="POST",
            )

            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.getcode()
                message_id = resp.headers.get("X-Message-Id", "")

            if status in (200, 201, 202):
                logger.info(f"Email sent via SendGrid to {recipient}")
                return DeliveryResult(success=True, recipient=recipient, channel=self.channel_name,
                                      message_id=message_id)
            return self._fail(recipient, f"SendGrid returned status {status}")

        except urllib.error.HTTPError as e:
            error_body = e.read().decode() if e.fp else str(e)
            logger.error(f"SendGrid error for {recipient}: {error_body}")
            return self._fail(recipient, f"SendGrid error: {error_body}")
        except (urllib.error.URLError, OSError) as e:
            logger.error(f"Email send failed for {recipient}: {e}")
            return self._fail(recipient, str(e))

    def _send_smtp(self, recipient: str, subject: str, body_text: str,
                   body_html: Optional[str] = None) -> DeliveryResult:
        host = get_config("smtp_host", "smtp.gmail.com")
        port = get_config("smtp_port", 587)
        user = get_config("smtp_user")
        password = get_config("smtp_pass")
        from_email = get_config("from_email") or user
        from_name = get_config("from_name", "APARTRACK Inspection")

        if not user or not password:
            logger.info(
                "SMTP disabled — would send email to=%s subject=%r body_len=%d",
                recipient, subject, len(body_text),
            )
            return self._fail(recipient, "SMTP not configured — delivery skipped (logged)")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{from_name} <{from_email}>"
        msg["To"] = recipient
        msg.attach(MIMEText(body_text, "plain"))
        if body_html:
            msg.attach(MIMEText(body_html, "html"))

        try:
            with smtplib.SMTP(host, port, timeout=self.timeout) as server:
                server.starttls()
                server.login(user, password)
                server.sendmail(from_email, [recipient], msg.as_string())

            logger.info(f"Email sent via SMTP to {recipient}")
            return DeliveryResult(success=True, recipient=recipient, channel=self.channel_name)

        except smtplib.SMTPAuthenticationError as e:
            logger.error(f"SMTP auth failed: {e}")
            return self._fail(recipient, "SMTP authentication failed")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed: {e}")
            return self._fail(recipient, str(e))
