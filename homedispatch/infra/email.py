import logging
import smtplib
from email.message import EmailMessage

import anyio
import httpx

from homedispatch.settings import settings

logger = logging.getLogger(__name__)


class EmailAdapter:
    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self.http_client = http_client

    async def send_email(self, to_email: str, subject: str, body: str) -> bool:
        if settings.email_mode == "off":
            return False
        await self._send_email(to_email=to_email, subject=subject, body=body)
        return True

    async def _send_email(self, to_email: str, subject: str, body: str) -> None:
        if settings.email_mode == "sendgrid":
            await self._send_via_sendgrid(to_email=to_email, subject=subject, body=body)
            return
        if settings.email_mode == "smtp":
            await self._send_via_smtp(to_email=to_email, subject=subject, body=body)
            return
        raise RuntimeError("unsupported_email_mode")

    async def _send_via_sendgrid(self, to_email: str, subject: str, body: str) -> None:
        api_key = settings.sendgrid_api_key
        from_email = settings.email_sender
        if not api_key or not from_email:
            raise RuntimeError("sendgrid_not_configured")
        payload = {
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": from_email},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }
        if settings.email_from_name:
            payload["from"]["name"] = settings.email_from_name
        client = self.http_client or httpx.AsyncClient()
        close_client = self.http_client is None
        try:
            response = await client.post(
                "https://api.sendgrid.com/v3/mail/send",
                headers={"Authorization": f"Bearer {api_key}"},
                json=payload,
                timeout=10,
            )
        finally:
            if close_client:
                await client.aclose()
        if response.status_code >= 400:
            raise RuntimeError(f"sendgrid_status_{response.status_code}")

    async def _send_via_smtp(self, to_email: str, subject: str, body: str) -> None:
        host = settings.smtp_host
        port = settings.smtp_port or 587
        from_email = settings.email_sender
        if not host or not from_email:
            raise RuntimeError("smtp_not_configured")

        message = EmailMessage()
        message["From"] = from_email
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        def _send_blocking() -> None:
            smtp_cls = smtplib.SMTP if settings.smtp_use_tls else smtplib.SMTP_SSL
            with smtp_cls(host, port) as smtp:
                if settings.smtp_use_tls:
                    smtp.starttls()
                if settings.smtp_username and settings.smtp_password:
                    smtp.login(settings.smtp_username, settings.smtp_password)
                smtp.send_message(message)

        await anyio.to_thread.run_sync(_send_blocking)


def resolve_email_adapter(app_settings) -> EmailAdapter | None:
    if app_settings.email_mode == "off":
        return None
    return EmailAdapter()
