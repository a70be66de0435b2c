import logging
import smtplib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import List, Optional

import httpx

from utils.audit import mask_email
from utils.clock import utcnow
from utils.errors import ErrorCode, InfrastructureError

logger = logging.getLogger(__name__)


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: Optional[str] = None
    sent_at: datetime = field(default_factory=utcnow)


class EmailDispatcher(ABC):
    @abstractmethod
    def send(self, message: OutgoingEmail) -> None:
        """Delivers one message or raises InfrastructureError."""


class MockEmailDispatcher(EmailDispatcher):
    """Keeps every message in memory; used in development and tests."""

    def __init__(self):
        self._mutex = threading.Lock()
        self.sent: List[OutgoingEmail] = []

    def send(self, message: OutgoingEmail) -> None:
        with self._mutex:
            self.sent.append(message)
        logger.info("Mock email to %s: %s", mask_email(message.to), message.subject)

    def last_for(self, email: str) -> Optional[OutgoingEmail]:
        with self._mutex:
            for message in reversed(self.sent):
                if message.to == email:
                    return message
        return None

    def clear(self) -> None:
        with self._mutex:
            self.sent.clear()


class SmtpEmailDispatcher(EmailDispatcher):
    def __init__(self, host, port=587, username=None, password=None, from_email=None, use_tls=True, timeout=10):
        if not host or not (from_email or username):
            raise ValueError("SMTP is not configured")
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, message: OutgoingEmail) -> None:
        msg = EmailMessage()
        msg["From"] = self.from_email
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg.set_content(message.text)
        if message.html:
            msg.add_alternative(message.html, subtype="html")

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP delivery to %s failed: %s", mask_email(message.to), exc)
            raise InfrastructureError(ErrorCode.EMAIL_SEND_FAILED, "Failed to send verification code") from exc
        logger.info("Email sent to %s: %s", mask_email(message.to), message.subject)


class SendGridEmailDispatcher(EmailDispatcher):
    API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key, from_email, api_url=None, timeout=10.0, transport=None):
        if not api_key:
            raise ValueError("SendGrid API key is required")
        if not from_email:
            raise ValueError("EMAIL_FROM is required for SendGrid")
        self.api_key = api_key
        self.from_email = from_email
        self.api_url = api_url or self.API_URL
        self.timeout = timeout
        self.transport = transport

    def _payload(self, message: OutgoingEmail) -> dict:
        content = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})
        return {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self.from_email},
            "subject": message.subject,
            "content": content,
        }

    def send(self, message: OutgoingEmail) -> None:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                resp = client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self._payload(message),
                )
        except httpx.HTTPError as exc:
            logger.error("SendGrid delivery to %s failed: %s", mask_email(message.to), exc)
            raise InfrastructureError(ErrorCode.EMAIL_SEND_FAILED, "Failed to send verification code") from exc

        if resp.status_code not in (200, 202):
            logger.error(
                "SendGrid rejected mail to %s: status=%s body=%s",
                mask_email(message.to), resp.status_code, resp.text[:500],
            )
            raise InfrastructureError(ErrorCode.EMAIL_SEND_FAILED, "Failed to send verification code")
        logger.info("Email sent to %s: %s", mask_email(message.to), message.subject)


EMAIL_PROVIDERS = ("mock", "smtp", "sendgrid")


def create_dispatcher(config) -> EmailDispatcher:
    provider = (config.get("EMAIL_PROVIDER") or "mock").strip().lower()
    if provider not in EMAIL_PROVIDERS:
        raise ValueError(f"Unknown EMAIL_PROVIDER {provider!r}, expected one of {', '.join(EMAIL_PROVIDERS)}")

    logger.info("Using %s email provider", provider)
    if provider == "sendgrid":
        return SendGridEmailDispatcher(
            api_key=config.get("EMAIL_API_KEY"),
            from_email=config.get("EMAIL_FROM"),
            api_url=config.get("SENDGRID_API_URL"),
        )
    if provider == "smtp":
        return SmtpEmailDispatcher(
            host=config.get("SMTP_HOST"),
            port=config.get("SMTP_PORT", 587),
            username=config.get("SMTP_USERNAME"),
            password=config.get("SMTP_PASSWORD"),
            from_email=config.get("EMAIL_FROM"),
            use_tls=config.get("SMTP_USE_TLS", True),
        )
    return MockEmailDispatcher()


def otp_email(to: str, code: str, ttl_minutes: int, app_url: str = None) -> OutgoingEmail:
    lines = [
        f"Your login code: {code}",
        "",
        f"This code will expire in {ttl_minutes} minutes.",
    ]
    if app_url:
        lines.append(f"Continue signing in at {app_url}")
    lines += ["", "If you didn't request this code, please ignore this email."]

    html = (
        "<h2>Your Login Code</h2>"
        "<p>Use this code to complete your login:</p>"
        f'<p style="font-size:32px;font-weight:bold;letter-spacing:4px">{code}</p>'
        f"<p>This code will expire in {ttl_minutes} minutes.</p>"
        "<p><strong>Security Notice:</strong> If you didn't request this code, please ignore this email.</p>"
    )
    return OutgoingEmail(to=to, subject="Your login code", text="\n".join(lines), html=html)
