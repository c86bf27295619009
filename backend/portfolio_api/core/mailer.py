# portfolio_api/core/mailer.py
import asyncio
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Optional

import httpx

from portfolio_api.core.errors import (
    TransportAuthError,
    TransportGenericError,
    TransportNetworkError,
)
from portfolio_api.lib.validation import Submission

log = logging.getLogger("uvicorn.error")

SUBJECT_PREFIX = "New Contact Form Submission from"


@dataclass(frozen=True)
class DispatchResult:
    message_id: str
    transport: str


def render_body(submission: Submission, site_name: str) -> str:
    received = submission.received_at.strftime("%Y-%m-%d %H:%M:%S UTC")
    return (
        "New Contact Form Submission from Portfolio Website\n"
        "\n"
        f"From: {submission.name}\n"
        f"Email: {submission.email}\n"
        f"Date: {received}\n"
        "\n"
        "Message:\n"
        f"{submission.message}\n"
        "\n"
        "---\n"
        f"This message was sent from the contact form on {site_name}."
    )


class MailDispatcher(ABC):
    """Sends one operator notification per submission. No retries."""

    transport = "none"

    def __init__(
        self,
        recipient: str,
        sender: str,
        sender_name: str = "Portfolio Contact Form",
        site_name: str = "my portfolio website",
        timeout: float = 10.0,
    ):
        self.recipient = recipient
        self.sender = sender
        self.sender_name = sender_name
        self.site_name = site_name
        self.timeout = timeout

    @property
    def from_header(self) -> str:
        return formataddr((self.sender_name, self.sender))

    def subject_for(self, submission: Submission) -> str:
        # header values must stay on one line
        name = " ".join(submission.name.split())
        return f"{SUBJECT_PREFIX} {name}"

    @abstractmethod
    async def send(self, submission: Submission) -> DispatchResult:
        """Deliver the notification or raise a TransportError."""


class SmtpDispatcher(MailDispatcher):
    transport = "smtp"

    def __init__(self, host: str, port: int, user: str, password: str, secure: bool = True, **kwargs):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.secure = secure

    def build_message(self, submission: Submission) -> MIMEText:
        msg = MIMEText(render_body(submission, self.site_name), "plain", "utf-8")
        msg["Subject"] = self.subject_for(submission)
        msg["From"] = self.from_header
        msg["To"] = self.recipient
        msg["Reply-To"] = submission.email
        msg["Message-ID"] = make_msgid(domain=self.sender.rpartition("@")[2] or None)
        msg["X-Priority"] = "3"
        return msg

    def _deliver(self, msg: MIMEText) -> None:
        if self.secure:
            with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.login(self.user, self.password)
                smtp.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                smtp.login(self.user, self.password)
                smtp.send_message(msg)

    async def send(self, submission: Submission) -> DispatchResult:
        msg = self.build_message(submission)
        try:
            await asyncio.wait_for(asyncio.to_thread(self._deliver, msg), timeout=self.timeout)
        except smtplib.SMTPAuthenticationError as e:
            raise TransportAuthError(
                f"SMTP login rejected for {self.user}@{self.host}: {e.smtp_code} {e.smtp_error!r}",
                self.transport,
            ) from e
        except (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected) as e:
            raise TransportNetworkError(f"SMTP connection to {self.host}:{self.port} failed: {e}", self.transport) from e
        except smtplib.SMTPException as e:
            raise TransportGenericError(f"SMTP error from {self.host}: {e}", self.transport) from e
        except (asyncio.TimeoutError, OSError) as e:
            raise TransportNetworkError(
                f"SMTP {self.host}:{self.port} unreachable or timed out: {e!r}", self.transport
            ) from e

        message_id = msg["Message-ID"]
        log.info(f"[mailer] sent via smtp id={message_id} reply_to={submission.email}")
        return DispatchResult(message_id=message_id, transport=self.transport)


class ResendDispatcher(MailDispatcher):
    transport = "resend"

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.resend.com/emails",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.api_url = api_url
        self._http_transport = http_transport

    def build_payload(self, submission: Submission) -> dict:
        return {
            "from": self.from_header,
            "to": [self.recipient],
            "subject": self.subject_for(submission),
            "text": render_body(submission, self.site_name),
            "reply_to": submission.email,
            "headers": {"X-Priority": "3"},
        }

    async def send(self, submission: Submission) -> DispatchResult:
        try:
            async with httpx.AsyncClient(transport=self._http_transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    json=self.build_payload(submission),
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Accept": "application/json",
                    },
                )
        except httpx.TransportError as e:
            raise TransportNetworkError(f"Resend request failed: {e!r}", self.transport) from e

        if response.status_code in (401, 403):
            raise TransportAuthError(
                f"Resend rejected the API key: {response.status_code} {response.text[:200]}",
                self.transport,
            )
        if not response.is_success:
            raise TransportGenericError(
                f"Resend returned {response.status_code}: {response.text[:200]}", self.transport
            )

        try:
            message_id = str(response.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise TransportGenericError(f"Resend reply had no email id: {response.text[:200]}", self.transport) from e

        log.info(f"[mailer] sent via resend id={message_id} reply_to={submission.email}")
        return DispatchResult(message_id=message_id, transport=self.transport)


def build_dispatcher(settings) -> MailDispatcher:
    common = dict(
        recipient=settings.recipient_email,
        sender=settings.sender_address,
        sender_name=settings.mail_from_name,
        site_name=settings.site_name,
        timeout=settings.mail_timeout_seconds,
    )
    if settings.mail_transport == "smtp":
        return SmtpDispatcher(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            secure=settings.smtp_secure,
            **common,
        )
    if settings.mail_transport == "resend":
        return ResendDispatcher(api_key=settings.resend_api_key, api_url=settings.resend_api_url, **common)
    raise RuntimeError("No mail transport configured (SMTP_* or RESEND_API_KEY)")
