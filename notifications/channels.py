from __future__ import annotations

import asyncio
import logging
import mimetypes
import smtplib
import socket
import ssl
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Iterator, Optional, Protocol

from .config import EmailSettings, get_settings
from .models import Attachment, DeliveryResult, FailureKind, OutboundEmail, Priority

LOGGER = logging.getLogger(__name__)

PRIORITY_HEADERS = {
    Priority.HIGH: ("1 (Highest)", "High"),
    Priority.NORMAL: ("3 (Normal)", "Normal"),
    Priority.LOW: ("5 (Lowest)", "Low"),
}


class Transport(Protocol):
    async def send(self, email: OutboundEmail) -> DeliveryResult:
        ...


def classify_error(exc: BaseException) -> FailureKind:
    """Map an exception raised while talking to the relay onto a failure kind."""
    if isinstance(exc, smtplib.SMTPAuthenticationError):
        return FailureKind.AUTH
    if isinstance(exc, (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused, smtplib.SMTPDataError)):
        return FailureKind.REJECTED
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return FailureKind.TIMEOUT
    if isinstance(exc, (smtplib.SMTPConnectError, smtplib.SMTPServerDisconnected, OSError)):
        return FailureKind.CONNECTIVITY
    return FailureKind.UNKNOWN


def _attach(email: EmailMessage, attachment: Attachment) -> None:
    content_type = attachment.content_type or mimetypes.guess_type(attachment.filename)[0]
    maintype, _, subtype = (content_type or "application/octet-stream").partition("/")
    content = attachment.content
    if isinstance(content, str):
        content = content.encode("utf-8")
    email.add_attachment(content, maintype=maintype, subtype=subtype or "octet-stream", filename=attachment.filename)


def build_message(outbound: OutboundEmail, settings: EmailSettings) -> EmailMessage:
    email = EmailMessage()
    email["Subject"] = outbound.subject
    email["From"] = formataddr((settings.from_name, settings.from_address or ""))
    email["To"] = ", ".join(outbound.to)
    if settings.reply_to:
        email["Reply-To"] = settings.reply_to
    domain = (settings.from_address or "").rpartition("@")[2] or None
    email["Message-ID"] = make_msgid(domain=domain)
    x_priority, importance = PRIORITY_HEADERS[Priority(outbound.priority)]
    email["X-Priority"] = x_priority
    email["Importance"] = importance
    email.set_content(outbound.body_text or "")
    if outbound.body_html:
        email.add_alternative(outbound.body_html, subtype="html")
    for attachment in outbound.attachments:
        _attach(email, attachment)
    return email


class SmtpTransport:
    """Sends one message per call through an SMTP relay.

    Every failure is logged and returned as an unsuccessful
    :class:`DeliveryResult`; nothing raised by ``smtplib`` escapes ``send``.
    Blocking sends run on ``executor``, or on the loop's default pool when
    none is given.
    """

    def __init__(self, settings: Optional[EmailSettings] = None, executor: Optional[Executor] = None) -> None:
        self.settings = settings or get_settings()
        self.executor = executor

    def _connect(self) -> smtplib.SMTP:
        settings = self.settings
        if settings.secure:
            context = ssl.create_default_context()
            server: smtplib.SMTP = smtplib.SMTP_SSL(settings.host, settings.port, timeout=settings.timeout, context=context)
        else:
            server = smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout)
        try:
            if not settings.secure and settings.use_tls:
                server.starttls(context=ssl.create_default_context())
            if settings.username and settings.password:
                server.login(settings.username, settings.password)
        except Exception:
            server.quit()
            raise
        return server

    def send_sync(self, outbound: OutboundEmail) -> DeliveryResult:
        recipients = ", ".join(outbound.to)
        if not self.settings.host:
            LOGGER.warning("SMTP_HOST not configured; email '%s' to %s suppressed", outbound.subject, recipients)
            return DeliveryResult.failed(FailureKind.CONNECTIVITY, "SMTP host not configured")
        if not self.settings.from_address:
            LOGGER.warning("Skipping email '%s': no sender address configured", outbound.subject)
            return DeliveryResult.failed(FailureKind.UNKNOWN, "sender address not configured")

        try:
            email = build_message(outbound, self.settings)
            with self._connect() as server:
                refused = server.send_message(email)
        except Exception as exc:
            failure = classify_error(exc)
            LOGGER.exception(
                "Failed to send email '%s' to %s (%s): %s", outbound.subject, recipients, failure.value, exc
            )
            return DeliveryResult.failed(failure, str(exc))

        message_id = email["Message-ID"]
        if refused:
            detail = "refused: " + ", ".join(sorted(refused))
            if set(refused) >= set(outbound.to):
                LOGGER.error("Email '%s' was refused for every recipient (%s)", outbound.subject, detail)
                return DeliveryResult.failed(FailureKind.REJECTED, detail)
            LOGGER.warning("Email '%s' (message id %s) %s", outbound.subject, message_id, detail)
            return DeliveryResult.delivered(message_id, detail)
        LOGGER.info("Sent email '%s' to %s (message id %s)", outbound.subject, recipients, message_id)
        return DeliveryResult.delivered(message_id)

    async def send(self, email: OutboundEmail) -> DeliveryResult:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.send_sync, email)

    @contextmanager
    def dedicated(self, workers: int) -> Iterator["SmtpTransport"]:
        """Yield a transport with its own pool of ``workers`` threads.

        Used for bulk sends so every message in a batch has a thread and the
        batch is not capped by the shared default pool.
        """
        with ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix="smtp-bulk") as pool:
            yield SmtpTransport(self.settings, executor=pool)

    def verify(self) -> bool:
        """Connect and authenticate against the relay without sending anything."""
        if not self.settings.host:
            LOGGER.warning("SMTP_HOST not configured; cannot verify transport")
            return False
        try:
            with self._connect() as server:
                server.noop()
        except Exception as exc:
            LOGGER.error("SMTP configuration check failed (%s): %s", classify_error(exc).value, exc)
            return False
        LOGGER.info("SMTP configuration verified for %s:%s", self.settings.host, self.settings.port)
        return True
