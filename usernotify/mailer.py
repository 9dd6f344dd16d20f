"""Outbound mail transports used by the notification composer."""
from __future__ import annotations

import logging
import smtplib
import ssl
import threading
from email.message import EmailMessage
from typing import Iterable, List, Optional, Protocol, Tuple

from .config import MailConfig
from .models import ComposedMessage

logger = logging.getLogger("usernotify.mailer")


class MailDeliveryError(RuntimeError):
    """Raised when a message could not be handed to the mail server."""


class Mailer(Protocol):
    def send(self, message: ComposedMessage) -> None:  # pragma: no cover - protocol
        ...


def _split_headers(headers: Iterable[str]) -> List[Tuple[str, str]]:
    parsed: List[Tuple[str, str]] = []
    for header in headers:
        if ":" not in header:
            raise ValueError(f"Malformed mail header: {header!r}")
        name, value = header.split(":", 1)
        parsed.append((name.strip(), value.strip()))
    return parsed


def build_email(message: ComposedMessage, *, from_address: str) -> EmailMessage:
    """Render a :class:`ComposedMessage` into a MIME message."""

    email = EmailMessage()
    email["From"] = from_address
    email["To"] = message.recipient
    email["Subject"] = message.subject

    subtype = "plain"
    charset = "utf-8"
    extra: List[Tuple[str, str]] = []
    for name, value in _split_headers(message.headers):
        if name.lower() != "content-type":
            extra.append((name, value))
            continue
        mime, _, params = value.partition(";")
        if mime.strip().lower() == "text/html":
            subtype = "html"
        if "charset=" in params.lower():
            charset = params.split("=", 1)[1].strip() or charset

    for name, value in extra:
        email[name] = value
    email.set_content(message.body, subtype=subtype, charset=charset)
    return email


class SMTPMailer:
    """Deliver messages over SMTP, using SSL on port 465 and STARTTLS otherwise."""

    def __init__(self, config: MailConfig) -> None:
        self._config = config

    @property
    def from_address(self) -> str:
        return self._config.from_address or self._config.username or f"noreply@{self._config.host}"

    def _connect(self) -> smtplib.SMTP:
        cfg = self._config
        context = ssl.create_default_context()
        if cfg.port == 465:
            server: smtplib.SMTP = smtplib.SMTP_SSL(cfg.host, cfg.port, context=context, timeout=cfg.timeout)
        else:
            server = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout)
            if cfg.use_tls:
                server.starttls(context=context)
        if cfg.username and cfg.password:
            server.login(cfg.username, cfg.password)
        return server

    def send(self, message: ComposedMessage) -> None:
        try:
            email = build_email(message, from_address=self.from_address)
        except (ValueError, UnicodeError) as exc:
            raise MailDeliveryError(f"Cannot build email for {message.recipient!r}: {exc}") from exc

        logger.debug("Connecting to SMTP server %s:%s", self._config.host, self._config.port)
        try:
            server = self._connect()
            try:
                server.send_message(email)
            finally:
                server.quit()
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"Failed to send email to {message.recipient}: {exc}") from exc
        logger.info("Email sent to %s", message.recipient)


class MemoryMailer:
    """Keep sent messages in memory; used for development and tests."""

    def __init__(self) -> None:
        self._outbox: List[ComposedMessage] = []
        self._lock = threading.Lock()

    @property
    def outbox(self) -> List[ComposedMessage]:
        with self._lock:
            return list(self._outbox)

    def send(self, message: ComposedMessage) -> None:
        with self._lock:
            self._outbox.append(message)
        logger.info("Queued email for %s in memory outbox", message.recipient)

    def clear(self) -> None:
        with self._lock:
            self._outbox.clear()


def build_mailer(config: Optional[MailConfig]) -> Mailer:
    if config is None or config.backend == "memory":
        return MemoryMailer()
    return SMTPMailer(config)


__all__ = [
    "MailDeliveryError",
    "Mailer",
    "MemoryMailer",
    "SMTPMailer",
    "build_email",
    "build_mailer",
]
