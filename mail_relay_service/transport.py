# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""SMTP transport bound to a single relay account.

The transport owns one :class:`aiosmtplib.SMTP` client created lazily on
first use. Sends are serialised over that client and the session is kept
open between requests as long as the relay answers NOOP probes.
"""

from __future__ import annotations

import asyncio
import html
import re
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr, formatdate, make_msgid
from enum import Enum
from typing import List, Optional

import aiosmtplib

from .errors import (
    AuthenticationFailed,
    ConfigurationError,
    ConnectionFailed,
    MailServiceError,
    RecipientRejected,
    TransportError,
)
from .logger import get_logger
from .validation import EmailRequest

DEFAULT_HOST = "smtp.gmail.com"
DEFAULT_PORT = 587
DEFAULT_SENDER_NAME = "Email Service"

# SMTP 55x replies to RCPT mean the mailbox or address is unusable.
MAILBOX_UNAVAILABLE_CODES = range(550, 560)

_LINE_BREAKS = re.compile(r"\s*[\r\n]+\s*")

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <style>
      body {{
        font-family: Arial, sans-serif;
        line-height: 1.6;
        color: #333;
        max-width: 600px;
        margin: 0 auto;
        padding: 20px;
      }}
      .email-content {{
        background: #f9f9f9;
        padding: 20px;
        border-radius: 5px;
        border-left: 4px solid #007bff;
      }}
    </style>
  </head>
  <body>
    <div class="email-content">
      {content}
    </div>
  </body>
</html>
"""


class TransportState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"


@dataclass(frozen=True)
class DispatchResult:
    """Relay acknowledgement for a successfully submitted message."""

    message_id: str
    accepted: List[str]
    rejected: List[str]
    response: str


def render_html(text: str) -> str:
    """Render plain text as a minimal styled HTML document.

    The text is HTML-escaped, carriage returns are dropped and every newline
    becomes a ``<br>``.
    """
    content = html.escape(text).replace("\r", "").replace("\n", "<br>")
    return _HTML_TEMPLATE.format(content=content)


def _response_text(exc: aiosmtplib.SMTPResponseException) -> str:
    return f"{exc.code} {exc.message}"


def translate_smtp_error(exc: BaseException) -> Optional[MailServiceError]:
    """Translate an exception raised by the SMTP client into the service taxonomy.

    Returns ``None`` for exceptions that do not originate from the relay
    conversation; callers re-raise those unchanged.
    """
    if isinstance(exc, aiosmtplib.SMTPAuthenticationError):
        return AuthenticationFailed(f"Relay rejected credentials: {_response_text(exc)}")
    if isinstance(
        exc,
        (
            aiosmtplib.SMTPConnectError,
            aiosmtplib.SMTPServerDisconnected,
            aiosmtplib.SMTPTimeoutError,
            TimeoutError,
            OSError,
        ),
    ):
        return ConnectionFailed(f"Relay unreachable: {exc}")
    if isinstance(exc, aiosmtplib.SMTPRecipientsRefused):
        for refused in exc.recipients:
            if refused.code in MAILBOX_UNAVAILABLE_CODES:
                return RecipientRejected(_response_text(refused), address=refused.recipient)
        return TransportError(f"Relay refused all recipients: {exc}", response=str(exc))
    if isinstance(exc, aiosmtplib.SMTPRecipientRefused):
        if exc.code in MAILBOX_UNAVAILABLE_CODES:
            return RecipientRejected(_response_text(exc), address=exc.recipient)
        return TransportError(f"Relay refused recipient: {_response_text(exc)}", response=_response_text(exc))
    if isinstance(exc, aiosmtplib.SMTPResponseException):
        response = _response_text(exc)
        return TransportError(f"Relay error: {response}", response=response)
    if isinstance(exc, aiosmtplib.SMTPException):
        return TransportError(f"Relay error: {exc}", response=str(exc))
    return None


class MailTransport:
    """Send messages through one SMTP relay with a lazily created client."""

    def __init__(
        self,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        user: str | None = None,
        password: str | None = None,
        sender_name: str = DEFAULT_SENDER_NAME,
        connect_timeout: float = 15.0,
        send_timeout: float = 30.0,
        logger=None,
    ):
        self.host = host
        self.port = int(port)
        self.user = user
        self.password = password
        self.sender_name = sender_name
        self.connect_timeout = float(connect_timeout)
        self.send_timeout = float(send_timeout)
        self.logger = logger or get_logger()

        self._state = TransportState.UNINITIALIZED
        self._client: Optional[aiosmtplib.SMTP] = None
        self._init_lock = threading.Lock()
        self._send_lock = asyncio.Lock()

    @property
    def state(self) -> TransportState:
        return self._state

    # ----------------------------------------------------------------- lifecycle
    def ensure_ready(self) -> aiosmtplib.SMTP:
        """Create the SMTP client on first use and return it.

        Contains no ``await`` so the check-and-create sequence cannot be
        interleaved by other coroutines; the lock covers threaded callers.
        """
        with self._init_lock:
            if self._state is TransportState.READY:
                return self._client
            if not self.user or not self.password:
                raise ConfigurationError(
                    "SMTP credentials not configured. Please set GMAIL_USER and GMAIL_PASS environment variables."
                )
            self._client = aiosmtplib.SMTP(
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                start_tls=True,
                validate_certs=False,
                timeout=self.connect_timeout,
            )
            self._state = TransportState.READY
            self.logger.info("SMTP transport initialised for %s:%d", self.host, self.port)
            return self._client

    async def _is_alive(self, smtp: aiosmtplib.SMTP) -> bool:
        """Return ``True`` when the connection responds correctly to NOOP."""
        try:
            code, _ = await asyncio.wait_for(smtp.noop(), timeout=5.0)
            return code == 250
        except (aiosmtplib.SMTPException, OSError):
            return False

    async def _ensure_connected(self, smtp: aiosmtplib.SMTP) -> None:
        if smtp.is_connected:
            if await self._is_alive(smtp):
                return
            self.logger.debug("Discarding stale SMTP session to %s", self.host)
            smtp.close()
        # connect() also performs STARTTLS and AUTH with the configured credentials
        await asyncio.wait_for(smtp.connect(), timeout=self.connect_timeout)

    @staticmethod
    def _discard_session(smtp: aiosmtplib.SMTP) -> None:
        if smtp.is_connected:
            smtp.close()

    # -------------------------------------------------------------- operations
    async def verify(self) -> bool:
        """Connect and authenticate against the relay without sending mail."""
        smtp = self.ensure_ready()
        async with self._send_lock:
            try:
                await self._ensure_connected(smtp)
                code, message = await asyncio.wait_for(smtp.noop(), timeout=self.connect_timeout)
            except Exception as exc:
                self._discard_session(smtp)
                translated = translate_smtp_error(exc)
                if translated is None:
                    raise
                raise translated from exc
        if code != 250:
            raise TransportError(f"Relay answered NOOP with {code} {message}", response=f"{code} {message}")
        self.logger.info("SMTP connection to %s:%d verified", self.host, self.port)
        return True

    def build_message(self, request: EmailRequest) -> EmailMessage:
        """Translate a validated request into a multipart text/HTML message."""
        msg = EmailMessage()
        msg["From"] = formataddr((request.name or self.sender_name, self.user))
        msg["To"] = ", ".join(request.to)
        if request.cc:
            msg["Cc"] = ", ".join(request.cc)
        if request.from_:
            msg["Reply-To"] = request.from_
        # header values cannot carry line breaks
        msg["Subject"] = _LINE_BREAKS.sub(" ", request.subject)
        msg["Date"] = formatdate(localtime=False, usegmt=True)
        domain = self.user.rpartition("@")[2] if self.user else None
        msg["Message-ID"] = make_msgid(domain=domain or None)
        msg.set_content(request.message)
        msg.add_alternative(render_html(request.message), subtype="html")
        return msg

    async def send(self, request: EmailRequest) -> DispatchResult:
        """Submit *request* to the relay and return its acknowledgement.

        Raises :class:`AuthenticationFailed`, :class:`ConnectionFailed`,
        :class:`RecipientRejected` or :class:`TransportError` for relay
        failures and :class:`ConfigurationError` when credentials are missing.
        """
        smtp = self.ensure_ready()
        msg = self.build_message(request)
        recipients = request.envelope_recipients

        async with self._send_lock:
            try:
                await self._ensure_connected(smtp)
                async with asyncio.timeout(self.send_timeout):
                    errors, response = await smtp.send_message(msg, sender=self.user, recipients=recipients)
            except Exception as exc:
                self._discard_session(smtp)
                translated = translate_smtp_error(exc)
                if translated is None:
                    raise
                raise translated from exc

        rejected = list(errors)
        accepted = [addr for addr in recipients if addr not in errors]
        self.logger.info(
            "Email %s accepted by relay (accepted=%d, rejected=%d)",
            msg["Message-ID"],
            len(accepted),
            len(rejected),
        )
        return DispatchResult(
            message_id=msg["Message-ID"],
            accepted=accepted,
            rejected=rejected,
            response=response,
        )
