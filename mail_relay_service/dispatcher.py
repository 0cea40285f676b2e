# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Dispatch orchestration: validate, send, and shape the client response."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping

from .errors import ValidationError, classify
from .logger import get_logger
from .prometheus import MailMetrics
from .transport import DEFAULT_SENDER_NAME, MailTransport
from .validation import validate_request


@dataclass(frozen=True)
class DispatchResponse:
    status_code: int
    body: Dict[str, Any]


def _utc_now_iso() -> str:
    """Return the current UTC timestamp as ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def error_body(exc: BaseException, *, diagnostics: bool = False) -> tuple[int, Dict[str, Any]]:
    """Classify *exc* and build the ``{status, message, code}`` error payload.

    The raw exception description is attached as ``details`` only when
    ``diagnostics`` is enabled.
    """
    classification = classify(exc)
    body: Dict[str, Any] = {
        "status": "error",
        "message": classification.message,
        "code": classification.code,
    }
    if diagnostics:
        body["details"] = str(exc) or type(exc).__name__
    return classification.status_code, body


class Dispatcher:
    """Run one synchronous dispatch attempt per request."""

    def __init__(
        self,
        transport: MailTransport,
        *,
        sender_address: str | None = None,
        sender_name: str = DEFAULT_SENDER_NAME,
        diagnostics: bool = False,
        metrics: MailMetrics | None = None,
        logger=None,
    ):
        self.transport = transport
        self.sender_address = sender_address
        self.sender_name = sender_name
        self.diagnostics = bool(diagnostics)
        self.metrics = metrics
        self.logger = logger or get_logger()

    async def dispatch(self, raw: Mapping[str, Any]) -> DispatchResponse:
        """Validate *raw* and, when acceptable, send it through the transport.

        Never raises: every failure is turned into a classified error
        response.
        """
        request, failures = validate_request(raw)
        if failures:
            error = ValidationError(failures)
            status_code, body = error_body(error)
            body["errors"] = [failure.as_dict() for failure in failures]
            self.logger.warning(
                "Rejected email request: %s",
                ", ".join(f"{f.field}: {f.message}" for f in failures),
            )
            if self.metrics:
                self.metrics.inc_rejected(body["code"])
            return DispatchResponse(status_code, body)

        try:
            result = await self.transport.send(request)
        except Exception as exc:
            status_code, body = error_body(exc, diagnostics=self.diagnostics)
            if status_code >= 500:
                self.logger.error("Email dispatch failed (%s): %s", body["code"], exc)
            else:
                self.logger.warning("Email dispatch failed (%s): %s", body["code"], exc)
            if self.metrics:
                self.metrics.inc_error(body["code"])
            return DispatchResponse(status_code, body)

        if self.metrics:
            self.metrics.inc_sent()
        self.logger.info(
            "Email sent: id=%s recipients=%d subject=%r",
            result.message_id,
            request.recipient_count,
            request.subject,
        )
        return DispatchResponse(
            200,
            {
                "status": "success",
                "message": "Email sent successfully",
                "data": {
                    "messageId": result.message_id,
                    "from": request.from_ or self.sender_address or self.transport.user,
                    "name": request.name or self.sender_name,
                    "recipients": request.recipient_count,
                    "subject": request.subject,
                    "sentAt": _utc_now_iso(),
                },
            },
        )
