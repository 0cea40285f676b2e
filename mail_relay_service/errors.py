# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Error taxonomy and classification for the mail relay service.

Every failure that can reach a client is represented by a subclass of
:class:`MailServiceError`. The transport translates whatever the SMTP client
raises into one of these types, and :func:`classify` maps them (and any other
exception) onto the stable status/code pairs exposed by the HTTP API.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, NamedTuple, Optional


class MailServiceError(Exception):
    """Base class for all errors raised by the service."""


class ConfigurationError(MailServiceError):
    """Raised when the relay credentials are missing from the environment."""


class ValidationError(MailServiceError):
    """Raised when an inbound request has one or more field violations."""

    def __init__(self, failures: List[Any]):
        super().__init__(f"{len(failures)} validation failure(s)")
        self.failures = list(failures)


class AuthenticationFailed(MailServiceError):
    """The relay rejected the configured credentials."""


class ConnectionFailed(MailServiceError):
    """The relay could not be reached or stopped responding."""


class RecipientRejected(MailServiceError):
    """The relay refused a recipient mailbox."""

    def __init__(self, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.address = address


class TransportError(MailServiceError):
    """Any other relay failure; keeps the raw relay response."""

    def __init__(self, message: str, response: Optional[str] = None):
        super().__init__(message)
        self.response = response


class InvalidPayload(MailServiceError):
    """The request body could not be decoded into a JSON object."""


class PayloadTooLarge(MailServiceError):
    """The request body exceeds the configured size ceiling."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"Request body of {size} bytes exceeds limit of {limit} bytes")
        self.size = size
        self.limit = limit


class RateLimited(MailServiceError):
    """The client exceeded its request budget."""

    def __init__(self, retry_after: int):
        super().__init__(f"Rate limit exceeded, retry after {retry_after}s")
        self.retry_after = retry_after


class InvalidApiToken(MailServiceError):
    """The ``X-API-Token`` header is missing or wrong."""


class ErrorCategory(Enum):
    """Closed set of client-facing error categories."""

    VALIDATION_FAILED = (400, "VALIDATION_ERROR", "Validation failed")
    AUTHENTICATION_FAILED = (
        401,
        "AUTH_ERROR",
        "Email authentication failed. Please check SMTP credentials.",
    )
    CONNECTION_FAILED = (
        503,
        "CONNECTION_ERROR",
        "Unable to connect to email server. Please try again later.",
    )
    INVALID_RECIPIENT = (400, "INVALID_RECIPIENT", "Invalid recipient email address.")
    INTERNAL_ERROR = (500, "INTERNAL_ERROR", "Internal server error occurred while sending email")

    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message


class Classification(NamedTuple):
    status_code: int
    code: str
    message: str
    category: Optional[ErrorCategory] = None


def _from_category(category: ErrorCategory) -> Classification:
    return Classification(category.status_code, category.code, category.message, category)


_CATEGORY_TABLE = (
    (ValidationError, ErrorCategory.VALIDATION_FAILED),
    (AuthenticationFailed, ErrorCategory.AUTHENTICATION_FAILED),
    (ConnectionFailed, ErrorCategory.CONNECTION_FAILED),
    (RecipientRejected, ErrorCategory.INVALID_RECIPIENT),
)

# Signals raised at the HTTP boundary that have no core category.
_BOUNDARY_TABLE = (
    (InvalidPayload, Classification(400, "INVALID_JSON", "Invalid JSON payload")),
    (PayloadTooLarge, Classification(413, "PAYLOAD_TOO_LARGE", "Request payload too large")),
    (
        RateLimited,
        Classification(429, "RATE_LIMITED", "Too many requests from this IP, please try again later."),
    ),
    (InvalidApiToken, Classification(401, "INVALID_API_TOKEN", "Invalid or missing API token")),
)


def classify(exc: BaseException) -> Classification:
    """Map any raised condition to its client-facing classification.

    The mapping is total: anything not listed in the category or boundary
    tables (including :class:`TransportError` and :class:`ConfigurationError`)
    collapses to ``INTERNAL_ERROR``.
    """
    for exc_type, category in _CATEGORY_TABLE:
        if isinstance(exc, exc_type):
            return _from_category(category)
    for exc_type, classification in _BOUNDARY_TABLE:
        if isinstance(exc, exc_type):
            return classification
    return _from_category(ErrorCategory.INTERNAL_ERROR)
