"""Validation of inbound send-email requests.

Validation is pure: :func:`validate_request` never touches the network and
reports every violation it finds, so a client can fix all problems in one
round trip.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

ADDRESS_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

MAX_TO_RECIPIENTS = 50
MAX_CC_RECIPIENTS = 20
MAX_BCC_RECIPIENTS = 20
SUBJECT_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 10000
NAME_MAX_LENGTH = 100


@dataclass(frozen=True)
class EmailRequest:
    """A validated and normalised send request."""

    to: Tuple[str, ...]
    subject: str
    message: str
    cc: Optional[Tuple[str, ...]] = None
    bcc: Optional[Tuple[str, ...]] = None
    from_: Optional[str] = None
    name: Optional[str] = None

    @property
    def recipient_count(self) -> int:
        return len(self.to)

    @property
    def envelope_recipients(self) -> List[str]:
        """Every address the relay must deliver to, BCC included."""
        return [*self.to, *(self.cc or ()), *(self.bcc or ())]


@dataclass(frozen=True)
class ValidationFailure:
    field: str
    message: str
    value: Any = None

    def as_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message, "value": self.value}


def is_valid_address(value: Any) -> bool:
    """Return ``True`` when *value* is a string shaped like ``local@domain.tld``."""
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def normalize_addresses(value: Any) -> Optional[List[Any]]:
    """Coerce a scalar or sequence of addresses into a list.

    ``None``, empty strings and empty sequences normalise to ``None`` so that
    optional fields are omitted rather than stored empty.
    """
    if value is None or value == "":
        return None
    if isinstance(value, (list, tuple)):
        return list(value) if value else None
    return [value]


def _check_addresses(
    field: str,
    raw: Any,
    addresses: List[Any],
    limit: int,
    label: str,
    limit_message: str,
) -> List[ValidationFailure]:
    failures: List[ValidationFailure] = []
    invalid = [addr for addr in addresses if not is_valid_address(addr)]
    if invalid:
        listed = ", ".join(str(addr) for addr in invalid)
        failures.append(ValidationFailure(field, f"Invalid {label}email address(es): {listed}", raw))
    if len(addresses) > limit:
        failures.append(ValidationFailure(field, limit_message, raw))
    return failures


def _check_text(
    field: str,
    raw: Any,
    max_length: int,
    required_message: str,
    length_message: str,
) -> Tuple[Optional[str], List[ValidationFailure]]:
    if raw is None:
        return None, [ValidationFailure(field, required_message, raw)]
    if not isinstance(raw, str):
        return None, [ValidationFailure(field, f"{field.capitalize()} must be a string", raw)]
    text = raw.strip()
    if not text:
        return None, [ValidationFailure(field, required_message, raw)]
    if len(text) > max_length:
        return None, [ValidationFailure(field, length_message, raw)]
    return text, []


def validate_request(raw: Mapping[str, Any]) -> Tuple[Optional[EmailRequest], List[ValidationFailure]]:
    """Validate a loosely typed request body.

    Returns ``(request, [])`` when the input is acceptable, otherwise
    ``(None, failures)`` with one entry per violated rule.
    """
    failures: List[ValidationFailure] = []

    raw_to = raw.get("to")
    to = normalize_addresses(raw_to)
    if to is None:
        failures.append(ValidationFailure("to", "Recipient email address is required", raw_to))
    else:
        failures.extend(
            _check_addresses(
                "to", raw_to, to, MAX_TO_RECIPIENTS, "",
                f"Maximum {MAX_TO_RECIPIENTS} recipients allowed per request",
            )
        )

    subject, subject_failures = _check_text(
        "subject",
        raw.get("subject"),
        SUBJECT_MAX_LENGTH,
        "Email subject is required",
        f"Subject must be between 1 and {SUBJECT_MAX_LENGTH} characters",
    )
    failures.extend(subject_failures)

    message, message_failures = _check_text(
        "message",
        raw.get("message"),
        MESSAGE_MAX_LENGTH,
        "Email message is required",
        f"Message must be between 1 and {MESSAGE_MAX_LENGTH:,} characters",
    )
    failures.extend(message_failures)

    raw_cc = raw.get("cc")
    cc = normalize_addresses(raw_cc)
    if cc is not None:
        failures.extend(
            _check_addresses(
                "cc", raw_cc, cc, MAX_CC_RECIPIENTS, "CC ",
                f"Maximum {MAX_CC_RECIPIENTS} CC recipients allowed",
            )
        )

    raw_bcc = raw.get("bcc")
    bcc = normalize_addresses(raw_bcc)
    if bcc is not None:
        failures.extend(
            _check_addresses(
                "bcc", raw_bcc, bcc, MAX_BCC_RECIPIENTS, "BCC ",
                f"Maximum {MAX_BCC_RECIPIENTS} BCC recipients allowed",
            )
        )

    sender = raw.get("from") or None
    if sender is not None and not is_valid_address(sender):
        failures.append(ValidationFailure("from", "Invalid sender email address", sender))

    name = raw.get("name") or None
    if name is not None and (
        not isinstance(name, str) or len(name) > NAME_MAX_LENGTH or "\n" in name or "\r" in name
    ):
        failures.append(
            ValidationFailure(
                "name",
                f"Sender name must be a single line of at most {NAME_MAX_LENGTH} characters",
                name,
            )
        )

    if failures:
        return None, failures

    request = EmailRequest(
        to=tuple(to),
        subject=subject,
        message=message,
        cc=tuple(cc) if cc else None,
        bcc=tuple(bcc) if bcc else None,
        from_=sender,
        name=name.strip() or None if name else None,
    )
    return request, []
