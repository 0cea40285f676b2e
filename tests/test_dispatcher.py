from typing import Any, List

import aiosmtplib
import pytest

from mail_relay_service.dispatcher import Dispatcher, DispatchResponse, error_body
from mail_relay_service.errors import ConfigurationError, ConnectionFailed, RecipientRejected
from mail_relay_service.prometheus import MailMetrics
from mail_relay_service.transport import DispatchResult, MailTransport


class StubTransport:
    def __init__(self, error: Exception | None = None):
        self.user = "relay@example.com"
        self.error = error
        self.requests: List[Any] = []

    async def send(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return DispatchResult(
            message_id="<abc@example.com>",
            accepted=list(request.envelope_recipients),
            rejected=[],
            response="250 OK",
        )


class FailingSMTP:
    """SMTP double whose connect step raises a configured exception."""

    error: Exception | None = None

    def __init__(self, **kwargs):
        self.is_connected = False

    async def connect(self):
        raise FailingSMTP.error

    def close(self):
        self.is_connected = False


class RecordingSMTP:
    """SMTP double that accepts every message."""

    sent: List[Any] = []

    def __init__(self, **kwargs):
        self.is_connected = False

    async def connect(self):
        self.is_connected = True

    async def noop(self):
        return 250, "OK"

    def close(self):
        self.is_connected = False

    async def send_message(self, message, sender=None, recipients=None):
        RecordingSMTP.sent.append(message)
        return {}, "250 2.0.0 OK queued"


@pytest.mark.asyncio
async def test_successful_dispatch_builds_success_payload():
    transport = StubTransport()
    dispatcher = Dispatcher(transport, sender_address="relay@example.com")

    response = await dispatcher.dispatch({"to": "x@y.com", "subject": "Hi", "message": "Hello"})

    assert isinstance(response, DispatchResponse)
    assert response.status_code == 200
    assert response.body["status"] == "success"
    assert response.body["message"] == "Email sent successfully"
    data = response.body["data"]
    assert data["messageId"] == "<abc@example.com>"
    assert data["recipients"] == 1
    assert data["subject"] == "Hi"
    assert data["from"] == "relay@example.com"
    assert data["name"] == "Email Service"
    assert data["sentAt"].endswith("Z")
    assert list(transport.requests[0].to) == ["x@y.com"]


@pytest.mark.asyncio
async def test_success_payload_echoes_sender_identity():
    dispatcher = Dispatcher(StubTransport(), sender_address="relay@example.com", sender_name="Relay")

    response = await dispatcher.dispatch(
        {"to": ["a@b.com", "c@d.com"], "subject": "S", "message": "M", "from": "me@x.org", "name": "Me"}
    )

    data = response.body["data"]
    assert (data["from"], data["name"], data["recipients"]) == ("me@x.org", "Me", 2)


@pytest.mark.asyncio
async def test_sender_address_falls_back_to_transport_user():
    response = await Dispatcher(StubTransport()).dispatch({"to": "x@y.com", "subject": "S", "message": "M"})

    assert response.body["data"]["from"] == "relay@example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"subject": "S", "message": "M"},
        {"to": "x@y.com", "message": "M"},
        {"to": "x@y.com", "subject": "S"},
        {"to": "", "subject": "", "message": ""},
    ],
)
async def test_invalid_requests_never_reach_transport(raw):
    transport = StubTransport()

    response = await Dispatcher(transport).dispatch(raw)

    assert response.status_code == 400
    assert response.body["status"] == "error"
    assert response.body["message"] == "Validation failed"
    assert response.body["code"] == "VALIDATION_ERROR"
    assert response.body["errors"]
    assert transport.requests == []


@pytest.mark.asyncio
async def test_invalid_cc_is_reported_per_field():
    transport = StubTransport()

    response = await Dispatcher(transport).dispatch(
        {"to": "x@y.com", "subject": "S", "message": "M", "cc": ["ok@y.com", "broken"]}
    )

    assert response.status_code == 400
    assert response.body["errors"] == [
        {"field": "cc", "message": "Invalid CC email address(es): broken", "value": ["ok@y.com", "broken"]}
    ]
    assert transport.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,status_code,code",
    [
        (aiosmtplib.SMTPAuthenticationError(535, "Username and Password not accepted"), 401, "AUTH_ERROR"),
        (aiosmtplib.SMTPConnectError("Connection refused"), 503, "CONNECTION_ERROR"),
        (
            aiosmtplib.SMTPRecipientsRefused(
                [aiosmtplib.SMTPRecipientRefused(550, "5.1.1 mailbox unknown", "x@y.com")]
            ),
            400,
            "INVALID_RECIPIENT",
        ),
        (aiosmtplib.SMTPDataError(554, "5.7.1 message rejected"), 500, "INTERNAL_ERROR"),
        (aiosmtplib.SMTPDataError(451, "4.3.0 try again later"), 500, "INTERNAL_ERROR"),
    ],
)
async def test_simulated_relay_failures_are_classified(monkeypatch, error, status_code, code):
    FailingSMTP.error = error
    monkeypatch.setattr("mail_relay_service.transport.aiosmtplib.SMTP", FailingSMTP)
    transport = MailTransport(user="relay@example.com", password="secret")

    response = await Dispatcher(transport).dispatch({"to": "x@y.com", "subject": "S", "message": "M"})

    assert response.status_code == status_code
    assert response.body["code"] == code
    assert response.body["status"] == "error"
    assert "details" not in response.body


@pytest.mark.asyncio
async def test_missing_credentials_collapse_to_internal_error():
    transport = MailTransport(user=None, password=None)

    response = await Dispatcher(transport).dispatch({"to": "x@y.com", "subject": "S", "message": "M"})

    assert response.status_code == 500
    assert response.body == {
        "status": "error",
        "message": "Internal server error occurred while sending email",
        "code": "INTERNAL_ERROR",
    }


@pytest.mark.asyncio
async def test_diagnostic_mode_attaches_raw_description():
    transport = StubTransport(error=ConnectionFailed("Relay unreachable: [Errno 111] Connection refused"))

    response = await Dispatcher(transport, diagnostics=True).dispatch(
        {"to": "x@y.com", "subject": "S", "message": "M"}
    )

    assert response.status_code == 503
    assert response.body["details"] == "Relay unreachable: [Errno 111] Connection refused"


@pytest.mark.asyncio
async def test_unexpected_errors_are_contained():
    transport = StubTransport(error=RuntimeError("kaboom"))

    response = await Dispatcher(transport).dispatch({"to": "x@y.com", "subject": "S", "message": "M"})

    assert response.status_code == 500
    assert response.body["code"] == "INTERNAL_ERROR"
    assert "kaboom" not in str(response.body)


@pytest.mark.asyncio
async def test_metrics_track_outcomes():
    metrics = MailMetrics()
    ok = Dispatcher(StubTransport(), metrics=metrics)
    failing = Dispatcher(StubTransport(error=RecipientRejected("550", "x@y.com")), metrics=metrics)

    await ok.dispatch({"to": "x@y.com", "subject": "S", "message": "M"})
    await failing.dispatch({"to": "x@y.com", "subject": "S", "message": "M"})
    await ok.dispatch({"to": "nope", "subject": "S", "message": "M"})

    output = metrics.generate_latest()
    assert b"mrs_sent_total 1.0" in output
    assert b'mrs_errors_total{code="INVALID_RECIPIENT"} 1.0' in output
    assert b'mrs_rejected_requests_total{code="VALIDATION_ERROR"} 1.0' in output


def test_error_body_hides_details_by_default():
    status_code, body = error_body(ConfigurationError("SMTP credentials not configured"))

    assert status_code == 500
    assert "details" not in body
    _, body = error_body(ConfigurationError("SMTP credentials not configured"), diagnostics=True)
    assert body["details"] == "SMTP credentials not configured"


@pytest.mark.asyncio
async def test_multiline_subject_is_sent(monkeypatch):
    monkeypatch.setattr(RecordingSMTP, "sent", [])
    monkeypatch.setattr("mail_relay_service.transport.aiosmtplib.SMTP", RecordingSMTP)
    transport = MailTransport(user="relay@example.com", password="secret")

    response = await Dispatcher(transport).dispatch(
        {"to": "x@y.com", "subject": "Line one\nline two", "message": "Hello"}
    )

    assert response.status_code == 200
    assert response.body["data"]["subject"] == "Line one\nline two"
    assert RecordingSMTP.sent[0]["Subject"] == "Line one line two"
