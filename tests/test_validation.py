import pytest

from mail_relay_service.validation import (
    EmailRequest,
    ValidationFailure,
    is_valid_address,
    normalize_addresses,
    validate_request,
)


def _fields(failures):
    return [failure.field for failure in failures]


def test_minimal_request_is_normalised():
    request, failures = validate_request({"to": "a@b.com", "subject": " Hi ", "message": "Hello\n"})

    assert failures == []
    assert request == EmailRequest(to=("a@b.com",), subject="Hi", message="Hello")
    assert request.cc is None
    assert request.bcc is None
    assert request.recipient_count == 1


def test_scalar_to_becomes_single_element_list():
    assert normalize_addresses("a@b.com") == ["a@b.com"]
    request, _ = validate_request({"to": "a@b.com", "subject": "s", "message": "m"})
    assert list(request.to) == ["a@b.com"]


@pytest.mark.parametrize("value", [None, "", []])
def test_normalize_addresses_drops_empty_values(value):
    assert normalize_addresses(value) is None


@pytest.mark.parametrize("missing", ["to", "subject", "message"])
def test_missing_required_field_is_reported(missing):
    raw = {"to": "x@y.com", "subject": "Hi", "message": "Hello"}
    del raw[missing]

    request, failures = validate_request(raw)

    assert request is None
    assert _fields(failures) == [missing]


def test_whitespace_only_text_counts_as_missing():
    _, failures = validate_request({"to": "x@y.com", "subject": "   ", "message": "\n\t"})

    assert [(f.field, f.message) for f in failures] == [
        ("subject", "Email subject is required"),
        ("message", "Email message is required"),
    ]


def test_all_violations_are_collected():
    raw = {"to": ["bad"], "subject": "", "message": None, "cc": "also-bad", "bcc": ["ok@x.io", "nope@"]}

    request, failures = validate_request(raw)

    assert request is None
    assert _fields(failures) == ["to", "subject", "message", "cc", "bcc"]


@pytest.mark.parametrize(
    "address,valid",
    [
        ("user@example.com", True),
        ("first.last+tag@sub.example.org", True),
        ("no-at-sign.example.com", False),
        ("user@nodot", False),
        ("user name@example.com", False),
        ("user@@example.com", False),
        ("", False),
        (42, False),
    ],
)
def test_address_pattern(address, valid):
    assert is_valid_address(address) is valid


def test_invalid_address_failure_names_the_address():
    raw_to = ["good@example.com", "broken@example"]
    _, failures = validate_request({"to": raw_to, "subject": "s", "message": "m"})

    assert failures == [
        ValidationFailure("to", "Invalid email address(es): broken@example", raw_to),
    ]


def test_to_recipient_limit_boundary():
    fifty = [f"user{i}@example.com" for i in range(50)]
    request, failures = validate_request({"to": fifty, "subject": "s", "message": "m"})
    assert failures == []
    assert request.recipient_count == 50

    fifty_one = fifty + ["one-more@example.com"]
    request, failures = validate_request({"to": fifty_one, "subject": "s", "message": "m"})
    assert request is None
    assert failures[0].message == "Maximum 50 recipients allowed per request"


def test_subject_length_boundary():
    ok, failures = validate_request({"to": "a@b.com", "subject": "x" * 200, "message": "m"})
    assert failures == []
    assert len(ok.subject) == 200

    _, failures = validate_request({"to": "a@b.com", "subject": "x" * 201, "message": "m"})
    assert failures[0].field == "subject"
    assert failures[0].message == "Subject must be between 1 and 200 characters"


def test_message_length_is_measured_after_trimming():
    padded = "  " + "x" * 10000 + "  "
    request, failures = validate_request({"to": "a@b.com", "subject": "s", "message": padded})
    assert failures == []
    assert len(request.message) == 10000

    _, failures = validate_request({"to": "a@b.com", "subject": "s", "message": "x" * 10001})
    assert failures[0].message == "Message must be between 1 and 10,000 characters"


def test_non_string_subject_is_rejected():
    _, failures = validate_request({"to": "a@b.com", "subject": 12, "message": "m"})
    assert failures == [ValidationFailure("subject", "Subject must be a string", 12)]


def test_cc_and_bcc_limits():
    twenty_one = [f"cc{i}@example.com" for i in range(21)]
    _, failures = validate_request(
        {"to": "a@b.com", "subject": "s", "message": "m", "cc": twenty_one, "bcc": twenty_one}
    )

    assert [(f.field, f.message) for f in failures] == [
        ("cc", "Maximum 20 CC recipients allowed"),
        ("bcc", "Maximum 20 BCC recipients allowed"),
    ]


def test_empty_optional_recipients_are_omitted():
    request, failures = validate_request(
        {"to": "a@b.com", "subject": "s", "message": "m", "cc": "", "bcc": []}
    )

    assert failures == []
    assert request.cc is None
    assert request.bcc is None


def test_scalar_cc_is_normalised():
    request, _ = validate_request({"to": "a@b.com", "subject": "s", "message": "m", "cc": "c@d.com"})

    assert request.cc == ("c@d.com",)
    assert request.envelope_recipients == ["a@b.com", "c@d.com"]


def test_invalid_cc_failure_keeps_rejected_value():
    _, failures = validate_request({"to": "a@b.com", "subject": "s", "message": "m", "cc": "nope"})

    assert failures == [ValidationFailure("cc", "Invalid CC email address(es): nope", "nope")]
    assert failures[0].as_dict() == {
        "field": "cc",
        "message": "Invalid CC email address(es): nope",
        "value": "nope",
    }


def test_sender_identity_is_validated_and_kept():
    request, failures = validate_request(
        {"to": "a@b.com", "subject": "s", "message": "m", "from": "me@site.org", "name": " Me "}
    )
    assert failures == []
    assert request.from_ == "me@site.org"
    assert request.name == "Me"

    _, failures = validate_request(
        {"to": "a@b.com", "subject": "s", "message": "m", "from": "me", "name": "Line\nBreak"}
    )
    assert _fields(failures) == ["from", "name"]


def test_validation_does_not_mutate_input():
    raw = {"to": "a@b.com", "subject": "  s  ", "message": "m"}
    snapshot = dict(raw)

    validate_request(raw)

    assert raw == snapshot
